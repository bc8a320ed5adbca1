"""Create tenant program, metadata, credential and tool registry tables

Revision ID: 001
Revises:
Create Date: 2025-06-02

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenant_programs",
        sa.Column("tenant_id", sa.String(100), primary_key=True),
        sa.Column("program_text", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "tenant_metadata",
        sa.Column("tenant_id", sa.String(100), primary_key=True),
        sa.Column("version", sa.String(32), nullable=False),
        sa.Column("document", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "tenant_credentials",
        sa.Column("tenant_id", sa.String(100), primary_key=True),
        sa.Column("document", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "tool_records",
        sa.Column("tenant_id", sa.String(100), primary_key=True),
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("template", sa.String(100), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("oauth_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("provider", sa.String(50), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.String(40), nullable=False),
        sa.Column("last_updated", sa.String(40), nullable=True),
    )
    op.create_index("ix_tool_records_tenant_status", "tool_records", ["tenant_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_tool_records_tenant_status", table_name="tool_records")
    op.drop_table("tool_records")
    op.drop_table("tenant_credentials")
    op.drop_table("tenant_metadata")
    op.drop_table("tenant_programs")
