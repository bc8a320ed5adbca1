"""Table definitions for tenant programs, metadata, credentials and the tool registry."""

from sqlalchemy import MetaData, Table, Column, String, Text, Boolean, DateTime, Index, func

metadata = MetaData()

tenant_programs = Table(
    "tenant_programs",
    metadata,
    Column("tenant_id", String(100), primary_key=True),
    Column("program_text", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)

tenant_metadata = Table(
    "tenant_metadata",
    metadata,
    Column("tenant_id", String(100), primary_key=True),
    Column("version", String(32), nullable=False),
    # JSON document: tools, last_updated, status, dependencies, tool_definitions
    Column("document", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# TODO: encrypt credential documents at rest once a KMS key is provisioned per environment
tenant_credentials = Table(
    "tenant_credentials",
    metadata,
    Column("tenant_id", String(100), primary_key=True),
    Column("document", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)

tool_records = Table(
    "tool_records",
    metadata,
    Column("tenant_id", String(100), primary_key=True),
    Column("id", String(255), primary_key=True),
    Column("name", String(100), nullable=False),
    Column("template", String(100), nullable=False),
    Column("status", String(32), nullable=False),
    Column("oauth_complete", Boolean, nullable=False, default=False),
    Column("provider", String(50), nullable=True),
    Column("description", Text, nullable=True),
    Column("created_at", String(40), nullable=False),
    Column("last_updated", String(40), nullable=True),
    Index("ix_tool_records_tenant_status", "tenant_id", "status"),
)


def create_all(bind) -> None:
    """Create all tables (used by tests and local development)."""
    metadata.create_all(bind)
