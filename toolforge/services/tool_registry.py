"""Tool registry: one ToolRecord per tool per tenant."""

import logging
from typing import List, Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from toolforge.infra.database import get_db_session
from toolforge.infra.error_handler import StoreUnavailable, ToolNotFoundError
from toolforge.models.tenant import utc_now_iso
from toolforge.models.tool import ToolRecord, ToolStatus

logger = logging.getLogger(__name__)

_COLUMNS = "id, name, template, status, oauth_complete, provider, description, created_at, last_updated"


def _row_to_record(row) -> ToolRecord:
    return ToolRecord(
        id=row.id,
        name=row.name,
        template=row.template,
        status=ToolStatus(row.status),
        oauth_complete=bool(row.oauth_complete),
        provider=row.provider,
        description=row.description or "",
        created_at=row.created_at,
        last_updated=row.last_updated,
    )


class ToolRegistry:
    """
    Inventory of tool records, separate from the tenant program store.

    There is no hard delete: `remove` flips a record to inactive.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    def register(self, tenant_id: str, record: ToolRecord) -> ToolRecord:
        """Insert or replace a tool record."""
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(
                    text(f"""
                        INSERT INTO tool_records ({_COLUMNS}, tenant_id)
                        VALUES (:id, :name, :template, :status, :oauth_complete, :provider,
                                :description, :created_at, :last_updated, :tenant_id)
                        ON CONFLICT (tenant_id, id) DO UPDATE
                        SET name = excluded.name,
                            template = excluded.template,
                            status = excluded.status,
                            oauth_complete = excluded.oauth_complete,
                            provider = excluded.provider,
                            description = excluded.description,
                            last_updated = excluded.last_updated
                    """),
                    {**record.model_dump(mode="json"), "tenant_id": tenant_id},
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Tool registry unavailable: {type(e).__name__}") from e

        logger.info(f"Registered tool {record.id} for tenant {tenant_id} ({record.status.value})")
        return record

    def get(self, tenant_id: str, tool_id: str) -> Optional[ToolRecord]:
        try:
            with get_db_session(self.session_factory) as session:
                row = session.execute(
                    text(f"SELECT {_COLUMNS} FROM tool_records WHERE tenant_id = :tenant_id AND id = :id"),
                    {"tenant_id": tenant_id, "id": tool_id},
                ).fetchone()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Tool registry unavailable: {type(e).__name__}") from e
        return _row_to_record(row) if row else None

    def list(self, tenant_id: str, status: Optional[ToolStatus] = None) -> List[ToolRecord]:
        query = f"SELECT {_COLUMNS} FROM tool_records WHERE tenant_id = :tenant_id"
        params = {"tenant_id": tenant_id}
        if status is not None:
            query += " AND status = :status"
            params["status"] = status.value
        query += " ORDER BY created_at"

        try:
            with get_db_session(self.session_factory) as session:
                rows = session.execute(text(query), params).fetchall()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Tool registry unavailable: {type(e).__name__}") from e
        return [_row_to_record(row) for row in rows]

    def update_status(
        self,
        tenant_id: str,
        tool_id: str,
        status: ToolStatus,
        oauth_complete: Optional[bool] = None,
    ) -> ToolRecord:
        """
        Change a record's status (and optionally its OAuth completion flag).

        Raises:
            ToolNotFoundError: No record with that id for the tenant
        """
        record = self.get(tenant_id, tool_id)
        if record is None:
            raise ToolNotFoundError(f"Tool {tool_id} not found for tenant {tenant_id}")

        updated = record.model_copy(update={
            "status": status,
            "oauth_complete": record.oauth_complete if oauth_complete is None else oauth_complete,
            "last_updated": utc_now_iso(),
        })
        try:
            with get_db_session(self.session_factory) as session:
                session.execute(
                    text("""
                        UPDATE tool_records
                        SET status = :status, oauth_complete = :oauth_complete, last_updated = :last_updated
                        WHERE tenant_id = :tenant_id AND id = :id
                    """),
                    {
                        "status": updated.status.value,
                        "oauth_complete": updated.oauth_complete,
                        "last_updated": updated.last_updated,
                        "tenant_id": tenant_id,
                        "id": tool_id,
                    },
                )
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Tool registry unavailable: {type(e).__name__}") from e

        logger.info(f"Tool {tool_id} for tenant {tenant_id}: {record.status.value} -> {status.value}")
        return updated

    def remove(self, tenant_id: str, tool_id: str) -> ToolRecord:
        """Soft delete: mark the record inactive."""
        return self.update_status(tenant_id, tool_id, ToolStatus.INACTIVE)

    def get_active_tools(self, tenant_id: str) -> List[ToolRecord]:
        return self.list(tenant_id, ToolStatus.ACTIVE)

    def get_tools_needing_auth(self, tenant_id: str) -> List[ToolRecord]:
        return [
            record for record in self.list(tenant_id, ToolStatus.AUTH_REQUIRED)
            if not record.oauth_complete
        ]


tool_registry = ToolRegistry()
