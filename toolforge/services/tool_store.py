"""Tenant tool store: program text, metadata and OAuth credentials per tenant."""

import json
import logging
from contextlib import contextmanager
from typing import Dict, Iterator, Optional
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from toolforge.infra.database import get_db_session
from toolforge.infra.error_handler import StoreUnavailable, VersionConflictError
from toolforge.infra.metrics import version_conflicts_total
from toolforge.models.tenant import TenantMetadata

logger = logging.getLogger(__name__)


class TenantToolStore:
    """Persists each tenant's program, metadata and credentials."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with get_db_session(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Tenant store error: {type(e).__name__}: {e}")
            raise StoreUnavailable(f"Tool store unavailable: {type(e).__name__}") from e

    # ------------------------------------------------------------------
    # Program text
    # ------------------------------------------------------------------

    def get_program(self, tenant_id: str) -> Optional[str]:
        with self._session() as session:
            row = session.execute(
                text("SELECT program_text FROM tenant_programs WHERE tenant_id = :tenant_id"),
                {"tenant_id": tenant_id},
            ).fetchone()
            return row.program_text if row else None

    def _write_program(self, session: Session, tenant_id: str, program: str) -> None:
        session.execute(
            text("""
                INSERT INTO tenant_programs (tenant_id, program_text, updated_at)
                VALUES (:tenant_id, :program_text, CURRENT_TIMESTAMP)
                ON CONFLICT (tenant_id) DO UPDATE
                SET program_text = excluded.program_text, updated_at = CURRENT_TIMESTAMP
            """),
            {"tenant_id": tenant_id, "program_text": program},
        )

    def put_program(self, tenant_id: str, program: str) -> None:
        with self._session() as session:
            self._write_program(session, tenant_id, program)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @staticmethod
    def _document(metadata: TenantMetadata) -> str:
        return json.dumps(metadata.model_dump(mode="json", exclude={"version"}))

    def get_metadata(self, tenant_id: str) -> Optional[TenantMetadata]:
        with self._session() as session:
            row = session.execute(
                text("SELECT version, document FROM tenant_metadata WHERE tenant_id = :tenant_id"),
                {"tenant_id": tenant_id},
            ).fetchone()
            if not row:
                return None
            document = json.loads(row.document)
            document["version"] = row.version
            return TenantMetadata(**document)

    def get_version(self, tenant_id: str) -> Optional[str]:
        with self._session() as session:
            row = session.execute(
                text("SELECT version FROM tenant_metadata WHERE tenant_id = :tenant_id"),
                {"tenant_id": tenant_id},
            ).fetchone()
            return row.version if row else None

    def _write_metadata(self, session: Session, tenant_id: str, metadata: TenantMetadata) -> None:
        session.execute(
            text("""
                INSERT INTO tenant_metadata (tenant_id, version, document, updated_at)
                VALUES (:tenant_id, :version, :document, CURRENT_TIMESTAMP)
                ON CONFLICT (tenant_id) DO UPDATE
                SET version = excluded.version, document = excluded.document, updated_at = CURRENT_TIMESTAMP
            """),
            {"tenant_id": tenant_id, "version": metadata.version, "document": self._document(metadata)},
        )

    def put_metadata(self, tenant_id: str, metadata: TenantMetadata) -> None:
        with self._session() as session:
            self._write_metadata(session, tenant_id, metadata)

    def commit_program(
        self,
        tenant_id: str,
        program: str,
        metadata: TenantMetadata,
        expected_version: Optional[str],
    ) -> None:
        """
        Write program text then metadata in one transaction, guarded by version.

        Args:
            tenant_id: Tenant
            program: New program text
            metadata: New metadata (carries the new version)
            expected_version: Version read before the merge; None means the
                tenant must not have metadata yet

        Raises:
            VersionConflictError: Stored version differs from expected_version
            StoreUnavailable: Database failure
        """
        with self._session() as session:
            self._write_program(session, tenant_id, program)

            params = {
                "tenant_id": tenant_id,
                "version": metadata.version,
                "document": self._document(metadata),
                "expected": expected_version,
            }
            if expected_version is None:
                updated = session.execute(
                    text("""
                        INSERT INTO tenant_metadata (tenant_id, version, document, updated_at)
                        VALUES (:tenant_id, :version, :document, CURRENT_TIMESTAMP)
                        ON CONFLICT (tenant_id) DO NOTHING
                    """),
                    params,
                ).rowcount
            else:
                updated = session.execute(
                    text("""
                        UPDATE tenant_metadata
                        SET version = :version, document = :document, updated_at = CURRENT_TIMESTAMP
                        WHERE tenant_id = :tenant_id AND version = :expected
                    """),
                    params,
                ).rowcount

            if updated != 1:
                actual = session.execute(
                    text("SELECT version FROM tenant_metadata WHERE tenant_id = :tenant_id"),
                    {"tenant_id": tenant_id},
                ).scalar()
                version_conflicts_total.inc()
                raise VersionConflictError(tenant_id, expected_version, actual)

        logger.info(f"Committed program for tenant {tenant_id} at version {metadata.version}")

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def get_credentials(self, tenant_id: str) -> Dict[str, str]:
        with self._session() as session:
            row = session.execute(
                text("SELECT document FROM tenant_credentials WHERE tenant_id = :tenant_id"),
                {"tenant_id": tenant_id},
            ).fetchone()
            return json.loads(row.document) if row else {}

    def put_credentials(self, tenant_id: str, credentials: Dict[str, str]) -> Dict[str, str]:
        """
        Merge credentials into the tenant's existing map and return the merged map.

        The row is created first and then read under a row lock (SQLite's
        write lock is already held after the insert), so concurrent merges
        for one tenant apply one after the other instead of overwriting.
        """
        with self._session() as session:
            session.execute(
                text("""
                    INSERT INTO tenant_credentials (tenant_id, document, updated_at)
                    VALUES (:tenant_id, '{}', CURRENT_TIMESTAMP)
                    ON CONFLICT (tenant_id) DO NOTHING
                """),
                {"tenant_id": tenant_id},
            )
            lock_clause = "" if session.get_bind().dialect.name == "sqlite" else " FOR UPDATE"
            row = session.execute(
                text(f"SELECT document FROM tenant_credentials WHERE tenant_id = :tenant_id{lock_clause}"),
                {"tenant_id": tenant_id},
            ).fetchone()
            merged = json.loads(row.document) if row else {}
            merged.update(credentials)
            session.execute(
                text("""
                    UPDATE tenant_credentials
                    SET document = :document, updated_at = CURRENT_TIMESTAMP
                    WHERE tenant_id = :tenant_id
                """),
                {"tenant_id": tenant_id, "document": json.dumps(merged)},
            )
        logger.info(f"Stored credentials for tenant {tenant_id}: keys={sorted(credentials)}")
        return merged

    def delete_all(self, tenant_id: str) -> None:
        with self._session() as session:
            for table in ("tenant_programs", "tenant_metadata", "tenant_credentials"):
                session.execute(
                    text(f"DELETE FROM {table} WHERE tenant_id = :tenant_id"),
                    {"tenant_id": tenant_id},
                )
        logger.info(f"Deleted all stored tool data for tenant {tenant_id}")


tool_store = TenantToolStore()
