"""Tests for the tenant tool store and the tool registry."""

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from toolforge.infra.error_handler import StoreUnavailable, ToolNotFoundError, VersionConflictError
from toolforge.models.tenant import TenantMetadata
from toolforge.models.tool import ToolRecord, ToolStatus
from toolforge.services.tool_registry import ToolRegistry
from toolforge.services.tool_store import TenantToolStore


def record(tool_id, name, status=ToolStatus.ACTIVE, created_at="2025-01-01T00:00:00+00:00", provider=None):
    return ToolRecord(
        id=tool_id,
        name=name,
        template="slack",
        status=status,
        provider=provider,
        description=f"{name} tool",
        created_at=created_at,
        last_updated=created_at,
    )


class TestTenantToolStore:

    def test_missing_tenant_reads_empty(self, store):
        assert store.get_program("nobody") is None
        assert store.get_metadata("nobody") is None
        assert store.get_version("nobody") is None
        assert store.get_credentials("nobody") == {}

    def test_commit_new_tenant(self, store):
        metadata = TenantMetadata(tools=["read-messages"], dependencies=["slack-sdk"])
        store.commit_program("tenant-a", "program v1", metadata, expected_version=None)

        assert store.get_program("tenant-a") == "program v1"
        loaded = store.get_metadata("tenant-a")
        assert loaded.version == "1.0.0"
        assert loaded.tools == ["read-messages"]
        assert loaded.dependencies == ["slack-sdk"]

    def test_commit_with_expected_version(self, store):
        store.commit_program("tenant-a", "v1", TenantMetadata(tools=["a"]), expected_version=None)
        store.commit_program("tenant-a", "v2", TenantMetadata(tools=["a", "b"], version="1.0.1"), "1.0.0")

        assert store.get_program("tenant-a") == "v2"
        assert store.get_version("tenant-a") == "1.0.1"

    def test_stale_version_conflicts_and_rolls_back(self, store):
        store.commit_program("tenant-a", "v1", TenantMetadata(tools=["a"]), expected_version=None)
        store.commit_program("tenant-a", "v2", TenantMetadata(tools=["a", "b"], version="1.0.1"), "1.0.0")

        with pytest.raises(VersionConflictError) as exc_info:
            store.commit_program("tenant-a", "stale", TenantMetadata(tools=["a", "c"], version="1.0.1"), "1.0.0")

        assert exc_info.value.expected == "1.0.0"
        assert exc_info.value.actual == "1.0.1"
        assert store.get_program("tenant-a") == "v2"
        assert store.get_metadata("tenant-a").tools == ["a", "b"]

    def test_second_create_conflicts(self, store):
        store.commit_program("tenant-a", "first", TenantMetadata(tools=["a"]), expected_version=None)
        with pytest.raises(VersionConflictError):
            store.commit_program("tenant-a", "second", TenantMetadata(tools=["b"]), expected_version=None)
        assert store.get_program("tenant-a") == "first"

    def test_tenants_are_isolated(self, store):
        store.commit_program("tenant-a", "a program", TenantMetadata(tools=["a"]), None)
        store.commit_program("tenant-b", "b program", TenantMetadata(tools=["b"]), None)
        assert store.get_program("tenant-a") == "a program"
        assert store.get_metadata("tenant-b").tools == ["b"]

    def test_credentials_merge(self, store):
        store.put_credentials("tenant-a", {"slack_access_token": "xoxb-1", "slack_scope": "channels:read"})
        merged = store.put_credentials("tenant-a", {"github_access_token": "gho-1", "slack_access_token": "xoxb-2"})

        assert merged == {
            "slack_access_token": "xoxb-2",
            "slack_scope": "channels:read",
            "github_access_token": "gho-1",
        }
        assert store.get_credentials("tenant-a") == merged
        assert store.get_credentials("tenant-b") == {}

    def test_credentials_merge_locks_row_on_server_databases(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        session.execute.return_value.fetchone.return_value = MagicMock(document='{"slack_access_token": "xoxb-1"}')
        pg_store = TenantToolStore(session_factory=MagicMock(return_value=session))

        merged = pg_store.put_credentials("tenant-a", {"github_access_token": "gho-1"})

        statements = [str(call.args[0]) for call in session.execute.call_args_list]
        assert "ON CONFLICT (tenant_id) DO NOTHING" in statements[0]
        assert statements[1].rstrip().endswith("FOR UPDATE")
        assert statements[2].lstrip().startswith("UPDATE tenant_credentials")
        assert merged == {"slack_access_token": "xoxb-1", "github_access_token": "gho-1"}

    def test_delete_all(self, store):
        store.commit_program("tenant-a", "p", TenantMetadata(tools=["a"]), None)
        store.put_credentials("tenant-a", {"k": "v"})
        store.delete_all("tenant-a")
        assert store.get_program("tenant-a") is None
        assert store.get_metadata("tenant-a") is None
        assert store.get_credentials("tenant-a") == {}

    def test_database_errors_become_store_unavailable(self):
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        broken = TenantToolStore(session_factory=MagicMock(return_value=session))

        with pytest.raises(StoreUnavailable):
            broken.get_program("tenant-a")
        session.rollback.assert_called_once()


class TestToolRegistry:

    def test_register_and_get(self, registry):
        registry.register("tenant-a", record("slack-read-1", "read-messages", ToolStatus.AUTH_REQUIRED, provider="slack"))

        loaded = registry.get("tenant-a", "slack-read-1")
        assert loaded.name == "read-messages"
        assert loaded.status == ToolStatus.AUTH_REQUIRED
        assert loaded.provider == "slack"
        assert not loaded.oauth_complete
        assert registry.get("tenant-b", "slack-read-1") is None

    def test_register_replaces_existing(self, registry):
        registry.register("tenant-a", record("t1", "read-messages", ToolStatus.AUTH_REQUIRED))
        registry.register("tenant-a", record("t1", "read-messages", ToolStatus.ACTIVE))
        assert registry.get("tenant-a", "t1").status == ToolStatus.ACTIVE
        assert len(registry.list("tenant-a")) == 1

    def test_list_orders_by_creation_and_filters(self, registry):
        registry.register("tenant-a", record("t2", "send-message", created_at="2025-01-02T00:00:00+00:00"))
        registry.register("tenant-a", record("t1", "read-messages", ToolStatus.AUTH_REQUIRED))
        registry.register("tenant-a", record("t3", "create-issue", ToolStatus.INACTIVE, "2025-01-03T00:00:00+00:00"))

        assert [r.id for r in registry.list("tenant-a")] == ["t1", "t2", "t3"]
        assert [r.id for r in registry.get_active_tools("tenant-a")] == ["t2"]
        assert [r.id for r in registry.get_tools_needing_auth("tenant-a")] == ["t1"]

    def test_update_status(self, registry):
        registry.register("tenant-a", record("t1", "read-messages", ToolStatus.AUTH_REQUIRED))
        updated = registry.update_status("tenant-a", "t1", ToolStatus.ACTIVE, oauth_complete=True)

        assert updated.status == ToolStatus.ACTIVE
        assert updated.oauth_complete
        stored = registry.get("tenant-a", "t1")
        assert stored.status == ToolStatus.ACTIVE
        assert stored.oauth_complete

    def test_update_missing_record_raises(self, registry):
        with pytest.raises(ToolNotFoundError):
            registry.update_status("tenant-a", "missing", ToolStatus.ACTIVE)

    def test_remove_is_soft(self, registry):
        registry.register("tenant-a", record("t1", "read-messages"))
        removed = registry.remove("tenant-a", "t1")

        assert removed.status == ToolStatus.INACTIVE
        assert registry.get("tenant-a", "t1").status == ToolStatus.INACTIVE
        assert registry.get_active_tools("tenant-a") == []

    def test_registry_is_independent_of_store(self, session_factory):
        registry = ToolRegistry(session_factory)
        store = TenantToolStore(session_factory)
        registry.register("tenant-a", record("t1", "read-messages"))
        assert store.get_metadata("tenant-a") is None
