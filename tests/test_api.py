"""API tests for the tools, OAuth callback and health routers."""

import httpx
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch

from toolforge.main import app
from toolforge.models.tenant import ExecutionResult
from toolforge.models.tool import ToolStatus

TENANT_KEY = "tenant-key-0123456789abcdef"
MASTER_KEY = "master-key-0123456789abcdef"
TENANT_HEADERS = {"X-API-Key": TENANT_KEY}


@pytest.fixture
def client(orchestrator, registry, runner, store, oauth):
    with patch("toolforge.api.routers.tools.build_orchestrator", orchestrator), \
            patch("toolforge.api.routers.tools.tool_registry", registry), \
            patch("toolforge.api.routers.tools.tool_runner", runner), \
            patch("toolforge.api.routers.tools.tool_store", store), \
            patch("toolforge.api.routers.oauth.oauth_service", oauth):
        yield TestClient(app)


class TestAuthentication:

    def test_missing_key(self, client):
        response = client.get("/api/tools")
        assert response.status_code == 401

    def test_short_key(self, client):
        response = client.get("/api/tools", headers={"X-API-Key": "short"})
        assert response.status_code == 401

    def test_unknown_key(self, client):
        response = client.get("/api/tools", headers={"X-API-Key": "unknown-key-0123456789"})
        assert response.status_code == 401

    def test_master_key_requires_tenant_header(self, client):
        response = client.get("/api/tools", headers={"X-API-Key": MASTER_KEY})
        assert response.status_code == 400

    def test_master_key_acts_for_tenant(self, client):
        response = client.get("/api/tools", headers={"X-API-Key": MASTER_KEY, "X-Tenant-ID": "tenant-m"})
        assert response.status_code == 200
        assert response.json()["tenant_id"] == "tenant-m"

    def test_master_key_rejects_bad_tenant(self, client):
        response = client.get("/api/tools", headers={"X-API-Key": MASTER_KEY, "X-Tenant-ID": "bad tenant!"})
        assert response.status_code == 400


class TestToolsApi:

    def test_create_and_list(self, client):
        response = client.post("/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == "pending_oauth"
        assert "state=tenant-api:" in body["oauth_url"]

        listing = client.get("/api/tools", headers=TENANT_HEADERS).json()
        assert listing["tenant_id"] == "tenant-api"
        assert listing["version"] == "1.0.0"
        assert [tool["name"] for tool in listing["tools"]] == ["read-messages"]
        assert listing["tools"][0]["status"] == "auth_required"

    def test_create_duplicate_conflicts(self, client):
        client.post("/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS)
        response = client.post("/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS)

        assert response.status_code == 409
        assert response.json()["error_kind"] == "duplicate_tool"

    def test_create_requires_request_text(self, client):
        response = client.post("/api/tools", json={"request": ""}, headers=TENANT_HEADERS)
        assert response.status_code == 422

    def test_get_definition(self, client):
        client.post("/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS)

        response = client.get("/api/tools/read-messages", headers=TENANT_HEADERS)

        assert response.status_code == 200
        assert response.json()["input_schema"]["required"] == ["channel"]
        assert client.get("/api/tools/missing", headers=TENANT_HEADERS).status_code == 404

    def test_execute(self, client, runner):
        result = ExecutionResult(success=True, data={"mock": True})
        with patch.object(runner, "execute_tool", new=AsyncMock(return_value=result)) as execute:
            response = client.post(
                "/api/tools/read-messages/execute",
                json={"parameters": {"channel": "#general"}},
                headers=TENANT_HEADERS,
            )

        assert response.status_code == 200
        assert response.json()["data"] == {"mock": True}
        execute.assert_awaited_once_with("tenant-api", "read-messages", {"channel": "#general"})

    def test_execute_unknown_tool(self, client):
        response = client.post("/api/tools/missing/execute", json={"parameters": {}}, headers=TENANT_HEADERS)
        assert response.status_code == 404
        assert response.json()["error_kind"] == "handler_not_found"

    def test_delete(self, client, registry):
        created = client.post(
            "/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS
        ).json()

        response = client.delete(f"/api/tools/{created['tool_id']}", headers=TENANT_HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "inactive"
        assert registry.get("tenant-api", created["tool_id"]).status == ToolStatus.INACTIVE

    def test_delete_unknown(self, client):
        assert client.delete("/api/tools/missing", headers=TENANT_HEADERS).status_code == 404


class TestOAuthCallback:

    def test_provider_error(self, client):
        response = client.get("/api/tools/oauth/callback", params={"error": "access_denied"})
        assert response.status_code == 400
        assert "OAuth Authorization Failed" in response.text

    def test_missing_parameters(self, client):
        response = client.get("/api/tools/oauth/callback", params={"code": "abc"})
        assert response.status_code == 400
        assert "Missing required parameters" in response.text

    def test_invalid_state(self, client):
        response = client.get("/api/tools/oauth/callback", params={"code": "abc", "state": "a:b:c"})
        assert response.status_code == 400
        assert "OAuth Error" in response.text

    def test_completes_flow(self, client, oauth, registry):
        created = client.post(
            "/api/tools", json={"request": "read my slack channels"}, headers=TENANT_HEADERS
        ).json()
        state = oauth.build_state("tenant-api", created["tool_id"])
        token = httpx.Response(
            200,
            json={"ok": True, "access_token": "xoxb-1"},
            request=httpx.Request("POST", "https://slack.com/api/oauth.v2.access"),
        )

        with patch.object(oauth, "_post", new=AsyncMock(return_value=token)):
            response = client.get("/api/tools/oauth/callback", params={"code": "abc", "state": state})

        assert response.status_code == 200
        assert "OAuth Complete!" in response.text
        assert created["tool_id"] in response.text
        assert registry.get("tenant-api", created["tool_id"]).status == ToolStatus.ACTIVE


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "tool_builds_total" in response.text

    def test_request_id_header(self, client):
        response = client.get("/health/live", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
