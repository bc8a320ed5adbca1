"""Pytest configuration and fixtures."""

import os

# Test environment must be in place before toolforge.infra.config is imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret")
os.environ.setdefault("MASTER_API_KEY", "master-key-0123456789abcdef")
os.environ.setdefault("API_KEYS", "tenant-key-0123456789abcdef=tenant-api")
os.environ.pop("REDIS_URL", None)
os.environ.pop("WORKFLOW_TRACKER_URL", None)

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from toolforge.adapters.workflow_tracker import WorkflowTracker
from toolforge.infra.circuit_breaker import oauth_circuit_breaker, reasoning_circuit_breaker
from toolforge.infra.error_handler import ReasoningServiceError
from toolforge.infra.schema import create_all
from toolforge.infra.tenant_locks import TenantLockManager
from toolforge.sandbox.process import SandboxProcess
from toolforge.services.build_orchestrator import BuildOrchestrator
from toolforge.services.code_synthesizer import CodeSynthesizer
from toolforge.services.oauth_service import OAuthService
from toolforge.services.provider_registry import ProviderRegistry
from toolforge.services.request_analyzer import RequestAnalyzer
from toolforge.services.tool_registry import ToolRegistry
from toolforge.services.tool_runner import ToolRunner
from toolforge.services.tool_store import TenantToolStore

REDIRECT_URI = "http://localhost:8000/api/tools/oauth/callback"

PROVIDER_ENV = {
    "SLACK_CLIENT_ID": "slack-client-id",
    "SLACK_CLIENT_SECRET": "slack-client-secret",
    "GITHUB_CLIENT_ID": "github-client-id",
    "GITHUB_CLIENT_SECRET": "github-client-secret",
}


class FakeReasoning:
    """Stands in for ReasoningClient: replays canned responses, or fails when none are queued."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    async def complete(self, system_prompt, user_prompt, purpose="general", max_tokens=4000):
        self.calls.append({"purpose": purpose, "user_prompt": user_prompt})
        if not self.responses:
            raise ReasoningServiceError("reasoning service unavailable")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    reasoning_circuit_breaker.reset()
    oauth_circuit_breaker.reset()
    yield
    reasoning_circuit_breaker.reset()
    oauth_circuit_breaker.reset()


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return TenantToolStore(session_factory)


@pytest.fixture
def registry(session_factory):
    return ToolRegistry(session_factory)


@pytest.fixture
def providers():
    return ProviderRegistry(environ=PROVIDER_ENV)


@pytest.fixture
def reasoning_factory():
    """Build a FakeReasoning replaying the given responses."""
    return FakeReasoning


@pytest.fixture
def reasoning():
    return FakeReasoning()


@pytest.fixture
def sandbox():
    return SandboxProcess(timeout=20)


@pytest.fixture
def runner(store, sandbox):
    return ToolRunner(store=store, sandbox=sandbox)


@pytest.fixture
def locks():
    return TenantLockManager(redis_url=None)


@pytest.fixture
def oauth(providers, registry, store, runner, locks):
    return OAuthService(
        registry=providers,
        tools=registry,
        store=store,
        runner=runner,
        locks=locks,
        state_secret="test-state-secret",
        redirect_uri=REDIRECT_URI,
    )


@pytest.fixture
def orchestrator(reasoning, providers, store, registry, oauth, runner, locks):
    return BuildOrchestrator(
        analyzer=RequestAnalyzer(reasoning, providers),
        synthesizer=CodeSynthesizer(reasoning, providers),
        store=store,
        registry=registry,
        oauth=oauth,
        runner=runner,
        tracker=WorkflowTracker(base_url=""),
        locks=locks,
    )
