"""Execution engine: loads tenant programs and invokes tool handlers in the sandbox."""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from toolforge.infra.error_handler import (
    HandlerNotFound,
    InvocationError,
    SandboxPolicyError,
    ToolforgeError,
)
from toolforge.infra.metrics import runner_cache_events, tool_execution_duration, tool_executions_total
from toolforge.infra.tenant_locks import KeyedLocks
from toolforge.models.tenant import ExecutionResult, RunnerCacheEntry, TenantMetadata
from toolforge.sandbox.policy import allowed_modules, check_program
from toolforge.sandbox.process import SandboxProcess
from toolforge.services.program_templates import to_handler_name
from toolforge.services.server_composer import validate_program
from toolforge.services.tool_store import TenantToolStore, tool_store

logger = logging.getLogger(__name__)


class ToolRunner:
    """
    Caches one compiled program per tenant, keyed by the metadata version it
    was loaded from, and runs handlers in a fresh sandbox process per call.
    """

    def __init__(self, store: Optional[TenantToolStore] = None, sandbox: Optional[SandboxProcess] = None):
        self.store = store or tool_store
        self.sandbox = sandbox or SandboxProcess()
        self._cache: Dict[str, RunnerCacheEntry] = {}
        self._generations: Dict[str, int] = {}
        self._cache_guard = threading.Lock()
        self._load_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def invalidate(self, tenant_id: str) -> None:
        """Drop the tenant's compiled program; the next call reloads it."""
        with self._cache_guard:
            self._cache.pop(tenant_id, None)
            self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
        runner_cache_events.labels(event="invalidate").inc()
        logger.info(f"Runner cache invalidated for tenant {tenant_id}")

    def invalidate_all(self) -> None:
        with self._cache_guard:
            for tenant_id in list(self._cache):
                self._generations[tenant_id] = self._generations.get(tenant_id, 0) + 1
            self._cache.clear()
        runner_cache_events.labels(event="invalidate_all").inc()

    def cached_entry(self, tenant_id: str) -> Optional[RunnerCacheEntry]:
        with self._cache_guard:
            return self._cache.get(tenant_id)

    def _compile(self, tenant_id: str, metadata: TenantMetadata) -> RunnerCacheEntry:
        program = self.store.get_program(tenant_id)
        if not program:
            raise InvocationError(f"No program stored for tenant {tenant_id}")

        modules = allowed_modules(metadata.dependencies)
        violations = check_program(program, modules)
        if violations:
            logger.error(f"Program for tenant {tenant_id} rejected by sandbox policy: {violations}")
            raise SandboxPolicyError("Program violates sandbox policy: " + "; ".join(violations))

        try:
            code = compile(program, f"<tenant-program:{tenant_id}>", "exec")
        except SyntaxError as e:
            raise InvocationError(f"Program for tenant {tenant_id} does not compile: {e.msg}") from e

        return RunnerCacheEntry(
            tenant_id=tenant_id,
            loaded_program=code,
            loaded_at_version=metadata.version,
            handlers=validate_program(program).handlers,
            allowed_modules=sorted(modules),
        )

    async def load(self, tenant_id: str, metadata: TenantMetadata) -> RunnerCacheEntry:
        """Return a compiled program for the tenant's current version, compiling on miss."""
        entry = self.cached_entry(tenant_id)
        if entry and not entry.is_stale(metadata.version):
            runner_cache_events.labels(event="hit").inc()
            return entry

        async with self._load_locks.get(tenant_id):
            entry = self.cached_entry(tenant_id)
            if entry and not entry.is_stale(metadata.version):
                runner_cache_events.labels(event="hit").inc()
                return entry

            runner_cache_events.labels(event="miss").inc()
            with self._cache_guard:
                generation = self._generations.get(tenant_id, 0)

            entry = self._compile(tenant_id, metadata)

            with self._cache_guard:
                # Skip caching if an invalidation happened while compiling
                if self._generations.get(tenant_id, 0) == generation:
                    self._cache[tenant_id] = entry
            logger.info(f"Loaded program for tenant {tenant_id} at version {metadata.version}")
            return entry

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def invoke_tool(self, tenant_id: str, tool_name: str, arguments: Dict[str, Any]) -> Any:
        """
        Invoke a tool and return its raw result.

        Raises:
            HandlerNotFound: Tool not in the tenant's metadata or handler missing
            InvocationError: Handler raised, timed out or the sandbox failed
            SandboxPolicyError: Stored program violates the sandbox policy
            StoreUnavailable: Store I/O failed
        """
        metadata = self.store.get_metadata(tenant_id)
        if metadata is None or tool_name not in metadata.tools:
            raise HandlerNotFound(tool_name)

        handler_name = to_handler_name(tool_name)
        entry = await self.load(tenant_id, metadata)
        if handler_name not in entry.handlers:
            raise HandlerNotFound(tool_name, handler_name)

        # Fresh per call: OAuth may complete between invocations
        credentials = self.store.get_credentials(tenant_id)

        return await self.sandbox.invoke(
            entry.loaded_program,
            tool_name,
            handler_name,
            arguments or {},
            credentials,
            entry.allowed_modules,
        )

    async def execute_tool(self, tenant_id: str, tool_name: str, arguments: Dict[str, Any]) -> ExecutionResult:
        """Invoke a tool and report the outcome as an ExecutionResult instead of raising."""
        start = time.time()
        try:
            data = await self.invoke_tool(tenant_id, tool_name, arguments)
        except ToolforgeError as e:
            tool_executions_total.labels(status=e.error_kind).inc()
            logger.warning(f"Tool {tool_name} failed for tenant {tenant_id}: {e.error_kind}: {e.message}")
            return ExecutionResult(success=False, error=e.message, error_kind=e.error_kind)
        finally:
            tool_execution_duration.observe(time.time() - start)

        tool_executions_total.labels(status="success").inc()
        return ExecutionResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Advertisement
    # ------------------------------------------------------------------

    def list_tools(self, tenant_id: str) -> List[Dict[str, Any]]:
        metadata = self.store.get_metadata(tenant_id)
        if metadata is None:
            return []
        return [
            metadata.tool_definitions.get(name, {"name": name, "description": "", "input_schema": {}})
            for name in metadata.tools
        ]

    def get_tool_definition(self, tenant_id: str, tool_name: str) -> Optional[Dict[str, Any]]:
        metadata = self.store.get_metadata(tenant_id)
        if metadata is None or tool_name not in metadata.tools:
            return None
        return metadata.tool_definitions.get(tool_name)


tool_runner = ToolRunner()
