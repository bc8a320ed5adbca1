"""Build orchestrator: request -> analyzed intent -> generated tool -> merged program -> registered tool."""

import logging
import time
from typing import Optional

from toolforge.adapters.workflow_tracker import WorkflowTracker, workflow_tracker
from toolforge.infra.error_handler import ToolforgeError, ToolNotFoundError, VersionConflictError
from toolforge.infra.metrics import tool_build_duration, tool_builds_total
from toolforge.infra.tenant_locks import TenantLockManager, tenant_locks
from toolforge.infra.validation import validate_tenant_id
from toolforge.models.tenant import BuildResult, BuildStatus, TenantMetadata, utc_now_iso
from toolforge.models.tool import GeneratedTool, ToolIntent, ToolRecord, ToolStatus
from toolforge.services import server_composer
from toolforge.services.code_synthesizer import CodeSynthesizer, code_synthesizer
from toolforge.services.oauth_service import OAuthService, oauth_service
from toolforge.services.request_analyzer import RequestAnalyzer, request_analyzer
from toolforge.services.tool_registry import ToolRegistry, tool_registry
from toolforge.services.tool_runner import ToolRunner, tool_runner
from toolforge.services.tool_store import TenantToolStore, tool_store

logger = logging.getLogger(__name__)

MAX_COMMIT_ATTEMPTS = 3


class BuildOrchestrator:
    """Coordinates one tool build per request."""

    def __init__(
        self,
        analyzer: Optional[RequestAnalyzer] = None,
        synthesizer: Optional[CodeSynthesizer] = None,
        store: Optional[TenantToolStore] = None,
        registry: Optional[ToolRegistry] = None,
        oauth: Optional[OAuthService] = None,
        runner: Optional[ToolRunner] = None,
        tracker: Optional[WorkflowTracker] = None,
        locks: Optional[TenantLockManager] = None,
    ):
        self.analyzer = analyzer or request_analyzer
        self.synthesizer = synthesizer or code_synthesizer
        self.store = store or tool_store
        self.registry = registry or tool_registry
        self.oauth = oauth or oauth_service
        self.runner = runner or tool_runner
        self.tracker = tracker or workflow_tracker
        self.locks = locks or tenant_locks

    def _commit_with_retry(self, tenant_id: str, tool: GeneratedTool, intent: ToolIntent) -> TenantMetadata:
        """
        Read, merge and commit, re-reading and re-merging on version conflicts.

        Raises:
            VersionConflictError: Still conflicting after MAX_COMMIT_ATTEMPTS
        """
        last_conflict: Optional[VersionConflictError] = None
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            program = self.store.get_program(tenant_id)
            metadata = self.store.get_metadata(tenant_id)

            if program is None or metadata is None:
                new_program, new_metadata = server_composer.create_program(f"{intent.service}-tools", tool)
                expected_version = metadata.version if metadata else None
            else:
                new_program, new_metadata = server_composer.merge_tool(program, metadata, tool)
                expected_version = metadata.version

            try:
                self.store.commit_program(tenant_id, new_program, new_metadata, expected_version)
                return new_metadata
            except VersionConflictError as e:
                last_conflict = e
                logger.warning(f"Version conflict for tenant {tenant_id} (attempt {attempt}/{MAX_COMMIT_ATTEMPTS}): {e}")
        raise last_conflict

    def _remove_with_retry(self, tenant_id: str, tool_name: str) -> Optional[TenantMetadata]:
        last_conflict: Optional[VersionConflictError] = None
        for attempt in range(1, MAX_COMMIT_ATTEMPTS + 1):
            program = self.store.get_program(tenant_id)
            metadata = self.store.get_metadata(tenant_id)
            if metadata is None or tool_name not in metadata.tools:
                return metadata

            new_program, new_metadata = server_composer.remove_tool(program, metadata, tool_name)
            try:
                self.store.commit_program(tenant_id, new_program, new_metadata, metadata.version)
                return new_metadata
            except VersionConflictError as e:
                last_conflict = e
                logger.warning(f"Version conflict removing {tool_name} (attempt {attempt}/{MAX_COMMIT_ATTEMPTS}): {e}")
        raise last_conflict

    def _undo_merge(self, tenant_id: str, tool_name: str) -> None:
        """Strip a just-committed tool whose registry record could not be written."""
        logger.warning(f"Registering {tool_name} failed for tenant {tenant_id}; removing it from the program")
        try:
            self._remove_with_retry(tenant_id, tool_name)
        except ToolforgeError as e:
            logger.error(f"Could not undo merge of {tool_name} for tenant {tenant_id}: {e.message}")
        finally:
            self.runner.invalidate(tenant_id)

    async def build_tool(self, tenant_id: str, request: str, context: Optional[str] = None) -> BuildResult:
        """
        Build a tool from a natural-language request and merge it into the tenant's program.

        Args:
            tenant_id: Tenant the tool belongs to
            request: Natural-language request
            context: Optional extra context

        Returns:
            BuildResult; hard failures come back as success=False with the error message
        """
        start = time.time()
        validate_tenant_id(tenant_id)
        workflow = await self.tracker.start(tenant_id, request)
        logger.info(f"[{workflow.session_id}] Building tool for tenant {tenant_id}")

        try:
            intent = await self.analyzer.analyze_request(request, context)
            await self.tracker.report_progress(
                workflow, "analyze", {"service": intent.service, "tool_name": intent.tool_name}
            )

            async with self.locks.hold(tenant_id):
                first_tool = self.store.get_program(tenant_id) is None
                tool = await self.synthesizer.generate_tool(intent, first_tool=first_tool)
                await self.tracker.report_progress(
                    workflow, "synthesize", {"tool_id": tool.tool_id, "mock": tool.is_mock}
                )

                # Built before any write so a misconfigured provider leaves nothing behind
                oauth_url = None
                if intent.auth.requires_oauth:
                    oauth_url = self.oauth.build_authorization_url(
                        intent.auth.provider or intent.service,
                        tenant_id,
                        tool.tool_id,
                        list(intent.auth.scopes) or None,
                    )

                metadata = self._commit_with_retry(tenant_id, tool, intent)
                self.runner.invalidate(tenant_id)
                await self.tracker.report_progress(
                    workflow, "merge", {"version": metadata.version, "tools": metadata.tools}
                )

                now = utc_now_iso()
                record = ToolRecord(
                    id=tool.tool_id,
                    name=intent.tool_name,
                    template=intent.service,
                    status=ToolStatus.AUTH_REQUIRED if oauth_url else ToolStatus.ACTIVE,
                    oauth_complete=False,
                    provider=(intent.auth.provider or intent.service) if oauth_url else None,
                    description=intent.description,
                    created_at=now,
                    last_updated=now,
                )
                try:
                    self.registry.register(tenant_id, record)
                except ToolforgeError:
                    self._undo_merge(tenant_id, intent.tool_name)
                    raise

            status = BuildStatus.PENDING_OAUTH if oauth_url else BuildStatus.ACTIVE
            result = BuildResult(
                success=True,
                tool_id=tool.tool_id,
                tool_name=intent.tool_name,
                status=status,
                oauth_url=oauth_url,
                metadata={
                    "service": intent.service,
                    "description": intent.description,
                    "requires_auth": intent.auth.requires_oauth,
                    "version": metadata.version,
                    "mock": tool.is_mock,
                },
            )
            tool_builds_total.labels(status=status.value).inc()
            await self.tracker.complete(workflow, result.model_dump(mode="json"))
            logger.info(
                f"[{workflow.session_id}] Built {tool.tool_id} for tenant {tenant_id} "
                f"(status={status.value}, version={metadata.version})"
            )
            return result

        except (ToolforgeError, TimeoutError) as e:
            message = e.message if isinstance(e, ToolforgeError) else str(e)
            error_kind = e.error_kind if isinstance(e, ToolforgeError) else "timeout"
            tool_builds_total.labels(status="failed").inc()
            logger.error(f"[{workflow.session_id}] Tool build failed for tenant {tenant_id}: {error_kind}: {message}")
            await self.tracker.fail(workflow, message)
            return BuildResult(success=False, error=message, error_kind=error_kind)
        finally:
            tool_build_duration.observe(time.time() - start)

    async def remove_tool(self, tenant_id: str, tool_id: str) -> ToolRecord:
        """
        Remove a tool: strip it from the program text and soft-delete its registry record.

        Raises:
            ToolNotFoundError: No record with that id
        """
        record = self.registry.get(tenant_id, tool_id)
        if record is None:
            raise ToolNotFoundError(f"Tool {tool_id} not found for tenant {tenant_id}")

        async with self.locks.hold(tenant_id):
            if record.status != ToolStatus.INACTIVE:
                self._remove_with_retry(tenant_id, record.name)
            updated = self.registry.remove(tenant_id, tool_id)
            self.runner.invalidate(tenant_id)

        logger.info(f"Removed tool {tool_id} ({record.name}) for tenant {tenant_id}")
        return updated


build_orchestrator = BuildOrchestrator()
