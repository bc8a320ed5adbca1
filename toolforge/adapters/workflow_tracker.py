"""Client for the external workflow tracker that records build progress.

Every call is best effort: failures are logged and never raised, so tracking
cannot abort a build.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional
import httpx

from toolforge.infra.config import config
from toolforge.infra.timeout import WORKFLOW_REPORT_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class WorkflowContext:
    """Correlation token for one build."""
    session_id: str
    tenant_id: str
    request: str
    tracked: bool = False  # False when the tracker was unreachable or not configured


class WorkflowTracker:
    """HTTP client for start / progress / complete / fail workflow events."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = WORKFLOW_REPORT_TIMEOUT,
    ):
        self.base_url = (base_url if base_url is not None else config.WORKFLOW_TRACKER_URL or "").rstrip("/")
        self.token = token if token is not None else config.WORKFLOW_TRACKER_TOKEN
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _post(self, path: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}{path}", json=payload, headers=self._headers())
            response.raise_for_status()
            return response.json() if response.content else None

    async def start(self, tenant_id: str, request: str) -> WorkflowContext:
        """Open a workflow; falls back to a local correlation id."""
        local_id = f"workflow_{uuid.uuid4().hex}"
        if not self.enabled:
            return WorkflowContext(session_id=local_id, tenant_id=tenant_id, request=request)

        try:
            data = await self._post("/workflows", {"tenant_id": tenant_id, "request": request})
            session_id = (data or {}).get("session_id") or local_id
            return WorkflowContext(session_id=session_id, tenant_id=tenant_id, request=request, tracked=True)
        except Exception as e:
            logger.warning(f"Workflow tracker start failed, using local id {local_id}: {e}")
            return WorkflowContext(session_id=local_id, tenant_id=tenant_id, request=request)

    async def report_progress(
        self,
        workflow: WorkflowContext,
        step: str,
        artifacts: Optional[Dict[str, Any]] = None,
        status: str = "complete",
    ) -> None:
        if not workflow.tracked:
            logger.debug(f"[{workflow.session_id}] {step}: {status}")
            return
        try:
            await self._post(
                f"/workflows/{workflow.session_id}/events",
                {"step": step, "status": status, "artifacts": artifacts or {}},
            )
        except Exception as e:
            logger.warning(f"[{workflow.session_id}] Progress report for {step} failed: {e}")

    async def complete(self, workflow: WorkflowContext, result: Dict[str, Any]) -> None:
        if not workflow.tracked:
            logger.info(f"[{workflow.session_id}] Workflow completed")
            return
        try:
            await self._post(f"/workflows/{workflow.session_id}/complete", {"success": True, "result": result})
        except Exception as e:
            logger.warning(f"[{workflow.session_id}] Failed to complete workflow: {e}")

    async def fail(self, workflow: WorkflowContext, error: str) -> None:
        if not workflow.tracked:
            logger.info(f"[{workflow.session_id}] Workflow failed: {error}")
            return
        try:
            await self._post(f"/workflows/{workflow.session_id}/complete", {"success": False, "error": error})
        except Exception as e:
            logger.warning(f"[{workflow.session_id}] Failed to record workflow failure: {e}")


workflow_tracker = WorkflowTracker()
