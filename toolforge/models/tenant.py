"""Tenant program metadata, runner cache entries and pipeline results."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional

INITIAL_VERSION = "1.0.0"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgramStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TenantMetadata(BaseModel):
    """
    Inventory of a tenant program.

    `tools` is ordered and its length always equals the number of handler
    functions in the program text.
    """
    tools: List[str] = Field(default_factory=list)
    version: str = INITIAL_VERSION
    last_updated: str = Field(default_factory=utc_now_iso)
    status: ProgramStatus = ProgramStatus.ACTIVE
    dependencies: List[str] = Field(default_factory=list)
    tool_definitions: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="tool name -> advertised schema (name, description, input_schema)"
    )


@dataclass
class RunnerCacheEntry:
    """Compiled tenant program cached by the runner."""
    tenant_id: str
    loaded_program: Any  # code object produced by compile()
    loaded_at_version: str
    handlers: List[str] = field(default_factory=list)
    allowed_modules: List[str] = field(default_factory=list)

    def is_stale(self, current_version: Optional[str]) -> bool:
        return current_version != self.loaded_at_version


class BuildStatus(str, Enum):
    PENDING_OAUTH = "pending_oauth"
    ACTIVE = "active"


class BuildResult(BaseModel):
    success: bool
    tool_id: Optional[str] = None
    tool_name: Optional[str] = None
    status: Optional[BuildStatus] = None
    oauth_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ExecutionResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
