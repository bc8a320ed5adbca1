from .tool import (
    AuthMethod,
    AuthRequirement,
    GeneratedTool,
    OAuthConfig,
    ParameterSpec,
    ToolIntent,
    ToolRecord,
    ToolSchema,
    ToolStatus,
)
from .tenant import (
    BuildResult,
    BuildStatus,
    ExecutionResult,
    ProgramStatus,
    RunnerCacheEntry,
    TenantMetadata,
)

__all__ = [
    "AuthMethod",
    "AuthRequirement",
    "GeneratedTool",
    "OAuthConfig",
    "ParameterSpec",
    "ToolIntent",
    "ToolRecord",
    "ToolSchema",
    "ToolStatus",
    "BuildResult",
    "BuildStatus",
    "ExecutionResult",
    "ProgramStatus",
    "RunnerCacheEntry",
    "TenantMetadata",
]
