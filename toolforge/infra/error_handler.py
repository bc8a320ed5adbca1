"""Error taxonomy for the tool synthesis pipeline and error classification helpers."""

import asyncio
from typing import Optional, Tuple
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # External API returned error response
    AUTH_ERROR = "auth_error"  # OAuth / credential failures
    VALIDATION = "validation"  # Input or structural validation errors
    BUSINESS_LOGIC = "business_logic"  # Rule violations (duplicates, missing tools)
    STORAGE = "storage"  # Tenant store I/O
    EXECUTION = "execution"  # Sandboxed handler execution
    UNKNOWN = "unknown"


class ToolforgeError(Exception):
    """Base exception for all typed pipeline failures."""
    category: ErrorCategory = ErrorCategory.UNKNOWN
    error_kind: str = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# Analysis / synthesis (always recovered through fallbacks)
# ---------------------------------------------------------------------------

class ReasoningServiceError(ToolforgeError):
    """Reasoning service unavailable, timed out or returned an error."""
    category = ErrorCategory.NETWORK
    error_kind = "reasoning_service_error"


class AnalysisFailure(ToolforgeError):
    """Request analysis could not produce an intent from the reasoning service."""
    category = ErrorCategory.VALIDATION
    error_kind = "analysis_failure"


class SynthesisFailure(ToolforgeError):
    """Code synthesis could not produce a usable handler from the reasoning service."""
    category = ErrorCategory.VALIDATION
    error_kind = "synthesis_failure"


# ---------------------------------------------------------------------------
# Composer
# ---------------------------------------------------------------------------

class EmptyServerError(ToolforgeError):
    """Composer invoked without a base program."""
    category = ErrorCategory.BUSINESS_LOGIC
    error_kind = "empty_server"


class DuplicateToolError(ToolforgeError):
    """A tool with the same name already exists in the tenant program."""
    category = ErrorCategory.BUSINESS_LOGIC
    error_kind = "duplicate_tool"

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(
            f"Tool '{tool_name}' already exists in server. Remove it first."
        )


class ToolNotFoundError(ToolforgeError):
    """Named tool is not present in the tenant program or registry."""
    category = ErrorCategory.BUSINESS_LOGIC
    error_kind = "tool_not_found"


class StructuralValidationError(ToolforgeError):
    """Program text failed the structural validator."""
    category = ErrorCategory.VALIDATION
    error_kind = "structural_validation"

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("Invalid server structure: " + "; ".join(self.errors))


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------

class UnknownProviderError(ToolforgeError):
    category = ErrorCategory.VALIDATION
    error_kind = "unknown_provider"


class MissingClientConfig(ToolforgeError):
    """Provider client id/secret not configured."""
    category = ErrorCategory.AUTH_ERROR
    error_kind = "missing_client_config"


class OAuthExchangeError(ToolforgeError):
    """Token endpoint rejected the authorization code or was unreachable."""
    category = ErrorCategory.AUTH_ERROR
    error_kind = "oauth_exchange_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderNotImplementedError(ToolforgeError):
    """Code exchange is not implemented for a registered provider."""
    category = ErrorCategory.AUTH_ERROR
    error_kind = "not_implemented"


class InvalidOAuthState(ToolforgeError):
    """OAuth state token is malformed or its signature does not verify."""
    category = ErrorCategory.AUTH_ERROR
    error_kind = "invalid_state"


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

class HandlerNotFound(ToolforgeError):
    category = ErrorCategory.BUSINESS_LOGIC
    error_kind = "handler_not_found"

    def __init__(self, tool_name: str, handler_name: Optional[str] = None):
        self.tool_name = tool_name
        self.handler_name = handler_name
        detail = f" ({handler_name})" if handler_name else ""
        super().__init__(f"Tool handler not found: {tool_name}{detail}")


class InvocationError(ToolforgeError):
    """Handler raised, timed out or the sandbox process failed."""
    category = ErrorCategory.EXECUTION
    error_kind = "invocation_error"


class SandboxPolicyError(ToolforgeError):
    """Program text uses a construct the sandbox policy forbids."""
    category = ErrorCategory.VALIDATION
    error_kind = "sandbox_policy"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class StoreUnavailable(ToolforgeError):
    category = ErrorCategory.STORAGE
    error_kind = "store_unavailable"


class VersionConflictError(ToolforgeError):
    """Tenant metadata changed between read and write (optimistic check)."""
    category = ErrorCategory.STORAGE
    error_kind = "version_conflict"

    def __init__(self, tenant_id: str, expected: Optional[str], actual: Optional[str]):
        self.tenant_id = tenant_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Metadata version conflict for tenant {tenant_id}: "
            f"expected {expected}, found {actual}"
        )


def classify_error(error: Exception) -> Tuple[ErrorCategory, str]:
    """
    Classify an error into a category and a stable error kind string.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, error_kind)
    """
    if isinstance(error, ToolforgeError):
        return error.category, error.error_kind

    error_str = str(error).lower()

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK, "network"

    if any(keyword in error_str for keyword in ["connection", "timeout", "network", "dns", "refused"]):
        return ErrorCategory.NETWORK, "network"

    if any(keyword in error_str for keyword in ["unauthorized", "forbidden", "401", "403", "authentication"]):
        return ErrorCategory.AUTH_ERROR, "auth_error"

    return ErrorCategory.UNKNOWN, "unknown"


def wrap_llm_error(error: Exception, provider: str) -> ReasoningServiceError:
    """
    Wrap LLM API errors into ReasoningServiceError.

    Args:
        error: Original exception
        provider: LLM provider name

    Returns:
        ReasoningServiceError carrying a readable message
    """
    if isinstance(error, ReasoningServiceError):
        return error

    if isinstance(error, asyncio.TimeoutError):
        return ReasoningServiceError(f"{provider} call timed out")

    status_code = getattr(error, "status_code", None)
    if status_code == 429:
        return ReasoningServiceError(f"{provider} rate limit exceeded (429)")
    if status_code in (401, 403):
        return ReasoningServiceError(f"{provider} auth error ({status_code})")
    if status_code:
        return ReasoningServiceError(f"{provider} API error ({status_code})")

    return ReasoningServiceError(f"{provider} error: {error}")


HTTP_STATUS_BY_KIND = {
    DuplicateToolError.error_kind: 409,
    VersionConflictError.error_kind: 409,
    ToolNotFoundError.error_kind: 404,
    HandlerNotFound.error_kind: 404,
    EmptyServerError.error_kind: 404,
    UnknownProviderError.error_kind: 400,
    MissingClientConfig.error_kind: 400,
    InvalidOAuthState.error_kind: 400,
    StructuralValidationError.error_kind: 422,
    SandboxPolicyError.error_kind: 422,
    ProviderNotImplementedError.error_kind: 501,
    OAuthExchangeError.error_kind: 502,
    InvocationError.error_kind: 502,
    StoreUnavailable.error_kind: 503,
    "timeout": 504,
}


def http_status_for(error_kind: Optional[str]) -> int:
    """Map an error kind to the HTTP status the API returns for it."""
    return HTTP_STATUS_BY_KIND.get(error_kind or "", 500)
