"""Request analyzer: natural-language tool request -> ToolIntent."""

import json
import logging
import re
from typing import Any, Dict, Optional

from toolforge.adapters.reasoning_client import ReasoningClient, extract_json_block, reasoning_client
from toolforge.infra.error_handler import AnalysisFailure
from toolforge.infra.metrics import fallbacks_total
from toolforge.infra.validation import as_string_list, sanitize_request_text, slugify
from toolforge.models.tool import AuthMethod, AuthRequirement, ParameterSpec, ToolIntent
from toolforge.services.provider_registry import ProviderRegistry, provider_registry

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are a tool builder agent. You analyze requests for integrations with
external services and decide which single tool should be built.

For each request determine:
- the external service (slack, github, gmail, ...)
- one tool name in kebab-case describing the action (read-messages, create-issue)
- the parameters the tool needs, with JSON schema types
- the authentication method: oauth2, api_key or none, and OAuth scopes when relevant

Answer with exactly one fenced ```json block and nothing else."""

ANALYSIS_USER_PROMPT = """Analyze this request for a custom tool.

Request: {request}
{context_line}
Return JSON shaped like:

```json
{{
  "service": "slack",
  "toolName": "read-messages",
  "description": "Read messages from a Slack channel",
  "parameters": {{
    "channel": {{"type": "string", "description": "Channel ID or name", "required": true}},
    "limit": {{"type": "number", "description": "Maximum number of messages", "required": false}}
  }},
  "authentication": {{
    "method": "oauth2",
    "provider": "slack",
    "scopes": ["channels:read", "channels:history"]
  }}
}}
```"""

READ_VERBS = re.compile(r"\b(read|get|fetch|list)", re.IGNORECASE)
WRITE_VERBS = re.compile(r"\b(send|post|create|write)", re.IGNORECASE)

_AUTH_METHODS = {
    "oauth2": AuthMethod.OAUTH2,
    "oauth": AuthMethod.OAUTH2,
    "api_key": AuthMethod.API_KEY,
    "apikey": AuthMethod.API_KEY,
    "bearer": AuthMethod.API_KEY,
    "none": AuthMethod.NONE,
}

_PARAM_TYPES = {"string", "number", "integer", "boolean", "object", "array"}


def _oauth(registry: ProviderRegistry, provider: str, scopes) -> AuthRequirement:
    config = registry.get_provider(provider)
    return AuthRequirement(
        method=AuthMethod.OAUTH2,
        provider=provider,
        scopes=list(scopes),
        auth_url=config.auth_url if config else None,
        token_url=config.token_url if config else None,
    )


def slack_read_intent(registry: ProviderRegistry) -> ToolIntent:
    return ToolIntent(
        service="slack",
        tool_name="read-messages",
        description="Read messages from a Slack channel",
        parameters={
            "channel": ParameterSpec(type="string", description="Channel ID or name (e.g., #general)", required=True),
            "limit": ParameterSpec(type="number", description="Maximum number of messages to retrieve"),
        },
        auth=_oauth(registry, "slack", ["channels:read", "channels:history"]),
    )


def slack_write_intent(registry: ProviderRegistry) -> ToolIntent:
    return ToolIntent(
        service="slack",
        tool_name="send-message",
        description="Send a message to a Slack channel",
        parameters={
            "channel": ParameterSpec(type="string", description="Channel ID or name", required=True),
            "text": ParameterSpec(type="string", description="Message text", required=True),
        },
        auth=_oauth(registry, "slack", ["chat:write"]),
    )


def github_issue_intent(registry: ProviderRegistry) -> ToolIntent:
    return ToolIntent(
        service="github",
        tool_name="create-issue",
        description="Create an issue in a GitHub repository",
        parameters={
            "owner": ParameterSpec(type="string", description="Repository owner", required=True),
            "repo": ParameterSpec(type="string", description="Repository name", required=True),
            "title": ParameterSpec(type="string", description="Issue title", required=True),
            "body": ParameterSpec(type="string", description="Issue description"),
        },
        auth=_oauth(registry, "github", ["repo"]),
    )


def fallback_intent(request: str, registry: Optional[ProviderRegistry] = None) -> ToolIntent:
    """
    Deterministic keyword matching. Never raises.

    Slack requests pick a read or write tool by verb (read wins when both
    appear, neither defaults to read); GitHub requests build an issue tool;
    anything else becomes a generic single-input tool with no auth.
    """
    registry = registry or provider_registry
    text = (request or "").lower()

    if "slack" in text:
        if READ_VERBS.search(text) or not WRITE_VERBS.search(text):
            return slack_read_intent(registry)
        return slack_write_intent(registry)

    if "github" in text:
        return github_issue_intent(registry)

    return ToolIntent(
        service="generic",
        tool_name="custom-tool",
        description=(request or "Custom tool").strip()[:200] or "Custom tool",
        parameters={"input": ParameterSpec(type="string", description="Input parameter", required=True)},
        auth=AuthRequirement(method=AuthMethod.NONE),
    )


def intent_from_response(data: Dict[str, Any], registry: Optional[ProviderRegistry] = None) -> ToolIntent:
    """
    Normalize the reasoning service's analysis JSON into a ToolIntent.

    Raises:
        AnalysisFailure: If required fields are missing or malformed
    """
    registry = registry or provider_registry

    service = slugify(str(data.get("service") or ""), "")
    tool_name = slugify(str(data.get("toolName") or data.get("tool_name") or ""), "")
    if not service or not tool_name:
        raise AnalysisFailure("analysis response is missing service or toolName")

    raw_parameters = data.get("parameters") or {}
    if not isinstance(raw_parameters, dict):
        raise AnalysisFailure("analysis parameters must be an object")

    parameters = {}
    for name, spec in raw_parameters.items():
        if not isinstance(spec, dict) or not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", str(name)):
            continue
        param_type = str(spec.get("type", "string")).lower()
        parameters[str(name)] = ParameterSpec(
            type=param_type if param_type in _PARAM_TYPES else "string",
            description=str(spec.get("description", "")),
            required=bool(spec.get("required", False)),
        )

    raw_auth = data.get("authentication") or data.get("auth") or {}
    if not isinstance(raw_auth, dict):
        raw_auth = {}
    method = _AUTH_METHODS.get(str(raw_auth.get("method", "none")).lower(), AuthMethod.NONE)

    if method == AuthMethod.OAUTH2:
        provider = str(raw_auth.get("provider") or service).lower()
        provider_config = registry.get_provider(provider)
        try:
            scopes = as_string_list(raw_auth.get("scopes"), r"[,\s]+")
        except ValueError as e:
            raise AnalysisFailure(f"analysis scopes are malformed: {e}") from e
        if not scopes and provider_config:
            scopes = list(provider_config.default_scopes)
        auth = AuthRequirement(
            method=method,
            provider=provider,
            scopes=scopes,
            auth_url=raw_auth.get("authUrl") or (provider_config.auth_url if provider_config else None),
            token_url=raw_auth.get("tokenUrl") or (provider_config.token_url if provider_config else None),
        )
    else:
        auth = AuthRequirement(method=method, provider=raw_auth.get("provider"))

    return ToolIntent(
        service=service,
        tool_name=tool_name,
        description=str(data.get("description") or tool_name),
        parameters=parameters,
        auth=auth,
    )


class RequestAnalyzer:
    """Turns a request into a ToolIntent via the reasoning service, with keyword fallback."""

    def __init__(
        self,
        reasoning: Optional[ReasoningClient] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.reasoning = reasoning or reasoning_client
        self.registry = registry or provider_registry

    async def analyze_request(self, request: str, context: Optional[str] = None) -> ToolIntent:
        """
        Analyze a tool request. Total: any failure takes the keyword fallback.

        Args:
            request: Natural-language request ("read my Slack channels")
            context: Optional extra context from the caller

        Returns:
            ToolIntent
        """
        request = sanitize_request_text(request)
        context = sanitize_request_text(context or "")
        context_line = f"Context: {context}\n" if context else ""

        try:
            response = await self.reasoning.complete(
                ANALYSIS_SYSTEM_PROMPT,
                ANALYSIS_USER_PROMPT.format(request=request, context_line=context_line),
                purpose="analysis",
                max_tokens=2000,
            )
            try:
                data = extract_json_block(response)
            except ValueError as e:
                raise AnalysisFailure(f"could not parse analysis: {e}") from e
            intent = intent_from_response(data, self.registry)
            logger.info(f"Analyzed request as {intent.service}/{intent.tool_name} (auth={intent.auth.method.value})")
            return intent
        except Exception as e:
            fallbacks_total.labels(stage="analysis").inc()
            logger.warning(f"Request analysis fell back to keyword matching: {type(e).__name__}: {e}")
            return fallback_intent(request, self.registry)


def describe_intent(intent: ToolIntent) -> str:
    """Compact JSON rendering used in synthesis prompts."""
    return json.dumps(intent.model_dump(mode="json"), indent=2)


request_analyzer = RequestAnalyzer()
