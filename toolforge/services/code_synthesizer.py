"""Code synthesizer: ToolIntent -> GeneratedTool, with a mock template fallback."""

import ast
import json
import logging
import threading
import time
from typing import List, Optional

from toolforge.adapters.reasoning_client import ReasoningClient, extract_json_block, reasoning_client
from toolforge.infra.error_handler import SynthesisFailure
from toolforge.infra.metrics import fallbacks_total
from toolforge.infra.validation import as_string_list
from toolforge.models.tool import GeneratedTool, OAuthConfig, ToolIntent, ToolSchema
from toolforge.sandbox.policy import allowed_modules, check_program
from toolforge.services.program_templates import (
    REQUIRED_ANCHORS,
    credential_key,
    render_mock_handler,
    render_skeleton,
    to_handler_name,
)
from toolforge.services.provider_registry import ProviderRegistry, provider_registry
from toolforge.services.request_analyzer import describe_intent

logger = logging.getLogger(__name__)

SYNTHESIS_SYSTEM_PROMPT = """You write Python tool handlers for a tool server.

A handler is a single top-level `async def` taking `(args, credentials)`:
- `args` is a dict of the tool's parameters
- `credentials` is a dict of OAuth tokens, e.g. credentials["slack_access_token"]

Rules:
- Put every import INSIDE the function body
- Use the official client library for the service and list it in "dependencies"
- Wrap provider calls in try/except and return {"error": "..."} text instead of raising
- Return JSON-serializable data (dicts, lists, strings, numbers)
- Never read files, environment variables or call eval/exec
- Do not define any other top-level functions or classes

Answer with exactly one fenced ```json block and nothing else."""

SYNTHESIS_USER_PROMPT = """Write the handler `{handler_name}` for this tool:

```json
{intent}
```

The OAuth access token is available as credentials["{credential_key}"].
{example}
Return JSON shaped like:

```json
{{
  "handlerCode": "async def {handler_name}(args, credentials):\\n    ...",
  "dependencies": ["package-name>=1.0"]
}}
```"""

SERVICE_EXAMPLES = {
    "slack": '''Example for Slack:

async def handleReadMessages(args, credentials):
    from slack_sdk.web.async_client import AsyncWebClient
    from slack_sdk.errors import SlackApiError

    token = credentials.get("slack_access_token")
    if not token:
        return {"error": "Slack is not connected. Complete the OAuth flow first."}
    client = AsyncWebClient(token=token)
    try:
        response = await client.conversations_history(channel=args["channel"], limit=int(args.get("limit", 10)))
    except SlackApiError as e:
        return {"error": f"Slack API error: {e.response['error']}"}
    return {"channel": args["channel"], "messages": response["messages"]}
''',
    "github": '''Example for GitHub:

async def handleCreateIssue(args, credentials):
    import httpx

    token = credentials.get("github_access_token")
    if not token:
        return {"error": "GitHub is not connected. Complete the OAuth flow first."}
    url = f"https://api.github.com/repos/{args['owner']}/{args['repo']}/issues"
    headers = {"Authorization": f"Bearer {token}", "Accept": "application/vnd.github+json"}
    try:
        async with httpx.AsyncClient(timeout=15) as client:
            response = await client.post(url, headers=headers, json={"title": args["title"], "body": args.get("body", "")})
            response.raise_for_status()
    except httpx.HTTPError as e:
        return {"error": f"GitHub API error: {e}"}
    issue = response.json()
    return {"number": issue["number"], "url": issue["html_url"]}
''',
}

_id_lock = threading.Lock()
_last_timestamp = 0


def _unique_timestamp() -> int:
    """Nanosecond clock reading, strictly increasing within this process."""
    global _last_timestamp
    with _id_lock:
        now = max(time.time_ns(), _last_timestamp + 1)
        _last_timestamp = now
        return now


def make_tool_id(service: str, tool_name: str) -> str:
    return f"{service}-{tool_name}-{_unique_timestamp()}"


def check_handler_source(source: str, handler_name: str, dependencies: List[str]) -> List[str]:
    """
    Validate LLM handler source before it is merged.

    The source must be exactly one top-level async function with the
    expected name, must not contain program anchors and must pass the
    sandbox policy for its declared dependencies.
    """
    try:
        tree = ast.parse(source)
    except SyntaxError as e:
        return [f"syntax error at line {e.lineno}: {e.msg}"]

    problems = []
    if len(tree.body) != 1 or not isinstance(tree.body[0], ast.AsyncFunctionDef):
        problems.append("handler must be a single top-level async function")
    elif tree.body[0].name != handler_name:
        problems.append(f"handler is named {tree.body[0].name}, expected {handler_name}")

    for anchor in REQUIRED_ANCHORS:
        if anchor.strip() in source:
            problems.append(f"handler contains reserved marker '{anchor.strip()}'")

    problems.extend(check_program(source, allowed_modules(dependencies)))
    return problems


class CodeSynthesizer:
    """Generates handler code for an intent; falls back to a labeled mock handler."""

    def __init__(
        self,
        reasoning: Optional[ReasoningClient] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.reasoning = reasoning or reasoning_client
        self.registry = registry or provider_registry

    def _credential_prefix(self, intent: ToolIntent) -> str:
        provider = self.registry.get_provider(intent.auth.provider or intent.service)
        return provider.credential_prefix if provider else intent.service

    def _assemble(
        self,
        intent: ToolIntent,
        handler_source: str,
        dependencies: List[str],
        first_tool: bool,
        is_mock: bool,
    ) -> GeneratedTool:
        oauth_config = None
        if intent.auth.requires_oauth:
            oauth_config = OAuthConfig(
                provider=intent.auth.provider or intent.service,
                scopes=list(intent.auth.scopes),
                auth_url=intent.auth.auth_url,
                token_url=intent.auth.token_url,
            )

        return GeneratedTool(
            tool_id=make_tool_id(intent.service, intent.tool_name),
            handler_source=handler_source.strip("\n") + "\n",
            server_source=render_skeleton(f"{intent.service}-tools") if first_tool else None,
            tool_schema=ToolSchema.from_intent(intent),
            oauth_config=oauth_config,
            dependencies=dependencies,
            is_mock=is_mock,
        )

    def fallback_tool(self, intent: ToolIntent, first_tool: bool) -> GeneratedTool:
        handler = render_mock_handler(intent, self._credential_prefix(intent))
        return self._assemble(intent, handler, [], first_tool, is_mock=True)

    async def generate_tool(self, intent: ToolIntent, first_tool: bool = False) -> GeneratedTool:
        """
        Generate a tool for an intent. Total: any failure takes the template fallback.

        Args:
            intent: Analyzed tool intent
            first_tool: True when the tenant has no program yet (adds server_source)

        Returns:
            GeneratedTool
        """
        handler_name = to_handler_name(intent.tool_name)
        prompt = SYNTHESIS_USER_PROMPT.format(
            handler_name=handler_name,
            intent=describe_intent(intent),
            credential_key=credential_key(self._credential_prefix(intent)),
            example=SERVICE_EXAMPLES.get(intent.service, ""),
        )

        try:
            response = await self.reasoning.complete(
                SYNTHESIS_SYSTEM_PROMPT, prompt, purpose="synthesis", max_tokens=4000
            )
            try:
                data = extract_json_block(response)
            except ValueError as e:
                raise SynthesisFailure(f"could not parse synthesis: {e}") from e

            handler_source = data.get("handlerCode") or data.get("handler_code")
            if not isinstance(handler_source, str) or not handler_source.strip():
                raise SynthesisFailure("synthesis response has no handlerCode")
            try:
                dependencies = as_string_list(data.get("dependencies"))
            except ValueError as e:
                raise SynthesisFailure(f"synthesis dependencies are malformed: {e}") from e

            problems = check_handler_source(handler_source.strip("\n"), handler_name, dependencies)
            if problems:
                raise SynthesisFailure("generated handler rejected: " + "; ".join(problems))

            tool = self._assemble(intent, handler_source, dependencies, first_tool, is_mock=False)
            logger.info(f"Synthesized {tool.tool_id} with dependencies {json.dumps(dependencies)}")
            return tool
        except Exception as e:
            fallbacks_total.labels(stage="synthesis").inc()
            logger.warning(f"Code synthesis fell back to template for {intent.tool_name}: {type(e).__name__}: {e}")
            return self.fallback_tool(intent, first_tool)


code_synthesizer = CodeSynthesizer()
