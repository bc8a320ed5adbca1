"""Tenant program skeleton, handler templates and naming helpers.

A tenant program is plain Python text with a fixed layout the composer edits
by anchor:

    def load_credentials(...)      credential loader marker
    # Tool handlers                 handlers start
    async def handleX(args, credentials): ...
    # Server setup                  handlers end / insertion point
    TOOLS = [ ...one line per tool...
        # end tool list             advertisement insertion point
    ]
    async def call_tool(...):       match/case dispatch ending in `case _:`
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

from toolforge.models.tenant import INITIAL_VERSION
from toolforge.models.tool import ToolIntent

HANDLERS_START_ANCHOR = "# Tool handlers"
HANDLERS_END_ANCHOR = "# Server setup"
TOOL_LIST_END_ANCHOR = "    # end tool list"
DISPATCH_DEFAULT_ANCHOR = "        case _:  # unknown tool"
CREDENTIAL_LOADER_MARKER = "def load_credentials("
LIST_TOOLS_MARKER = "def list_tools("
CALL_TOOL_MARKER = "async def call_tool("

REQUIRED_ANCHORS = [
    HANDLERS_START_ANCHOR,
    HANDLERS_END_ANCHOR,
    TOOL_LIST_END_ANCHOR,
    DISPATCH_DEFAULT_ANCHOR,
    CREDENTIAL_LOADER_MARKER,
]

HANDLER_PREFIX = "handle"

_NAME_SPLIT = re.compile(r"[-_\s]+")

SKELETON_TEMPLATE = '''"""Generated tool server: {server_name}."""


def load_credentials(credentials):
    """Keep only string secrets from the credential map."""
    return {{key: value for key, value in (credentials or {{}}).items() if isinstance(value, str)}}


# Tool handlers


# Server setup

TOOLS = [
    # end tool list
]


def list_tools():
    return TOOLS


async def call_tool(name, args, credentials):
    credentials = load_credentials(credentials)
    match name:
        case _:  # unknown tool
            raise ValueError(f"Unknown tool: {{name}}")
'''

MOCK_HANDLER_TEMPLATE = '''async def {handler_name}(args, credentials):
    """{description} (template placeholder, returns mock data)."""
    return {{
        "mock": True,
        "tool": {tool_literal},
        "service": {service_literal},
        "message": {message_literal},
        "arguments": args,
        "authenticated": bool(credentials.get({credential_literal})),
    }}
'''


def to_handler_name(tool_name: str) -> str:
    """
    Map a kebab/underscore tool name to its handler identifier.

    Example: "read-messages" -> "handleReadMessages"
    """
    parts = [part for part in _NAME_SPLIT.split(tool_name.strip()) if part]
    return HANDLER_PREFIX + "".join(part[:1].upper() + part[1:] for part in parts)


def increment_version(version: Optional[str]) -> str:
    """Bump the patch component of a semantic version string."""
    try:
        major, minor, patch = (int(part) for part in (version or "").split("."))
    except ValueError:
        major, minor, patch = (int(part) for part in INITIAL_VERSION.split("."))
    return f"{major}.{minor}.{patch + 1}"


def render_literal(value: Any) -> str:
    """
    Render a JSON-like value as a Python literal on a single line.

    Strings are emitted with json.dumps so keys keep double quotes, which
    makes advertisement entries greppable as `{"name": "<tool>"`.
    """
    if value is None or isinstance(value, bool):
        return repr(value)
    if isinstance(value, int):
        return repr(value)
    if isinstance(value, float):
        return repr(value) if math.isfinite(value) else json.dumps(str(value))
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, dict):
        items = ", ".join(f"{json.dumps(str(k))}: {render_literal(v)}" for k, v in value.items())
        return "{" + items + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(render_literal(v) for v in value) + "]"
    return json.dumps(str(value))


def render_schema_entry(schema: Dict[str, Any]) -> str:
    """Single-line advertisement entry; `name` always comes first."""
    ordered = {"name": schema["name"]}
    ordered.update({k: v for k, v in schema.items() if k != "name"})
    return render_literal(ordered)


def render_dispatch_case(tool_name: str) -> str:
    return (
        f"        case {json.dumps(tool_name)}:\n"
        f"            return await {to_handler_name(tool_name)}(args, credentials)\n"
    )


def render_skeleton(server_name: str) -> str:
    """Empty tenant program with every anchor in place."""
    safe_name = re.sub(r"[^A-Za-z0-9 _.-]", "", server_name) or "tools"
    return SKELETON_TEMPLATE.format(server_name=safe_name)


def credential_key(prefix: str) -> str:
    return f"{prefix}_access_token"


def render_mock_handler(intent: ToolIntent, credential_prefix: Optional[str] = None) -> str:
    """Template handler that returns clearly labeled placeholder data."""
    description = re.sub(r'["\\\n\r]', " ", intent.description or intent.tool_name).strip()
    message = f"MOCK DATA: {intent.tool_name} is not implemented against {intent.service} yet."
    return MOCK_HANDLER_TEMPLATE.format(
        handler_name=to_handler_name(intent.tool_name),
        description=description,
        tool_literal=json.dumps(intent.tool_name),
        service_literal=json.dumps(intent.service),
        message_literal=json.dumps(message),
        credential_literal=json.dumps(credential_key(credential_prefix or intent.service)),
    )


def handler_names(tools: List[str]) -> List[str]:
    return [to_handler_name(tool) for tool in tools]
