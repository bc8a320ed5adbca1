"""Server composer: splices generated tools into a tenant program and removes them."""

import ast
import json
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from toolforge.infra.error_handler import (
    DuplicateToolError,
    EmptyServerError,
    StructuralValidationError,
    ToolNotFoundError,
)
from toolforge.infra.metrics import program_merges_total
from toolforge.models.tenant import INITIAL_VERSION, TenantMetadata, utc_now_iso
from toolforge.models.tool import GeneratedTool
from toolforge.services.program_templates import (
    DISPATCH_DEFAULT_ANCHOR,
    HANDLER_PREFIX,
    HANDLERS_END_ANCHOR,
    REQUIRED_ANCHORS,
    TOOL_LIST_END_ANCHOR,
    increment_version,
    render_dispatch_case,
    render_schema_entry,
    render_skeleton,
    to_handler_name,
)

logger = logging.getLogger(__name__)

_TRAILING_SEPARATOR = re.compile(r",(\s*# end tool list)")


@dataclass
class ValidationReport:
    valid: bool
    errors: List[str] = field(default_factory=list)
    handlers: List[str] = field(default_factory=list)


def validate_program(program: str, expected_tools: Optional[List[str]] = None) -> ValidationReport:
    """
    Check the structural invariants of a tenant program.

    Every anchor and the credential loader marker must appear exactly once,
    the text must parse as Python, and when expected_tools is given the
    top-level handler functions must match those tools one to one.
    """
    errors: List[str] = []

    for anchor in REQUIRED_ANCHORS:
        count = program.count(anchor)
        if count == 0:
            errors.append(f"missing anchor: {anchor.strip()}")
        elif count > 1:
            errors.append(f"anchor appears {count} times: {anchor.strip()}")

    handlers: List[str] = []
    try:
        tree = ast.parse(program)
    except SyntaxError as e:
        errors.append(f"syntax error at line {e.lineno}: {e.msg}")
        return ValidationReport(valid=False, errors=errors)

    for node in tree.body:
        if isinstance(node, ast.AsyncFunctionDef) and node.name.startswith(HANDLER_PREFIX):
            handlers.append(node.name)

    duplicated = sorted({name for name in handlers if handlers.count(name) > 1})
    if duplicated:
        errors.append(f"duplicate handlers: {', '.join(duplicated)}")

    if expected_tools is not None:
        if len(handlers) != len(expected_tools):
            errors.append(
                f"handler count {len(handlers)} does not match tool count {len(expected_tools)}"
            )
        expected_handlers = {to_handler_name(tool) for tool in expected_tools}
        if len(expected_handlers) != len(expected_tools):
            errors.append("tool names collide on the same handler name")
        missing = sorted(expected_handlers - set(handlers))
        if missing:
            errors.append(f"missing handlers: {', '.join(missing)}")

    return ValidationReport(valid=not errors, errors=errors, handlers=handlers)


def _ensure_valid(program: str, tools: List[str]) -> None:
    report = validate_program(program, tools)
    if not report.valid:
        raise StructuralValidationError(report.errors)


def splice_tool(program: str, tool: GeneratedTool, has_tools: bool) -> str:
    """
    Insert handler, advertisement entry and dispatch case for one tool.

    Returns the new text; the caller validates it.
    """
    tool_name = tool.tool_schema.name

    handlers_end = program.find(HANDLERS_END_ANCHOR)
    if handlers_end == -1:
        raise StructuralValidationError([f"missing anchor: {HANDLERS_END_ANCHOR}"])
    handler_block = tool.handler_source.strip("\n") + "\n\n\n"
    program = program[:handlers_end] + handler_block + program[handlers_end:]

    list_end = program.find("\n" + TOOL_LIST_END_ANCHOR)
    if list_end == -1:
        raise StructuralValidationError([f"missing anchor: {TOOL_LIST_END_ANCHOR.strip()}"])
    entry = render_schema_entry(tool.tool_schema.model_dump())
    separator = ",\n" if has_tools else "\n"
    program = program[:list_end] + separator + "    " + entry + program[list_end:]

    dispatch_default = program.find("\n" + DISPATCH_DEFAULT_ANCHOR)
    if dispatch_default == -1:
        raise StructuralValidationError([f"missing anchor: {DISPATCH_DEFAULT_ANCHOR.strip()}"])
    insert_at = dispatch_default + 1
    program = program[:insert_at] + render_dispatch_case(tool_name) + program[insert_at:]

    return program


def _merged_metadata(metadata: TenantMetadata, tool: GeneratedTool, version: str) -> TenantMetadata:
    dependencies = list(metadata.dependencies)
    for dependency in tool.dependencies:
        if dependency not in dependencies:
            dependencies.append(dependency)

    definitions = dict(metadata.tool_definitions)
    definitions[tool.tool_schema.name] = tool.tool_schema.model_dump()

    return metadata.model_copy(update={
        "tools": [*metadata.tools, tool.tool_schema.name],
        "version": version,
        "last_updated": utc_now_iso(),
        "dependencies": dependencies,
        "tool_definitions": definitions,
    })


def create_program(server_name: str, tool: GeneratedTool) -> Tuple[str, TenantMetadata]:
    """
    Build a fresh tenant program around its first tool at version 1.0.0.

    Uses tool.server_source as the skeleton when it is a valid empty program.
    """
    skeleton = tool.server_source
    if not skeleton or not validate_program(skeleton, []).valid:
        skeleton = render_skeleton(server_name)

    program = splice_tool(skeleton, tool, has_tools=False)
    metadata = _merged_metadata(TenantMetadata(), tool, INITIAL_VERSION)
    _ensure_valid(program, metadata.tools)

    program_merges_total.labels(operation="create", status="success").inc()
    logger.info(f"Created program '{server_name}' with tool {tool.tool_schema.name}")
    return program, metadata


def merge_tool(
    program: Optional[str],
    metadata: Optional[TenantMetadata],
    tool: GeneratedTool,
) -> Tuple[str, TenantMetadata]:
    """
    Merge a generated tool into an existing tenant program.

    Args:
        program: Current program text
        metadata: Current tenant metadata
        tool: Tool to add

    Returns:
        Tuple of (new program text, new metadata); inputs are left untouched

    Raises:
        EmptyServerError: No existing program to merge into
        DuplicateToolError: Tool name, or the handler name it maps to, already present
        StructuralValidationError: Result would break the program structure
    """
    if not program or metadata is None:
        raise EmptyServerError("No existing server to merge into. Create the server first.")

    tool_name = tool.tool_schema.name
    handler_name = to_handler_name(tool_name)
    if tool_name in metadata.tools or any(to_handler_name(t) == handler_name for t in metadata.tools):
        program_merges_total.labels(operation="merge", status="duplicate").inc()
        raise DuplicateToolError(tool_name)

    try:
        merged = splice_tool(program, tool, has_tools=bool(metadata.tools))
        new_metadata = _merged_metadata(metadata, tool, increment_version(metadata.version))
        _ensure_valid(merged, new_metadata.tools)
    except StructuralValidationError as e:
        program_merges_total.labels(operation="merge", status="invalid").inc()
        logger.error(f"Merge of {tool_name} rejected: {e.errors}")
        raise

    program_merges_total.labels(operation="merge", status="success").inc()
    logger.info(
        f"Merged tool {tool_name} (version {metadata.version} -> {new_metadata.version}, "
        f"{len(new_metadata.tools)} tools)"
    )
    return merged, new_metadata


def remove_tool(
    program: Optional[str],
    metadata: Optional[TenantMetadata],
    tool_name: str,
) -> Tuple[str, TenantMetadata]:
    """
    Remove a tool's handler, advertisement entry and dispatch case.

    Raises:
        EmptyServerError: No existing program
        ToolNotFoundError: Tool not present in metadata
        StructuralValidationError: Result would break the program structure
    """
    if not program or metadata is None:
        raise EmptyServerError("No existing server to remove a tool from.")
    if tool_name not in metadata.tools:
        raise ToolNotFoundError(f"Tool '{tool_name}' not found in server")

    handler_name = to_handler_name(tool_name)
    handler_block = re.compile(
        rf"^async def {re.escape(handler_name)}\(.*?(?=^async def {HANDLER_PREFIX}|^{re.escape(HANDLERS_END_ANCHOR)})",
        re.DOTALL | re.MULTILINE,
    )
    schema_line = re.compile(rf"^    \{{\"name\": {re.escape(json.dumps(tool_name))},.*\n", re.MULTILINE)
    dispatch_case = re.compile(
        rf"^        case {re.escape(json.dumps(tool_name))}:\n            return await \w+\(args, credentials\)\n",
        re.MULTILINE,
    )

    updated, handler_hits = handler_block.subn("", program, count=1)
    updated, schema_hits = schema_line.subn("", updated, count=1)
    updated, case_hits = dispatch_case.subn("", updated, count=1)
    updated = _TRAILING_SEPARATOR.sub(r"\1", updated)

    missing = [
        part for part, hits in (("handler", handler_hits), ("schema entry", schema_hits), ("dispatch case", case_hits))
        if hits == 0
    ]
    if missing:
        program_merges_total.labels(operation="remove", status="invalid").inc()
        raise StructuralValidationError([f"could not locate {part} for {tool_name}" for part in missing])

    definitions = {k: v for k, v in metadata.tool_definitions.items() if k != tool_name}
    new_metadata = metadata.model_copy(update={
        "tools": [t for t in metadata.tools if t != tool_name],
        "version": increment_version(metadata.version),
        "last_updated": utc_now_iso(),
        "tool_definitions": definitions,
    })
    _ensure_valid(updated, new_metadata.tools)

    program_merges_total.labels(operation="remove", status="success").inc()
    logger.info(f"Removed tool {tool_name} (version now {new_metadata.version})")
    return updated, new_metadata
