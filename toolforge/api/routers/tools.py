"""Tool synthesis and execution API router."""

import logging
from fastapi import APIRouter, HTTPException, Security
from fastapi.responses import JSONResponse

from toolforge.api.models import (
    CreateToolRequest,
    ExecuteToolRequest,
    ToolDefinitionResponse,
    ToolListResponse,
    ToolRecordResponse,
)
from toolforge.infra.auth import verify_api_key
from toolforge.infra.error_handler import ToolforgeError, http_status_for
from toolforge.models.tenant import BuildResult, ExecutionResult
from toolforge.services.build_orchestrator import build_orchestrator
from toolforge.services.tool_registry import tool_registry
from toolforge.services.tool_runner import tool_runner
from toolforge.services.tool_store import tool_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tools")


@router.post("", tags=["Tools"], response_model=BuildResult)
async def create_tool(
    request: CreateToolRequest,
    tenant_id: str = Security(verify_api_key),
):
    """
    Build a tool from a natural-language request.

    The tool is merged into the tenant's program. When the service needs
    OAuth the response carries `oauth_url` and status `pending_oauth`.

    **Example Request:**
    ```json
    {"request": "read my slack channels"}
    ```
    """
    result = await build_orchestrator.build_tool(tenant_id, request.request, request.context)
    if not result.success:
        return JSONResponse(status_code=http_status_for(result.error_kind), content=result.model_dump(mode="json"))
    return result


@router.get("", tags=["Tools"], response_model=ToolListResponse)
async def list_tools(tenant_id: str = Security(verify_api_key)):
    """List the tenant's registered tools."""
    try:
        records = tool_registry.list(tenant_id)
        version = tool_store.get_version(tenant_id)
    except ToolforgeError as e:
        raise HTTPException(status_code=http_status_for(e.error_kind), detail=e.message)

    return ToolListResponse(
        tenant_id=tenant_id,
        version=version,
        tools=[ToolRecordResponse(**record.model_dump()) for record in records],
    )


@router.get("/{tool_name}", tags=["Tools"], response_model=ToolDefinitionResponse)
async def get_tool_definition(tool_name: str, tenant_id: str = Security(verify_api_key)):
    """Get the advertised schema of one tool."""
    try:
        definition = tool_runner.get_tool_definition(tenant_id, tool_name)
    except ToolforgeError as e:
        raise HTTPException(status_code=http_status_for(e.error_kind), detail=e.message)

    if definition is None:
        raise HTTPException(status_code=404, detail=f"Tool '{tool_name}' not found")
    return ToolDefinitionResponse(**definition)


@router.post("/{tool_name}/execute", tags=["Tools"], response_model=ExecutionResult)
async def execute_tool(
    tool_name: str,
    request: ExecuteToolRequest,
    tenant_id: str = Security(verify_api_key),
):
    """Execute a tool with the given parameters in the sandbox."""
    result = await tool_runner.execute_tool(tenant_id, tool_name, request.parameters)
    if not result.success:
        return JSONResponse(status_code=http_status_for(result.error_kind), content=result.model_dump(mode="json"))
    return result


@router.delete("/{tool_id}", tags=["Tools"], response_model=ToolRecordResponse)
async def delete_tool(tool_id: str, tenant_id: str = Security(verify_api_key)):
    """
    Remove a tool.

    The handler is stripped from the tenant's program and the registry
    record is marked inactive (records are never hard deleted).
    """
    try:
        record = await build_orchestrator.remove_tool(tenant_id, tool_id)
    except ToolforgeError as e:
        raise HTTPException(status_code=http_status_for(e.error_kind), detail=e.message)
    return ToolRecordResponse(**record.model_dump())
