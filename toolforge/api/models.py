"""API request and response models."""

from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional

from toolforge.models.tool import ToolStatus


class CreateToolRequest(BaseModel):
    request: str = Field(..., min_length=1, max_length=4000, description="Natural-language tool request")
    context: Optional[str] = Field(default=None, max_length=4000, description="Optional extra context")


class ExecuteToolRequest(BaseModel):
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Tool arguments")


class ToolRecordResponse(BaseModel):
    id: str
    name: str
    template: str
    status: ToolStatus
    oauth_complete: bool
    provider: Optional[str] = None
    description: str = ""
    created_at: str
    last_updated: Optional[str] = None


class ToolListResponse(BaseModel):
    tenant_id: str
    version: Optional[str] = None
    tools: List[ToolRecordResponse]


class ToolDefinitionResponse(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]
