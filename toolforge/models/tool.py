"""Tool intent, generated tool and registry record models."""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, List, Optional


class AuthMethod(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    OAUTH2 = "oauth2"


class ParameterSpec(BaseModel):
    """One named tool parameter."""
    model_config = ConfigDict(frozen=True)

    type: str = Field(default="string", description="JSON schema type: string | number | boolean | object | array")
    description: str = Field(default="")
    required: bool = Field(default=False)


class AuthRequirement(BaseModel):
    """Authentication a tool needs before it can run."""
    model_config = ConfigDict(frozen=True)

    method: AuthMethod = Field(default=AuthMethod.NONE)
    provider: Optional[str] = Field(default=None, description="OAuth provider name, e.g. 'slack'")
    scopes: List[str] = Field(default_factory=list)
    auth_url: Optional[str] = None
    token_url: Optional[str] = None

    @property
    def requires_oauth(self) -> bool:
        return self.method == AuthMethod.OAUTH2


class ToolIntent(BaseModel):
    """Structured description of the tool a request asks for. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    service: str = Field(..., min_length=1, description="Target service slug, e.g. 'slack'")
    tool_name: str = Field(..., min_length=1, description="Kebab-case tool name, e.g. 'read-messages'")
    description: str = Field(default="")
    parameters: Dict[str, ParameterSpec] = Field(default_factory=dict)
    auth: AuthRequirement = Field(default_factory=AuthRequirement)


class ToolSchema(BaseModel):
    """Tool advertisement entry: name, description and JSON schema for inputs."""
    name: str
    description: str
    input_schema: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})

    @classmethod
    def from_intent(cls, intent: ToolIntent) -> "ToolSchema":
        properties = {
            name: {"type": spec.type, "description": spec.description}
            for name, spec in intent.parameters.items()
        }
        required = [name for name, spec in intent.parameters.items() if spec.required]
        return cls(
            name=intent.tool_name,
            description=intent.description or intent.tool_name,
            input_schema={"type": "object", "properties": properties, "required": required},
        )


class OAuthConfig(BaseModel):
    provider: str
    scopes: List[str] = Field(default_factory=list)
    auth_url: Optional[str] = None
    token_url: Optional[str] = None


class GeneratedTool(BaseModel):
    """Synthesized tool ready to be merged into a tenant program."""
    tool_id: str = Field(..., description="Globally unique: <service>-<tool_name>-<timestamp>")
    handler_source: str = Field(..., description="Python source of the async handler function")
    server_source: Optional[str] = Field(
        default=None,
        description="Full program text; only present when this is the tenant's first tool"
    )
    tool_schema: ToolSchema
    oauth_config: Optional[OAuthConfig] = None
    dependencies: List[str] = Field(default_factory=list)
    is_mock: bool = Field(default=False, description="True when produced by the template fallback")


class ToolStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    AUTH_REQUIRED = "auth_required"


class ToolRecord(BaseModel):
    """Registry entry, one per tool per tenant."""
    id: str
    name: str
    template: str = Field(..., description="Service the tool was built for")
    status: ToolStatus = ToolStatus.INACTIVE
    oauth_complete: bool = False
    provider: Optional[str] = None
    description: str = ""
    created_at: str
    last_updated: Optional[str] = None
