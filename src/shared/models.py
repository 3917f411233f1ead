"""Core data models for the tool hub.

Credential and usage records are shared by every store implementation;
tool descriptors and results are shared by providers and the tool server.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

DEFAULT_SUBJECT = "default"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class CredentialRecord(BaseModel):
    """
    OAuth credential for one tenant of one provider.

    Keyed by (provider, subject). ``raw`` keeps the token endpoint payload
    verbatim for audit and is never interpreted.
    """
    provider: str
    subject: str = Field(default=DEFAULT_SUBJECT, description="Tenant / workspace id")
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scope: Optional[str] = None

    # Provider-specific metadata
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    bot_id: Optional[str] = None

    raw: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.subject)


class UsageRecord(BaseModel):
    """A single tool invocation outcome."""
    provider: str
    tool_name: str
    subject: Optional[str] = None
    success: bool
    latency_ms: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class UsageStats(BaseModel):
    """Aggregated usage counts."""
    total: int = 0
    by_provider: dict[str, int] = Field(default_factory=dict)
    by_tool: dict[str, int] = Field(default_factory=dict)


class TokenResponse(BaseModel):
    """Token endpoint payload. Unknown fields are kept."""
    access_token: str
    token_type: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str | list[str]] = None
    workspace_id: Optional[str] = None
    workspace_name: Optional[str] = None
    bot_id: Optional[str] = None

    model_config = ConfigDict(extra="allow")

    _payload: dict[str, Any] = PrivateAttr(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "TokenResponse":
        """Parse a token endpoint body, keeping the body verbatim."""
        token = cls.model_validate(payload)
        token._payload = dict(payload)
        return token

    @property
    def payload(self) -> dict[str, Any]:
        return self._payload or self.model_dump(exclude_none=True)

    @property
    def scope_string(self) -> Optional[str]:
        if isinstance(self.scope, list):
            return " ".join(self.scope)
        return self.scope or None


ToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class ToolDescriptor(BaseModel):
    """
    Static description of one tool.

    ``input_schema`` is a JSON Schema object; ``handler`` receives the
    validated arguments with schema defaults applied.
    """
    name: str
    title: str
    description: str
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    handler: ToolHandler

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class ToolResultStatus(str, Enum):
    """Status of tool execution."""
    SUCCESS = "success"
    ERROR = "error"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"


class ToolResult(BaseModel):
    """Result of a tool execution as seen by remote callers."""
    tool_name: str
    status: ToolResultStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    execution_time_ms: float = 0
