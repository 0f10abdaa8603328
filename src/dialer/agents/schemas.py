"""
Pydantic schemas for agent presence.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dialer.agents.models import AgentStatus
from dialer.calls.schemas import CallResponse


class AgentRegisterRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)


class AgentStatusUpdateRequest(BaseModel):
    status: AgentStatus


class ConnectCallRequest(BaseModel):
    call_id: UUID


class AgentResponse(BaseModel):
    """Schema for agent response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    name: str
    status: AgentStatus
    current_call_id: UUID | None
    last_status_change: datetime


class AgentRegisterResponse(BaseModel):
    success: bool = True
    agent: AgentResponse


class AgentStatusResponse(BaseModel):
    success: bool = True
    agent: AgentResponse
    assigned_call: CallResponse | None = None


class AccessTokenResponse(BaseModel):
    token: str
    identity: str
    expires_in: int


class ConnectCallResponse(BaseModel):
    success: bool = True
    agent: AgentResponse
    call: CallResponse
    identity: str
    token: str | None = Field(
        default=None,
        description="Voice access token for the browser client; null when tokens are not configured",
    )
