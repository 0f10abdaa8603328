"""
Pydantic schemas for the dialer API.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dialer.calls.models import CallStatus, MachineDetectionResult


class CallResponse(BaseModel):
    """Schema for call response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID
    agent_id: UUID | None
    twilio_call_sid: str | None
    status: CallStatus
    machine_detection_result: MachineDetectionResult | None
    start_timestamp: datetime
    end_timestamp: datetime | None
    duration: int | None


class QueueEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    call_id: UUID
    priority: int
    created_timestamp: datetime
    assigned_to_agent_id: UUID | None
    assigned_timestamp: datetime | None


class StartDialerRequest(BaseModel):
    agent_id: UUID
    max_concurrent_calls: int | None = Field(
        default=None,
        ge=1,
        le=10,
        description="Calls in flight per available agent (defaults to settings)",
    )


class PlacedCallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_id: UUID
    contact_id: UUID
    contact_name: str
    phone_number: str
    call_sid: str


class FailedCallResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contact_id: UUID
    phone_number: str
    error_code: str | None
    message: str


class StartDialerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    active_calls_count: int
    target_calls: int
    calls_placed: list[PlacedCallResponse] = Field(default_factory=list)
    failures: list[FailedCallResponse] = Field(default_factory=list)
    assigned_call: CallResponse | None = None


class StopDialerRequest(BaseModel):
    agent_id: UUID


class StopDialerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    hung_up_calls: int
    reset_contacts: int


class EndCallRequest(BaseModel):
    call_sid: str = Field(..., min_length=1, max_length=64)


class EndCallResponse(BaseModel):
    success: bool
    message: str
    call: CallResponse


class DialerStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_calls: int
    active_calls: int
    calls_in_queue: int
    available_agents: int
    completed_calls: int
    human_answers: int
    machine_answers: int
    average_wait_time: float = Field(description="Seconds answered calls waited for an agent")
