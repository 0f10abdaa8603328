"""
Domain event models for telephony callbacks.

Provider payloads are parsed into these normalized events before any
database work happens.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from dialer.calls.models import MachineDetectionResult


class ProviderCallStatus(str, Enum):
    """Call status as reported by the provider."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PROVIDER_STATUSES


TERMINAL_PROVIDER_STATUSES = frozenset(
    {
        ProviderCallStatus.COMPLETED,
        ProviderCallStatus.BUSY,
        ProviderCallStatus.NO_ANSWER,
        ProviderCallStatus.FAILED,
        ProviderCallStatus.CANCELED,
    }
)

MACHINE_ANSWERED_BY = frozenset(
    {
        "machine_start",
        "machine_end_beep",
        "machine_end_silence",
        "machine_end_other",
        "fax",
    }
)


def classify_answered_by(answered_by: str | None) -> MachineDetectionResult:
    """Map the provider's AnsweredBy value onto human / machine / unknown."""
    value = (answered_by or "").strip().lower()
    if value == "human":
        return MachineDetectionResult.HUMAN
    if value in MACHINE_ANSWERED_BY:
        return MachineDetectionResult.MACHINE
    return MachineDetectionResult.UNKNOWN


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallStatusEvent(BaseModel):
    """Normalized call status callback."""

    model_config = ConfigDict(frozen=True)

    provider_call_id: str = Field(..., description="Provider's unique call identifier")
    status: ProviderCallStatus
    call_id: UUID | None = Field(
        default=None,
        description="Dialer call id echoed back through the callback URL",
    )
    raw_status: str | None = None
    timestamp: datetime = Field(default_factory=_utcnow)
    duration_seconds: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    synthetic: bool = Field(
        default=False,
        description="Raised internally (operator hangup, reaper) rather than by the provider",
    )
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class MachineDetectionEvent(BaseModel):
    """Normalized answering machine detection callback."""

    model_config = ConfigDict(frozen=True)

    provider_call_id: str
    call_id: UUID | None = None
    answered_by: str | None = None
    result: MachineDetectionResult = MachineDetectionResult.UNKNOWN
    timestamp: datetime = Field(default_factory=_utcnow)
    raw_payload: dict[str, Any] = Field(default_factory=dict)
