"""
SQLAlchemy models for dialer calls and the agent wait queue.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from dialer.contacts.models import enum_values
from dialer.shared.database import Base, utcnow


class CallStatus(str, Enum):
    """Lifecycle status of a dialer call row."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_CALL_STATUSES = (CallStatus.QUEUED, CallStatus.IN_PROGRESS)
TERMINAL_CALL_STATUSES = (CallStatus.COMPLETED, CallStatus.FAILED)


class MachineDetectionResult(str, Enum):
    """Answering party classification."""

    HUMAN = "human"
    MACHINE = "machine"
    UNKNOWN = "unknown"


class DialerCall(Base):
    """One outbound call placed by the dialer."""

    __tablename__ = "predictive_dialer_calls"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    contact_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("predictive_dialer_contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("predictive_dialer_agents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    twilio_call_sid: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(
            CallStatus,
            name="predictive_dialer_call_status",
            values_callable=enum_values,
        ),
        nullable=False,
        default=CallStatus.QUEUED,
        index=True,
    )
    machine_detection_result: Mapped[MachineDetectionResult | None] = mapped_column(
        SQLEnum(
            MachineDetectionResult,
            name="predictive_dialer_amd_result",
            values_callable=enum_values,
        ),
        nullable=True,
    )
    start_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    end_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    call_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CALL_STATUSES

    def __repr__(self) -> str:
        return f"<DialerCall(id={self.id}, sid={self.twilio_call_sid}, status={self.status})>"


class CallQueueEntry(Base):
    """An answered call waiting for an agent."""

    __tablename__ = "predictive_dialer_call_queue"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    call_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("predictive_dialer_calls.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    assigned_to_agent_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("predictive_dialer_agents.id", ondelete="SET NULL"),
        nullable=True,
    )
    assigned_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<CallQueueEntry(call_id={self.call_id}, priority={self.priority})>"
