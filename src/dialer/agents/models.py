"""
SQLAlchemy models for dialer agents.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dialer.contacts.models import enum_values
from dialer.shared.database import Base, utcnow


class AgentStatus(str, Enum):
    """Agent presence."""

    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class Agent(Base):
    """A human agent who takes connected calls in the browser client."""

    __tablename__ = "predictive_dialer_agents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[AgentStatus] = mapped_column(
        SQLEnum(
            AgentStatus,
            name="predictive_dialer_agent_status",
            values_callable=enum_values,
        ),
        nullable=False,
        default=AgentStatus.OFFLINE,
        index=True,
    )
    # No FK: calls reference agents, a reverse FK would make the schema cyclic.
    current_call_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    last_status_change: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
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
    def client_identity(self) -> str:
        """Twilio Client identity the browser registers with."""
        return f"agent-{self.id}"

    def __repr__(self) -> str:
        return f"<Agent(id={self.id}, status={self.status})>"
