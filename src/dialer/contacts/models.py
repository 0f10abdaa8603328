"""
SQLAlchemy models for dialer contacts.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dialer.shared.database import Base, utcnow


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]


class ContactStatus(str, Enum):
    """Contact dialing status."""

    NOT_CONTACTED = "not_contacted"
    IN_PROGRESS = "in_progress"
    CONTACTED = "contacted"
    VOICEMAIL = "voicemail"
    NO_ANSWER = "no_answer"


# Contacts the dispatcher may pick up.
DIALABLE_STATUSES = (ContactStatus.NOT_CONTACTED, ContactStatus.NO_ANSWER)


class Contact(Base):
    """A lead to be dialed."""

    __tablename__ = "predictive_dialer_contacts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    status: Mapped[ContactStatus] = mapped_column(
        SQLEnum(
            ContactStatus,
            name="predictive_dialer_contact_status",
            values_callable=enum_values,
        ),
        nullable=False,
        default=ContactStatus.NOT_CONTACTED,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_call_timestamp: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
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

    def __repr__(self) -> str:
        return f"<Contact(id={self.id}, phone={self.phone_number}, status={self.status})>"
