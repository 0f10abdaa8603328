"""
Pydantic schemas for dialer contacts.
"""

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dialer.contacts.models import ContactStatus

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


def normalize_phone_number(phone: str) -> str | None:
    """Normalize a phone number to E.164, or return None when it cannot be."""
    cleaned = re.sub(r"[\s\-\.\(\)]", "", phone.strip())

    if cleaned.startswith("++"):
        return None

    # Add + prefix if missing but starts with digits
    if cleaned and cleaned[0].isdigit():
        cleaned = "+" + cleaned

    # At least 8 digits after '+'
    if len(cleaned) < 1 + 8:
        return None

    if E164_PATTERN.match(cleaned):
        return cleaned
    return None


class ContactCreate(BaseModel):
    """Schema for creating a contact."""

    name: str = Field(..., min_length=1, max_length=255)
    phone_number: str = Field(..., max_length=50, description="Phone number, normalized to E.164")
    notes: str | None = Field(default=None)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        normalized = normalize_phone_number(v)
        if normalized is None:
            raise ValueError(f"Invalid phone number: {v!r}")
        return normalized


class ContactBulkCreate(BaseModel):
    """Bulk contact intake."""

    contacts: list[ContactCreate] = Field(..., min_length=1, max_length=1000)


class ContactResponse(BaseModel):
    """Schema for contact response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    phone_number: str
    status: ContactStatus
    notes: str | None
    last_call_timestamp: datetime | None
    created_at: datetime


class ContactBulkCreateResponse(BaseModel):
    created: int
    contacts: list[ContactResponse]
