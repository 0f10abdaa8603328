"""
Contact intake API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.contacts.models import ContactStatus
from dialer.contacts.repository import ContactRepository
from dialer.contacts.schemas import (
    ContactBulkCreate,
    ContactBulkCreateResponse,
    ContactResponse,
)
from dialer.shared.database import get_db_session
from dialer.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/dialer/contacts", tags=["contacts"])


def get_contact_repository(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ContactRepository:
    return ContactRepository(session)


@router.post(
    "",
    response_model=ContactBulkCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_contacts(
    body: ContactBulkCreate,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ContactBulkCreateResponse:
    contacts = await ContactRepository(session).create_many(body.contacts)
    await session.commit()
    logger.info("Contacts created", extra={"count": len(contacts)})
    return ContactBulkCreateResponse(
        created=len(contacts),
        contacts=[ContactResponse.model_validate(c) for c in contacts],
    )


@router.get("", response_model=list[ContactResponse])
async def list_contacts(
    repo: Annotated[ContactRepository, Depends(get_contact_repository)],
    contact_status: Annotated[ContactStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[ContactResponse]:
    contacts = await repo.list_contacts(status=contact_status, limit=limit, offset=offset)
    return [ContactResponse.model_validate(c) for c in contacts]
