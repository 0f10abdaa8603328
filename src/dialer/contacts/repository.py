"""
Repository for dialer contact database operations.
"""

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.calls.models import ACTIVE_CALL_STATUSES, DialerCall
from dialer.contacts.models import DIALABLE_STATUSES, Contact, ContactStatus
from dialer.contacts.schemas import ContactCreate
from dialer.shared.database import utcnow


class ContactRepository:
    """Repository for contact database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, contact_id: UUID) -> Contact | None:
        return await self._session.get(Contact, contact_id)

    async def create_many(self, items: Sequence[ContactCreate]) -> list[Contact]:
        contacts = [
            Contact(name=item.name, phone_number=item.phone_number, notes=item.notes)
            for item in items
        ]
        self._session.add_all(contacts)
        await self._session.flush()
        return contacts

    async def list_contacts(
        self,
        status: ContactStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[Contact]:
        stmt = select(Contact).order_by(Contact.created_at, Contact.id)
        if status is not None:
            stmt = stmt.where(Contact.status == status)
        result = await self._session.execute(stmt.limit(limit).offset(offset))
        return result.scalars().all()

    async def select_dialable(self, limit: int) -> Sequence[Contact]:
        """Contacts that may be dialed, never-called first then least recently called."""
        stmt = (
            select(Contact)
            .where(Contact.status.in_(DIALABLE_STATUSES))
            .order_by(
                Contact.last_call_timestamp.asc().nulls_first(),
                Contact.created_at,
                Contact.id,
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def claim_for_dialing(self, contact_id: UUID, now: datetime) -> bool:
        """Atomically move a dialable contact to IN_PROGRESS.

        Returns False when another dispatcher got there first.
        """
        stmt = (
            update(Contact)
            .where(
                Contact.id == contact_id,
                Contact.status.in_(DIALABLE_STATUSES),
            )
            .values(
                status=ContactStatus.IN_PROGRESS,
                last_call_timestamp=now,
                updated_at=now,
            )
            .returning(Contact.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def set_status(self, contact_id: UUID, status: ContactStatus) -> None:
        await self._session.execute(
            update(Contact)
            .where(Contact.id == contact_id)
            .values(status=status, updated_at=utcnow())
        )

    async def reset_orphaned_in_progress(self) -> int:
        """Return IN_PROGRESS contacts without an active call to NOT_CONTACTED."""
        active_call = exists().where(
            DialerCall.contact_id == Contact.id,
            DialerCall.status.in_(ACTIVE_CALL_STATUSES),
        )
        result = await self._session.execute(
            select(Contact.id).where(
                Contact.status == ContactStatus.IN_PROGRESS,
                ~active_call,
            )
        )
        contact_ids = list(result.scalars().all())
        if not contact_ids:
            return 0

        await self._session.execute(
            update(Contact)
            .where(
                Contact.id.in_(contact_ids),
                Contact.status == ContactStatus.IN_PROGRESS,
            )
            .values(status=ContactStatus.NOT_CONTACTED, updated_at=utcnow())
        )
        return len(contact_ids)
