"""
Repositories for dialer calls and the agent wait queue.
"""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.calls.models import (
    ACTIVE_CALL_STATUSES,
    CallQueueEntry,
    CallStatus,
    DialerCall,
)
from dialer.shared.database import utcnow


class CallRepository:
    """Repository for dialer call database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, call_id: UUID) -> DialerCall | None:
        return await self._session.get(DialerCall, call_id)

    async def get_by_sid(self, call_sid: str) -> DialerCall | None:
        """Get call by Twilio CallSid."""
        result = await self._session.execute(
            select(DialerCall).where(DialerCall.twilio_call_sid == call_sid)
        )
        return result.scalar_one_or_none()

    async def resolve(self, call_id: UUID | None, call_sid: str | None) -> DialerCall | None:
        """Find a call by our id first, then by provider SID."""
        call = None
        if call_id is not None:
            call = await self.get_by_id(call_id)
        if call is None and call_sid:
            call = await self.get_by_sid(call_sid)
        return call

    async def create(self, contact_id: UUID, metadata: dict[str, Any] | None = None) -> DialerCall:
        now = utcnow()
        call = DialerCall(
            contact_id=contact_id,
            status=CallStatus.QUEUED,
            start_timestamp=now,
            call_metadata=dict(metadata or {}),
        )
        self._session.add(call)
        await self._session.flush()
        return call

    async def count_active(self) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(DialerCall)
            .where(DialerCall.status.in_(ACTIVE_CALL_STATUSES))
        )
        return int(result.scalar_one())

    async def mark_dialing(self, call_id: UUID, call_sid: str) -> None:
        """Store the provider SID and move QUEUED to IN_PROGRESS.

        A status webhook may already have moved the call further; only the SID
        is written in that case.
        """
        now = utcnow()
        await self._session.execute(
            update(DialerCall)
            .where(DialerCall.id == call_id, DialerCall.twilio_call_sid.is_(None))
            .values(twilio_call_sid=call_sid, updated_at=now)
        )
        await self._session.execute(
            update(DialerCall)
            .where(DialerCall.id == call_id, DialerCall.status == CallStatus.QUEUED)
            .values(status=CallStatus.IN_PROGRESS, updated_at=now)
        )

    async def list_recent(
        self,
        limit: int = 50,
        status: CallStatus | None = None,
    ) -> Sequence[DialerCall]:
        stmt = select(DialerCall).order_by(DialerCall.start_timestamp.desc(), DialerCall.id)
        if status is not None:
            stmt = stmt.where(DialerCall.status == status)
        result = await self._session.execute(stmt.limit(limit))
        return result.scalars().all()

    async def list_active_unassigned(self) -> Sequence[DialerCall]:
        result = await self._session.execute(
            select(DialerCall).where(
                DialerCall.status.in_(ACTIVE_CALL_STATUSES),
                DialerCall.agent_id.is_(None),
            )
        )
        return result.scalars().all()

    async def list_stale(self, started_before: datetime) -> Sequence[DialerCall]:
        result = await self._session.execute(
            select(DialerCall).where(
                DialerCall.status.in_(ACTIVE_CALL_STATUSES),
                DialerCall.start_timestamp < started_before,
            )
        )
        return result.scalars().all()


class CallQueueRepository:
    """Repository for answered calls waiting for an agent."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _ordered(self):
        return select(CallQueueEntry).order_by(
            CallQueueEntry.priority.desc(),
            CallQueueEntry.created_timestamp,
            CallQueueEntry.id,
        )

    async def get_by_call_id(self, call_id: UUID) -> CallQueueEntry | None:
        result = await self._session.execute(
            select(CallQueueEntry).where(CallQueueEntry.call_id == call_id)
        )
        return result.scalar_one_or_none()

    async def enqueue(self, call_id: UUID, priority: int) -> CallQueueEntry:
        """Add a call to the queue; a call is queued at most once."""
        existing = await self.get_by_call_id(call_id)
        if existing is not None:
            return existing
        entry = CallQueueEntry(call_id=call_id, priority=priority, created_timestamp=utcnow())
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def next_unassigned(self, skip: Sequence[UUID] = ()) -> CallQueueEntry | None:
        """Highest priority first, then oldest."""
        stmt = self._ordered().where(CallQueueEntry.assigned_to_agent_id.is_(None))
        if skip:
            stmt = stmt.where(CallQueueEntry.id.not_in(list(skip)))
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def try_claim(self, entry_id: UUID, agent_id: UUID) -> bool:
        stmt = (
            update(CallQueueEntry)
            .where(
                CallQueueEntry.id == entry_id,
                CallQueueEntry.assigned_to_agent_id.is_(None),
            )
            .values(assigned_to_agent_id=agent_id, assigned_timestamp=utcnow())
            .returning(CallQueueEntry.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def unclaim(self, entry_id: UUID, agent_id: UUID) -> None:
        """Undo try_claim for an entry the agent could not take."""
        await self._session.execute(
            update(CallQueueEntry)
            .where(
                CallQueueEntry.id == entry_id,
                CallQueueEntry.assigned_to_agent_id == agent_id,
            )
            .values(assigned_to_agent_id=None, assigned_timestamp=None)
        )

    async def mark_assigned(self, call_id: UUID, agent_id: UUID) -> None:
        await self._session.execute(
            update(CallQueueEntry)
            .where(CallQueueEntry.call_id == call_id)
            .values(assigned_to_agent_id=agent_id, assigned_timestamp=utcnow())
        )

    async def remove(self, call_id: UUID) -> None:
        await self._session.execute(
            delete(CallQueueEntry).where(CallQueueEntry.call_id == call_id)
        )

    async def list_entries(self, include_assigned: bool = True) -> Sequence[CallQueueEntry]:
        stmt = self._ordered()
        if not include_assigned:
            stmt = stmt.where(CallQueueEntry.assigned_to_agent_id.is_(None))
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_unassigned(self) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(CallQueueEntry)
            .where(CallQueueEntry.assigned_to_agent_id.is_(None))
        )
        return int(result.scalar_one())
