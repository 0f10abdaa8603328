"""
Call-to-agent assignment.

Policy: hand an answered call to the available agent idle the longest,
otherwise queue it; an agent that becomes available pulls the queued call
with the highest priority, oldest first.

Every hand-off is a pair of conditional UPDATEs (agent AVAILABLE -> BUSY,
queue entry unassigned -> assigned). When the second claim loses a race the
first one is rolled back by releasing the agent again.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import Agent, AgentStatus
from dialer.agents.repository import AgentRepository
from dialer.calls.models import CallQueueEntry, DialerCall
from dialer.calls.repository import CallQueueRepository, CallRepository
from dialer.shared.database import as_utc, utcnow
from dialer.shared.exceptions import ConflictError
from dialer.shared.logging import get_logger

logger = get_logger(__name__)

MAX_PULL_ATTEMPTS = 5


def _record_queue_wait(call: DialerCall, entry: CallQueueEntry) -> None:
    metadata = dict(call.call_metadata or {})
    waited = (utcnow() - as_utc(entry.created_timestamp)).total_seconds()
    metadata["queue_wait_seconds"] = round(max(waited, 0.0), 3)
    call.call_metadata = metadata


class CallAssigner:
    """Assigns answered calls to agents."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._agents = AgentRepository(session)
        self._calls = CallRepository(session)
        self._queue = CallQueueRepository(session)

    async def _try_link_call(self, call_id: UUID, agent_id: UUID) -> bool:
        """Set the call's agent unless another agent already has it."""
        stmt = (
            update(DialerCall)
            .where(
                DialerCall.id == call_id,
                (DialerCall.agent_id.is_(None)) | (DialerCall.agent_id == agent_id),
            )
            .values(agent_id=agent_id, updated_at=utcnow())
            .returning(DialerCall.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def assign_available_agent(self, call: DialerCall) -> Agent | None:
        """Claim the longest-idle available agent for an answered call."""
        agent = await self._agents.claim_longest_idle(call.id)
        if agent is None:
            logger.info("No available agent for call", extra={"call_id": str(call.id)})
            return None

        if not await self._try_link_call(call.id, agent.id):
            await self._agents.release(agent.id, call.id)
            logger.warning(
                "Call was assigned concurrently; agent released",
                extra={"call_id": str(call.id), "agent_id": str(agent.id)},
            )
            return None

        await self._queue.mark_assigned(call.id, agent.id)
        await self._session.flush()

        logger.info(
            "Agent assigned to call",
            extra={"call_id": str(call.id), "agent_id": str(agent.id)},
        )
        return agent

    async def pull_next_for_agent(self, agent_id: UUID) -> DialerCall | None:
        """Give the next queued call to an agent that is AVAILABLE.

        Returns None when the queue is empty or the agent is no longer available.
        """
        skipped: list[UUID] = []
        for _ in range(MAX_PULL_ATTEMPTS):
            entry = await self._queue.next_unassigned(skip=skipped)
            if entry is None:
                return None

            call = await self._calls.get_by_id(entry.call_id)
            if call is None or call.is_terminal:
                # Leftover entry for a call that already ended
                await self._queue.remove(entry.call_id)
                continue

            if not await self._agents.try_claim(agent_id, call.id):
                logger.info(
                    "Agent no longer available; queue pull skipped",
                    extra={"agent_id": str(agent_id)},
                )
                return None

            entry_claimed = await self._queue.try_claim(entry.id, agent_id)
            if not entry_claimed or not await self._try_link_call(call.id, agent_id):
                await self._agents.release(agent_id, call.id)
                if entry_claimed:
                    await self._queue.unclaim(entry.id, agent_id)
                skipped.append(entry.id)
                continue

            _record_queue_wait(call, entry)
            await self._session.flush()

            logger.info(
                "Queued call assigned to agent",
                extra={
                    "call_id": str(call.id),
                    "agent_id": str(agent_id),
                    "priority": entry.priority,
                },
            )
            return call
        return None

    async def connect_agent(self, agent: Agent, call: DialerCall) -> bool:
        """Operator-driven connect of a specific agent to a specific call.

        Returns True when the call was waiting in the queue.

        Raises:
            ConflictError: call already ended, or either side is taken.
        """
        if call.is_terminal:
            raise ConflictError(f"Call {call.id} has already ended")
        if agent.status == AgentStatus.OFFLINE:
            raise ConflictError(f"Agent {agent.id} is offline")

        if agent.current_call_id != call.id:
            if not await self._agents.try_claim(agent.id, call.id):
                raise ConflictError(f"Agent {agent.id} is already on another call")
            if not await self._try_link_call(call.id, agent.id):
                await self._agents.release(agent.id, call.id)
                raise ConflictError(f"Call {call.id} is already assigned to another agent")

        entry = await self._queue.get_by_call_id(call.id)
        if entry is not None:
            if entry.assigned_to_agent_id is None:
                _record_queue_wait(call, entry)
            await self._queue.mark_assigned(call.id, agent.id)
        await self._session.flush()

        logger.info(
            "Agent connected to call",
            extra={"call_id": str(call.id), "agent_id": str(agent.id)},
        )
        return entry is not None
