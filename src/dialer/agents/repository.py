"""
Repository for agent presence.

Claims use conditional UPDATEs so concurrent assigners never hand one agent
two calls.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import Agent, AgentStatus
from dialer.calls.models import TERMINAL_CALL_STATUSES, DialerCall
from dialer.shared.database import utcnow

# Bounded retries when a candidate agent is taken between SELECT and UPDATE.
MAX_CLAIM_ATTEMPTS = 5


class AgentRepository:
    """Repository for agent database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, agent_id: UUID) -> Agent | None:
        return await self._session.get(Agent, agent_id)

    async def get_by_user_id(self, user_id: str) -> Agent | None:
        result = await self._session.execute(select(Agent).where(Agent.user_id == user_id))
        return result.scalar_one_or_none()

    async def list_agents(self) -> Sequence[Agent]:
        result = await self._session.execute(select(Agent).order_by(Agent.name, Agent.id))
        return result.scalars().all()

    async def create(self, user_id: str, name: str) -> Agent:
        now = utcnow()
        agent = Agent(
            user_id=user_id,
            name=name,
            status=AgentStatus.OFFLINE,
            last_status_change=now,
        )
        self._session.add(agent)
        await self._session.flush()
        return agent

    async def count_available(self) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(Agent).where(Agent.status == AgentStatus.AVAILABLE)
        )
        return int(result.scalar_one())

    async def count_online(self) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(Agent)
            .where(Agent.status.in_((AgentStatus.AVAILABLE, AgentStatus.BUSY)))
        )
        return int(result.scalar_one())

    async def set_status(
        self,
        agent_id: UUID,
        status: AgentStatus,
        current_call_id: UUID | None = None,
    ) -> None:
        now = utcnow()
        await self._session.execute(
            update(Agent)
            .where(Agent.id == agent_id)
            .values(
                status=status,
                current_call_id=current_call_id,
                last_status_change=now,
                updated_at=now,
            )
        )

    async def try_claim(self, agent_id: UUID, call_id: UUID) -> bool:
        """Move one AVAILABLE agent to BUSY on the given call."""
        now = utcnow()
        stmt = (
            update(Agent)
            .where(Agent.id == agent_id, Agent.status == AgentStatus.AVAILABLE)
            .values(
                status=AgentStatus.BUSY,
                current_call_id=call_id,
                last_status_change=now,
                updated_at=now,
            )
            .returning(Agent.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def claim_longest_idle(self, call_id: UUID) -> Agent | None:
        """Claim the available agent idle the longest for the given call."""
        for _ in range(MAX_CLAIM_ATTEMPTS):
            result = await self._session.execute(
                select(Agent)
                .where(Agent.status == AgentStatus.AVAILABLE)
                .order_by(Agent.last_status_change, Agent.id)
                .limit(1)
            )
            candidate = result.scalar_one_or_none()
            if candidate is None:
                return None
            if await self.try_claim(candidate.id, call_id):
                return candidate
        return None

    async def release(self, agent_id: UUID, call_id: UUID) -> bool:
        """Make the agent AVAILABLE again if it is still on the given call."""
        now = utcnow()
        stmt = (
            update(Agent)
            .where(Agent.id == agent_id, Agent.current_call_id == call_id)
            .values(
                status=AgentStatus.AVAILABLE,
                current_call_id=None,
                last_status_change=now,
                updated_at=now,
            )
            .returning(Agent.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def release_orphaned(self, agent_id: UUID, stale_call_id: UUID | None) -> bool:
        """Free a BUSY agent only if it is still on the call found to be over."""
        now = utcnow()
        on_stale_call = (
            Agent.current_call_id.is_(None)
            if stale_call_id is None
            else Agent.current_call_id == stale_call_id
        )
        stmt = (
            update(Agent)
            .where(Agent.id == agent_id, Agent.status == AgentStatus.BUSY, on_stale_call)
            .values(
                status=AgentStatus.AVAILABLE,
                current_call_id=None,
                last_status_change=now,
                updated_at=now,
            )
            .returning(Agent.id)
        )
        result = await self._session.execute(stmt)
        return result.first() is not None

    async def list_orphaned_busy(self) -> Sequence[Agent]:
        """BUSY agents with no call, or whose call has already ended."""
        result = await self._session.execute(
            select(Agent)
            .outerjoin(DialerCall, DialerCall.id == Agent.current_call_id)
            .where(
                Agent.status == AgentStatus.BUSY,
                or_(
                    Agent.current_call_id.is_(None),
                    DialerCall.id.is_(None),
                    DialerCall.status.in_(TERMINAL_CALL_STATUSES),
                ),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()
