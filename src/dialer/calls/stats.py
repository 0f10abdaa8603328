"""
Dialer dashboard counters.
"""

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.repository import AgentRepository
from dialer.calls.models import (
    ACTIVE_CALL_STATUSES,
    CallStatus,
    DialerCall,
    MachineDetectionResult,
)
from dialer.calls.repository import CallQueueRepository


@dataclass
class DialerStats:
    total_calls: int
    active_calls: int
    calls_in_queue: int
    available_agents: int
    completed_calls: int
    human_answers: int
    machine_answers: int
    average_wait_time: float


class DialerStatsService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _count(self, *criteria) -> int:
        stmt = select(func.count()).select_from(DialerCall)
        if criteria:
            stmt = stmt.where(*criteria)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def _average_wait_seconds(self) -> float:
        """Mean time answered calls spent in the queue before an agent took them."""
        result = await self._session.execute(
            select(DialerCall.call_metadata).where(DialerCall.agent_id.is_not(None))
        )
        waits = [
            float(md["queue_wait_seconds"])
            for md in result.scalars().all()
            if md and md.get("queue_wait_seconds") is not None
        ]
        if not waits:
            return 0.0
        return round(sum(waits) / len(waits), 3)

    async def get_stats(self) -> DialerStats:
        return DialerStats(
            total_calls=await self._count(),
            active_calls=await self._count(DialerCall.status.in_(ACTIVE_CALL_STATUSES)),
            calls_in_queue=await CallQueueRepository(self._session).count_unassigned(),
            available_agents=await AgentRepository(self._session).count_available(),
            completed_calls=await self._count(DialerCall.status == CallStatus.COMPLETED),
            human_answers=await self._count(
                DialerCall.machine_detection_result == MachineDetectionResult.HUMAN
            ),
            machine_answers=await self._count(
                DialerCall.machine_detection_result == MachineDetectionResult.MACHINE
            ),
            average_wait_time=await self._average_wait_seconds(),
        )
