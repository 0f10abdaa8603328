"""
Stale call reaper.

Status callbacks can be lost. Calls active for longer than the configured
window are finalized as failed, contacts left IN_PROGRESS without an active
call are made dialable again, and BUSY agents whose call is over are
released.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.repository import AgentRepository
from dialer.calls.assignment import CallAssigner
from dialer.calls.bridge import CallBridge
from dialer.calls.repository import CallRepository
from dialer.contacts.repository import ContactRepository
from dialer.events.publisher import CallEventPublisher
from dialer.shared.database import DatabaseManager, utcnow
from dialer.shared.logging import get_logger
from dialer.telephony.events import CallStatusEvent, ProviderCallStatus
from dialer.telephony.webhooks.handler import CallStatusHandler

logger = get_logger(__name__)


@dataclass
class ReaperResult:
    calls_failed: int = 0
    contacts_reset: int = 0
    agents_released: int = 0


class StaleCallReaper:
    def __init__(
        self,
        session: AsyncSession,
        stale_after_minutes: int,
        publisher: CallEventPublisher | None = None,
        bridge: CallBridge | None = None,
    ) -> None:
        self._session = session
        self._stale_after = timedelta(minutes=stale_after_minutes)
        self._bridge = bridge
        self._calls = CallRepository(session)
        self._contacts = ContactRepository(session)
        self._agents = AgentRepository(session)
        self._assigner = CallAssigner(session)
        self._status_handler = CallStatusHandler(session, publisher=publisher, bridge=bridge)

    async def run_once(self) -> ReaperResult:
        result = ReaperResult()
        cutoff = utcnow() - self._stale_after

        for call in await self._calls.list_stale(cutoff):
            handled = await self._status_handler.handle_event(
                CallStatusEvent(
                    provider_call_id=call.twilio_call_sid or "",
                    status=ProviderCallStatus.FAILED,
                    call_id=call.id,
                    raw_status="stale",
                    error_code="STALE_CALL",
                    error_message="No terminal status received",
                    synthetic=True,
                )
            )
            if handled.processed:
                result.calls_failed += 1

        for agent in await self._agents.list_orphaned_busy():
            if not await self._agents.release_orphaned(agent.id, agent.current_call_id):
                continue
            result.agents_released += 1
            next_call = await self._assigner.pull_next_for_agent(agent.id)
            await self._session.commit()
            if next_call is not None and self._bridge is not None:
                await self._bridge.connect_waiting_call(next_call)

        result.contacts_reset = await self._contacts.reset_orphaned_in_progress()
        await self._session.commit()

        if result.calls_failed or result.contacts_reset or result.agents_released:
            logger.info(
                "Reaper tick",
                extra={
                    "calls_failed": result.calls_failed,
                    "contacts_reset": result.contacts_reset,
                    "agents_released": result.agents_released,
                },
            )
        return result


async def run_reaper_loop(
    db_manager: DatabaseManager,
    interval_seconds: int,
    stale_after_minutes: int,
    publisher: CallEventPublisher | None = None,
    bridge: CallBridge | None = None,
) -> None:
    """Run reaper ticks until cancelled."""
    logger.info(
        "Reaper loop starting",
        extra={"interval_seconds": interval_seconds, "stale_after_minutes": stale_after_minutes},
    )
    while True:
        try:
            async with db_manager.session() as session:
                reaper = StaleCallReaper(
                    session,
                    stale_after_minutes=stale_after_minutes,
                    publisher=publisher,
                    bridge=bridge,
                )
                await reaper.run_once()
        except asyncio.CancelledError:
            logger.info("Reaper loop cancelled; stopping")
            raise
        except Exception:
            logger.exception("Reaper tick failed")

        await asyncio.sleep(interval_seconds)
