"""Tests for the stale call reaper."""

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import Agent, AgentStatus
from dialer.calls.models import CallStatus
from dialer.calls.reaper import StaleCallReaper
from dialer.contacts.models import ContactStatus
from dialer.shared.database import utcnow


class TestStaleCallReaper:
    @pytest.mark.asyncio
    async def test_stale_calls_are_failed(
        self, db_session: AsyncSession, factory, publisher
    ) -> None:
        contact = await factory.contact(status=ContactStatus.IN_PROGRESS)
        stale = await factory.call(contact=contact, started_at=utcnow() - timedelta(hours=2))
        fresh = await factory.call(started_at=utcnow() - timedelta(minutes=1))

        result = await StaleCallReaper(db_session, stale_after_minutes=30, publisher=publisher).run_once()

        assert result.calls_failed == 1
        await db_session.refresh(stale)
        await db_session.refresh(fresh)
        await db_session.refresh(contact)
        assert stale.status == CallStatus.FAILED
        assert stale.call_metadata["error_code"] == "STALE_CALL"
        assert fresh.status == CallStatus.IN_PROGRESS
        assert contact.status == ContactStatus.NOT_CONTACTED
        assert publisher.statuses() == ["failed"]

    @pytest.mark.asyncio
    async def test_stale_call_releases_agent(self, db_session: AsyncSession, factory) -> None:
        agent = await factory.agent(status=AgentStatus.BUSY)
        stale = await factory.call(agent=agent, started_at=utcnow() - timedelta(hours=1))
        agent.current_call_id = stale.id
        await db_session.commit()

        await StaleCallReaper(db_session, stale_after_minutes=30).run_once()

        await db_session.refresh(agent)
        assert agent.status == AgentStatus.AVAILABLE
        assert agent.current_call_id is None

    @pytest.mark.asyncio
    async def test_orphaned_busy_agents_are_released(
        self, db_session: AsyncSession, factory, bridge, mock_provider
    ) -> None:
        ended = await factory.call(status=CallStatus.COMPLETED)
        stuck = await factory.agent(status=AgentStatus.BUSY, current_call_id=ended.id)
        no_call = await factory.agent(status=AgentStatus.BUSY)
        waiting = await factory.call()
        await factory.queue_entry(waiting)

        result = await StaleCallReaper(db_session, stale_after_minutes=30, bridge=bridge).run_once()

        assert result.agents_released == 2
        await db_session.refresh(stuck)
        await db_session.refresh(no_call)
        statuses = sorted([stuck.status.value, no_call.status.value])
        # One of them picked up the waiting call.
        assert statuses == ["available", "busy"]
        assert [sid for sid, _ in mock_provider.redirects] == [waiting.twilio_call_sid]

    @pytest.mark.asyncio
    async def test_busy_agent_on_live_call_is_untouched(
        self, db_session: AsyncSession, factory
    ) -> None:
        live = await factory.call()
        agent = await factory.agent(status=AgentStatus.BUSY, current_call_id=live.id)

        result = await StaleCallReaper(db_session, stale_after_minutes=30).run_once()

        assert result.agents_released == 0
        await db_session.refresh(agent)
        assert agent.status == AgentStatus.BUSY

    @pytest.mark.asyncio
    async def test_orphaned_contacts_are_reset(self, db_session: AsyncSession, factory) -> None:
        orphan = await factory.contact(status=ContactStatus.IN_PROGRESS)
        dialing = await factory.contact(status=ContactStatus.IN_PROGRESS)
        await factory.call(contact=dialing)

        result = await StaleCallReaper(db_session, stale_after_minutes=30).run_once()

        assert result.contacts_reset == 1
        await db_session.refresh(orphan)
        await db_session.refresh(dialing)
        assert orphan.status == ContactStatus.NOT_CONTACTED
        assert dialing.status == ContactStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_idle_tick_is_a_no_op(self, db_session: AsyncSession) -> None:
        result = await StaleCallReaper(db_session, stale_after_minutes=30).run_once()

        assert (result.calls_failed, result.contacts_reset, result.agents_released) == (0, 0, 0)

    @pytest.mark.asyncio
    async def test_agent_that_took_a_new_call_is_not_released(
        self, db_session: AsyncSession, factory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        ended = await factory.call(status=CallStatus.COMPLETED)
        agent = await factory.agent(status=AgentStatus.BUSY, current_call_id=ended.id)
        live = await factory.call()
        reaper = StaleCallReaper(db_session, stale_after_minutes=30)
        agents = reaper._agents
        release_orphaned = agents.release_orphaned

        async def claimed_in_between(agent_id, stale_call_id):
            # The agent picks up a new call after the orphan scan.
            await db_session.execute(
                update(Agent.__table__)
                .where(Agent.__table__.c.id == agent_id)
                .values(current_call_id=live.id)
            )
            return await release_orphaned(agent_id, stale_call_id)

        monkeypatch.setattr(agents, "release_orphaned", claimed_in_between)

        result = await reaper.run_once()

        assert result.agents_released == 0
        await db_session.refresh(agent)
        assert agent.status == AgentStatus.BUSY
        assert agent.current_call_id == live.id
