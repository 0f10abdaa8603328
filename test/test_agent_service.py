"""Tests for agent registration, presence and call connects."""

from uuid import uuid4

import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import AgentStatus
from dialer.agents.service import AgentService
from dialer.calls.bridge import CallBridge
from dialer.calls.models import CallStatus
from dialer.shared.exceptions import ConflictError, NotFoundError, ServiceUnavailableError
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.mock_adapter import MockTelephonyProvider


@pytest.fixture
def service(
    db_session: AsyncSession, telephony_config: TelephonyConfig, bridge: CallBridge
) -> AgentService:
    return AgentService(db_session, telephony_config, bridge=bridge)


class TestRegister:
    @pytest.mark.asyncio
    async def test_new_agent_starts_offline(self, service: AgentService) -> None:
        agent = await service.register("user-42", "Dana Loan Officer")

        assert agent.user_id == "user-42"
        assert agent.name == "Dana Loan Officer"
        assert agent.status == AgentStatus.OFFLINE
        assert agent.current_call_id is None

    @pytest.mark.asyncio
    async def test_register_is_idempotent_per_user(self, service: AgentService) -> None:
        first = await service.register("user-42", "Dana")
        second = await service.register("user-42", "Dana R.")

        assert second.id == first.id
        assert second.name == "Dana R."
        assert len(await service.list_agents()) == 1


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_unknown_agent(self, service: AgentService) -> None:
        with pytest.raises(NotFoundError):
            await service.update_status(uuid4(), AgentStatus.AVAILABLE)

    @pytest.mark.asyncio
    async def test_available_pulls_queued_call(
        self,
        service: AgentService,
        db_session: AsyncSession,
        factory,
        mock_provider: MockTelephonyProvider,
    ) -> None:
        agent = await factory.agent(status=AgentStatus.OFFLINE)
        waiting = await factory.call()
        await factory.queue_entry(waiting)

        updated, assigned = await service.update_status(agent.id, AgentStatus.AVAILABLE)

        assert assigned is not None
        assert assigned.id == waiting.id
        await db_session.refresh(updated)
        assert updated.status == AgentStatus.BUSY
        assert updated.current_call_id == waiting.id
        assert [sid for sid, _ in mock_provider.redirects] == [waiting.twilio_call_sid]

    @pytest.mark.asyncio
    async def test_available_with_empty_queue(self, service: AgentService, factory) -> None:
        agent = await factory.agent(status=AgentStatus.OFFLINE)

        updated, assigned = await service.update_status(agent.id, AgentStatus.AVAILABLE)

        assert assigned is None
        assert updated.status == AgentStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_offline_clears_current_call(
        self, service: AgentService, db_session: AsyncSession, factory
    ) -> None:
        call = await factory.call()
        agent = await factory.agent(status=AgentStatus.BUSY, current_call_id=call.id)

        updated, assigned = await service.update_status(agent.id, AgentStatus.OFFLINE)

        assert assigned is None
        await db_session.refresh(updated)
        assert updated.status == AgentStatus.OFFLINE
        assert updated.current_call_id is None

    @pytest.mark.asyncio
    async def test_busy_keeps_current_call(
        self, service: AgentService, db_session: AsyncSession, factory
    ) -> None:
        call = await factory.call()
        agent = await factory.agent(status=AgentStatus.BUSY, current_call_id=call.id)

        updated, _ = await service.update_status(agent.id, AgentStatus.BUSY)

        await db_session.refresh(updated)
        assert updated.current_call_id == call.id


class TestConnectCall:
    @pytest.mark.asyncio
    async def test_connect_returns_token(
        self,
        service: AgentService,
        factory,
        telephony_config: TelephonyConfig,
    ) -> None:
        agent = await factory.agent()
        call = await factory.call()

        result = await service.connect_call(agent.id, call.id)

        assert result.agent.id == agent.id
        assert result.call.id == call.id
        claims = jwt.decode(
            result.token,
            telephony_config.twilio_api_secret,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
        assert claims["grants"]["identity"] == f"agent-{agent.id}"

    @pytest.mark.asyncio
    async def test_waiting_call_is_redirected(
        self, service: AgentService, factory, mock_provider: MockTelephonyProvider
    ) -> None:
        agent = await factory.agent()
        call = await factory.call()
        await factory.queue_entry(call)

        await service.connect_call(agent.id, call.id)

        assert [sid for sid, _ in mock_provider.redirects] == [call.twilio_call_sid]

    @pytest.mark.asyncio
    async def test_no_token_without_credentials(
        self, db_session: AsyncSession, factory, bridge: CallBridge
    ) -> None:
        cfg = TelephonyConfig(twilio_api_key="", twilio_api_secret="")
        agent = await factory.agent()
        call = await factory.call()

        result = await AgentService(db_session, cfg, bridge=bridge).connect_call(agent.id, call.id)

        assert result.token is None

    @pytest.mark.asyncio
    async def test_unknown_call(self, service: AgentService, factory) -> None:
        agent = await factory.agent()
        with pytest.raises(NotFoundError):
            await service.connect_call(agent.id, uuid4())

    @pytest.mark.asyncio
    async def test_ended_call(self, service: AgentService, factory) -> None:
        agent = await factory.agent()
        call = await factory.call(status=CallStatus.COMPLETED)
        with pytest.raises(ConflictError):
            await service.connect_call(agent.id, call.id)


class TestIssueToken:
    @pytest.mark.asyncio
    async def test_issue_token(self, service: AgentService, factory) -> None:
        agent = await factory.agent()

        token, identity = await service.issue_token(agent.id)

        assert identity == f"agent-{agent.id}"
        assert jwt.get_unverified_header(token)["cty"] == "twilio-fpa;v=1"

    @pytest.mark.asyncio
    async def test_unconfigured(
        self, db_session: AsyncSession, factory
    ) -> None:
        cfg = TelephonyConfig(twilio_api_key="", twilio_api_secret="", twilio_twiml_app_sid="")
        agent = await factory.agent()

        with pytest.raises(ServiceUnavailableError):
            await AgentService(db_session, cfg).issue_token(agent.id)
