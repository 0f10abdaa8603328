"""
Agent presence service: registration, status changes and call connects.

An agent that becomes available immediately pulls the next queued call.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import Agent, AgentStatus
from dialer.agents.repository import AgentRepository
from dialer.calls.assignment import CallAssigner
from dialer.calls.bridge import CallBridge
from dialer.calls.models import DialerCall
from dialer.calls.repository import CallRepository
from dialer.shared.database import utcnow
from dialer.shared.exceptions import NotFoundError, ServiceUnavailableError
from dialer.shared.logging import get_logger
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.tokens import create_voice_access_token

logger = get_logger(__name__)


@dataclass
class ConnectResult:
    agent: Agent
    call: DialerCall
    token: str | None


class AgentService:
    def __init__(
        self,
        session: AsyncSession,
        telephony_config: TelephonyConfig,
        bridge: CallBridge | None = None,
    ) -> None:
        self._session = session
        self._config = telephony_config
        self._bridge = bridge
        self._agents = AgentRepository(session)
        self._calls = CallRepository(session)
        self._assigner = CallAssigner(session)

    async def _get_agent(self, agent_id: UUID) -> Agent:
        agent = await self._agents.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    async def list_agents(self) -> Sequence[Agent]:
        return await self._agents.list_agents()

    async def register(self, user_id: str, name: str) -> Agent:
        """Create the agent for a user, or refresh the name of an existing one.

        New agents start offline.
        """
        agent = await self._agents.get_by_user_id(user_id)
        if agent is None:
            agent = await self._agents.create(user_id=user_id, name=name)
            logger.info("Agent registered", extra={"agent_id": str(agent.id), "user_id": user_id})
        else:
            agent.name = name
            agent.last_status_change = utcnow()
        await self._session.commit()
        return agent

    async def update_status(
        self,
        agent_id: UUID,
        status: AgentStatus,
    ) -> tuple[Agent, DialerCall | None]:
        """Change presence; returns the queued call assigned when going available."""
        agent = await self._get_agent(agent_id)

        current_call_id = agent.current_call_id if status == AgentStatus.BUSY else None
        await self._agents.set_status(agent.id, status, current_call_id)
        await self._session.commit()
        logger.info(
            "Agent status updated",
            extra={"agent_id": str(agent.id), "status": status.value},
        )

        if status != AgentStatus.AVAILABLE:
            return agent, None

        assigned = await self._assigner.pull_next_for_agent(agent.id)
        await self._session.commit()
        if assigned is not None and self._bridge is not None:
            await self._bridge.connect_waiting_call(assigned)
        return agent, assigned

    async def connect_call(self, agent_id: UUID, call_id: UUID) -> ConnectResult:
        """Connect an agent to a specific call and hand back a client token.

        Raises:
            NotFoundError: unknown agent or call.
            ConflictError: the call ended, or agent or call is taken.
        """
        agent = await self._get_agent(agent_id)
        call = await self._calls.get_by_id(call_id)
        if call is None:
            raise NotFoundError(f"Call {call_id} not found")

        was_waiting = await self._assigner.connect_agent(agent, call)
        await self._session.commit()

        if was_waiting and self._bridge is not None:
            await self._bridge.connect_waiting_call(call)

        token = None
        if self._config.access_tokens_configured:
            token = create_voice_access_token(self._config, agent.client_identity)
        return ConnectResult(agent=agent, call=call, token=token)

    async def issue_token(self, agent_id: UUID) -> tuple[str, str]:
        """Voice access token and identity for the agent's browser client."""
        agent = await self._get_agent(agent_id)
        if not self._config.access_tokens_configured:
            raise ServiceUnavailableError("Twilio access tokens are not configured")
        return create_voice_access_token(self._config, agent.client_identity), agent.client_identity
