"""
Agent presence API router.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.schemas import (
    AccessTokenResponse,
    AgentRegisterRequest,
    AgentRegisterResponse,
    AgentResponse,
    AgentStatusResponse,
    AgentStatusUpdateRequest,
    ConnectCallRequest,
    ConnectCallResponse,
)
from dialer.agents.service import AgentService
from dialer.calls.bridge import CallBridge
from dialer.calls.schemas import CallResponse
from dialer.shared.database import get_db_session
from dialer.shared.logging import get_logger
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.factory import get_telephony_config, get_telephony_provider
from dialer.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/dialer/agents", tags=["agents"])


def get_agent_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> AgentService:
    """Dependency for agent service."""
    return AgentService(session, cfg, bridge=CallBridge(provider, cfg))


@router.get("", response_model=list[AgentResponse])
async def list_agents(
    service: Annotated[AgentService, Depends(get_agent_service)],
) -> list[AgentResponse]:
    agents = await service.list_agents()
    return [AgentResponse.model_validate(agent) for agent in agents]


@router.post("/register", response_model=AgentRegisterResponse)
async def register_agent(
    body: AgentRegisterRequest,
    service: Annotated[AgentService, Depends(get_agent_service)],
) -> AgentRegisterResponse:
    """Register the agent for a user (idempotent per user_id)."""
    agent = await service.register(body.user_id, body.name)
    return AgentRegisterResponse(agent=AgentResponse.model_validate(agent))


@router.post("/{agent_id}/status", response_model=AgentStatusResponse)
async def update_agent_status(
    agent_id: UUID,
    body: AgentStatusUpdateRequest,
    service: Annotated[AgentService, Depends(get_agent_service)],
) -> AgentStatusResponse:
    """Change presence. Going available pulls the next queued call, if any."""
    agent, assigned = await service.update_status(agent_id, body.status)
    return AgentStatusResponse(
        agent=AgentResponse.model_validate(agent),
        assigned_call=CallResponse.model_validate(assigned) if assigned else None,
    )


@router.post(
    "/{agent_id}/connect-call",
    response_model=ConnectCallResponse,
    responses={
        404: {"description": "Agent or call not found"},
        409: {"description": "Call ended, or agent or call already taken"},
    },
)
async def connect_call(
    agent_id: UUID,
    body: ConnectCallRequest,
    service: Annotated[AgentService, Depends(get_agent_service)],
) -> ConnectCallResponse:
    result = await service.connect_call(agent_id, body.call_id)
    return ConnectCallResponse(
        agent=AgentResponse.model_validate(result.agent),
        call=CallResponse.model_validate(result.call),
        identity=result.agent.client_identity,
        token=result.token,
    )


@router.get(
    "/{agent_id}/token",
    response_model=AccessTokenResponse,
    responses={503: {"description": "Access tokens not configured"}},
)
async def get_access_token(
    agent_id: UUID,
    service: Annotated[AgentService, Depends(get_agent_service)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> AccessTokenResponse:
    token, identity = await service.issue_token(agent_id)
    return AccessTokenResponse(
        token=token,
        identity=identity,
        expires_in=cfg.access_token_ttl_seconds,
    )
