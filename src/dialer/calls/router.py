"""
Dialer control API router: start/stop dialing, end calls, read models.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.calls.dispatcher import DialerService
from dialer.calls.models import CallStatus
from dialer.calls.repository import CallQueueRepository, CallRepository
from dialer.calls.schemas import (
    CallResponse,
    DialerStatsResponse,
    EndCallRequest,
    EndCallResponse,
    QueueEntryResponse,
    StartDialerRequest,
    StartDialerResponse,
    StopDialerRequest,
    StopDialerResponse,
)
from dialer.calls.stats import DialerStatsService
from dialer.events.publisher import CallEventPublisher, get_event_publisher
from dialer.shared.database import get_db_session
from dialer.shared.logging import get_logger
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.factory import get_telephony_config, get_telephony_provider
from dialer.telephony.interface import TelephonyProvider

logger = get_logger(__name__)

router = APIRouter(prefix="/api/dialer", tags=["dialer"])


def get_dialer_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
    publisher: Annotated[CallEventPublisher, Depends(get_event_publisher)],
) -> DialerService:
    """Dependency for the dialer service."""
    return DialerService(session, provider, cfg, publisher=publisher)


@router.post(
    "/start",
    response_model=StartDialerResponse,
    responses={
        404: {"description": "Agent not found, or no contacts left to dial"},
        409: {"description": "No available agents"},
    },
)
async def start_dialer(
    body: StartDialerRequest,
    service: Annotated[DialerService, Depends(get_dialer_service)],
) -> StartDialerResponse:
    """Bring the agent online and place calls up to the pacing target."""
    logger.info("Dialer start requested", extra={"agent_id": str(body.agent_id)})
    result = await service.start(body.agent_id, body.max_concurrent_calls)
    return StartDialerResponse.model_validate(result)


@router.post("/stop", response_model=StopDialerResponse)
async def stop_dialer(
    body: StopDialerRequest,
    service: Annotated[DialerService, Depends(get_dialer_service)],
) -> StopDialerResponse:
    logger.info("Dialer stop requested", extra={"agent_id": str(body.agent_id)})
    result = await service.stop(body.agent_id)
    return StopDialerResponse.model_validate(result)


@router.post(
    "/calls/end",
    response_model=EndCallResponse,
    responses={404: {"description": "Call not found"}, 502: {"description": "Provider error"}},
)
async def end_call(
    body: EndCallRequest,
    service: Annotated[DialerService, Depends(get_dialer_service)],
) -> EndCallResponse:
    call = await service.end_call(body.call_sid)
    return EndCallResponse(
        success=True,
        message="Call ended",
        call=CallResponse.model_validate(call),
    )


@router.get("/calls", response_model=list[CallResponse])
async def list_calls(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    call_status: Annotated[CallStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> list[CallResponse]:
    calls = await CallRepository(session).list_recent(limit=limit, status=call_status)
    return [CallResponse.model_validate(c) for c in calls]


@router.get("/queue", response_model=list[QueueEntryResponse])
async def list_queue(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    include_assigned: bool = True,
) -> list[QueueEntryResponse]:
    """Queue entries in assignment order (priority desc, then oldest)."""
    entries = await CallQueueRepository(session).list_entries(include_assigned=include_assigned)
    return [QueueEntryResponse.model_validate(e) for e in entries]


@router.get("/stats", response_model=DialerStatsResponse)
async def get_stats(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> DialerStatsResponse:
    stats = await DialerStatsService(session).get_stats()
    return DialerStatsResponse.model_validate(stats)
