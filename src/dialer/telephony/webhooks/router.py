"""
FastAPI router for Twilio voice webhooks.

Key constraints:
- Twilio always gets HTTP 200 with a TwiML body; processing errors are
  logged, never surfaced (a 5xx makes Twilio retry or play its own error).
- The only non-200 answer is 403 for a bad X-Twilio-Signature when
  signature validation is enabled.
- Callbacks for the same call are serialized within this process.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.repository import AgentRepository
from dialer.calls.bridge import CallBridge
from dialer.calls.repository import CallRepository
from dialer.config import get_settings
from dialer.events.publisher import CallEventPublisher, get_event_publisher
from dialer.shared.database import get_db_session
from dialer.shared.logging import get_logger
from dialer.telephony import twiml
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.factory import get_telephony_config, get_telephony_provider
from dialer.telephony.interface import TelephonyProvider, WebhookParseError
from dialer.telephony.twilio_adapter import parse_call_id
from dialer.telephony.webhooks.handler import CallStatusHandler
from dialer.telephony.webhooks.machine_detection import MachineDetectionHandler

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/telephony", tags=["webhooks"])


class CallLocks:
    """Per-call locks serializing callbacks for the same call SID.

    An entry lives only while some request holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, call_sid: str) -> AsyncIterator[None]:
        if not call_sid:
            yield
            return

        lock, waiters = self._locks.get(call_sid, (asyncio.Lock(), 0))
        self._locks[call_sid] = (lock, waiters + 1)
        try:
            async with lock:
                yield
        finally:
            lock, waiters = self._locks[call_sid]
            if waiters == 1:
                del self._locks[call_sid]
            else:
                self._locks[call_sid] = (lock, waiters - 1)


_call_locks = CallLocks()


def _twiml_response(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


async def _read_form(request: Request) -> dict[str, str]:
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


def _signature_ok(
    request: Request,
    params: dict[str, str],
    provider: TelephonyProvider,
    cfg: TelephonyConfig,
) -> bool:
    if not cfg.validate_signatures:
        return True
    # Twilio signs the public URL it called, query string included.
    url = cfg.get_webhook_url(request.url.path)
    if request.url.query:
        url = f"{url}?{request.url.query}"
    signature = request.headers.get("X-Twilio-Signature", "")
    if provider.validate_webhook_signature(url, params, signature):
        return True
    logger.warning(
        "Rejected webhook with invalid signature",
        extra={"path": request.url.path, "call_sid": params.get("CallSid")},
    )
    return False


@router.post("/status")
async def call_status_callback(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
    publisher: Annotated[CallEventPublisher, Depends(get_event_publisher)],
) -> Response:
    """Call lifecycle callback (initiated, ringing, answered, completed...)."""
    params = await _read_form(request)
    if not _signature_ok(request, params, provider, cfg):
        return Response(status_code=status.HTTP_403_FORBIDDEN)

    payload = {**params, **dict(request.query_params)}
    call_sid = payload.get("CallSid", "")

    try:
        event = provider.parse_status_event(payload)
        handler = CallStatusHandler(session, publisher=publisher, bridge=CallBridge(provider, cfg))
        async with _call_locks.hold(call_sid):
            await handler.handle_event(event)
    except WebhookParseError as e:
        logger.warning(
            "Unparseable status callback",
            extra={"error_code": e.error_code, "call_sid": call_sid},
        )
    except Exception:
        logger.exception("Status callback processing failed", extra={"call_sid": call_sid})
        await session.rollback()

    return _twiml_response(twiml.empty_response())


@router.post("/amd")
async def machine_detection_callback(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> Response:
    """Answer URL requested once machine detection has classified the call."""
    params = await _read_form(request)
    if not _signature_ok(request, params, provider, cfg):
        return Response(status_code=status.HTTP_403_FORBIDDEN)

    payload = {**params, **dict(request.query_params)}
    call_sid = payload.get("CallSid", "")

    try:
        event = provider.parse_machine_detection(payload)
        handler = MachineDetectionHandler(
            session,
            cfg,
            queue_priority=get_settings().queue_default_priority,
        )
        async with _call_locks.hold(call_sid):
            outcome = await handler.handle_event(event)
        logger.info(
            "Machine detection answered",
            extra={"call_sid": call_sid, "action": outcome.action},
        )
        return _twiml_response(outcome.twiml)
    except WebhookParseError as e:
        logger.warning(
            "Unparseable machine detection callback",
            extra={"error_code": e.error_code, "call_sid": call_sid},
        )
    except Exception:
        logger.exception("Machine detection processing failed", extra={"call_sid": call_sid})
        await session.rollback()

    return _twiml_response(twiml.error_response(cfg))


@router.post("/connect")
async def connect_waiting_call(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    provider: Annotated[TelephonyProvider, Depends(get_telephony_provider)],
    cfg: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> Response:
    """Redirect target that bridges a caller on hold to the assigned agent."""
    params = await _read_form(request)
    if not _signature_ok(request, params, provider, cfg):
        return Response(status_code=status.HTTP_403_FORBIDDEN)

    call_sid = params.get("CallSid", "")
    call_id = parse_call_id(request.query_params.get("call_id"), call_sid)

    try:
        call = await CallRepository(session).resolve(call_id, call_sid)
        if call is None:
            logger.warning(
                "Call not found for connect",
                extra={"call_id": str(call_id) if call_id else None, "call_sid": call_sid},
            )
            return _twiml_response(twiml.error_response(cfg))
        if call.is_terminal:
            return _twiml_response(twiml.hangup_response())
        if call.agent_id is not None:
            agent = await AgentRepository(session).get_by_id(call.agent_id)
            if agent is not None:
                return _twiml_response(twiml.connect_to_agent(cfg, agent.client_identity))
        return _twiml_response(twiml.hold_for_agent(cfg))
    except Exception:
        logger.exception("Connect processing failed", extra={"call_sid": call_sid})
        await session.rollback()

    return _twiml_response(twiml.error_response(cfg))
