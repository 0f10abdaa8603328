"""
Call dispatcher: start and stop the dialer, end calls on request.

Pacing keeps ``available agents * calls per agent`` calls in flight. Each
contact is claimed with a conditional UPDATE and the call row is committed
before the provider is contacted, so a crash between the two leaves a
QUEUED row the reaper can clean up rather than an untracked live call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import AgentStatus
from dialer.agents.repository import AgentRepository
from dialer.calls.assignment import CallAssigner
from dialer.calls.bridge import CallBridge
from dialer.calls.models import DialerCall
from dialer.calls.repository import CallRepository
from dialer.config import Settings, get_settings
from dialer.contacts.models import Contact
from dialer.contacts.repository import ContactRepository
from dialer.events.publisher import CallEventPublisher
from dialer.shared.database import utcnow
from dialer.shared.exceptions import ConflictError, NotFoundError, ServiceUnavailableError
from dialer.shared.logging import get_logger
from dialer.telephony.config import (
    MACHINE_DETECTION_PATH,
    STATUS_CALLBACK_PATH,
    ProviderType,
    TelephonyConfig,
)
from dialer.telephony.events import CallStatusEvent, ProviderCallStatus
from dialer.telephony.interface import (
    CallInitiationRequest,
    TelephonyProvider,
    TelephonyProviderError,
)
from dialer.telephony.webhooks.handler import CallStatusHandler

logger = get_logger(__name__)


@dataclass
class PlacedCall:
    call_id: UUID
    contact_id: UUID
    contact_name: str
    phone_number: str
    call_sid: str


@dataclass
class FailedCall:
    contact_id: UUID
    phone_number: str
    error_code: str | None
    message: str


@dataclass
class DispatchResult:
    success: bool
    message: str
    active_calls_count: int
    target_calls: int
    calls_placed: list[PlacedCall] = field(default_factory=list)
    failures: list[FailedCall] = field(default_factory=list)
    assigned_call: DialerCall | None = None


@dataclass
class StopResult:
    success: bool
    message: str
    hung_up_calls: int
    reset_contacts: int


class DialerService:
    """Places outbound calls for available agents."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        telephony_config: TelephonyConfig,
        settings: Settings | None = None,
        publisher: CallEventPublisher | None = None,
    ) -> None:
        self._session = session
        self._provider = provider
        self._config = telephony_config
        self._settings = settings or get_settings()
        self._bridge = CallBridge(provider, telephony_config)
        self._agents = AgentRepository(session)
        self._calls = CallRepository(session)
        self._contacts = ContactRepository(session)
        self._assigner = CallAssigner(session)
        self._status_handler = CallStatusHandler(session, publisher=publisher, bridge=self._bridge)

    async def start(
        self,
        agent_id: UUID,
        max_concurrent_calls: int | None = None,
    ) -> DispatchResult:
        """Bring the agent online and top up calls in flight.

        Raises:
            NotFoundError: unknown agent, or no contact left to dial.
            ConflictError: no agent is available to take calls.
            ServiceUnavailableError: no outbound caller number configured.
        """
        agent = await self._agents.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")

        if self._config.provider_type == ProviderType.TWILIO and not self._config.twilio_from_number:
            raise ServiceUnavailableError("Outbound caller number is not configured")

        assigned_call = None
        if agent.status == AgentStatus.OFFLINE:
            await self._agents.set_status(agent.id, AgentStatus.AVAILABLE)
            await self._session.commit()
            logger.info("Agent went available", extra={"agent_id": str(agent.id)})

            assigned_call = await self._assigner.pull_next_for_agent(agent.id)
            await self._session.commit()
            if assigned_call is not None:
                await self._bridge.connect_waiting_call(assigned_call)

        available_agents = await self._agents.count_available()
        if available_agents == 0:
            if assigned_call is not None:
                return DispatchResult(
                    success=True,
                    message="Agent connected to a waiting call",
                    active_calls_count=await self._calls.count_active(),
                    target_calls=0,
                    assigned_call=assigned_call,
                )
            raise ConflictError("No available agents to handle calls")

        per_agent = max_concurrent_calls or self._settings.dialer_max_concurrent_calls_per_agent
        target_calls = available_agents * per_agent
        active_calls = await self._calls.count_active()
        calls_to_make = max(0, target_calls - active_calls)

        logger.info(
            "Dialer pacing",
            extra={
                "agent_id": str(agent.id),
                "available_agents": available_agents,
                "target_calls": target_calls,
                "active_calls": active_calls,
                "calls_to_make": calls_to_make,
            },
        )

        if calls_to_make == 0:
            return DispatchResult(
                success=True,
                message="Dialer is already at capacity",
                active_calls_count=active_calls,
                target_calls=target_calls,
                assigned_call=assigned_call,
            )

        contacts = await self._contacts.select_dialable(calls_to_make)
        if not contacts:
            raise NotFoundError("No contacts available to call")

        result = DispatchResult(
            success=True,
            message="",
            active_calls_count=active_calls,
            target_calls=target_calls,
            assigned_call=assigned_call,
        )
        for contact in contacts:
            await self._dial_contact(contact, result)

        result.active_calls_count = await self._calls.count_active()
        result.message = f"Started {len(result.calls_placed)} calls"
        if result.failures:
            result.message += f", {len(result.failures)} failed"
        return result

    async def _dial_contact(self, contact: Contact, result: DispatchResult) -> None:
        if not await self._contacts.claim_for_dialing(contact.id, utcnow()):
            # Claimed by a concurrent dispatcher
            return

        call = await self._calls.create(contact.id)
        await self._session.commit()

        request = CallInitiationRequest(
            to=contact.phone_number,
            from_number=self._config.twilio_from_number,
            call_id=str(call.id),
            answer_url=self._config.get_webhook_url(MACHINE_DETECTION_PATH, call.id),
            status_callback_url=self._config.get_webhook_url(STATUS_CALLBACK_PATH, call.id),
            timeout_seconds=self._config.call_timeout_seconds,
            machine_detection=self._config.machine_detection,
            machine_detection_timeout_seconds=self._config.machine_detection_timeout_seconds,
        )

        try:
            response = await self._provider.initiate_call(request)
        except TelephonyProviderError as e:
            logger.warning(
                "Call initiation failed",
                extra={"call_id": str(call.id), "contact_id": str(contact.id), "error_code": e.error_code},
            )
            await self._fail_call(call, contact, e.error_code, str(e), result)
            return
        except Exception as e:
            logger.exception(
                "Unexpected error initiating call",
                extra={"call_id": str(call.id), "contact_id": str(contact.id)},
            )
            await self._fail_call(call, contact, type(e).__name__, str(e), result)
            return

        await self._calls.mark_dialing(call.id, response.provider_call_id)
        await self._session.commit()

        logger.info(
            "Call placed",
            extra={
                "call_id": str(call.id),
                "contact_id": str(contact.id),
                "provider_call_id": response.provider_call_id,
            },
        )
        result.calls_placed.append(
            PlacedCall(
                call_id=call.id,
                contact_id=contact.id,
                contact_name=contact.name,
                phone_number=contact.phone_number,
                call_sid=response.provider_call_id,
            )
        )

    async def _fail_call(
        self,
        call: DialerCall,
        contact: Contact,
        error_code: str | None,
        message: str,
        result: DispatchResult,
    ) -> None:
        # Same path as a provider "failed" callback: call FAILED, contact back to NOT_CONTACTED.
        await self._status_handler.handle_event(
            CallStatusEvent(
                provider_call_id="",
                status=ProviderCallStatus.FAILED,
                call_id=call.id,
                raw_status="failed",
                error_code=error_code,
                error_message=message,
                synthetic=True,
            )
        )
        result.failures.append(
            FailedCall(
                contact_id=contact.id,
                phone_number=contact.phone_number,
                error_code=error_code,
                message=message,
            )
        )

    async def stop(self, agent_id: UUID) -> StopResult:
        """Take the agent offline; with nobody left online, cancel unassigned calls."""
        agent = await self._agents.get_by_id(agent_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")

        await self._agents.set_status(agent.id, AgentStatus.OFFLINE)
        await self._session.commit()
        logger.info("Agent went offline", extra={"agent_id": str(agent.id)})

        hung_up = 0
        if await self._agents.count_online() == 0:
            for call in await self._calls.list_active_unassigned():
                if call.twilio_call_sid:
                    try:
                        await self._provider.hangup_call(call.twilio_call_sid)
                    except TelephonyProviderError as e:
                        logger.warning(
                            "Hangup failed while stopping dialer",
                            extra={"call_id": str(call.id), "error_code": e.error_code},
                        )
                await self._status_handler.handle_event(
                    CallStatusEvent(
                        provider_call_id=call.twilio_call_sid or "",
                        status=ProviderCallStatus.CANCELED,
                        call_id=call.id,
                        raw_status="canceled",
                        error_message="Dialer stopped",
                        synthetic=True,
                    )
                )
                hung_up += 1

        reset = await self._contacts.reset_orphaned_in_progress()
        await self._session.commit()

        return StopResult(
            success=True,
            message="Dialer stopped",
            hung_up_calls=hung_up,
            reset_contacts=reset,
        )

    async def end_call(self, call_sid: str) -> DialerCall:
        """Hang up a live call and finalize it like a completed status callback.

        Raises:
            NotFoundError: unknown call SID.
            TelephonyProviderError: the provider refused the hangup.
        """
        call = await self._calls.get_by_sid(call_sid)
        if call is None:
            raise NotFoundError(f"Call {call_sid} not found")
        if call.is_terminal:
            return call

        await self._provider.hangup_call(call_sid)
        await self._status_handler.handle_event(
            CallStatusEvent(
                provider_call_id=call_sid,
                status=ProviderCallStatus.COMPLETED,
                call_id=call.id,
                raw_status="completed",
                synthetic=True,
            )
        )
        return call
