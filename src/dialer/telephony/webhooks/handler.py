"""
Call status event handler.

Applies provider lifecycle events to call, contact, agent and queue rows.

- Each raw provider status is processed once per call; the processed set is
  kept in the call's metadata so retries from the provider are no-ops.
- Call status only moves forward. COMPLETED and FAILED are absorbing: late
  events for an ended call are ignored, except that a provider CallDuration
  replaces a duration estimated when the call was ended locally.
- On a terminal event the queue entry is removed and the agent on the call
  is released; the released agent immediately pulls the next queued call.
- After commit a CallStatusUpdate is published (best effort).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.repository import AgentRepository
from dialer.calls.assignment import CallAssigner
from dialer.calls.bridge import CallBridge
from dialer.calls.models import CallStatus, DialerCall, MachineDetectionResult
from dialer.calls.repository import CallQueueRepository, CallRepository
from dialer.contacts.models import Contact, ContactStatus
from dialer.contacts.repository import ContactRepository
from dialer.events.publisher import CallEventPublisher, CallStatusUpdate
from dialer.shared.database import as_utc, utcnow
from dialer.shared.logging import get_logger
from dialer.telephony.events import CallStatusEvent, ProviderCallStatus

logger = get_logger(__name__)


def contact_status_for(
    status: ProviderCallStatus,
    machine_detection_result: MachineDetectionResult | None,
) -> ContactStatus:
    """Contact outcome for a terminal provider status."""
    match status:
        case ProviderCallStatus.COMPLETED:
            if machine_detection_result == MachineDetectionResult.MACHINE:
                return ContactStatus.VOICEMAIL
            return ContactStatus.CONTACTED
        case ProviderCallStatus.NO_ANSWER:
            return ContactStatus.NO_ANSWER
        case _:
            # busy / failed / canceled: eligible for another attempt
            return ContactStatus.NOT_CONTACTED


@dataclass
class StatusHandlingResult:
    processed: bool
    call: DialerCall | None = None
    released_agent_id: UUID | None = None
    next_call: DialerCall | None = None


class CallStatusHandler:
    """Handler for call status events."""

    def __init__(
        self,
        session: AsyncSession,
        publisher: CallEventPublisher | None = None,
        bridge: CallBridge | None = None,
    ) -> None:
        """Initialize status handler.

        Args:
            session: Async database session.
            publisher: Optional live update publisher.
            bridge: Optional bridge used to connect a queued caller to the
                agent released by this event.
        """
        self._session = session
        self._publisher = publisher
        self._bridge = bridge
        self._calls = CallRepository(session)
        self._queue = CallQueueRepository(session)
        self._contacts = ContactRepository(session)
        self._agents = AgentRepository(session)
        self._assigner = CallAssigner(session)

    async def handle_event(self, event: CallStatusEvent) -> StatusHandlingResult:
        """Handle a call status event.

        Returns:
            Result with processed=False when the event was unknown, a
            duplicate, or arrived after the call ended.
        """
        call = await self._calls.resolve(event.call_id, event.provider_call_id)
        if call is None:
            logger.warning(
                "Call not found for status event",
                extra={
                    "call_id": str(event.call_id) if event.call_id else None,
                    "provider_call_id": event.provider_call_id,
                    "status": event.status.value,
                },
            )
            return StatusHandlingResult(processed=False)

        key = event.raw_status or event.status.value
        metadata = dict(call.call_metadata or {})
        processed_events = list(metadata.get("processed_events", []))

        if call.is_terminal:
            if self._apply_provider_duration(call, event):
                await self._session.commit()
            logger.info(
                "Status event for ended call ignored",
                extra={"call_id": str(call.id), "status": key, "call_status": call.status.value},
            )
            return StatusHandlingResult(processed=False, call=call)

        if key in processed_events:
            logger.info(
                "Duplicate status event skipped",
                extra={"call_id": str(call.id), "status": key},
            )
            return StatusHandlingResult(processed=False, call=call)

        logger.info(
            "Processing call status event",
            extra={
                "call_id": str(call.id),
                "provider_call_id": event.provider_call_id,
                "status": key,
                "synthetic": event.synthetic,
            },
        )

        if not call.twilio_call_sid and event.provider_call_id and not event.synthetic:
            call.twilio_call_sid = event.provider_call_id

        processed_events.append(key)
        metadata["processed_events"] = processed_events
        metadata["provider_status"] = key
        if event.error_code:
            metadata["error_code"] = event.error_code
        if event.error_message:
            metadata["error_message"] = event.error_message
        call.call_metadata = metadata

        result = StatusHandlingResult(processed=True, call=call)

        match event.status:
            case ProviderCallStatus.QUEUED | ProviderCallStatus.INITIATED | ProviderCallStatus.RINGING:
                pass
            case ProviderCallStatus.IN_PROGRESS:
                if call.status == CallStatus.QUEUED:
                    call.status = CallStatus.IN_PROGRESS
            case _:
                await self._finalize(call, event, result)

        await self._session.commit()

        await self._publish(call, event)

        if result.next_call is not None and self._bridge is not None:
            await self._bridge.connect_waiting_call(result.next_call)

        return result

    @staticmethod
    def _apply_provider_duration(call: DialerCall, event: CallStatusEvent) -> bool:
        """Take the provider's CallDuration over a missing or estimated one."""
        if not event.status.is_terminal or event.duration_seconds is None:
            return False
        metadata = dict(call.call_metadata or {})
        if call.duration is not None and not metadata.get("duration_estimated"):
            return False
        call.duration = event.duration_seconds
        metadata.pop("duration_estimated", None)
        call.call_metadata = metadata
        return True

    async def _finalize(
        self,
        call: DialerCall,
        event: CallStatusEvent,
        result: StatusHandlingResult,
    ) -> None:
        now = utcnow()
        call.status = (
            CallStatus.COMPLETED if event.status == ProviderCallStatus.COMPLETED else CallStatus.FAILED
        )
        call.end_timestamp = now
        if event.duration_seconds is not None:
            call.duration = event.duration_seconds
        else:
            call.duration = max(0, int((now - as_utc(call.start_timestamp)).total_seconds()))
            call.call_metadata = {**(call.call_metadata or {}), "duration_estimated": True}

        await self._contacts.set_status(
            call.contact_id,
            contact_status_for(event.status, call.machine_detection_result),
        )
        await self._queue.remove(call.id)
        await self._session.flush()

        if call.agent_id is None:
            return

        if await self._agents.release(call.agent_id, call.id):
            result.released_agent_id = call.agent_id
            logger.info(
                "Agent released",
                extra={"agent_id": str(call.agent_id), "call_id": str(call.id)},
            )
            result.next_call = await self._assigner.pull_next_for_agent(call.agent_id)

    async def _publish(self, call: DialerCall, event: CallStatusEvent) -> None:
        if self._publisher is None:
            return
        contact = await self._session.get(Contact, call.contact_id)
        update = CallStatusUpdate(
            call_id=str(call.id),
            call_sid=call.twilio_call_sid,
            status=call.status.value,
            provider_status=event.raw_status or event.status.value,
            timestamp=event.timestamp,
            agent_id=str(call.agent_id) if call.agent_id else None,
            contact_id=str(call.contact_id),
            phone_number=contact.phone_number if contact else None,
            duration=call.duration,
            machine_detection_result=(
                call.machine_detection_result.value if call.machine_detection_result else None
            ),
        )
        await self._publisher.publish(update)
