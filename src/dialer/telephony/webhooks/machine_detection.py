"""
Answering machine detection handler.

Twilio requests the answer URL once detection finishes. The answer decides
what the called party hears:

- human: connect to the longest-idle available agent, else queue the call
  and play hold music
- machine: leave the voicemail script
- unknown: treated as human, or the automated message when
  TELEPHONY_UNKNOWN_ANSWER_POLICY=message

A repeated request for the same call replays the earlier decision.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from dialer.agents.models import Agent
from dialer.agents.repository import AgentRepository
from dialer.calls.assignment import CallAssigner
from dialer.calls.models import CallStatus, DialerCall, MachineDetectionResult
from dialer.calls.repository import CallQueueRepository, CallRepository
from dialer.contacts.models import ContactStatus
from dialer.contacts.repository import ContactRepository
from dialer.shared.logging import get_logger
from dialer.telephony import twiml
from dialer.telephony.config import TelephonyConfig
from dialer.telephony.events import MachineDetectionEvent

logger = get_logger(__name__)


@dataclass
class MachineDetectionOutcome:
    action: str
    twiml: str
    call: DialerCall | None = None
    agent: Agent | None = None


class MachineDetectionHandler:
    """Branches an answered call on the machine detection result."""

    def __init__(
        self,
        session: AsyncSession,
        config: TelephonyConfig,
        queue_priority: int = 1,
    ) -> None:
        self._session = session
        self._config = config
        self._queue_priority = queue_priority
        self._calls = CallRepository(session)
        self._queue = CallQueueRepository(session)
        self._contacts = ContactRepository(session)
        self._agents = AgentRepository(session)
        self._assigner = CallAssigner(session)

    async def handle_event(self, event: MachineDetectionEvent) -> MachineDetectionOutcome:
        call = await self._calls.resolve(event.call_id, event.provider_call_id)
        if call is None:
            logger.warning(
                "Call not found for machine detection",
                extra={
                    "call_id": str(event.call_id) if event.call_id else None,
                    "provider_call_id": event.provider_call_id,
                },
            )
            return MachineDetectionOutcome("error", twiml.error_response(self._config))

        if call.is_terminal:
            return MachineDetectionOutcome("hangup", twiml.hangup_response(), call=call)

        replay = await self._replay(call)
        if replay is not None:
            return replay

        if not call.twilio_call_sid:
            call.twilio_call_sid = event.provider_call_id
        call.machine_detection_result = event.result
        if call.status == CallStatus.QUEUED:
            call.status = CallStatus.IN_PROGRESS
        metadata = dict(call.call_metadata or {})
        metadata["answered_by"] = event.answered_by
        call.call_metadata = metadata
        await self._session.flush()

        logger.info(
            "Machine detection result",
            extra={
                "call_id": str(call.id),
                "answered_by": event.answered_by,
                "result": event.result.value,
            },
        )

        if event.result == MachineDetectionResult.MACHINE:
            await self._contacts.set_status(call.contact_id, ContactStatus.VOICEMAIL)
            await self._session.commit()
            return MachineDetectionOutcome(
                "voicemail", twiml.voicemail_message(self._config), call=call
            )

        if (
            event.result == MachineDetectionResult.UNKNOWN
            and self._config.unknown_answer_policy == "message"
        ):
            await self._session.commit()
            return MachineDetectionOutcome(
                "message", twiml.automated_message(self._config), call=call
            )

        agent = await self._assigner.assign_available_agent(call)
        if agent is not None:
            await self._contacts.set_status(call.contact_id, ContactStatus.CONTACTED)
            await self._session.commit()
            return MachineDetectionOutcome(
                "connect",
                twiml.connect_to_agent(self._config, agent.client_identity),
                call=call,
                agent=agent,
            )

        await self._queue.enqueue(call.id, self._queue_priority)
        await self._session.commit()
        logger.info(
            "Call queued for next available agent",
            extra={"call_id": str(call.id), "priority": self._queue_priority},
        )
        return MachineDetectionOutcome("enqueue", twiml.hold_for_agent(self._config), call=call)

    async def _replay(self, call: DialerCall) -> MachineDetectionOutcome | None:
        if call.agent_id is not None:
            agent = await self._agents.get_by_id(call.agent_id)
            if agent is not None:
                return MachineDetectionOutcome(
                    "connect",
                    twiml.connect_to_agent(self._config, agent.client_identity),
                    call=call,
                    agent=agent,
                )
        if call.machine_detection_result is None:
            return None
        if await self._queue.get_by_call_id(call.id) is not None:
            return MachineDetectionOutcome("enqueue", twiml.hold_for_agent(self._config), call=call)
        if call.machine_detection_result == MachineDetectionResult.MACHINE:
            return MachineDetectionOutcome(
                "voicemail", twiml.voicemail_message(self._config), call=call
            )
        return None
