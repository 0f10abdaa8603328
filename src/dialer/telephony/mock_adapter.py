"""
Mock telephony provider for development and tests.

Records every request in memory and accepts Twilio-shaped webhook payloads.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from dialer.telephony.events import CallStatusEvent, MachineDetectionEvent, ProviderCallStatus
from dialer.telephony.interface import (
    CallControlError,
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    TelephonyProvider,
)
from dialer.telephony.twilio_adapter import parse_twilio_amd_payload, parse_twilio_status_payload

logger = logging.getLogger(__name__)


class MockTelephonyProvider(TelephonyProvider):
    """In-memory telephony provider."""

    def __init__(self, config: object | None = None) -> None:
        self._config = config
        self.calls: list[CallInitiationRequest] = []
        self.hangups: list[str] = []
        self.redirects: list[tuple[str, str]] = []
        self._next_call_id = 1
        self._failing_numbers: set[str] = set()
        self._fail_all = False
        self._fail_control = False
        self.signature_valid = True

    def reset(self) -> None:
        self.calls.clear()
        self.hangups.clear()
        self.redirects.clear()
        self._next_call_id = 1
        self._failing_numbers.clear()
        self._fail_all = False
        self._fail_control = False
        self.signature_valid = True

    def configure_failure(self, should_fail: bool = True, numbers: set[str] | None = None) -> None:
        """Fail initiation for every call, or only for the given numbers."""
        if numbers:
            self._failing_numbers.update(numbers)
        else:
            self._fail_all = should_fail

    def configure_control_failure(self, should_fail: bool = True) -> None:
        self._fail_control = should_fail

    def get_last_call(self) -> CallInitiationRequest | None:
        return self.calls[-1] if self.calls else None

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        logger.info("Mock: initiating call", extra={"to": request.to, "call_id": request.call_id})

        if self._fail_all or request.to in self._failing_numbers:
            raise CallInitiationError(message="Mock failure", error_code="MOCK_ERROR")

        self.calls.append(request)
        provider_call_id = f"CAMOCK{self._next_call_id:06d}"
        self._next_call_id += 1

        return CallInitiationResponse(
            provider_call_id=provider_call_id,
            status=ProviderCallStatus.QUEUED,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "sid": provider_call_id, "call_id": request.call_id},
        )

    def hangup_call_sync(self, provider_call_id: str) -> None:
        if self._fail_control:
            raise CallControlError(message="Mock hangup failure", error_code="MOCK_ERROR")
        self.hangups.append(provider_call_id)

    def redirect_call_sync(self, provider_call_id: str, url: str) -> None:
        if self._fail_control:
            raise CallControlError(message="Mock redirect failure", error_code="MOCK_ERROR")
        self.redirects.append((provider_call_id, url))

    def parse_status_event(self, payload: Mapping[str, str]) -> CallStatusEvent:
        return parse_twilio_status_payload(payload)

    def parse_machine_detection(self, payload: Mapping[str, str]) -> MachineDetectionEvent:
        return parse_twilio_amd_payload(payload)

    def validate_webhook_signature(
        self,
        url: str,
        params: Mapping[str, str],
        signature: str,
    ) -> bool:
        return self.signature_valid
