"""
Telephony provider interface definition.

Call control methods are async and, by default, delegate to a sync
implementation in a worker thread so adapters stay testable without an event
loop.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import anyio

from dialer.telephony.events import CallStatusEvent, MachineDetectionEvent, ProviderCallStatus


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to initiate an outbound call."""

    to: str
    from_number: str
    call_id: str
    answer_url: str
    status_callback_url: str
    timeout_seconds: int = 30
    machine_detection: str | None = "DetectMessageEnd"
    machine_detection_timeout_seconds: int = 30
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    """Response from call initiation."""

    provider_call_id: str
    status: ProviderCallStatus
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(TelephonyProviderError):
    """Error during call initiation."""


class CallControlError(TelephonyProviderError):
    """Error while modifying a live call (hangup, redirect)."""


class WebhookParseError(TelephonyProviderError):
    """Error parsing webhook event."""


class TelephonyProvider(ABC):
    """Abstract interface for telephony providers."""

    async def initiate_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        return await anyio.to_thread.run_sync(self.initiate_call_sync, request)

    async def hangup_call(self, provider_call_id: str) -> None:
        await anyio.to_thread.run_sync(self.hangup_call_sync, provider_call_id)

    async def redirect_call(self, provider_call_id: str, url: str) -> None:
        await anyio.to_thread.run_sync(self.redirect_call_sync, provider_call_id, url)

    @abstractmethod
    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call."""
        ...

    @abstractmethod
    def hangup_call_sync(self, provider_call_id: str) -> None:
        """End a live call."""
        ...

    @abstractmethod
    def redirect_call_sync(self, provider_call_id: str, url: str) -> None:
        """Point a live call at a new voice-response document."""
        ...

    @abstractmethod
    def parse_status_event(self, payload: Mapping[str, str]) -> CallStatusEvent:
        """Parse a status callback payload."""
        ...

    @abstractmethod
    def parse_machine_detection(self, payload: Mapping[str, str]) -> MachineDetectionEvent:
        """Parse an answering machine detection payload."""
        ...

    @abstractmethod
    def validate_webhook_signature(
        self,
        url: str,
        params: Mapping[str, str],
        signature: str,
    ) -> bool:
        """Validate webhook signature for authenticity."""
        ...
