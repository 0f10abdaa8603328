"""
Twilio telephony provider adapter.

Talks to the Twilio REST API with httpx. The async entrypoints delegate to
the sync implementation in a worker thread.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from base64 import b64encode
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any
from uuid import UUID

import httpx

from dialer.telephony.config import TelephonyConfig, get_telephony_config
from dialer.telephony.events import (
    CallStatusEvent,
    MachineDetectionEvent,
    ProviderCallStatus,
    classify_answered_by,
)
from dialer.telephony.interface import (
    CallControlError,
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    TelephonyProvider,
    TelephonyProviderError,
    WebhookParseError,
)

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def parse_call_id(value: str | None, call_sid: str) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        logger.warning(
            "Ignoring malformed call_id on Twilio webhook",
            extra={"call_id": value, "provider_call_id": call_sid},
        )
        return None


def _parse_twilio_date(value: str | None) -> datetime:
    # Twilio REST dates are RFC 2822 ("Tue, 31 Aug 2010 20:36:28 +0000")
    if not value:
        return datetime.now(timezone.utc)
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.now(timezone.utc)


def _require_call_sid(payload: Mapping[str, str]) -> str:
    call_sid = payload.get("CallSid")
    if not call_sid:
        raise WebhookParseError(
            message="Missing CallSid in webhook payload",
            error_code="MISSING_CALL_SID",
            provider_response=dict(payload),
        )
    return call_sid


def parse_twilio_status_payload(payload: Mapping[str, str]) -> CallStatusEvent:
    """Parse a Twilio status callback (form fields plus our call_id query param)."""
    call_sid = _require_call_sid(payload)
    raw_status = (payload.get("CallStatus") or "").strip().lower()
    if not raw_status:
        raise WebhookParseError(
            message="Missing CallStatus in webhook payload",
            error_code="MISSING_CALL_STATUS",
            provider_response=dict(payload),
        )
    try:
        status = ProviderCallStatus(raw_status)
    except ValueError as e:
        raise WebhookParseError(
            message=f"Unknown CallStatus {raw_status!r}",
            error_code="UNKNOWN_CALL_STATUS",
            provider_response=dict(payload),
        ) from e

    duration_seconds = None
    if payload.get("CallDuration"):
        try:
            duration_seconds = int(payload["CallDuration"])
        except (ValueError, TypeError):
            duration_seconds = None

    return CallStatusEvent(
        provider_call_id=call_sid,
        status=status,
        call_id=parse_call_id(payload.get("call_id"), call_sid),
        raw_status=raw_status,
        timestamp=datetime.now(timezone.utc),
        duration_seconds=duration_seconds,
        error_code=payload.get("ErrorCode") or None,
        error_message=payload.get("ErrorMessage") or None,
        raw_payload=dict(payload),
    )


def parse_twilio_amd_payload(payload: Mapping[str, str]) -> MachineDetectionEvent:
    """Parse the answer-URL request Twilio sends after machine detection."""
    call_sid = _require_call_sid(payload)
    answered_by = payload.get("AnsweredBy")
    return MachineDetectionEvent(
        provider_call_id=call_sid,
        call_id=parse_call_id(payload.get("call_id"), call_sid),
        answered_by=answered_by,
        result=classify_answered_by(answered_by),
        timestamp=datetime.now(timezone.utc),
        raw_payload=dict(payload),
    )


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """X-Twilio-Signature: base64(HMAC-SHA1(url + sorted key/value pairs))."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return b64encode(digest).decode("ascii")


class TwilioAdapter(TelephonyProvider):
    """Twilio telephony provider adapter."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.Client:
        if self._http_client is None:
            self._http_client = httpx.Client(timeout=httpx.Timeout(30.0))
        return self._http_client

    def close(self) -> None:
        if self._owns_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def _get_auth(self) -> tuple[str, str]:
        return (self._config.twilio_account_sid, self._config.twilio_auth_token)

    def _get_api_url(self, endpoint: str) -> str:
        account_sid = self._config.twilio_account_sid
        return f"{TWILIO_API_BASE}/Accounts/{account_sid}{endpoint}"

    def _post(
        self,
        endpoint: str,
        data: dict[str, Any],
        error_cls: type[TelephonyProviderError],
        log_context: dict[str, Any],
    ) -> dict[str, Any]:
        client = self._get_client()
        try:
            response = client.post(self._get_api_url(endpoint), data=data, auth=self._get_auth())
        except httpx.HTTPError as e:
            logger.exception("HTTP error calling Twilio", extra={"endpoint": endpoint, **log_context})
            raise error_cls(message=f"HTTP error: {e!s}", error_code="HTTP_ERROR") from e

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {"message": response.text}
            logger.error(
                "Twilio request failed",
                extra={
                    "endpoint": endpoint,
                    "status_code": response.status_code,
                    "error": error_data,
                    **log_context,
                },
            )
            raise error_cls(
                message=error_data.get("message", "Twilio request failed"),
                error_code=str(error_data.get("code", response.status_code)),
                provider_response=error_data,
            )

        return response.json() if response.content else {}

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call with answering machine detection."""
        payload: dict[str, Any] = {
            "To": request.to,
            "From": request.from_number,
            "Url": request.answer_url,
            "Method": "POST",
            "StatusCallback": request.status_callback_url,
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
            "StatusCallbackMethod": "POST",
            "Timeout": str(request.timeout_seconds),
        }
        if request.machine_detection:
            payload["MachineDetection"] = request.machine_detection
            payload["MachineDetectionTimeout"] = str(request.machine_detection_timeout_seconds)

        logger.info(
            "Initiating Twilio call",
            extra={"to": request.to, "call_id": request.call_id},
        )

        data = self._post("/Calls.json", payload, CallInitiationError, {"call_id": request.call_id})

        if not data.get("sid"):
            raise CallInitiationError(
                message="Twilio response did not include a call SID",
                error_code="MISSING_SID",
                provider_response=data,
            )

        try:
            status = ProviderCallStatus(data.get("status", "queued"))
        except ValueError:
            status = ProviderCallStatus.QUEUED

        return CallInitiationResponse(
            provider_call_id=data["sid"],
            status=status,
            created_at=_parse_twilio_date(data.get("date_created")),
            raw_response=data,
        )

    def hangup_call_sync(self, provider_call_id: str) -> None:
        logger.info("Hanging up Twilio call", extra={"provider_call_id": provider_call_id})
        self._post(
            f"/Calls/{provider_call_id}.json",
            {"Status": "completed"},
            CallControlError,
            {"provider_call_id": provider_call_id},
        )

    def redirect_call_sync(self, provider_call_id: str, url: str) -> None:
        logger.info(
            "Redirecting Twilio call",
            extra={"provider_call_id": provider_call_id, "url": url},
        )
        self._post(
            f"/Calls/{provider_call_id}.json",
            {"Url": url, "Method": "POST"},
            CallControlError,
            {"provider_call_id": provider_call_id},
        )

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
        if not signature or not self._config.twilio_auth_token:
            return False
        expected = compute_twilio_signature(self._config.twilio_auth_token, url, params)
        return hmac.compare_digest(expected, signature)
