"""
Telephony provider configuration.

Loaded from TELEPHONY_* environment variables (and .env).
"""

from enum import Enum
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    TWILIO = "twilio"
    MOCK = "mock"


UnknownAnswerPolicy = Literal["connect", "message"]

STATUS_CALLBACK_PATH = "/webhooks/telephony/status"
MACHINE_DETECTION_PATH = "/webhooks/telephony/amd"
CONNECT_PATH = "/webhooks/telephony/connect"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provider selection
    provider_type: ProviderType = Field(default=ProviderType.TWILIO)

    # Provider credentials
    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")
    twilio_from_number: str = Field(default="")

    # Browser client access tokens
    twilio_api_key: str = Field(default="")
    twilio_api_secret: str = Field(default="")
    twilio_twiml_app_sid: str = Field(default="")
    access_token_ttl_seconds: int = Field(default=3600, ge=60, le=86400)

    # Public base URL Twilio uses to reach our webhooks
    webhook_base_url: str = Field(default="http://localhost:8000")
    validate_signatures: bool = Field(
        default=False,
        description="Reject webhooks whose X-Twilio-Signature does not verify.",
    )

    # Outbound call behavior
    call_timeout_seconds: int = Field(default=30, ge=5, le=600)
    machine_detection: Literal["Enable", "DetectMessageEnd"] = Field(default="DetectMessageEnd")
    machine_detection_timeout_seconds: int = Field(default=30, ge=3, le=59)
    unknown_answer_policy: UnknownAnswerPolicy = Field(
        default="connect",
        description="connect: treat unknown like a human; message: play the automated message.",
    )

    # Agent bridge
    agent_dial_timeout_seconds: int = Field(default=30, ge=5, le=600)

    # Voice-response content
    connect_message: str = Field(
        default="Please wait while we connect you to an available agent."
    )
    hold_message: str = Field(
        default="Please hold for the next available agent. Your call is important to us."
    )
    hold_music_url: str = Field(default="https://api.twilio.com/cowbell.mp3")
    hold_music_loops: int = Field(default=10, ge=1, le=100)
    hold_timeout_message: str = Field(
        default=(
            "We're sorry, all our agents are currently busy. "
            "Please try your call again later."
        )
    )
    voicemail_message: str = Field(
        default=(
            "Hello, this is an important message. "
            "Please call us back at your earliest convenience. Thank you!"
        )
    )
    voicemail_pause_seconds: int = Field(default=2, ge=0, le=30)
    unknown_message: str = Field(
        default=(
            "Hello, this is an automated call. "
            "Please call us back at your earliest convenience. Thank you!"
        )
    )
    error_message: str = Field(
        default="We're sorry, an error occurred. Please try again later."
    )

    @property
    def access_tokens_configured(self) -> bool:
        return bool(
            self.twilio_account_sid
            and self.twilio_api_key
            and self.twilio_api_secret
            and self.twilio_twiml_app_sid
        )

    def get_webhook_url(self, path: str, call_id: object | None = None) -> str:
        base = self.webhook_base_url.rstrip("/")
        url = f"{base}{path}"
        if call_id is not None:
            url = f"{url}?call_id={call_id}"
        return url


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
