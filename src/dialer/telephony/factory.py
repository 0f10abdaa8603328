"""
Telephony provider factory.

Single source of truth for configuration: TelephonyConfig (pydantic settings
loaded from OS env + .env). Never read raw os.getenv("TWILIO_*") here.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from dialer.telephony.config import ProviderType, TelephonyConfig
from dialer.telephony.config import get_telephony_config as _load_telephony_config
from dialer.telephony.interface import TelephonyProvider
from dialer.telephony.mock_adapter import MockTelephonyProvider
from dialer.telephony.twilio_adapter import TwilioAdapter

logger = logging.getLogger(__name__)


def _mask(s: str, keep: int = 6) -> str:
    if not s:
        return ""
    if len(s) <= keep:
        return "*" * len(s)
    return f"{s[:keep]}***"


@lru_cache(maxsize=1)
def get_telephony_config() -> TelephonyConfig:
    """Return cached TelephonyConfig."""
    return _load_telephony_config()


@lru_cache(maxsize=1)
def get_telephony_provider() -> TelephonyProvider:
    """Create and cache the telephony provider using TelephonyConfig."""
    cfg = get_telephony_config()

    logger.info(
        "Telephony config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "twilio_account_sid": _mask(cfg.twilio_account_sid),
            "twilio_from_number": cfg.twilio_from_number,
            "webhook_base_url": cfg.webhook_base_url,
            "machine_detection": cfg.machine_detection,
            "validate_signatures": cfg.validate_signatures,
        },
    )

    if cfg.provider_type == ProviderType.TWILIO:
        return TwilioAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockTelephonyProvider(cfg)

    raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}")
