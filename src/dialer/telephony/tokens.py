"""
Twilio Voice access tokens for the agent browser client.

A Twilio access token is an HS256 JWT signed with an API key secret, with
content type ``twilio-fpa;v=1`` and a ``grants`` claim.
"""

import time
from typing import Any

import jwt

from dialer.telephony.config import TelephonyConfig

TWILIO_TOKEN_CONTENT_TYPE = "twilio-fpa;v=1"


def create_voice_access_token(
    cfg: TelephonyConfig,
    identity: str,
    ttl_seconds: int | None = None,
    now: int | None = None,
) -> str:
    """Mint a Voice access token allowing incoming calls for ``identity``.

    Raises:
        ValueError: when API key credentials or the TwiML app are not configured.
    """
    if not cfg.access_tokens_configured:
        raise ValueError("Twilio access token credentials are not configured")

    issued_at = int(now if now is not None else time.time())
    ttl = ttl_seconds or cfg.access_token_ttl_seconds

    payload: dict[str, Any] = {
        "jti": f"{cfg.twilio_api_key}-{issued_at}",
        "iss": cfg.twilio_api_key,
        "sub": cfg.twilio_account_sid,
        "iat": issued_at,
        "nbf": issued_at,
        "exp": issued_at + ttl,
        "grants": {
            "identity": identity,
            "voice": {
                "incoming": {"allow": True},
                "outgoing": {"application_sid": cfg.twilio_twiml_app_sid},
            },
        },
    }
    return jwt.encode(
        payload,
        cfg.twilio_api_secret,
        algorithm="HS256",
        headers={"cty": TWILIO_TOKEN_CONTENT_TYPE},
    )
