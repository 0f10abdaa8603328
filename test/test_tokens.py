"""Tests for browser client access tokens."""

import jwt
import pytest

from dialer.telephony.config import TelephonyConfig
from dialer.telephony.tokens import create_voice_access_token


class TestCreateVoiceAccessToken:
    def test_claims_and_header(self, telephony_config: TelephonyConfig) -> None:
        token = create_voice_access_token(telephony_config, "agent-abc", ttl_seconds=600)

        header = jwt.get_unverified_header(token)
        assert header["alg"] == "HS256"
        assert header["cty"] == "twilio-fpa;v=1"

        claims = jwt.decode(token, telephony_config.twilio_api_secret, algorithms=["HS256"])
        assert claims["iss"] == telephony_config.twilio_api_key
        assert claims["sub"] == telephony_config.twilio_account_sid
        assert claims["exp"] - claims["iat"] == 600
        assert claims["grants"]["identity"] == "agent-abc"
        assert claims["grants"]["voice"]["incoming"] == {"allow": True}
        assert claims["grants"]["voice"]["outgoing"] == {
            "application_sid": telephony_config.twilio_twiml_app_sid
        }

    def test_default_ttl_from_config(self, telephony_config: TelephonyConfig) -> None:
        token = create_voice_access_token(telephony_config, "agent-abc", now=1_700_000_000)

        claims = jwt.decode(
            token,
            telephony_config.twilio_api_secret,
            algorithms=["HS256"],
            options={"verify_exp": False, "verify_nbf": False, "verify_iat": False},
        )
        assert claims["iat"] == 1_700_000_000
        assert claims["exp"] == 1_700_000_000 + telephony_config.access_token_ttl_seconds
        assert claims["jti"] == f"{telephony_config.twilio_api_key}-1700000000"

    def test_wrong_secret_fails_verification(self, telephony_config: TelephonyConfig) -> None:
        token = create_voice_access_token(telephony_config, "agent-abc")

        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(token, "not-the-secret", algorithms=["HS256"])

    def test_requires_credentials(self) -> None:
        cfg = TelephonyConfig(twilio_account_sid="AC1", twilio_api_key="", twilio_api_secret="")

        assert cfg.access_tokens_configured is False
        with pytest.raises(ValueError):
            create_voice_access_token(cfg, "agent-abc")
