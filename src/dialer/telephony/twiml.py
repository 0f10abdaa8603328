"""
TwiML voice-response documents returned to Twilio.

Small pure functions; every piece of text is XML-escaped.
"""

from dialer.telephony.config import TelephonyConfig


def _xml_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def _twiml(body: str = "") -> str:
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{body}</Response>'


def _say(text: str) -> str:
    return f"<Say>{_xml_escape(text)}</Say>"


def empty_response() -> str:
    """Acknowledge a callback without instructions."""
    return _twiml()


def hangup_response() -> str:
    return _twiml("<Hangup/>")


def connect_to_agent(cfg: TelephonyConfig, client_identity: str) -> str:
    """Bridge the answered party to an agent's browser client."""
    return _twiml(
        _say(cfg.connect_message)
        + f'<Dial timeout="{int(cfg.agent_dial_timeout_seconds)}">'
        + f"<Client>{_xml_escape(client_identity)}</Client>"
        + "</Dial>"
    )


def hold_for_agent(cfg: TelephonyConfig) -> str:
    """Keep a queued caller on hold until an agent picks the call up."""
    return _twiml(
        _say(cfg.hold_message)
        + f'<Play loop="{int(cfg.hold_music_loops)}">{_xml_escape(cfg.hold_music_url)}</Play>'
        + _say(cfg.hold_timeout_message)
        + "<Hangup/>"
    )


def voicemail_message(cfg: TelephonyConfig) -> str:
    return _twiml(
        f'<Pause length="{int(cfg.voicemail_pause_seconds)}"/>'
        + _say(cfg.voicemail_message)
        + "<Hangup/>"
    )


def automated_message(cfg: TelephonyConfig) -> str:
    return _twiml(_say(cfg.unknown_message) + "<Hangup/>")


def error_response(cfg: TelephonyConfig) -> str:
    return _twiml(_say(cfg.error_message) + "<Hangup/>")
