"""
Telephony package.

Keep import side-effects to a minimum to avoid circular imports.
Do not import factory/adapters here.
"""

__all__ = [
    "interface",
    "config",
    "events",
    "factory",
    "twiml",
    "tokens",
    "twilio_adapter",
    "mock_adapter",
]
