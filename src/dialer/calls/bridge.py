"""
Bridge a caller waiting on hold to the agent that picked the call up.

The live call is redirected to the connect webhook, which answers with a
<Dial> to the agent's browser client.
"""

from dialer.calls.models import DialerCall
from dialer.shared.logging import get_logger
from dialer.telephony.config import CONNECT_PATH, TelephonyConfig
from dialer.telephony.interface import TelephonyProvider, TelephonyProviderError

logger = get_logger(__name__)


class CallBridge:
    def __init__(self, provider: TelephonyProvider, config: TelephonyConfig) -> None:
        self._provider = provider
        self._config = config

    async def connect_waiting_call(self, call: DialerCall) -> bool:
        if not call.twilio_call_sid or call.is_terminal:
            return False

        url = self._config.get_webhook_url(CONNECT_PATH, call.id)
        try:
            await self._provider.redirect_call(call.twilio_call_sid, url)
        except TelephonyProviderError as e:
            # The caller most likely hung up; the status callback finalizes the call.
            logger.warning(
                "Could not redirect waiting call to agent",
                extra={
                    "call_id": str(call.id),
                    "provider_call_id": call.twilio_call_sid,
                    "error_code": e.error_code,
                },
            )
            return False
        return True
