"""
Call status publisher for live dashboards.

Publishing is best effort: broker failures are logged and never break call
processing.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

import redis.asyncio as redis

from dialer.config import get_settings
from dialer.shared.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CallStatusUpdate:
    """Payload published on every processed call transition."""

    call_id: str
    call_sid: str | None
    status: str
    provider_status: str | None
    timestamp: datetime
    agent_id: str | None = None
    contact_id: str | None = None
    phone_number: str | None = None
    duration: int | None = None
    machine_detection_result: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class CallEventPublisher(Protocol):
    async def publish(self, update: CallStatusUpdate) -> bool:
        """Publish an update; returns False when it could not be delivered."""
        ...


class NullCallEventPublisher:
    """Publisher used when live updates are disabled."""

    async def publish(self, update: CallStatusUpdate) -> bool:
        logger.debug(
            "Call event publishing disabled",
            extra={"call_id": update.call_id, "status": update.status},
        )
        return False

    async def close(self) -> None:
        return None


class RedisCallEventPublisher:
    """Redis pub/sub publisher with JSON serialization."""

    def __init__(self, redis_url: str, channel: str):
        self._redis_url = redis_url
        self._channel = channel
        self._client: Optional[redis.Redis] = None

    @property
    def channel(self) -> str:
        return self._channel

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def publish(self, update: CallStatusUpdate) -> bool:
        if self._client is None:
            await self.connect()
        try:
            receivers = await self._client.publish(
                self._channel,
                json.dumps(update.to_dict(), default=str),
            )
            logger.debug(
                "Call event published",
                extra={"call_id": update.call_id, "status": update.status, "receivers": receivers},
            )
            return True
        except Exception as e:
            logger.warning(
                "Call event publish failed",
                extra={"call_id": update.call_id, "channel": self._channel, "error": str(e)},
            )
            return False


# Global publisher instance
_publisher: CallEventPublisher | None = None


def get_event_publisher() -> CallEventPublisher:
    """Get or create the configured publisher."""
    global _publisher
    if _publisher is None:
        settings = get_settings()
        if settings.events_enabled:
            _publisher = RedisCallEventPublisher(settings.redis_url, settings.events_channel)
        else:
            _publisher = NullCallEventPublisher()
    return _publisher


async def close_event_publisher() -> None:
    global _publisher
    if _publisher is not None:
        await _publisher.close()  # type: ignore[attr-defined]
        _publisher = None
