"""Tests for call status publishing."""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from dialer.events import publisher as publisher_module
from dialer.events.publisher import (
    CallStatusUpdate,
    NullCallEventPublisher,
    RedisCallEventPublisher,
    close_event_publisher,
    get_event_publisher,
)


@pytest.fixture
def update() -> CallStatusUpdate:
    return CallStatusUpdate(
        call_id="c-1",
        call_sid="CA1",
        status="completed",
        provider_status="completed",
        timestamp=datetime(2026, 1, 5, 14, 30, tzinfo=timezone.utc),
        agent_id="a-1",
        duration=61,
    )


class TestCallStatusUpdate:
    def test_to_dict_serializes_timestamp(self, update: CallStatusUpdate) -> None:
        data = update.to_dict()
        assert data["timestamp"] == "2026-01-05T14:30:00+00:00"
        assert data["duration"] == 61
        assert data["contact_id"] is None


class TestRedisCallEventPublisher:
    @pytest.mark.asyncio
    async def test_publishes_json_on_channel(self, update: CallStatusUpdate) -> None:
        pub = RedisCallEventPublisher("redis://localhost:6379/0", "dialer.test")
        client = AsyncMock()
        client.publish.return_value = 2
        pub._client = client

        assert await pub.publish(update) is True

        channel, body = client.publish.call_args.args
        assert channel == "dialer.test"
        assert json.loads(body)["call_sid"] == "CA1"

    @pytest.mark.asyncio
    async def test_broker_errors_are_swallowed(self, update: CallStatusUpdate) -> None:
        pub = RedisCallEventPublisher("redis://localhost:6379/0", "dialer.test")
        client = AsyncMock()
        client.publish.side_effect = ConnectionError("redis down")
        pub._client = client

        assert await pub.publish(update) is False

    @pytest.mark.asyncio
    async def test_broker_error_is_logged(
        self, update: CallStatusUpdate, caplog: pytest.LogCaptureFixture
    ) -> None:
        pub = RedisCallEventPublisher("redis://localhost:6379/0", "dialer.test")
        client = AsyncMock()
        client.publish.side_effect = ConnectionError("redis down")
        pub._client = client

        with caplog.at_level(logging.WARNING, logger="dialer.events.publisher"):
            await pub.publish(update)

        record = next(r for r in caplog.records if r.name == "dialer.events.publisher")
        assert record.getMessage() == "Call event publish failed"
        assert record.channel == "dialer.test"

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        pub = RedisCallEventPublisher("redis://localhost:6379/0", "dialer.test")
        client = AsyncMock()
        pub._client = client

        await pub.close()

        client.aclose.assert_awaited_once()
        assert pub._client is None


class TestGetEventPublisher:
    @pytest.mark.asyncio
    async def test_disabled_by_default(
        self, monkeypatch: pytest.MonkeyPatch, update: CallStatusUpdate
    ) -> None:
        monkeypatch.setenv("EVENTS_ENABLED", "false")
        monkeypatch.setattr(publisher_module, "_publisher", None)

        pub = get_event_publisher()

        assert isinstance(pub, NullCallEventPublisher)
        assert await pub.publish(update) is False
        await close_event_publisher()

    @pytest.mark.asyncio
    async def test_enabled_uses_redis(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EVENTS_ENABLED", "true")
        monkeypatch.setenv("EVENTS_CHANNEL", "crm.calls")
        monkeypatch.setattr(publisher_module, "_publisher", None)

        pub = get_event_publisher()

        assert isinstance(pub, RedisCallEventPublisher)
        assert pub.channel == "crm.calls"
        assert get_event_publisher() is pub
        await close_event_publisher()
