"""Tests for the generation event channel."""

import asyncio
import json

import pytest

from app.services.generation.events import EventChannel, EventKind, GenerationEvent, encode_sse


class TestEncodeSse:
    def test_frame_format(self):
        frame = encode_sse(GenerationEvent(EventKind.TEXT_DELTA, {"text": "你好"}))
        assert frame.startswith("event: text-delta\ndata: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame.split("data: ", 1)[1]) == {"text": "你好"}


@pytest.mark.asyncio
class TestEventChannel:
    async def test_every_subscriber_sees_every_event_in_order(self):
        channel = EventChannel()
        a = channel.subscribe("a")
        b = channel.subscribe("b")
        for i in range(3):
            channel.publish(GenerationEvent(EventKind.TEXT_DELTA, {"text": str(i)}))
        channel.close()

        seen_a = [e.payload["text"] async for e in a]
        seen_b = [e.payload["text"] async for e in b]
        assert seen_a == seen_b == ["0", "1", "2"]

    async def test_slow_subscriber_does_not_block_publisher(self):
        channel = EventChannel()
        slow = channel.subscribe("slow")
        for i in range(1000):
            channel.publish(GenerationEvent(EventKind.TEXT_DELTA, {"text": str(i)}))
        channel.close()
        count = 0
        async for _ in slow:
            count += 1
        assert count == 1000

    async def test_detach_ends_one_subscription_only(self):
        channel = EventChannel()
        relay = channel.subscribe("relay")
        other = channel.subscribe("other")
        channel.publish(GenerationEvent(EventKind.TEXT_DELTA, {"text": "a"}))
        relay.close()
        channel.publish(GenerationEvent(EventKind.TEXT_DELTA, {"text": "b"}))
        channel.close()

        assert [e.payload["text"] async for e in relay] == ["a"]
        assert [e.payload["text"] async for e in other] == ["a", "b"]

    async def test_get_timeout(self):
        channel = EventChannel()
        sub = channel.subscribe()
        with pytest.raises(asyncio.TimeoutError):
            await sub.get(timeout=0.01)

    async def test_subscribe_after_close(self):
        channel = EventChannel()
        channel.close()
        sub = channel.subscribe()
        assert await sub.get() is None

    async def test_delta_and_terminal_flags(self):
        assert GenerationEvent(EventKind.TOOL_RESULT).is_delta
        assert not GenerationEvent(EventKind.START).is_delta
        assert GenerationEvent(EventKind.ERROR).is_terminal
        assert GenerationEvent(EventKind.FINISH).is_terminal
