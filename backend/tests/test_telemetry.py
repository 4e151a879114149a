"""Tests for generation telemetry."""

import pytest

from app.services.generation.events import EventChannel, EventKind, GenerationEvent
from app.services.generation.telemetry import TelemetryTracker, Usage


def delta(kind: EventKind, at: float) -> GenerationEvent:
    return GenerationEvent(kind, {"text": "x"}, at=at)


class TestUsage:
    def test_reasoning_tokens_added_to_output(self):
        assert Usage(input_tokens=100, output_tokens=40, reasoning_tokens=60, total_tokens=200).tokens_generated == 100

    def test_falls_back_to_total_minus_input(self):
        assert Usage(input_tokens=100, output_tokens=40, total_tokens=190).tokens_generated == 90

    def test_falls_back_to_output(self):
        assert Usage(output_tokens=40).tokens_generated == 40

    def test_addition(self):
        total = Usage(1, 2, 3, 6) + Usage(10, 20, 30, 60)
        assert total == Usage(11, 22, 33, 66)


class TestTelemetryTracker:
    def test_start_is_first_reasoning_delta(self):
        tracker = TelemetryTracker(request_started_at=0.0)
        tracker.observe(delta(EventKind.TEXT_DELTA, 1.0))
        tracker.observe(delta(EventKind.REASONING_DELTA, 2.0))
        tracker.finish(4.0)
        assert tracker.generation_started_at == 2.0
        assert tracker.tokens_per_second(Usage(output_tokens=10)) == 5.0

    def test_start_is_first_delta_without_reasoning(self):
        tracker = TelemetryTracker(request_started_at=0.0)
        tracker.observe(GenerationEvent(EventKind.START, at=0.5))
        tracker.observe(delta(EventKind.TEXT_DELTA, 1.0))
        tracker.observe(delta(EventKind.TEXT_DELTA, 2.0))
        tracker.finish(3.0)
        assert tracker.time_to_first_token == 1.0
        assert tracker.tokens_per_second(Usage(output_tokens=9)) == 4.5

    def test_rounded_to_one_decimal(self):
        tracker = TelemetryTracker(request_started_at=0.0)
        tracker.observe(delta(EventKind.TEXT_DELTA, 0.0))
        tracker.finish(3.0)
        assert tracker.tokens_per_second(Usage(output_tokens=10)) == 3.3

    @pytest.mark.parametrize(
        "usage, end",
        [
            (Usage(), 5.0),
            (Usage(output_tokens=10), 1.0),
            (Usage(input_tokens=50, total_tokens=50), 5.0),
            (Usage(output_tokens=1), 100000.0),
        ],
    )
    def test_never_zero_or_negative(self, usage, end):
        tracker = TelemetryTracker(request_started_at=0.0)
        tracker.observe(delta(EventKind.TEXT_DELTA, 1.0))
        tracker.finish(end)
        assert tracker.tokens_per_second(usage) is None

    def test_absent_without_any_delta(self):
        tracker = TelemetryTracker(request_started_at=0.0)
        tracker.finish(2.0)
        assert tracker.tokens_per_second(Usage(output_tokens=10)) is None

    @pytest.mark.asyncio
    async def test_consume_subscription(self):
        channel = EventChannel()
        tracker = TelemetryTracker(request_started_at=0.0)
        sub = channel.subscribe("telemetry")
        channel.publish(delta(EventKind.REASONING_DELTA, 1.5))
        channel.publish(delta(EventKind.TEXT_DELTA, 2.5))
        channel.close()
        await tracker.consume(sub)
        assert tracker.first_reasoning_at == 1.5
        assert tracker.first_chunk_at == 1.5
