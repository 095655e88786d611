"""
Unit tests for the event bus.

These tests verify:
1. Named-event and wildcard handlers
2. At-most-once delivery by event id
3. History, stats and async streaming for SSE
4. Payloads of the named cross-device events

Usage:
    pytest tests/test_event_bus.py -v
"""
import asyncio
import pytest
from datetime import datetime, timezone

from vital_monitor.event_bus import BusEvent, EventBus, EventName, fall_location
from vital_monitor.models import (
    AnomalyEvent,
    EscalationDecision,
    EscalationTrigger,
    Location,
    VitalKind,
    VitalsSnapshot,
)

TIMESTAMP = datetime(2024, 12, 8, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def bus():
    return EventBus(device_id="phone")


class TestPublishSubscribe:
    """Handlers receive the events they subscribed to."""

    def test_named_handler(self, bus):
        received = []
        bus.subscribe(EventName.FALL_DETECTED, received.append)

        bus.emit(EventName.FALL_DETECTED, {})
        bus.emit(EventName.ANOMALY_DETECTED, {})

        assert [e.name for e in received] == [EventName.FALL_DETECTED]

    def test_wildcard_handler(self, bus):
        received = []
        bus.subscribe(None, received.append)

        bus.emit(EventName.FALL_DETECTED, {})
        bus.emit(EventName.EMERGENCY_TRIGGERED, {})

        assert len(received) == 2

    def test_unsubscribe(self, bus):
        received = []
        bus.subscribe(None, received.append)
        bus.unsubscribe(None, received.append)

        bus.emit(EventName.FALL_DETECTED, {})

        assert received == []

    def test_emit_tags_source_device(self, bus):
        event = bus.emit(EventName.ANOMALY_DETECTED, {"kind": "heart_rate"})

        assert event.source_device == "phone"

    def test_failing_handler_does_not_stop_fan_out(self, bus):
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(None, broken)
        bus.subscribe(None, received.append)

        assert bus.emit(EventName.FALL_DETECTED, {})
        assert len(received) == 1

    def test_handler_may_publish(self, bus):
        received = []

        def relay(event):
            if event.name == EventName.FALL_DETECTED:
                bus.emit(EventName.EMERGENCY_TRIGGERED, {})

        bus.subscribe(EventName.FALL_DETECTED, relay)
        bus.subscribe(EventName.EMERGENCY_TRIGGERED, received.append)

        bus.emit(EventName.FALL_DETECTED, {})

        assert len(received) == 1


class TestDeduplication:
    """An event id is delivered at most once."""

    def test_duplicate_id_dropped(self, bus):
        received = []
        bus.subscribe(None, received.append)
        event = BusEvent(EventName.FALL_DETECTED, {}, source_device="watch")

        assert bus.publish(event)
        assert not bus.publish(event)
        assert len(received) == 1
        assert bus.get_stats()["duplicates_dropped"] == 1

    def test_wire_round_trip_keeps_id(self, bus):
        event = BusEvent(EventName.ANOMALY_DETECTED, {"kind": "heart_rate"}, "watch")
        bus.publish(event)

        assert not bus.publish(BusEvent.from_dict(event.to_dict()))


class TestHistoryAndStats:
    """Recent events are kept for status views and SSE replay."""

    def test_history_newest_first(self, bus):
        first = bus.emit(EventName.ANOMALY_DETECTED, {})
        second = bus.emit(EventName.FALL_DETECTED, {})

        assert [e.id for e in bus.get_history()] == [second.id, first.id]

    def test_history_is_bounded(self):
        bus = EventBus("phone", max_history=3)
        for _ in range(5):
            bus.emit(EventName.ANOMALY_DETECTED, {})

        assert len(bus.get_history()) == 3

    def test_clear_history(self, bus):
        bus.emit(EventName.ANOMALY_DETECTED, {})
        bus.clear_history()

        assert bus.get_history() == []

    def test_stats_count_by_name(self, bus):
        bus.emit(EventName.ANOMALY_DETECTED, {})
        bus.emit(EventName.ANOMALY_DETECTED, {})
        bus.emit(EventName.FALL_DETECTED, {})

        stats = bus.get_stats()

        assert stats["total_published"] == 3
        assert stats["events_by_name"] == {"anomalyDetected": 2, "fallDetected": 1}


class TestStreaming:
    """Async subscribers used by the SSE endpoint."""

    @pytest.mark.asyncio
    async def test_stream_replays_history_then_live(self, bus):
        old = bus.emit(EventName.ANOMALY_DETECTED, {})
        stream = bus.stream(include_history=True, history_count=5)

        first = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        live = bus.emit(EventName.FALL_DETECTED, {})
        second = await asyncio.wait_for(stream.__anext__(), timeout=1.0)
        await stream.aclose()

        assert first.id == old.id
        assert second.id == live.id
        assert bus.get_stats()["current_subscribers"] == 0

    @pytest.mark.asyncio
    async def test_stream_without_history(self, bus):
        bus.emit(EventName.ANOMALY_DETECTED, {})
        stream = bus.stream(include_history=False)

        pending = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)
        live = bus.emit(EventName.EMERGENCY_TRIGGERED, {})
        event = await asyncio.wait_for(pending, timeout=1.0)
        await stream.aclose()

        assert event.id == live.id


class TestNamedEvents:
    """Payloads of the cross-device events."""

    def test_anomaly_payload(self, bus):
        event = AnomalyEvent(VitalKind.HEART_RATE, 130.0, True, timestamp=TIMESTAMP)

        published = bus.publish_anomaly(event)

        assert published.name == EventName.ANOMALY_DETECTED
        assert published.payload == {
            "kind": "heart_rate",
            "value": 130.0,
            "timestamp": TIMESTAMP.isoformat(),
        }

    def test_fall_payload_with_location(self, bus):
        event = AnomalyEvent(VitalKind.FALL, 1.0, True, TIMESTAMP, Location(37.77, -122.41))

        published = bus.publish_fall(event)

        assert published.name == EventName.FALL_DETECTED
        assert fall_location(published) == Location(37.77, -122.41)

    def test_fall_payload_without_location(self, bus):
        published = bus.publish_fall(AnomalyEvent(VitalKind.FALL, 1.0, True, TIMESTAMP))

        assert "location" not in published.payload
        assert fall_location(published) is None

    def test_emergency_payload_round_trips(self, bus):
        decision = EscalationDecision(
            trigger=EscalationTrigger.COUNTDOWN_ELAPSED,
            kind=VitalKind.BLOOD_OXYGEN,
            event=AnomalyEvent(VitalKind.BLOOD_OXYGEN, 92.0, True, TIMESTAMP),
            vitals=VitalsSnapshot(blood_oxygen=92.0),
        )

        published = bus.publish_emergency(decision)
        restored = EscalationDecision.from_dict(published.payload["event"])

        assert restored.episode_id == decision.episode_id
        assert restored.event == decision.event
        assert restored.vitals.blood_oxygen == 92.0
