"""Thread-safe publish/subscribe relay for monitoring events.

Carries anomaly verdicts and escalation decisions between components on one
device, and (through the Solace bridge) between paired devices. Delivery is
at-most-once per event id: an event seen before is dropped, which keeps relay
loops and broker redeliveries from reaching consumers twice.
"""
import asyncio
import logging
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from .models import AnomalyEvent, EscalationDecision, Location, VitalKind

logger = logging.getLogger(__name__)


class EventName(str, Enum):
    """Named cross-device events."""
    ANOMALY_DETECTED = "anomalyDetected"
    FALL_DETECTED = "fallDetected"
    EMERGENCY_TRIGGERED = "emergencyTriggered"
    ESCALATION_CANCELLED = "escalationCancelled"


@dataclass
class BusEvent:
    """An event on the bus, tagged with the device that produced it."""

    name: EventName
    payload: dict
    source_device: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name.value,
            "payload": self.payload,
            "source_device": self.source_device,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BusEvent":
        return cls(
            id=data["id"],
            name=EventName(data["name"]),
            payload=dict(data.get("payload") or {}),
            source_device=data["source_device"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


EventHandler = Callable[[BusEvent], None]


class EventBus:
    """Thread-safe in-memory event bus.

    Synchronous handlers receive events as they are published. Async
    subscribers (SSE streams) get their own queue and can replay recent
    history on connect.
    """

    def __init__(self, device_id: str, max_history: int = 100, dedupe_window: int = 500):
        """Initialize the event bus.

        Args:
            device_id: Identifier of the device this bus runs on.
            max_history: Maximum number of events to keep in history buffer.
            dedupe_window: Number of recent event ids remembered for dedupe.
        """
        self.device_id = device_id
        self._history: deque[BusEvent] = deque(maxlen=max_history)
        self._seen_ids: deque[str] = deque(maxlen=dedupe_window)
        self._handlers: Dict[Optional[EventName], List[EventHandler]] = {}
        self._subscribers: list[asyncio.Queue] = []
        self._lock = threading.Lock()
        self._stats = {
            "total_published": 0,
            "duplicates_dropped": 0,
            "total_subscribers": 0,
            "events_by_name": {},
        }

    def subscribe(self, name: Optional[EventName], handler: EventHandler) -> None:
        """Register a handler for one event name, or for all events when name is None."""
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: Optional[EventName], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(name, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: BusEvent) -> bool:
        """Publish an event to all handlers and subscribers.

        Args:
            event: The event to publish.

        Returns:
            False if the event id was already seen and the event was dropped.
        """
        with self._lock:
            if event.id in self._seen_ids:
                self._stats["duplicates_dropped"] += 1
                logger.debug(f"[BUS] Dropped duplicate event {event.id} ({event.name.value})")
                return False
            self._seen_ids.append(event.id)
            self._history.append(event)

            self._stats["total_published"] += 1
            name = event.name.value
            self._stats["events_by_name"][name] = \
                self._stats["events_by_name"].get(name, 0) + 1

            handlers = list(self._handlers.get(event.name, [])) + list(self._handlers.get(None, []))

            dead_subscribers = []
            for queue in self._subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    dead_subscribers.append(queue)

            for queue in dead_subscribers:
                self._subscribers.remove(queue)

        logger.info(f"[BUS] {event.name.value} from {event.source_device}")

        # Handlers run outside the lock so they may publish in turn
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"[BUS] Handler failed for {event.name.value}: {e}", exc_info=True)

        return True

    def emit(self, name: EventName, payload: dict) -> BusEvent:
        """Publish a locally originated event and return it."""
        event = BusEvent(name=name, payload=payload, source_device=self.device_id)
        self.publish(event)
        return event

    async def stream(
        self,
        include_history: bool = True,
        history_count: int = 10
    ) -> AsyncIterator[BusEvent]:
        """Subscribe to events via async generator.

        Args:
            include_history: Whether to yield recent events first.
            history_count: Number of recent events to include from history.

        Yields:
            BusEvent objects as they arrive.
        """
        queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=100)

        with self._lock:
            self._subscribers.append(queue)
            self._stats["total_subscribers"] += 1

            if include_history:
                recent = list(self._history)[-history_count:]
                for event in recent:
                    queue.put_nowait(event)

        try:
            while True:
                event = await queue.get()
                yield event
        finally:
            with self._lock:
                if queue in self._subscribers:
                    self._subscribers.remove(queue)

    def get_history(self, count: int = 50) -> list[BusEvent]:
        """Get recent events from history, newest first."""
        with self._lock:
            return list(self._history)[-count:][::-1]

    def get_stats(self) -> dict:
        with self._lock:
            return {
                **self._stats,
                "current_subscribers": len(self._subscribers),
                "history_size": len(self._history),
            }

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    # Convenience publishers for the named events

    def publish_anomaly(self, event: AnomalyEvent) -> BusEvent:
        """Publish an anomalyDetected event for a heart-rate or blood-oxygen verdict.

        The receiver re-evaluates the value against its own policy, so a normal
        value relayed here ends the peer's countdown for the same kind.
        """
        return self.emit(
            EventName.ANOMALY_DETECTED,
            {
                "kind": event.kind.value,
                "value": event.value,
                "timestamp": event.timestamp.isoformat(),
            },
        )

    def publish_fall(self, event: AnomalyEvent) -> BusEvent:
        """Publish a fallDetected event, with location when known."""
        payload: Dict[str, Any] = {"timestamp": event.timestamp.isoformat()}
        if event.location is not None:
            payload["location"] = event.location.to_dict()
        return self.emit(EventName.FALL_DETECTED, payload)

    def publish_emergency(self, decision: EscalationDecision) -> BusEvent:
        """Publish an emergencyTriggered event carrying the full decision."""
        return self.emit(EventName.EMERGENCY_TRIGGERED, {"event": decision.to_dict()})

    def publish_cancel(self, kinds: List[VitalKind], keys: List[tuple]) -> BusEvent:
        """Publish an escalationCancelled event after a user cancel on this device."""
        return self.emit(
            EventName.ESCALATION_CANCELLED,
            {"kinds": [kind.value for kind in kinds], "keys": [list(key) for key in keys]},
        )


def fall_location(event: BusEvent) -> Optional[Location]:
    """Extract the optional location from a fallDetected payload."""
    return Location.from_dict(event.payload.get("location"))
