"""
Notification Sinks and User-Facing Alerts.

The core never talks to the OS notification tray or a phone network itself.
It hands each notification to a sink with the contract

    send(title, body, category, actions, payload)

which is fire-and-forget: a sink may return a coroutine (scheduled by the
caller) and any failure it raises is non-fatal to the pipeline.
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Dict, List, Optional, Protocol, Sequence, Set, Union

from vital_monitor.models import AnomalyEvent, Location, VitalKind

from .registry import EmergencyContact

logger = logging.getLogger(__name__)


class NotificationCategory(str, Enum):
    """Notification categories, each with its own action set."""

    HEART_RATE_ALERT = "HEART_RATE_ALERT"
    BLOOD_OXYGEN_ALERT = "BLOOD_OXYGEN_ALERT"
    FALL_DETECTED_ALERT = "FALL_DETECTED_ALERT"
    EMERGENCY_CONTACT_ALERT = "EMERGENCY_CONTACT_ALERT"
    EMERGENCY_SMS = "EMERGENCY_SMS"
    EMERGENCY_CALL = "EMERGENCY_CALL"


class NotificationAction(str, Enum):
    """Actions offered on a notification."""

    DISMISS = "DISMISS_ACTION"
    CALL_EMERGENCY = "CALL_EMERGENCY_ACTION"
    CHECK_DETAILS = "CHECK_DETAILS_ACTION"


CATEGORY_ACTIONS: Dict[NotificationCategory, tuple] = {
    NotificationCategory.HEART_RATE_ALERT: (
        NotificationAction.CHECK_DETAILS,
        NotificationAction.CALL_EMERGENCY,
        NotificationAction.DISMISS,
    ),
    NotificationCategory.BLOOD_OXYGEN_ALERT: (
        NotificationAction.CHECK_DETAILS,
        NotificationAction.CALL_EMERGENCY,
        NotificationAction.DISMISS,
    ),
    NotificationCategory.FALL_DETECTED_ALERT: (
        NotificationAction.CALL_EMERGENCY,
        NotificationAction.DISMISS,
    ),
    NotificationCategory.EMERGENCY_CONTACT_ALERT: (),
    NotificationCategory.EMERGENCY_SMS: (),
    NotificationCategory.EMERGENCY_CALL: (),
}


class NotificationSink(Protocol):
    """Receives notifications for delivery outside the core."""

    def send(
        self,
        title: str,
        body: str,
        category: NotificationCategory,
        actions: Sequence[NotificationAction],
        payload: Dict[str, Any],
    ) -> Any: ...


@dataclass
class Notification:
    """A notification as handed to a sink."""

    title: str
    body: str
    category: NotificationCategory
    actions: List[NotificationAction]
    payload: Dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "category": self.category.value,
            "actions": [action.value for action in self.actions],
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class MemoryNotificationSink:
    """Keeps every notification in memory. Useful for tests and status views."""

    def __init__(self, max_size: int = 500):
        self.max_size = max_size
        self.sent: List[Notification] = []
        self._lock = threading.Lock()

    def send(self, title, body, category, actions, payload) -> None:
        with self._lock:
            self.sent.append(Notification(title, body, category, list(actions), dict(payload)))
            if len(self.sent) > self.max_size:
                self.sent.pop(0)

    def by_category(self, category: NotificationCategory) -> List[Notification]:
        with self._lock:
            return [n for n in self.sent if n.category == category]


class FileNotificationSink:
    """
    Appends each notification as one line to a log file.

    The file can be followed with ``tail -f`` during demos. Inside a running
    event loop the write happens on a worker thread and send() returns the
    pending coroutine, so the loop never waits on disk I/O. Without a loop
    the line is written inline and I/O errors propagate to the caller.
    """

    def __init__(self, path: Union[str, Path] = "health_notifications.log"):
        self.path = Path(path)
        self._lock = threading.Lock()

    def send(self, title, body, category, actions, payload) -> Optional[Awaitable[None]]:
        timestamp = datetime.now(timezone.utc).isoformat()
        target = payload.get("phone_number")
        recipient = f" -> {target}" if target else ""
        flattened = body.replace("\n", " | ")
        line = f"[{timestamp}] [{category.value}]{recipient} {title}: {flattened}\n"

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._write(line)
            return None
        return asyncio.to_thread(self._write, line)

    def _write(self, line: str) -> None:
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        logger.debug(f"[NOTIFY] Written to {self.path}")


# Strong references to in-flight async deliveries
_pending_deliveries: Set[asyncio.Future] = set()


def schedule_delivery(result: Any, description: str) -> None:
    """
    Run an async sink's delivery in the background.

    Sinks may return an awaitable instead of delivering inline. It is
    scheduled on the running loop and never awaited by the caller; failures
    are logged when the delivery completes.
    """
    if not inspect.isawaitable(result):
        return

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        logger.error(f"[NOTIFY] No running event loop for async delivery of {description}")
        if inspect.iscoroutine(result):
            result.close()
        return

    future = asyncio.ensure_future(result)
    _pending_deliveries.add(future)

    def _done(completed: asyncio.Future) -> None:
        _pending_deliveries.discard(completed)
        if completed.cancelled():
            return
        error = completed.exception()
        if error is not None:
            logger.error(f"[NOTIFY] Async delivery of {description} failed: {error}")

    future.add_done_callback(_done)


class UserAlertNotifier:
    """Composes the user-facing alerts shown on the device itself."""

    def __init__(self, sink: NotificationSink):
        self.sink = sink

    def vital_alert(self, event: AnomalyEvent) -> bool:
        """Send the local alert matching an abnormal verdict."""
        if event.kind == VitalKind.HEART_RATE and event.value is not None:
            return self.heart_rate_alert(event.value)
        if event.kind == VitalKind.BLOOD_OXYGEN and event.value is not None:
            return self.blood_oxygen_alert(event.value)
        if event.kind == VitalKind.FALL:
            return self.fall_alert(event.location)
        return False

    def heart_rate_alert(self, heart_rate: float) -> bool:
        return self._send(
            "Abnormal Heart Rate Detected",
            f"Heart rate is {int(heart_rate)} BPM, which is outside the normal range.",
            NotificationCategory.HEART_RATE_ALERT,
            {"heartRate": heart_rate},
        )

    def blood_oxygen_alert(self, blood_oxygen: float) -> bool:
        return self._send(
            "Low Blood Oxygen Level",
            f"Blood oxygen is {blood_oxygen:.1f}%, which is below the recommended level.",
            NotificationCategory.BLOOD_OXYGEN_ALERT,
            {"bloodOxygen": blood_oxygen},
        )

    def fall_alert(self, location: Optional[Location] = None) -> bool:
        payload: Dict[str, Any] = {"hasFallDetected": True}
        if location is not None:
            body = "A fall was detected. Location data is available."
            payload.update(location.to_dict())
        else:
            body = "A fall was detected."
        return self._send(
            "Fall Detected", body, NotificationCategory.FALL_DETECTED_ALERT, payload
        )

    def contact_alert_sent(self, contact: EmergencyContact) -> bool:
        return self._send(
            "Alert Sent to Emergency Contact",
            f"Emergency alert was sent to {contact.name}",
            NotificationCategory.EMERGENCY_CONTACT_ALERT,
            {"contact_id": contact.id},
        )

    def _send(self, title: str, body: str, category: NotificationCategory, payload: dict) -> bool:
        try:
            result = self.sink.send(title, body, category, CATEGORY_ACTIONS[category], payload)
            schedule_delivery(result, category.value)
            return True
        except Exception as e:
            logger.error(f"[NOTIFY] Failed to deliver {category.value}: {e}")
            return False
