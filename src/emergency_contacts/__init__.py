"""
Emergency Contacts Module.

Contact registry, persistence, notification sinks and the alert dispatcher
that fans escalations out to contacts.
"""

from .registry import (
    ContactRegistry,
    EmergencyContact,
    NotificationPreference,
)
from .store import JsonContactStore
from .notifications import (
    FileNotificationSink,
    MemoryNotificationSink,
    NotificationCategory,
    UserAlertNotifier,
)
from .dispatcher import (
    AlertChannel,
    AlertDispatcher,
    AlertRecord,
    compose_message,
)

__all__ = [
    "ContactRegistry",
    "EmergencyContact",
    "NotificationPreference",
    "JsonContactStore",
    "FileNotificationSink",
    "MemoryNotificationSink",
    "NotificationCategory",
    "UserAlertNotifier",
    "AlertChannel",
    "AlertDispatcher",
    "AlertRecord",
    "compose_message",
]
