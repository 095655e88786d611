"""Error types raised by the monitoring pipeline."""

from enum import Enum


class MonitorError(Exception):
    """Base class for monitoring pipeline errors."""


class AuthorizationFailure(str, Enum):
    """Why sensor access could not be obtained."""

    AUTHORIZATION_DENIED = "authorization_denied"
    NOT_AVAILABLE = "not_available"


class SensorAuthorizationError(MonitorError):
    """Sensor access was refused or the device has no health sensors.

    Not fatal: the caller may retry authorization later.
    """

    def __init__(self, reason: AuthorizationFailure, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class ContactPersistenceError(MonitorError):
    """The contact set could not be written to durable storage.

    The in-memory registry keeps the mutation that preceded the failure.
    """


class DuplicateContactError(MonitorError):
    """A contact with the same id is already registered."""

    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Contact {contact_id} already exists")
