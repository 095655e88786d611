"""Pydantic models for the monitor API."""
from .contacts import Contact, ContactActive, ContactCreate, ContactMutation, ContactUpdate
from .monitor import CancelRequest, CancelResult, ReadingIn, ReadingResult, SOSResult

__all__ = [
    "Contact",
    "ContactActive",
    "ContactCreate",
    "ContactMutation",
    "ContactUpdate",
    "CancelRequest",
    "CancelResult",
    "ReadingIn",
    "ReadingResult",
    "SOSResult",
]
