"""Emergency contact models."""
from pydantic import BaseModel, Field
from typing import Optional

from emergency_contacts.registry import EmergencyContact, NotificationPreference


class ContactCreate(BaseModel):
    """Request body for registering a contact."""

    name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    relationship: str = ""
    preference: NotificationPreference = NotificationPreference.ALL
    is_active: bool = True
    id: Optional[str] = None


class ContactUpdate(BaseModel):
    """Request body for replacing a contact's details."""

    name: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    relationship: str = ""
    preference: NotificationPreference = NotificationPreference.ALL
    is_active: bool = True


class ContactActive(BaseModel):
    """Request body for enabling or disabling alerts to a contact."""

    is_active: bool


class Contact(BaseModel):
    """Emergency contact as returned by the API."""

    id: str
    name: str
    phone_number: str
    relationship: str
    preference: NotificationPreference
    is_active: bool

    @classmethod
    def from_contact(cls, contact: EmergencyContact) -> "Contact":
        return cls(
            id=contact.id,
            name=contact.name,
            phone_number=contact.phone_number,
            relationship=contact.relationship,
            preference=contact.preference,
            is_active=contact.is_active,
        )


class ContactMutation(BaseModel):
    """
    Result of a contact change.

    ``persisted`` is False when the change was applied in memory but could
    not be saved.
    """

    contact: Optional[Contact] = None
    persisted: bool = True
    error: Optional[str] = None
