"""
Emergency Contact Registry.

Owns the user's emergency contacts and their notification preferences. Every
mutation is followed by a write to the contact store. If that write fails the
in-memory change stands for the rest of the session and the caller gets a
ContactPersistenceError.

Update, remove and set_active on an unknown id are no-ops so UI retries are
harmless.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Protocol

from vital_monitor.errors import ContactPersistenceError, DuplicateContactError

logger = logging.getLogger(__name__)


class NotificationPreference(str, Enum):
    """Which escalations a contact wants to hear about."""

    ALL = "All Alerts"
    CRITICAL_ONLY = "Critical Only"
    NONE = "None"


@dataclass
class EmergencyContact:
    """A person to alert when an escalation fires."""

    name: str
    phone_number: str
    relationship: str
    preference: NotificationPreference = NotificationPreference.ALL
    is_active: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        """Persistence form, using the stored record's field names."""
        return {
            "id": self.id,
            "name": self.name,
            "phoneNumber": self.phone_number,
            "relationship": self.relationship,
            "notificationPreference": self.preference.value,
            "isActive": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EmergencyContact":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            phone_number=data["phoneNumber"],
            relationship=data.get("relationship", ""),
            preference=NotificationPreference(data.get("notificationPreference", "All Alerts")),
            is_active=bool(data.get("isActive", True)),
        )


class ContactStore(Protocol):
    """Durable storage for the full contact set."""

    def save(self, contacts: List[EmergencyContact]) -> None: ...

    def load(self) -> List[EmergencyContact]: ...


class ContactRegistry:
    """
    Thread-safe registry of emergency contacts.

    Accessed from both the UI/API side and the device's event loop, so every
    operation holds the registry lock.
    """

    def __init__(self, store: Optional[ContactStore] = None):
        self._store = store
        self._lock = threading.RLock()
        self._contacts: List[EmergencyContact] = []

        if store is not None:
            self._contacts = self._unique(store.load())
        logger.info(f"[CONTACTS] Registry loaded with {len(self._contacts)} contact(s)")

    def add(self, contact: EmergencyContact) -> EmergencyContact:
        """
        Register a new contact.

        Raises:
            DuplicateContactError: if a contact with the same id exists
            ContactPersistenceError: if the contact was added but not saved
        """
        with self._lock:
            if self._index_of(contact.id) is not None:
                raise DuplicateContactError(contact.id)
            self._contacts.append(replace(contact))
            logger.info(f"[CONTACTS] Added {contact.name} ({contact.id})")
            self._persist()
            return replace(contact)

    def update(self, contact: EmergencyContact) -> bool:
        """Replace the stored contact with the same id. Returns False if unknown."""
        with self._lock:
            index = self._index_of(contact.id)
            if index is None:
                logger.debug(f"[CONTACTS] Update for unknown contact {contact.id} ignored")
                return False
            self._contacts[index] = replace(contact)
            logger.info(f"[CONTACTS] Updated {contact.name} ({contact.id})")
            self._persist()
            return True

    def remove(self, contact_id: str) -> bool:
        """Remove a contact. Returns False if unknown."""
        with self._lock:
            index = self._index_of(contact_id)
            if index is None:
                logger.debug(f"[CONTACTS] Remove for unknown contact {contact_id} ignored")
                return False
            removed = self._contacts.pop(index)
            logger.info(f"[CONTACTS] Removed {removed.name} ({contact_id})")
            self._persist()
            return True

    def set_active(self, contact_id: str, active: bool) -> bool:
        """Enable or disable alerts to a contact. Returns False if unknown."""
        with self._lock:
            index = self._index_of(contact_id)
            if index is None:
                return False
            self._contacts[index].is_active = active
            logger.info(f"[CONTACTS] {contact_id} active={active}")
            self._persist()
            return True

    def toggle_active(self, contact_id: str) -> bool:
        with self._lock:
            index = self._index_of(contact_id)
            if index is None:
                return False
            return self.set_active(contact_id, not self._contacts[index].is_active)

    def get(self, contact_id: str) -> Optional[EmergencyContact]:
        with self._lock:
            index = self._index_of(contact_id)
            return replace(self._contacts[index]) if index is not None else None

    def list(self, active_only: bool = False) -> List[EmergencyContact]:
        """Contacts in insertion order, as copies."""
        with self._lock:
            return [
                replace(contact)
                for contact in self._contacts
                if contact.is_active or not active_only
            ]

    def __len__(self) -> int:
        with self._lock:
            return len(self._contacts)

    @staticmethod
    def _unique(contacts: List[EmergencyContact]) -> List[EmergencyContact]:
        """Drop repeated ids from loaded contacts. The last record for an id wins."""
        by_id = {}
        for contact in contacts:
            if contact.id in by_id:
                logger.warning(
                    f"[CONTACTS] Duplicate contact id {contact.id} in store, keeping the last"
                )
                del by_id[contact.id]
            by_id[contact.id] = contact
        return list(by_id.values())

    def _index_of(self, contact_id: str) -> Optional[int]:
        for index, contact in enumerate(self._contacts):
            if contact.id == contact_id:
                return index
        return None

    def _persist(self) -> None:
        if self._store is None:
            return
        try:
            self._store.save([replace(contact) for contact in self._contacts])
        except OSError as e:
            logger.error(f"[CONTACTS] Failed to save contacts: {e}")
            raise ContactPersistenceError(f"Failed to save contacts: {e}") from e
