"""Emergency contact routes.

Mutations that could not be saved still apply for the rest of the session;
the response then carries ``persisted: false`` and the error text.
"""
import logging
from fastapi import APIRouter, Depends, HTTPException

from emergency_contacts.registry import ContactRegistry, EmergencyContact
from vital_monitor.errors import ContactPersistenceError, DuplicateContactError

from ..dependencies import get_registry
from ..models.contacts import Contact, ContactActive, ContactCreate, ContactMutation, ContactUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contacts", tags=["Contacts"])


def _require(registry: ContactRegistry, contact_id: str) -> EmergencyContact:
    contact = registry.get(contact_id)
    if contact is None:
        raise HTTPException(status_code=404, detail=f"Contact {contact_id} not found")
    return contact


@router.get("", response_model=list[Contact])
async def list_contacts(
    active_only: bool = False,
    registry: ContactRegistry = Depends(get_registry),
):
    """List emergency contacts in the order they were added."""
    return [Contact.from_contact(c) for c in registry.list(active_only=active_only)]


@router.get("/{contact_id}", response_model=Contact)
async def get_contact(contact_id: str, registry: ContactRegistry = Depends(get_registry)):
    return Contact.from_contact(_require(registry, contact_id))


@router.post("", response_model=ContactMutation)
async def add_contact(body: ContactCreate, registry: ContactRegistry = Depends(get_registry)):
    """Register a new emergency contact."""
    fields = body.model_dump(exclude_none=True)
    contact = EmergencyContact(**fields)

    try:
        registry.add(contact)
    except DuplicateContactError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ContactPersistenceError as e:
        return ContactMutation(contact=Contact.from_contact(contact), persisted=False, error=str(e))

    return ContactMutation(contact=Contact.from_contact(contact))


@router.put("/{contact_id}", response_model=ContactMutation)
async def update_contact(
    contact_id: str,
    body: ContactUpdate,
    registry: ContactRegistry = Depends(get_registry),
):
    """Replace a contact's details."""
    _require(registry, contact_id)
    contact = EmergencyContact(id=contact_id, **body.model_dump())

    try:
        registry.update(contact)
    except ContactPersistenceError as e:
        return ContactMutation(contact=Contact.from_contact(contact), persisted=False, error=str(e))

    return ContactMutation(contact=Contact.from_contact(contact))


@router.delete("/{contact_id}", response_model=ContactMutation)
async def remove_contact(contact_id: str, registry: ContactRegistry = Depends(get_registry)):
    """Remove a contact."""
    _require(registry, contact_id)

    try:
        registry.remove(contact_id)
    except ContactPersistenceError as e:
        return ContactMutation(persisted=False, error=str(e))

    return ContactMutation()


@router.post("/{contact_id}/active", response_model=ContactMutation)
async def set_contact_active(
    contact_id: str,
    body: ContactActive,
    registry: ContactRegistry = Depends(get_registry),
):
    """Enable or disable alerts to a contact."""
    _require(registry, contact_id)

    persisted = True
    error = None
    try:
        registry.set_active(contact_id, body.is_active)
    except ContactPersistenceError as e:
        persisted = False
        error = str(e)

    return ContactMutation(
        contact=Contact.from_contact(registry.get(contact_id)),
        persisted=persisted,
        error=error,
    )
