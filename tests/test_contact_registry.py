"""
Unit tests for the emergency contact registry and its JSON store.

These tests verify:
1. Add/update/remove/set_active semantics, including unknown ids
2. Save-after-mutation and behaviour when the save fails
3. Loading from missing, valid and corrupt files

Usage:
    pytest tests/test_contact_registry.py -v
"""
import json
import threading
import pytest

from conftest import InMemoryStore
from emergency_contacts.registry import ContactRegistry, EmergencyContact, NotificationPreference
from emergency_contacts.store import JsonContactStore
from vital_monitor.errors import ContactPersistenceError, DuplicateContactError


def make_contact(name="Alice", contact_id=None, **kwargs):
    fields = {"name": name, "phone_number": "+15550001", "relationship": "Daughter"}
    fields.update(kwargs)
    if contact_id:
        fields["id"] = contact_id
    return EmergencyContact(**fields)


class TestEmergencyContact:
    """Contact records and their stored form."""

    def test_defaults(self):
        contact = make_contact()

        assert contact.preference == NotificationPreference.ALL
        assert contact.is_active
        assert contact.id

    def test_ids_are_unique(self):
        assert make_contact().id != make_contact().id

    def test_stored_field_names(self):
        contact = make_contact(contact_id="c1", preference=NotificationPreference.CRITICAL_ONLY)

        assert contact.to_dict() == {
            "id": "c1",
            "name": "Alice",
            "phoneNumber": "+15550001",
            "relationship": "Daughter",
            "notificationPreference": "Critical Only",
            "isActive": True,
        }

    def test_from_stored_form(self):
        contact = EmergencyContact.from_dict({
            "id": "c2",
            "name": "Bob",
            "phoneNumber": "+15550002",
            "relationship": "Neighbor",
            "notificationPreference": "None",
            "isActive": False,
        })

        assert contact.preference == NotificationPreference.NONE
        assert not contact.is_active


class TestRegistryMutations:
    """Every mutation is followed by a save."""

    def test_add_and_list(self):
        store = InMemoryStore()
        registry = ContactRegistry(store)

        registry.add(make_contact("Alice", "a"))
        registry.add(make_contact("Bob", "b"))

        assert [c.id for c in registry.list()] == ["a", "b"]
        assert store.save_count == 2
        assert [c.id for c in store.saved] == ["a", "b"]

    def test_add_duplicate_id_raises(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))

        with pytest.raises(DuplicateContactError):
            registry.add(make_contact("Other", "a"))
        assert len(registry) == 1

    def test_update(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))

        updated = registry.update(make_contact("Alice Smith", "a", phone_number="+15559999"))

        assert updated
        assert registry.get("a").name == "Alice Smith"
        assert registry.get("a").phone_number == "+15559999"

    def test_remove(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))

        assert registry.remove("a")
        assert registry.get("a") is None
        assert len(registry) == 0

    def test_set_active_and_list_active_only(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))
        registry.add(make_contact("Bob", "b"))

        registry.set_active("a", False)

        assert [c.id for c in registry.list(active_only=True)] == ["b"]
        assert len(registry.list()) == 2

    def test_toggle_active(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))

        registry.toggle_active("a")
        assert not registry.get("a").is_active

        registry.toggle_active("a")
        assert registry.get("a").is_active

    @pytest.mark.parametrize("operation", ["update", "remove", "set_active", "toggle_active"])
    def test_unknown_id_is_noop(self, operation):
        store = InMemoryStore()
        registry = ContactRegistry(store)

        if operation == "update":
            result = registry.update(make_contact("Ghost", "missing"))
        elif operation == "set_active":
            result = registry.set_active("missing", False)
        else:
            result = getattr(registry, operation)("missing")

        assert result is False
        assert store.save_count == 0

    def test_list_returns_copies(self):
        registry = ContactRegistry(InMemoryStore())
        registry.add(make_contact("Alice", "a"))

        registry.list()[0].is_active = False

        assert registry.get("a").is_active

    def test_registry_without_store(self):
        registry = ContactRegistry()
        registry.add(make_contact("Alice", "a"))

        assert len(registry) == 1

    def test_concurrent_adds(self):
        registry = ContactRegistry(InMemoryStore())

        def add_many(prefix):
            for i in range(50):
                registry.add(make_contact(f"{prefix}{i}", f"{prefix}-{i}"))

        threads = [threading.Thread(target=add_many, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 200


class TestPersistenceFailure:
    """A failed save keeps the in-memory change and raises."""

    def test_add_failure_keeps_contact(self):
        registry = ContactRegistry(InMemoryStore(fail_on_save=True))

        with pytest.raises(ContactPersistenceError):
            registry.add(make_contact("Alice", "a"))

        assert registry.get("a") is not None

    def test_set_active_failure_keeps_change(self, contacts):
        store = InMemoryStore(contacts)
        registry = ContactRegistry(store)
        store.fail_on_save = True

        with pytest.raises(ContactPersistenceError):
            registry.set_active("alice", False)

        assert not registry.get("alice").is_active

    def test_remove_failure_keeps_removal(self, contacts):
        store = InMemoryStore(contacts)
        registry = ContactRegistry(store)
        store.fail_on_save = True

        with pytest.raises(ContactPersistenceError):
            registry.remove("bob")

        assert registry.get("bob") is None


class TestLoading:
    """Contacts read from the store at construction."""

    def test_duplicate_ids_collapse_to_last_record(self):
        store = InMemoryStore([
            make_contact("Alice", "alice"),
            make_contact("Bob", "bob"),
            make_contact("Alice Smith", "alice"),
        ])

        registry = ContactRegistry(store)

        assert [c.id for c in registry.list()] == ["bob", "alice"]
        assert registry.get("alice").name == "Alice Smith"

    def test_removed_duplicate_is_gone(self):
        store = InMemoryStore([make_contact("Alice", "alice"), make_contact("Alice", "alice")])
        registry = ContactRegistry(store)

        registry.remove("alice")

        assert registry.list() == []
        assert store.saved == []


class TestJsonContactStore:
    """JSON array on disk, one object per contact."""

    def test_round_trip_through_registry(self, tmp_path):
        path = tmp_path / "contacts.json"
        registry = ContactRegistry(JsonContactStore(path))
        registry.add(make_contact("Alice", "a", preference=NotificationPreference.CRITICAL_ONLY))
        registry.add(make_contact("Bob", "b", is_active=False))

        reloaded = ContactRegistry(JsonContactStore(path))

        assert [c.id for c in reloaded.list()] == ["a", "b"]
        assert reloaded.get("a").preference == NotificationPreference.CRITICAL_ONLY
        assert not reloaded.get("b").is_active

    def test_file_format(self, tmp_path):
        path = tmp_path / "contacts.json"
        JsonContactStore(path).save([make_contact("Alice", "a")])

        data = json.loads(path.read_text())

        assert isinstance(data, list)
        assert data[0]["phoneNumber"] == "+15550001"
        assert data[0]["notificationPreference"] == "All Alerts"

    def test_missing_file_loads_empty(self, tmp_path):
        registry = ContactRegistry(JsonContactStore(tmp_path / "absent.json"))

        assert len(registry) == 0

    def test_corrupt_file_loads_empty(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text("{not json")

        assert JsonContactStore(path).load() == []

    def test_bad_record_skipped_others_kept(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps([
            make_contact("Alice", "alice").to_dict(),
            {"id": "bob", "name": "Bob", "phoneNumber": "2", "notificationPreference": "Sometimes"},
            {"id": "nameless", "phoneNumber": "3"},
        ]))

        assert [c.id for c in JsonContactStore(path).load()] == ["alice"]

    def test_bad_record_does_not_erase_file_on_next_save(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps([
            make_contact("Alice", "alice").to_dict(),
            {"id": "bob", "name": "Bob", "phoneNumber": "2", "notificationPreference": "Sometimes"},
        ]))
        registry = ContactRegistry(JsonContactStore(path))

        registry.add(make_contact("Carol", "carol"))

        assert [item["id"] for item in json.loads(path.read_text())] == ["alice", "carol"]

    def test_non_list_file_loads_empty(self, tmp_path):
        path = tmp_path / "contacts.json"
        path.write_text(json.dumps({"id": "alice"}))

        assert JsonContactStore(path).load() == []

    def test_unwritable_location_raises_persistence_error(self, tmp_path):
        store = JsonContactStore(tmp_path / "missing-dir" / "contacts.json")
        registry = ContactRegistry(store)

        with pytest.raises(ContactPersistenceError):
            registry.add(make_contact("Alice", "a"))

        assert len(registry) == 1
