"""
Unit tests for the monitor API routes.

Runs the FastAPI app in-process with TestClient around a MonitorService wired
to an in-memory sink and contact store.

Usage:
    pytest tests/test_dashboard_api.py -v
"""
import pytest
from fastapi.testclient import TestClient

from conftest import InMemoryStore, make_monitor
from emergency_contacts.notifications import NotificationCategory
from emergency_contacts.registry import ContactRegistry
from server.dashboard_api.config import Settings
from server.dashboard_api.main import create_app
from vital_monitor.errors import AuthorizationFailure, SensorAuthorizationError


@pytest.fixture
def store(contacts):
    return InMemoryStore(contacts)


@pytest.fixture
def service(sink, store):
    return make_monitor(sink, ContactRegistry(store))


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


class TestHealth:
    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestSettings:
    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("DASHBOARD_API_PORT", "9000")
        monkeypatch.setenv("DASHBOARD_STREAM_HISTORY_COUNT", "3")

        settings = Settings()

        assert settings.api_port == 9000
        assert settings.stream_history_count == 3


class TestContactRoutes:
    """CRUD over the contact registry."""

    def test_list_contacts(self, client):
        data = client.get("/api/contacts").json()

        assert [c["id"] for c in data] == ["alice", "bob", "carol", "dave"]
        assert data[1]["preference"] == "Critical Only"

    def test_list_active_only(self, client):
        data = client.get("/api/contacts", params={"active_only": True}).json()

        assert "dave" not in [c["id"] for c in data]

    def test_add_contact(self, client, store):
        response = client.post("/api/contacts", json={
            "name": "Erin",
            "phone_number": "+15550005",
            "relationship": "Sister",
            "preference": "All Alerts",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["persisted"]
        assert body["contact"]["name"] == "Erin"
        assert body["contact"]["id"]
        assert store.saved[-1].name == "Erin"

    def test_add_duplicate_id_conflicts(self, client):
        response = client.post("/api/contacts", json={
            "id": "alice", "name": "Alice 2", "phone_number": "+1",
        })

        assert response.status_code == 409

    def test_add_invalid_preference_rejected(self, client):
        response = client.post("/api/contacts", json={
            "name": "Erin", "phone_number": "+1", "preference": "Sometimes",
        })

        assert response.status_code == 422

    def test_update_contact(self, client):
        response = client.put("/api/contacts/bob", json={
            "name": "Robert",
            "phone_number": "+15550002",
            "relationship": "Neighbor",
            "preference": "None",
        })

        assert response.status_code == 200
        assert client.get("/api/contacts/bob").json()["name"] == "Robert"
        assert client.get("/api/contacts/bob").json()["preference"] == "None"

    def test_update_unknown_contact(self, client):
        response = client.put("/api/contacts/ghost", json={"name": "X", "phone_number": "1"})

        assert response.status_code == 404

    def test_delete_contact(self, client):
        assert client.delete("/api/contacts/carol").status_code == 200
        assert client.get("/api/contacts/carol").status_code == 404

    def test_set_active(self, client):
        response = client.post("/api/contacts/alice/active", json={"is_active": False})

        assert response.status_code == 200
        assert response.json()["contact"]["is_active"] is False

    def test_save_failure_reports_not_persisted(self, client, store):
        store.fail_on_save = True

        response = client.post("/api/contacts/alice/active", json={"is_active": False})

        assert response.status_code == 200
        body = response.json()
        assert body["persisted"] is False
        assert "disk full" in body["error"]
        assert client.get("/api/contacts/alice").json()["is_active"] is False

    def test_device_without_contacts(self, sink):
        watch = make_monitor(sink, None, device_id="watch")

        with TestClient(create_app(watch)) as watch_client:
            response = watch_client.get("/api/contacts")

        assert response.status_code == 404


class TestMonitorRoutes:
    """Reading ingestion, SOS and cancel."""

    def test_normal_reading(self, client):
        response = client.post("/api/readings", json={"kind": "heart_rate", "value": 72})

        body = response.json()
        assert body["accepted"]
        assert body["verdict"]["is_abnormal"] is False
        assert body["escalation"]["heart_rate"]["phase"] == "idle"

    def test_abnormal_reading_starts_countdown(self, client):
        response = client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        state = response.json()["escalation"]["heart_rate"]
        assert state["phase"] == "counting_down"
        assert state["remaining"] == 30

    def test_reading_without_value_has_no_verdict(self, client):
        response = client.post("/api/readings", json={"kind": "blood_oxygen"})

        assert response.json()["accepted"]
        assert response.json()["verdict"] is None

    def test_unknown_kind_rejected(self, client):
        response = client.post("/api/readings", json={"kind": "glucose", "value": 5.5})

        assert response.status_code == 422

    def test_fall_dispatches_immediately(self, client, sink):
        response = client.post("/api/readings", json={
            "kind": "fall", "value": 1, "latitude": 37.7749, "longitude": -122.4194,
        })

        assert response.json()["verdict"]["is_abnormal"]
        messages = sink.by_category(NotificationCategory.EMERGENCY_SMS)
        assert len(messages) == 2
        assert "maps.google.com/?q=37.7749,-122.4194" in messages[0].body

    def test_cancel_countdown(self, client):
        client.post("/api/readings", json={"kind": "blood_oxygen", "value": 92.0})

        response = client.post("/api/escalation/cancel", json={"kind": "blood_oxygen"})

        assert response.json()["cancelled"]
        assert response.json()["escalation"]["blood_oxygen"]["phase"] == "idle"

    def test_cancel_without_body_cancels_all(self, client):
        client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        assert client.post("/api/escalation/cancel").json()["cancelled"]

    def test_cancel_when_idle(self, client):
        assert client.post("/api/escalation/cancel", json={}).json()["cancelled"] is False

    def test_sos(self, client):
        client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        body = client.post("/api/sos").json()

        assert body["decision"]["trigger"] == "manual_sos"
        assert sorted(a["contact_id"] for a in body["alerts"]) == ["alice", "bob"]
        assert "Heart Rate: 130 BPM" in body["alerts"][0]["message"]

    def test_status(self, client):
        client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        status = client.get("/api/escalation/status").json()

        assert status["authorized"]
        assert status["escalation"]["heart_rate"]["phase"] == "counting_down"
        assert status["vitals"]["heart_rate"] == 130.0

    def test_readings_rejected_without_authorization(self, sink, registry):
        service = make_monitor(sink, registry)

        async def deny():
            raise SensorAuthorizationError(AuthorizationFailure.AUTHORIZATION_DENIED)

        service.authorizer.request_authorization = deny

        with TestClient(create_app(service)) as denied_client:
            response = denied_client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        assert response.json()["accepted"] is False


class TestEventRoutes:
    """Bus history and stats (the SSE stream is covered through EventBus.stream)."""

    def test_history_after_anomaly(self, client):
        client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        history = client.get("/api/events/history").json()

        assert history[0]["name"] == "anomalyDetected"
        assert history[0]["payload"]["value"] == 130.0
        assert history[0]["source_device"] == "phone"

    def test_history_after_sos(self, client):
        client.post("/api/sos")

        names = [e["name"] for e in client.get("/api/events/history").json()]

        assert names == ["emergencyTriggered"]

    def test_stats(self, client):
        client.post("/api/readings", json={"kind": "heart_rate", "value": 130})

        assert client.get("/api/events/stats").json()["total_published"] == 1
