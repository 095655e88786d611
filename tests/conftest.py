"""
Pytest fixtures for LifeSignal monitor tests.
"""
import sys
import pytest
from pathlib import Path
from dotenv import load_dotenv

# Ensure the repo root and src/ are on sys.path so tests can import
# vital_monitor, emergency_contacts and server.dashboard_api.
ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
for path in (ROOT, SRC):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

# Load environment variables
load_dotenv()

from emergency_contacts.dispatcher import AlertChannel, AlertDispatcher
from emergency_contacts.notifications import MemoryNotificationSink, UserAlertNotifier
from emergency_contacts.registry import ContactRegistry, EmergencyContact, NotificationPreference
from vital_monitor.escalation import EscalationCoordinator
from vital_monitor.event_bus import EventBus
from vital_monitor.lifecycle import MonitorService
from vital_monitor.threshold_evaluator import ThresholdEvaluator


class FailingSink:
    """Sink whose every delivery raises."""

    def __init__(self):
        self.attempts = 0

    def send(self, title, body, category, actions, payload):
        self.attempts += 1
        raise RuntimeError("SMS gateway unavailable")


class InMemoryStore:
    """Contact store kept in memory, optionally failing on save."""

    def __init__(self, contacts=None, fail_on_save=False):
        self.saved = list(contacts or [])
        self.save_count = 0
        self.fail_on_save = fail_on_save

    def save(self, contacts):
        if self.fail_on_save:
            raise OSError("disk full")
        self.save_count += 1
        self.saved = list(contacts)

    def load(self):
        return list(self.saved)


@pytest.fixture
def sink():
    return MemoryNotificationSink()


@pytest.fixture
def evaluator():
    return ThresholdEvaluator()


@pytest.fixture
def contacts():
    """One contact per preference, plus an inactive one."""
    return [
        EmergencyContact("Alice", "+15550001", "Daughter", NotificationPreference.ALL, id="alice"),
        EmergencyContact("Bob", "+15550002", "Neighbor", NotificationPreference.CRITICAL_ONLY, id="bob"),
        EmergencyContact("Carol", "+15550003", "Friend", NotificationPreference.NONE, id="carol"),
        EmergencyContact("Dave", "+15550004", "Son", NotificationPreference.ALL, is_active=False, id="dave"),
    ]


@pytest.fixture
def registry(contacts):
    return ContactRegistry(InMemoryStore(contacts))


def make_monitor(
    sink,
    registry=None,
    device_id="phone",
    bus=None,
    countdown_seconds=30,
    auto_start_timer=False,
    tick_seconds=1.0,
    channels=(AlertChannel.SMS,),
):
    """Build a MonitorService wired to an in-memory sink."""
    coordinator = EscalationCoordinator(
        countdown_seconds=countdown_seconds,
        tick_seconds=tick_seconds,
        auto_start_timer=auto_start_timer,
    )
    dispatcher = AlertDispatcher(sink, channels=channels) if registry is not None else None
    return MonitorService(
        bus=bus or EventBus(device_id=device_id),
        coordinator=coordinator,
        notifier=UserAlertNotifier(sink),
        registry=registry,
        dispatcher=dispatcher,
    )


@pytest.fixture
def monitor(sink, registry):
    """Authorized phone monitor whose countdown advances only through tick()."""
    service = make_monitor(sink, registry)
    service.authorized = True
    return service
