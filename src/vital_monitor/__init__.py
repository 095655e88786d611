"""
Vital Monitor Module.

Threshold evaluation, countdown escalation and cross-device event relay for
one user's paired monitoring devices. The device service that wires these to
emergency contacts lives in ``vital_monitor.lifecycle``.
"""

from .errors import (
    ContactPersistenceError,
    DuplicateContactError,
    MonitorError,
    SensorAuthorizationError,
)
from .models import (
    AnomalyEvent,
    EscalationDecision,
    EscalationPhase,
    EscalationState,
    EscalationTrigger,
    Location,
    Reading,
    VitalKind,
    VitalsSnapshot,
)
from .threshold_evaluator import ThresholdEvaluator, ThresholdPolicy
from .escalation import EscalationCoordinator
from .event_bus import BusEvent, EventBus, EventName

__all__ = [
    "ContactPersistenceError",
    "DuplicateContactError",
    "MonitorError",
    "SensorAuthorizationError",
    "AnomalyEvent",
    "EscalationDecision",
    "EscalationPhase",
    "EscalationState",
    "EscalationTrigger",
    "Location",
    "Reading",
    "VitalKind",
    "VitalsSnapshot",
    "ThresholdEvaluator",
    "ThresholdPolicy",
    "EscalationCoordinator",
    "BusEvent",
    "EventBus",
    "EventName",
]
