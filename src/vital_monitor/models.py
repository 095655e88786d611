"""
Core data model for vital-sign monitoring.

Readings come in from sensors, the threshold evaluator turns each one into an
AnomalyEvent, and the escalation coordinator turns persistent anomalies into
EscalationDecisions. Everything here is plain data with dict round-tripping
for the event bus and the HTTP surface.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return _utcnow()
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class VitalKind(str, Enum):
    """Kinds of readings the monitor evaluates."""

    HEART_RATE = "heart_rate"
    BLOOD_OXYGEN = "blood_oxygen"
    FALL = "fall"


@dataclass(frozen=True)
class Location:
    """Where the user was when a reading was taken."""

    latitude: float
    longitude: float

    def maps_link(self) -> str:
        return f"https://maps.google.com/?q={self.latitude},{self.longitude}"

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Location"]:
        if not data:
            return None
        return cls(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


@dataclass(frozen=True)
class Reading:
    """A single sensor sample.

    For falls, ``value`` carries the fall flag (non-zero means a fall).
    """

    kind: VitalKind
    value: Optional[float] = None
    location: Optional[Location] = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def heart_rate(cls, bpm: Optional[float], **kwargs) -> "Reading":
        return cls(kind=VitalKind.HEART_RATE, value=bpm, **kwargs)

    @classmethod
    def blood_oxygen(cls, percent: Optional[float], **kwargs) -> "Reading":
        return cls(kind=VitalKind.BLOOD_OXYGEN, value=percent, **kwargs)

    @classmethod
    def fall(cls, detected: bool = True, **kwargs) -> "Reading":
        return cls(kind=VitalKind.FALL, value=1.0 if detected else 0.0, **kwargs)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "location": self.location.to_dict() if self.location else None,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reading":
        value = data.get("value")
        return cls(
            kind=VitalKind(data["kind"]),
            value=float(value) if value is not None else None,
            location=Location.from_dict(data.get("location")),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass(frozen=True)
class AnomalyEvent:
    """Verdict for one reading. Produced fresh on every evaluation."""

    kind: VitalKind
    value: Optional[float]
    is_abnormal: bool
    timestamp: datetime = field(default_factory=_utcnow)
    location: Optional[Location] = None

    @property
    def key(self) -> Tuple[str, Optional[float], str]:
        """Identity used to recognise a redelivered event."""
        return (self.kind.value, self.value, self.timestamp.isoformat())

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "is_abnormal": self.is_abnormal,
            "timestamp": self.timestamp.isoformat(),
            "location": self.location.to_dict() if self.location else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AnomalyEvent":
        value = data.get("value")
        return cls(
            kind=VitalKind(data["kind"]),
            value=float(value) if value is not None else None,
            is_abnormal=bool(data["is_abnormal"]),
            timestamp=_parse_timestamp(data.get("timestamp")),
            location=Location.from_dict(data.get("location")),
        )


class EscalationPhase(str, Enum):
    """Phases of the per-kind escalation state machine."""

    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    ESCALATED = "escalated"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class EscalationState:
    """Escalation state for one vital kind."""

    phase: EscalationPhase
    remaining: Optional[int] = None  # seconds, only while counting down
    started_at: Optional[datetime] = None

    @classmethod
    def idle(cls) -> "EscalationState":
        return cls(EscalationPhase.IDLE)

    @classmethod
    def counting_down(cls, remaining: int, started_at: datetime) -> "EscalationState":
        return cls(EscalationPhase.COUNTING_DOWN, remaining=remaining, started_at=started_at)

    @classmethod
    def escalated(cls) -> "EscalationState":
        return cls(EscalationPhase.ESCALATED)

    @classmethod
    def cancelled(cls) -> "EscalationState":
        return cls(EscalationPhase.CANCELLED)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "remaining": self.remaining,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


class EscalationTrigger(str, Enum):
    """What caused an escalation."""

    COUNTDOWN_ELAPSED = "countdown_elapsed"
    FALL_DETECTED = "fall_detected"
    MANUAL_SOS = "manual_sos"
    PEER_ESCALATED = "peer_escalated"


@dataclass(frozen=True)
class VitalsSnapshot:
    """Most recent known value of each vital."""

    heart_rate: Optional[float] = None
    blood_oxygen: Optional[float] = None
    fall_detected: bool = False
    location: Optional[Location] = None
    updated_at: Optional[datetime] = None

    def with_reading(self, reading: Reading) -> "VitalsSnapshot":
        """Return a snapshot updated with ``reading``; absent values keep the old ones."""
        changes: Dict[str, Any] = {"updated_at": reading.timestamp}
        if reading.location is not None:
            changes["location"] = reading.location
        if reading.kind == VitalKind.HEART_RATE and reading.value is not None:
            changes["heart_rate"] = reading.value
        elif reading.kind == VitalKind.BLOOD_OXYGEN and reading.value is not None:
            changes["blood_oxygen"] = reading.value
        elif reading.kind == VitalKind.FALL:
            changes["fall_detected"] = bool(reading.value)
        return replace(self, **changes)

    @classmethod
    def from_event(cls, event: AnomalyEvent) -> "VitalsSnapshot":
        snapshot = cls(location=event.location, updated_at=event.timestamp)
        if event.kind == VitalKind.HEART_RATE:
            return replace(snapshot, heart_rate=event.value)
        if event.kind == VitalKind.BLOOD_OXYGEN:
            return replace(snapshot, blood_oxygen=event.value)
        return replace(snapshot, fall_detected=event.is_abnormal)

    def to_dict(self) -> dict:
        return {
            "heart_rate": self.heart_rate,
            "blood_oxygen": self.blood_oxygen,
            "fall_detected": self.fall_detected,
            "location": self.location.to_dict() if self.location else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "VitalsSnapshot":
        if not data:
            return cls()
        updated_at = data.get("updated_at")
        return cls(
            heart_rate=data.get("heart_rate"),
            blood_oxygen=data.get("blood_oxygen"),
            fall_detected=bool(data.get("fall_detected", False)),
            location=Location.from_dict(data.get("location")),
            updated_at=_parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class HealthAnalysis:
    """Result from the remote risk-scoring service."""

    timestamp: str
    is_anomaly: bool
    risk_score: float
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "is_anomaly": self.is_anomaly,
            "risk_score": self.risk_score,
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HealthAnalysis":
        return cls(
            timestamp=str(data["timestamp"]),
            is_anomaly=bool(data["is_anomaly"]),
            risk_score=float(data["risk_score"]),
            recommendations=[str(r) for r in data.get("recommendations", [])],
        )


@dataclass(frozen=True)
class EscalationDecision:
    """A decision to alert emergency contacts.

    ``kind`` and ``event`` are None for a manual SOS, which is not tied to a
    single reading.
    """

    trigger: EscalationTrigger
    vitals: VitalsSnapshot
    kind: Optional[VitalKind] = None
    event: Optional[AnomalyEvent] = None
    analysis: Optional[HealthAnalysis] = None
    decided_at: datetime = field(default_factory=_utcnow)
    episode_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "episode_id": self.episode_id,
            "trigger": self.trigger.value,
            "kind": self.kind.value if self.kind else None,
            "event": self.event.to_dict() if self.event else None,
            "vitals": self.vitals.to_dict(),
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "decided_at": self.decided_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationDecision":
        kind = data.get("kind")
        event = data.get("event")
        analysis = data.get("analysis")
        return cls(
            episode_id=data["episode_id"],
            trigger=EscalationTrigger(data["trigger"]),
            kind=VitalKind(kind) if kind else None,
            event=AnomalyEvent.from_dict(event) if event else None,
            vitals=VitalsSnapshot.from_dict(data.get("vitals")),
            analysis=HealthAnalysis.from_dict(analysis) if analysis else None,
            decided_at=_parse_timestamp(data.get("decided_at")),
        )
