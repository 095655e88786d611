"""Reading, escalation and event models."""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional

from vital_monitor.models import Location, Reading, VitalKind


class ReadingIn(BaseModel):
    """A sensor reading pushed by the device or the simulator."""

    kind: VitalKind
    value: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[datetime] = None

    def to_reading(self) -> Reading:
        location = None
        if self.latitude is not None and self.longitude is not None:
            location = Location(self.latitude, self.longitude)
        kwargs = {"location": location}
        if self.timestamp is not None:
            kwargs["timestamp"] = self.timestamp
        return Reading(kind=self.kind, value=self.value, **kwargs)


class ReadingResult(BaseModel):
    """Outcome of ingesting one reading."""

    accepted: bool
    verdict: Optional[dict] = None
    escalation: dict = Field(default_factory=dict)


class CancelRequest(BaseModel):
    """Cancel one countdown, or all of them when kind is omitted."""

    kind: Optional[VitalKind] = None


class CancelResult(BaseModel):
    cancelled: bool
    escalation: dict


class SOSResult(BaseModel):
    """Decision produced by a manual SOS and the alerts it dispatched."""

    decision: dict
    alerts: list[dict] = Field(default_factory=list)
