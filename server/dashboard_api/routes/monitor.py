"""Reading ingestion, SOS and escalation routes.

Handlers are async so every call into the monitor runs on the event loop
that owns the countdown timers.
"""
from typing import Optional
from fastapi import APIRouter, Depends

from vital_monitor.lifecycle import MonitorService

from ..dependencies import get_monitor
from ..models.monitor import CancelRequest, CancelResult, ReadingIn, ReadingResult, SOSResult

router = APIRouter(prefix="/api", tags=["Monitor"])


@router.post("/readings", response_model=ReadingResult)
async def ingest_reading(body: ReadingIn, monitor: MonitorService = Depends(get_monitor)):
    """
    Push one sensor reading into the pipeline.

    ``accepted`` is False when the device is not authorized for sensor
    access. ``verdict`` is None when the reading carried no value.
    """
    if not monitor.authorized:
        return ReadingResult(accepted=False, escalation=monitor.coordinator.snapshot())

    event = monitor.ingest(body.to_reading())
    return ReadingResult(
        accepted=True,
        verdict=event.to_dict() if event else None,
        escalation=monitor.coordinator.snapshot(),
    )


@router.post("/sos", response_model=SOSResult)
async def trigger_sos(monitor: MonitorService = Depends(get_monitor)):
    """Manual SOS: alert emergency contacts now with the latest known vitals."""
    decision = monitor.trigger_sos()
    return SOSResult(
        decision=decision.to_dict(),
        alerts=[record.to_dict() for record in monitor.last_records],
    )


@router.post("/escalation/cancel", response_model=CancelResult)
async def cancel_escalation(
    body: Optional[CancelRequest] = None,
    monitor: MonitorService = Depends(get_monitor),
):
    """Cancel a running countdown ("I'm OK")."""
    cancelled = monitor.cancel(body.kind if body else None)
    return CancelResult(cancelled=cancelled, escalation=monitor.coordinator.snapshot())


@router.get("/escalation/status")
async def get_escalation_status(monitor: MonitorService = Depends(get_monitor)):
    """Authorization, per-kind countdown state, latest vitals and counters."""
    return monitor.status()
