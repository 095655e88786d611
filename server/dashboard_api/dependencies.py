"""Request dependencies shared by the route modules."""
from fastapi import HTTPException, Request

from vital_monitor.lifecycle import MonitorService


def get_monitor(request: Request) -> MonitorService:
    """The device's MonitorService, created in the application lifespan."""
    monitor = getattr(request.app.state, "monitor", None)
    if monitor is None:
        raise HTTPException(status_code=503, detail="Monitor not started")
    return monitor


def get_registry(request: Request):
    """The contact registry, available only on the alert-dispatching device."""
    monitor = get_monitor(request)
    if monitor.registry is None:
        raise HTTPException(
            status_code=404,
            detail=f"Device {monitor.device_id} does not hold emergency contacts",
        )
    return monitor.registry
