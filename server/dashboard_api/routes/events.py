"""Monitoring event routes.

Streams bus events (anomalies, falls, escalations, including those relayed
from the paired device) via Server-Sent Events.
"""
import json
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from vital_monitor.lifecycle import MonitorService

from ..config import get_settings
from ..dependencies import get_monitor

router = APIRouter(prefix="/api/events", tags=["Events"])


@router.get("/stream")
async def stream_events(
    include_history: bool = Query(True, description="Include recent events on connect"),
    history_count: Optional[int] = Query(None, ge=0, le=50, description="Number of historical events"),
    monitor: MonitorService = Depends(get_monitor),
):
    """
    Stream monitoring events via Server-Sent Events (SSE).

    The stream never closes - clients should handle reconnection.

    Usage with curl:
        curl -N http://localhost:8082/api/events/stream
    """
    if history_count is None:
        history_count = get_settings().stream_history_count

    async def event_generator():
        async for event in monitor.bus.stream(
            include_history=include_history,
            history_count=history_count,
        ):
            data = json.dumps(event.to_dict())
            yield f"event: {event.name.value}\ndata: {data}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        }
    )


@router.get("/history")
async def get_event_history(
    count: int = Query(50, ge=1, le=100, description="Number of events to return"),
    monitor: MonitorService = Depends(get_monitor),
):
    """Recent bus events, newest first."""
    return [event.to_dict() for event in monitor.bus.get_history(count)]


@router.get("/stats")
async def get_event_stats(monitor: MonitorService = Depends(get_monitor)):
    return monitor.bus.get_stats()
