"""API route modules."""
from .contacts import router as contacts_router
from .events import router as events_router
from .monitor import router as monitor_router

__all__ = [
    "contacts_router",
    "events_router",
    "monitor_router",
]
