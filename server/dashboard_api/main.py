"""LifeSignal Monitor API - FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vital_monitor.errors import SensorAuthorizationError
from vital_monitor.lifecycle import MonitorService, build_monitor_service

from .config import get_settings
from .routes import contacts, events, monitor as monitor_routes

logger = logging.getLogger(__name__)

settings = get_settings()


def create_app(monitor: Optional[MonitorService] = None) -> FastAPI:
    """
    Build the API around one device's MonitorService.

    Args:
        monitor: Service to expose; built from LIFESIGNAL_* settings on
            startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        service = app.state.monitor or build_monitor_service()
        app.state.monitor = service

        try:
            await service.authorize()
        except SensorAuthorizationError as e:
            logger.warning(f"[API] Monitor running without sensor access: {e}")

        service.start()
        try:
            yield
        finally:
            service.stop()

    app = FastAPI(
        title="LifeSignal Monitor API",
        description="Vital-sign ingestion, escalation control and emergency contacts",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.monitor = monitor

    # Configure CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(contacts.router)
    app.include_router(monitor_routes.router)
    app.include_router(events.router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for the API."""
        return {"status": "healthy", "service": "lifesignal-monitor"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "server.dashboard_api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
    )
