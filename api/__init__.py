"""
API Module
FastAPI routers for the DoseKeeper application
"""

from api.reminders import router as reminders_router
from api.devices import router as devices_router
from api.alerts import router as alerts_router
from api.adherence import router as adherence_router

from api.deps import (
    get_db,
    require_caregiver_id,
    services,
)


__all__ = [
    # Routers
    "reminders_router",
    "devices_router",
    "alerts_router",
    "adherence_router",
    # Dependencies
    "get_db",
    "require_caregiver_id",
    "services",
]


def include_routers(app, prefix: str = "/api/v1"):
    """
    Include all API routers in the FastAPI app

    Usage:
        from api import include_routers
        include_routers(app)
    """
    app.include_router(reminders_router, prefix=prefix)
    app.include_router(devices_router, prefix=prefix)
    app.include_router(alerts_router, prefix=prefix)
    app.include_router(adherence_router, prefix=prefix)
