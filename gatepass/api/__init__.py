"""
API package for the gate pass backend.

This package aggregates all API routers to be included in the FastAPI
application. The API is versioned under ``/api/v1``.
"""

from fastapi import APIRouter, Depends
from .v1.passes import router as passes_router
from .v1.notifications import router as notifications_router
from .v1.health import router as health_router
from ..core.auth import get_current_user

api_router = APIRouter()
protected = [Depends(get_current_user)]
api_router.include_router(passes_router, dependencies=protected)
api_router.include_router(notifications_router, dependencies=protected)
api_router.include_router(health_router)
