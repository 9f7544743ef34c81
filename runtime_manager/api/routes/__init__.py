"""
API Routes package for the runtime manager.

Contains all FastAPI route handlers organized by domain.
"""
from .background import router as background_router
from .health import router as health_router
from .versions import router as versions_router

__all__ = [
    "background_router",
    "health_router",
    "versions_router",
]
