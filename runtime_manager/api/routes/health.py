"""
Health check endpoint for the runtime manager API.
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from ... import __version__
from ..models import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health information including version and timestamp."""
    return HealthResponse(
        status="ok",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )
