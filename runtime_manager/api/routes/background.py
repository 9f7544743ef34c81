"""
Background session endpoints.

Provides endpoints for:
- GET /background/state - Current session state
- POST /background/init - Start the session (no-op if already ready)
- POST /background/reset - Close and return to idle
- POST /background/title - Generate a conversation title
"""
from typing import Optional

from fastapi import APIRouter, Depends

from ...core.schemas import SessionInitOptions
from ...services.background_session import BackgroundSession
from ...services.utility_tasks import UtilityTasks
from ..deps import get_session, get_utility_tasks
from ..models import SessionInitRequest, SessionStateResponse, TitleRequest, TitleResponse

router = APIRouter(prefix="/background", tags=["background"])


@router.get("/state", response_model=SessionStateResponse)
async def get_state(
    session: BackgroundSession = Depends(get_session),
) -> SessionStateResponse:
    return SessionStateResponse.from_state(session.get_state())


@router.post("/init", response_model=SessionStateResponse)
async def init_session(
    request: Optional[SessionInitRequest] = None,
    session: BackgroundSession = Depends(get_session),
) -> SessionStateResponse:
    """
    Initialize the background session.

    Failures are reported through the returned state (status "error"),
    not as an HTTP error.
    """
    options = SessionInitOptions(
        model=request.model if request else None,
        cwd=request.cwd if request else None,
    )
    return SessionStateResponse.from_state(await session.init(options))


@router.post("/reset", response_model=SessionStateResponse)
async def reset_session(
    session: BackgroundSession = Depends(get_session),
) -> SessionStateResponse:
    await session.reset()
    return SessionStateResponse.from_state(session.get_state())


@router.post("/title", response_model=TitleResponse)
async def generate_title(
    request: TitleRequest,
    utility_tasks: UtilityTasks = Depends(get_utility_tasks),
) -> TitleResponse:
    return TitleResponse(title=await utility_tasks.generate_title(request.message))
