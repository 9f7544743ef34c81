"""
Runtime version endpoints.

Provides endpoints for:
- GET /versions/current - Active version (bundled when nothing is active)
- GET /versions - Downloaded and downloadable versions
- GET /versions/updates - Versions newer than the active one
- GET /versions/bundled - Bundled version id
- GET /versions/{version}/download - Download with SSE progress
- POST /versions/{version}/activate - Switch versions (restarts the background session)
- DELETE /versions/{version} - Delete a downloaded version
- POST /versions/reset - Go back to the bundled version
- POST /versions/cache/clear - Force rediscovery on the next listing
"""
import json
import logging
from contextlib import aclosing
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...services.version_activator import VersionActivator
from ...services.version_discovery import VersionDiscovery
from ...services.version_downloader import VersionDownloader
from ..deps import get_activator, get_discovery, get_downloader
from ..models import (
    BundledVersionResponse,
    UpdateCheckResponse,
    VersionActionResponse,
    VersionInfoResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/versions", tags=["versions"])


@router.get("/current", response_model=Optional[VersionInfoResponse])
async def get_current_version(
    activator: VersionActivator = Depends(get_activator),
) -> Optional[VersionInfoResponse]:
    await activator.ensure_bundled_version_registered()
    info = await activator.get_current_version_info()
    return VersionInfoResponse.from_info(info) if info else None


@router.get("", response_model=list[VersionInfoResponse])
async def list_versions(
    activator: VersionActivator = Depends(get_activator),
) -> list[VersionInfoResponse]:
    """All versions: what the server offers first, then local-only ones."""
    await activator.ensure_bundled_version_registered()
    return [VersionInfoResponse.from_info(info) for info in await activator.list_versions()]


@router.get("/updates", response_model=UpdateCheckResponse)
async def check_for_updates(
    activator: VersionActivator = Depends(get_activator),
) -> UpdateCheckResponse:
    return UpdateCheckResponse.from_check(await activator.check_for_updates())


@router.get("/bundled", response_model=BundledVersionResponse)
async def get_bundled_version(
    activator: VersionActivator = Depends(get_activator),
) -> BundledVersionResponse:
    return BundledVersionResponse(version=await activator.get_bundled_version())


@router.get("/{version}/download")
async def download_version(
    version: str,
    downloader: VersionDownloader = Depends(get_downloader),
) -> StreamingResponse:
    """
    Download a version, streaming progress as server-sent events.

    Each event is a JSON DownloadProgress. The stream ends after one
    "complete" or "error" event. Disconnecting cancels the download.
    """
    async def event_generator():
        async with aclosing(downloader.stream_download(version)) as events:
            async for event in events:
                yield f"data: {json.dumps(event.to_dict())}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/{version}/activate", response_model=VersionActionResponse)
async def activate_version(
    version: str,
    activator: VersionActivator = Depends(get_activator),
) -> VersionActionResponse:
    await activator.activate_version(version)
    return VersionActionResponse(success=True, version=version)


@router.delete("/{version}", response_model=VersionActionResponse)
async def delete_version(
    version: str,
    activator: VersionActivator = Depends(get_activator),
) -> VersionActionResponse:
    await activator.delete_version(version)
    return VersionActionResponse(success=True, version=version)


@router.post("/reset", response_model=VersionActionResponse)
async def reset_to_bundled(
    activator: VersionActivator = Depends(get_activator),
) -> VersionActionResponse:
    version = await activator.reset_to_bundled()
    return VersionActionResponse(success=True, version=version)


@router.post("/cache/clear", response_model=VersionActionResponse)
async def clear_cache(
    discovery: VersionDiscovery = Depends(get_discovery),
) -> VersionActionResponse:
    discovery.clear_version_cache()
    return VersionActionResponse(success=True)
