"""
FastAPI dependencies for the runtime manager API.

Services live on app.state.services, set by the application lifespan.
"""
from fastapi import Depends, HTTPException, Request, status

from ..services.background_session import BackgroundSession
from ..services.container import ServiceContainer
from ..services.utility_tasks import UtilityTasks
from ..services.version_activator import VersionActivator
from ..services.version_discovery import VersionDiscovery
from ..services.version_downloader import VersionDownloader


def get_services(request: Request) -> ServiceContainer:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services not initialized",
        )
    return services


def get_activator(services: ServiceContainer = Depends(get_services)) -> VersionActivator:
    return services.activator


def get_discovery(services: ServiceContainer = Depends(get_services)) -> VersionDiscovery:
    return services.discovery


def get_downloader(services: ServiceContainer = Depends(get_services)) -> VersionDownloader:
    return services.downloader


def get_session(services: ServiceContainer = Depends(get_services)) -> BackgroundSession:
    return services.session


def get_utility_tasks(services: ServiceContainer = Depends(get_services)) -> UtilityTasks:
    return services.utility_tasks
