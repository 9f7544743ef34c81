"""
Services package for the runtime manager.

Contains version management, the background session and the utility
tasks that run on it.
"""
from .background_session import BackgroundSession
from .container import ServiceContainer, build_services
from .utility_tasks import UtilityTasks, fallback_title
from .version_activator import VersionActivator
from .version_discovery import VersionDiscovery
from .version_downloader import VersionDownloader
from .version_registry import VersionRegistry

__all__ = [
    "BackgroundSession",
    "ServiceContainer",
    "UtilityTasks",
    "VersionActivator",
    "VersionDiscovery",
    "VersionDownloader",
    "VersionRegistry",
    "build_services",
    "fallback_title",
]
