"""
Service wiring.

Builds every service from a RuntimeConfig with explicit collaborators.
The API lifespan and the CLI both go through build_services().
"""
import functools
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..config import RuntimeConfig
from ..core.runtime_client import RuntimeClient
from ..db.database import create_engine, create_session_factory, init_db
from .background_session import BackgroundSession
from .credential_service import CredentialService
from .encryption_service import EncryptionService
from .utility_tasks import UtilityTasks
from .version_activator import VersionActivator, resolve_active_binary_path
from .version_discovery import VersionDiscovery
from .version_downloader import VersionDownloader
from .version_registry import VersionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    config: RuntimeConfig
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    http_client: httpx.AsyncClient
    registry: VersionRegistry
    credentials: CredentialService
    discovery: VersionDiscovery
    downloader: VersionDownloader
    session: BackgroundSession
    activator: VersionActivator
    utility_tasks: UtilityTasks

    async def startup(self) -> None:
        """Create tables and register the bundled version."""
        self.config.storage.data_dir.mkdir(parents=True, exist_ok=True)
        await init_db(self.engine)
        await self.activator.ensure_bundled_version_registered()

    async def aclose(self) -> None:
        await self.session.close()
        await self.http_client.aclose()
        await self.engine.dispose()
        logger.info("Services shut down")


def build_services(
    config: RuntimeConfig,
    http_client: Optional[httpx.AsyncClient] = None,
    runtime: Optional[RuntimeClient] = None,
    encryption: Optional[EncryptionService] = None,
    platform_key: Optional[str] = None,
) -> ServiceContainer:
    """
    Construct the service graph.

    Args:
        config: Loaded configuration.
        http_client: Client for the distribution server. A new one is
            created when omitted; the container closes it either way.
        runtime: Runtime client, e.g. one with a scripted query function.
        encryption: Credential encryption; defaults to the secrets.yaml key.
        platform_key: Override for the detected platform.
    """
    engine = create_engine(config.storage.resolved_database_url)
    session_factory = create_session_factory(engine)
    http = http_client or httpx.AsyncClient(follow_redirects=True)

    registry = VersionRegistry(session_factory)
    credentials = CredentialService(session_factory, encryption or EncryptionService())
    discovery = VersionDiscovery(config.distribution, http)
    downloader = VersionDownloader(
        config.distribution, config.storage, registry, http, platform_key=platform_key
    )
    session = BackgroundSession(
        runtime=runtime or RuntimeClient(),
        credentials=credentials,
        resolve_binary_path=functools.partial(
            resolve_active_binary_path, registry, config.bundled.binary_path
        ),
        config=config.background_session,
        storage=config.storage,
    )
    activator = VersionActivator(
        registry, discovery, config.bundled, session, platform_key=platform_key
    )

    return ServiceContainer(
        config=config,
        engine=engine,
        session_factory=session_factory,
        http_client=http,
        registry=registry,
        credentials=credentials,
        discovery=discovery,
        downloader=downloader,
        session=session,
        activator=activator,
        utility_tasks=UtilityTasks(session),
    )
