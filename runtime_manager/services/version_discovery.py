"""
Version discovery against the runtime distribution server.

The server has no listing endpoint, so versions are found by reading the
latest version from the public install script and probing manifest URLs
for nearby patch releases. Results are cached for a short TTL.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..config import DistributionConfig
from ..core.schemas import parse_semver, version_sort_key

logger = logging.getLogger(__name__)

INSTALL_SCRIPT_VERSION_PATTERN = re.compile(r'CLAUDE_CODE_VERSION="([^"]+)"')


@dataclass
class DiscoveryCache:
    versions: list[str]
    fetched_at: float


def sort_versions_desc(versions: set[str]) -> list[str]:
    """Sort version strings newest first; releases rank above their pre-releases."""
    return sorted(versions, key=version_sort_key, reverse=True)


def manifest_url(base_url: str, version: str) -> str:
    return f"{base_url}/{version}/manifest.json"


class VersionDiscovery:
    """Finds which runtime versions the distribution server offers."""

    def __init__(
        self,
        config: DistributionConfig,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._http = http_client
        self._clock = clock
        self._cache: Optional[DiscoveryCache] = None

    async def get_latest_version_from_install_script(self) -> Optional[str]:
        """Extract the version pinned in the install script, or None on any failure."""
        try:
            response = await self._http.get(
                self._config.install_script_url,
                timeout=self._config.request_timeout_seconds,
            )
            match = INSTALL_SCRIPT_VERSION_PATTERN.search(response.text)
            return match.group(1) if match else None
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch install script: {e}")
            return None

    async def version_exists(self, version: str) -> bool:
        """HEAD the version's manifest. Any failure counts as absent."""
        try:
            response = await self._http.head(
                manifest_url(self._config.base_url, version),
                timeout=self._config.probe_timeout_seconds,
            )
            return response.is_success
        except httpx.HTTPError:
            return False

    def candidate_versions(self, latest: str) -> list[str]:
        """
        Versions to probe around the latest release.

        Patches latest..latest-window on the latest minor line, and
        previous_window..0 on the previous minor line when there is one.
        """
        major, minor, patch = parse_semver(latest)
        candidates = [
            f"{major}.{minor}.{p}"
            for p in range(patch, max(0, patch - self._config.latest_minor_window) - 1, -1)
        ]
        if minor > 0:
            candidates.extend(
                f"{major}.{minor - 1}.{p}"
                for p in range(self._config.previous_minor_window, -1, -1)
            )
        return candidates

    async def discover_available_versions(self) -> list[str]:
        """
        Return every version the server offers near the latest one, newest first.

        Served from cache while the cache is younger than the TTL.
        """
        now = self._clock()
        if self._cache and now - self._cache.fetched_at < self._config.cache_ttl_seconds:
            return list(self._cache.versions)

        latest = await self.get_latest_version_from_install_script()
        candidates = self.candidate_versions(latest or self._config.fallback_version)

        results = await asyncio.gather(
            *(self.version_exists(version) for version in candidates),
            return_exceptions=True,
        )

        found = {
            version for version, exists in zip(candidates, results) if exists is True
        }
        if latest:
            found.add(latest)

        versions = sort_versions_desc(found)
        self._cache = DiscoveryCache(versions=versions, fetched_at=now)

        logger.info(f"Discovered {len(versions)} versions: {versions}")
        return list(versions)

    def clear_version_cache(self) -> None:
        self._cache = None
