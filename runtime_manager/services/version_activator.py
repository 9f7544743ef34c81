"""
Version activation and the active binary path.

Decides which runtime binary the rest of the service runs: the registry's
active downloaded version when its file still exists, the bundled binary
otherwise. Activating a version always restarts the background session so
the new binary is picked up.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import Optional, Protocol

from ..config import BundledConfig
from ..core.exceptions import (
    BundledVersionUnavailableError,
    MissingBinaryError,
    VersionNotFoundError,
)
from ..core.platforms import current_platform_key
from ..core.schemas import UpdateCheck, VersionInfo, version_sort_key
from ..db.models import ClaudeBinaryVersion
from .version_discovery import VersionDiscovery
from .version_registry import VersionRegistry

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"
VERSION_COMMAND_TIMEOUT = 5.0

_VERSION_OUTPUT_PATTERN = re.compile(r"claude\s+(\S+)")
_BARE_SEMVER_PATTERN = re.compile(r"\b(\d+\.\d+\.\d+\S*)")


class ResettableSession(Protocol):
    async def reset(self) -> None:
        ...


async def resolve_active_binary_path(registry: VersionRegistry, bundled_path: Path) -> Path:
    """
    Path of the binary the runtime should be started with.

    The active row's path when that file exists on disk, otherwise the
    bundled binary. Registry failures are logged and fall back to bundled.
    """
    try:
        active = await registry.get_active()
        if active and active.path and Path(active.path).exists():
            return Path(active.path)
    except Exception as e:
        logger.error(f"Error getting active version: {e}")
    return bundled_path


def parse_version_output(output: str) -> Optional[str]:
    """Extract the version from `claude --version` output."""
    text = output.strip()
    match = _VERSION_OUTPUT_PATTERN.search(text) or _BARE_SEMVER_PATTERN.search(text)
    return match.group(1) if match else None


def _to_info(
    row: ClaudeBinaryVersion, is_downloaded: bool = True, is_available: bool = True,
) -> VersionInfo:
    return VersionInfo(
        id=row.id,
        platform=row.platform,
        path=row.path,
        checksum=row.checksum,
        size=row.size,
        downloaded_at=row.downloaded_at,
        is_active=row.is_active,
        is_bundled=row.is_bundled,
        is_downloaded=is_downloaded,
        is_available=is_available,
    )


class VersionActivator:
    """Switches between registered runtime versions."""

    def __init__(
        self,
        registry: VersionRegistry,
        discovery: VersionDiscovery,
        bundled: BundledConfig,
        session: ResettableSession,
        platform_key: Optional[str] = None,
    ) -> None:
        self._registry = registry
        self._discovery = discovery
        self._bundled_path = bundled.binary_path
        self._session = session
        self._platform_key = platform_key or current_platform_key()

    @property
    def bundled_path(self) -> Path:
        return self._bundled_path

    async def get_active_binary_path(self) -> Path:
        return await resolve_active_binary_path(self._registry, self._bundled_path)

    async def get_bundled_version(self) -> str:
        """
        Version of the bundled binary, or "unknown".

        Reads the first line of the VERSION file one level above the
        binary's directory, then falls back to running `<binary> --version`.
        """
        version_file = self._bundled_path.parent.parent / "VERSION"
        if version_file.exists():
            try:
                first_line = version_file.read_text(encoding="utf-8").splitlines()[0].strip()
                if first_line:
                    return first_line
            except (OSError, IndexError) as e:
                logger.debug(f"Could not read {version_file}: {e}")

        try:
            process = await asyncio.create_subprocess_exec(
                str(self._bundled_path),
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Could not run bundled binary: {e}")
            return UNKNOWN_VERSION

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=VERSION_COMMAND_TIMEOUT
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"Timed out reading version from {self._bundled_path}")
            return UNKNOWN_VERSION

        return parse_version_output(stdout.decode("utf-8", errors="replace")) or UNKNOWN_VERSION

    async def ensure_bundled_version_registered(self) -> None:
        """
        Upsert the bundled version's row.

        New rows become active only when no other row is active. Does
        nothing (with a warning) if the bundled binary or its version is
        missing.
        """
        bundled_version = await self.get_bundled_version()
        if bundled_version == UNKNOWN_VERSION or not self._bundled_path.exists():
            logger.warning("Bundled binary not found or version unknown")
            return

        active = await self._registry.get_active()
        await self._registry.upsert(
            bundled_version,
            {
                "platform": self._platform_key,
                "path": str(self._bundled_path),
                "checksum": None,
                "size": None,
                "is_active": active is None,
                "is_bundled": True,
            },
            on_conflict={"path": str(self._bundled_path), "is_bundled": True},
        )
        logger.info(f"Registered bundled version {bundled_version}")

    async def activate_version(self, version: str) -> None:
        """
        Make a registered version the active one and restart the session.

        Raises:
            VersionNotFoundError: If the version isn't registered.
            MissingBinaryError: If its binary is not on disk.
        """
        row = await self._registry.get(version)
        if row is None:
            raise VersionNotFoundError(f"Version {version} not found. Download it first.")
        if not row.path or not Path(row.path).exists():
            raise MissingBinaryError(
                f"Binary for version {version} not found at path: {row.path}"
            )

        logger.info(f"Activating version {version}")
        await self._registry.set_active_exclusive(version)

        logger.info("Restarting background session with new binary")
        await self._session.reset()

        logger.info(f"Successfully activated version {version}")

    async def reset_to_bundled(self) -> str:
        """
        Activate the bundled version.

        Returns:
            The bundled version id.

        Raises:
            BundledVersionUnavailableError: If the bundled version is unknown.
        """
        bundled_version = await self.get_bundled_version()
        if bundled_version == UNKNOWN_VERSION:
            raise BundledVersionUnavailableError("Bundled version not available")

        await self.ensure_bundled_version_registered()
        await self.activate_version(bundled_version)
        return bundled_version

    async def delete_version(self, version: str) -> None:
        """
        Remove a downloaded version's row and binary.

        Raises:
            VersionNotFoundError: If the version isn't registered.
            ProtectedVersionError: If it is active or bundled.
        """
        logger.info(f"Deleting version {version}")
        row = await self._registry.delete(version)

        if row.path:
            binary = Path(row.path)
            if binary.exists():
                binary.unlink()
                try:
                    binary.parent.rmdir()
                except OSError:
                    pass  # not empty

        logger.info(f"Successfully deleted version {version}")

    async def list_versions(self) -> list[VersionInfo]:
        """
        Every known version: discovery order first, then registered rows
        the server no longer offers.
        """
        rows = await self._registry.list_all()
        by_id = {row.id: row for row in rows}
        available = await self._discovery.discover_available_versions()

        versions = []
        for version in available:
            row = by_id.get(version)
            if row is None:
                versions.append(VersionInfo(
                    id=version, platform=self._platform_key, is_available=True,
                ))
            else:
                versions.append(_to_info(row, is_downloaded=True, is_available=True))

        seen = set(available)
        versions.extend(
            _to_info(row, is_downloaded=True, is_available=False)
            for row in rows if row.id not in seen
        )
        return versions

    async def get_current_version_info(self) -> Optional[VersionInfo]:
        """
        The active version, or a synthesized bundled entry when no row is
        active. None if the registry can't be read.
        """
        try:
            active = await self._registry.get_active()
            if active is not None:
                return _to_info(active)

            return VersionInfo(
                id=await self.get_bundled_version(),
                platform=self._platform_key,
                path=str(self._bundled_path),
                is_active=True,
                is_bundled=True,
                is_downloaded=self._bundled_path.exists(),
                is_available=True,
            )
        except Exception as e:
            logger.error(f"Error getting current version info: {e}")
            return None

    async def check_for_updates(self) -> UpdateCheck:
        """Compare the current version against what the server offers."""
        current = await self.get_current_version_info()
        current_version = current.id if current else "0.0.0"
        current_key = version_sort_key(current_version)

        available = await self._discovery.discover_available_versions()
        newer = [v for v in available if version_sort_key(v) > current_key]

        return UpdateCheck(
            current_version=current_version,
            latest_version=available[0] if available else None,
            has_update=bool(newer),
            newer_versions=newer,
        )
