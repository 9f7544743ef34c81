"""
Runtime binary downloader.

Fetches a version's manifest, streams the platform binary to disk,
verifies its SHA-256 against the manifest and records it in the registry.
Binaries live in {data_dir}/claude-binaries/{version}/{binary}.

The canonical path never holds an unverified file: each download writes
to its own ".part" file next to it, moved into place only after the
checksum matches. Concurrent downloads of one version never share a
temporary file.
"""
import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

import httpx

from ..config import DistributionConfig, StorageConfig
from ..core.cancellation import CancellationToken
from ..core.exceptions import (
    ChecksumMismatchError,
    DownloadCancelledError,
    NetworkError,
    VersionNotFoundError,
)
from ..core.platforms import PlatformTarget, current_platform_key, is_windows, resolve_platform
from ..core.schemas import DownloadProgress, VersionManifest
from ..db.models import utcnow
from .version_discovery import manifest_url
from .version_registry import VersionRegistry

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[DownloadProgress], None]

HASH_CHUNK_SIZE = 1024 * 1024


def calculate_sha256(file_path: Path) -> str:
    """Hex SHA-256 of a whole file."""
    digest = hashlib.sha256()
    with file_path.open("rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _new_part_file(dest_path: Path) -> Path:
    """Create an empty, uniquely named temporary file beside dest_path."""
    dest_path.parent.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(
        dir=dest_path.parent, prefix=f"{dest_path.name}.", suffix=".part"
    )
    os.close(fd)
    return Path(name)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


class VersionDownloader:
    """Downloads and verifies runtime binaries for the current platform."""

    def __init__(
        self,
        config: DistributionConfig,
        storage: StorageConfig,
        registry: VersionRegistry,
        http_client: httpx.AsyncClient,
        platform_key: Optional[str] = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._registry = registry
        self._http = http_client
        self._platform_key = platform_key or current_platform_key()

    @property
    def platform_key(self) -> str:
        return self._platform_key

    def _target(self) -> PlatformTarget:
        return resolve_platform(self._platform_key)

    def get_version_path(self, version: str) -> Path:
        """
        Canonical on-disk path for a downloaded version.

        Raises:
            UnsupportedPlatformError: If the platform has no published binary.
        """
        return self._storage.binaries_dir / version / self._target().binary

    async def get_version_manifest(self, version: str) -> VersionManifest:
        """
        Fetch the manifest for a version.

        Raises:
            NetworkError: On a non-2xx response or transport failure.
        """
        url = manifest_url(self._config.base_url, version)
        try:
            response = await self._http.get(url, timeout=self._config.request_timeout_seconds)
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to fetch manifest for {version}: {e}") from e
        if not response.is_success:
            raise NetworkError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        try:
            return VersionManifest.from_json(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise NetworkError(f"Invalid manifest for {version}: {e}") from e

    async def _record_download(
        self, version: str, dest_path: Path, checksum: str, size: int, fresh: bool,
    ) -> None:
        values = {
            "platform": self._platform_key,
            "path": str(dest_path),
            "checksum": checksum,
            "size": size,
            "is_active": False,
            "is_bundled": False,
        }
        on_conflict = {"path": str(dest_path), "checksum": checksum, "size": size}
        if fresh:
            values["downloaded_at"] = utcnow()
            on_conflict["downloaded_at"] = values["downloaded_at"]
        await self._registry.upsert(version, values, on_conflict=on_conflict)

    async def _stream_to_file(
        self,
        url: str,
        part_path: Path,
        expected_size: int,
        emit: ProgressCallback,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        downloaded = 0
        try:
            async with self._http.stream(
                "GET", url, timeout=self._config.request_timeout_seconds
            ) as response:
                if not response.is_success:
                    raise NetworkError(
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        status_code=response.status_code,
                    )
                with part_path.open("wb") as f:
                    async for chunk in response.aiter_bytes():
                        if cancel_token is not None and cancel_token.cancelled:
                            raise DownloadCancelledError(f"Download of {url} cancelled")
                        f.write(chunk)
                        downloaded += len(chunk)
                        emit(DownloadProgress.progress(downloaded, expected_size))
        except httpx.HTTPError as e:
            _remove_quietly(part_path)
            raise NetworkError(f"Download failed: {e}") from e
        except BaseException:
            _remove_quietly(part_path)
            raise

    async def download_version(
        self,
        version: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Path:
        """
        Download, verify and register a runtime version.

        If the canonical file already matches the manifest checksum, nothing
        is downloaded; the registry row is refreshed and the path returned.

        Args:
            version: Semver string to download.
            on_progress: Receives progress, verifying and complete events.
            cancel_token: Checked between chunks while streaming.

        Returns:
            Path of the verified binary.

        Raises:
            UnsupportedPlatformError: Current platform has no published binary.
            NetworkError: Manifest or binary could not be fetched.
            VersionNotFoundError: The manifest has no entry for this platform.
            ChecksumMismatchError: The downloaded bytes don't match the manifest.
            DownloadCancelledError: cancel_token fired mid-download.
        """
        emit = on_progress or (lambda event: None)
        target = self._target()
        dest_path = self._storage.binaries_dir / version / target.binary

        logger.info(f"Downloading version {version} to {dest_path}")

        manifest = await self.get_version_manifest(version)
        platform_manifest = manifest.platforms.get(target.dir)
        if platform_manifest is None:
            raise VersionNotFoundError(f"No manifest entry for platform {target.dir}")

        expected_checksum = platform_manifest.checksum
        expected_size = platform_manifest.size

        if dest_path.exists():
            existing_checksum = await asyncio.to_thread(calculate_sha256, dest_path)
            if existing_checksum == expected_checksum:
                logger.info(f"Version {version} already downloaded and verified")
                await self._record_download(
                    version, dest_path, expected_checksum, expected_size, fresh=False
                )
                emit(DownloadProgress.complete("Already downloaded"))
                return dest_path
            logger.warning(f"Existing file for {version} has wrong checksum, re-downloading")

        download_url = f"{self._config.base_url}/{version}/{target.dir}/{target.binary}"
        part_path = _new_part_file(dest_path)
        logger.info(f"Downloading from {download_url}")

        await self._stream_to_file(download_url, part_path, expected_size, emit, cancel_token)

        try:
            emit(DownloadProgress.verifying())
            actual_checksum = await asyncio.to_thread(calculate_sha256, part_path)
            if actual_checksum != expected_checksum:
                _remove_quietly(dest_path)
                raise ChecksumMismatchError(expected_checksum, actual_checksum)
            os.replace(part_path, dest_path)
        finally:
            _remove_quietly(part_path)

        if not is_windows(self._platform_key):
            dest_path.chmod(0o755)

        await self._record_download(
            version, dest_path, actual_checksum, expected_size, fresh=True
        )
        emit(DownloadProgress.complete("Download complete"))
        logger.info(f"Successfully downloaded version {version}")
        return dest_path

    async def stream_download(
        self,
        version: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[DownloadProgress]:
        """
        Run a download and yield its progress events.

        The sequence always ends with exactly one "complete" or "error"
        event; failures become the "error" event instead of being raised.
        Closing the iterator early cancels the download.
        """
        queue: asyncio.Queue[DownloadProgress] = asyncio.Queue()

        async def run() -> None:
            try:
                await self.download_version(
                    version, on_progress=queue.put_nowait, cancel_token=cancel_token
                )
            except Exception as e:
                logger.error(f"Download of version {version} failed: {e}")
                queue.put_nowait(DownloadProgress.error(str(e) or "Download failed"))

        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                yield event
                if event.is_terminal:
                    return
        finally:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)
