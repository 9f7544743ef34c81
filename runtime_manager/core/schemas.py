"""
Data types shared across the runtime manager.

Plain dataclasses for in-memory state and values exchanged between
services. Persisted records live in db/models.py.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional


class SessionStatus(str, Enum):
    """Lifecycle states of the background session."""
    IDLE = "idle"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"
    CLOSED = "closed"


DEFAULT_BACKGROUND_MODEL = "haiku"


@dataclass
class SessionState:
    """State of the background session. Only BackgroundSession mutates it."""
    status: SessionStatus = SessionStatus.IDLE
    session_id: Optional[str] = None
    model: str = DEFAULT_BACKGROUND_MODEL
    request_count: int = 0
    last_used_time: Optional[datetime] = None
    error_message: Optional[str] = None
    init_time: Optional[datetime] = None

    def snapshot(self) -> "SessionState":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "model": self.model,
            "request_count": self.request_count,
            "last_used_time": self.last_used_time.isoformat() if self.last_used_time else None,
            "error_message": self.error_message,
            "init_time": self.init_time.isoformat() if self.init_time else None,
        }


@dataclass
class SessionInitOptions:
    """Optional overrides for BackgroundSession.init()."""
    model: Optional[str] = None
    cwd: Optional[str] = None


@dataclass
class QueryResult:
    """Outcome of a background session query. Never raised, always returned."""
    text: str = ""
    success: bool = False
    error: Optional[str] = None


ProgressType = Literal["progress", "verifying", "complete", "error"]


@dataclass(frozen=True)
class DownloadProgress:
    """
    One event in a download's progress sequence.

    A sequence is finite and ends with exactly one "complete" or "error".
    """
    type: ProgressType
    percent: Optional[int] = None
    bytes_downloaded: Optional[int] = None
    total_bytes: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def progress(cls, bytes_downloaded: int, total_bytes: int) -> "DownloadProgress":
        percent = int(bytes_downloaded * 100 // total_bytes) if total_bytes > 0 else 0
        return cls(
            type="progress",
            percent=percent,
            bytes_downloaded=bytes_downloaded,
            total_bytes=total_bytes,
        )

    @classmethod
    def verifying(cls, message: str = "Verifying checksum...") -> "DownloadProgress":
        return cls(type="verifying", message=message)

    @classmethod
    def complete(cls, message: str) -> "DownloadProgress":
        return cls(type="complete", message=message)

    @classmethod
    def error(cls, message: str) -> "DownloadProgress":
        return cls(type="error", message=message)

    @property
    def is_terminal(self) -> bool:
        return self.type in ("complete", "error")

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class PlatformManifest:
    checksum: str
    size: int


@dataclass(frozen=True)
class VersionManifest:
    """Per-version descriptor published by the distribution server."""
    version: str
    platforms: dict[str, PlatformManifest] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> "VersionManifest":
        """
        Build a manifest from the decoded manifest.json body.

        Raises:
            ValueError: If the body or its "platforms" field is not an object.
            KeyError, TypeError: If a platform entry is malformed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"manifest must be a JSON object, got {type(data).__name__}")
        entries = data.get("platforms") or {}
        if not isinstance(entries, dict):
            raise ValueError("manifest platforms must be a JSON object")
        platforms = {
            key: PlatformManifest(checksum=str(entry["checksum"]), size=int(entry["size"]))
            for key, entry in entries.items()
        }
        return cls(version=str(data.get("version", "")), platforms=platforms)


@dataclass
class VersionInfo:
    """A registry row merged with what the distribution server offers."""
    id: str
    platform: str
    path: Optional[str] = None
    checksum: Optional[str] = None
    size: Optional[int] = None
    downloaded_at: Optional[datetime] = None
    is_active: bool = False
    is_bundled: bool = False
    is_downloaded: bool = False
    is_available: bool = False


@dataclass
class UpdateCheck:
    current_version: str
    latest_version: Optional[str]
    has_update: bool
    newer_versions: list[str] = field(default_factory=list)


def parse_semver(version: str) -> tuple[int, int, int]:
    """
    Split "major.minor.patch" into integers.

    Missing or non-numeric components count as 0.
    """
    parts = version.strip().split(".")
    numbers = []
    for part in parts[:3]:
        digits = ""
        for ch in part:
            if not ch.isdigit():
                break
            digits += ch
        numbers.append(int(digits) if digits else 0)
    while len(numbers) < 3:
        numbers.append(0)
    return numbers[0], numbers[1], numbers[2]


def version_sort_key(version: str) -> tuple[int, int, int, int, str]:
    """
    Total ordering key for version strings.

    Orders by (major, minor, patch); for equal numbers a plain release
    sorts above a suffixed one ("2.1.5" > "2.1.5-beta"), and suffixes
    compare as text.
    """
    stripped = version.strip()
    major, minor, patch = parse_semver(stripped)
    numeric = f"{major}.{minor}.{patch}"
    suffix = stripped[len(numeric):] if stripped.startswith(numeric) else stripped
    return major, minor, patch, 0 if suffix else 1, suffix
