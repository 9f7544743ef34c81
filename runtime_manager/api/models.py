"""
Request and response models for the runtime manager API.
"""
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..core.schemas import SessionState, UpdateCheck, VersionInfo


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime


class VersionInfoResponse(BaseModel):
    """A runtime version as known to the registry and the distribution server."""
    id: str
    platform: str
    path: Optional[str] = None
    checksum: Optional[str] = None  # Hex SHA-256
    size: Optional[int] = None  # Bytes
    downloaded_at: Optional[datetime] = None
    is_active: bool = False
    is_bundled: bool = False
    is_downloaded: bool = False
    is_available: bool = False  # Offered by the distribution server

    @classmethod
    def from_info(cls, info: VersionInfo) -> "VersionInfoResponse":
        return cls(**asdict(info))


class UpdateCheckResponse(BaseModel):
    current_version: str
    latest_version: Optional[str] = None
    has_update: bool
    newer_versions: list[str] = []

    @classmethod
    def from_check(cls, check: UpdateCheck) -> "UpdateCheckResponse":
        return cls(**asdict(check))


class BundledVersionResponse(BaseModel):
    version: str


class VersionActionResponse(BaseModel):
    """Result of activate/delete/reset."""
    success: bool
    version: Optional[str] = None


class SessionStateResponse(BaseModel):
    status: str
    session_id: Optional[str] = None
    model: str
    request_count: int
    last_used_time: Optional[datetime] = None
    error_message: Optional[str] = None
    init_time: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionStateResponse":
        return cls(
            status=state.status.value,
            session_id=state.session_id,
            model=state.model,
            request_count=state.request_count,
            last_used_time=state.last_used_time,
            error_message=state.error_message,
            init_time=state.init_time,
        )


class SessionInitRequest(BaseModel):
    model: Optional[str] = Field(default=None, description="Model for the background session")
    cwd: Optional[str] = Field(default=None, description="Working directory for the runtime")


class TitleRequest(BaseModel):
    message: str = Field(description="First message of the conversation")


class TitleResponse(BaseModel):
    title: str
