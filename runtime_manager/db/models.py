"""
SQLAlchemy ORM models for the runtime manager.

Defines the runtime binary version registry and the credential store.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClaudeBinaryVersion(Base):
    """
    One known runtime binary version for a platform.

    At most one row is active at a time. Bundled rows are never deleted.
    """
    __tablename__ = "claude_binary_versions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)  # semver
    platform: Mapped[str] = mapped_column(String(32))
    path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checksum: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    downloaded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    is_bundled: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"ClaudeBinaryVersion(id={self.id!r}, platform={self.platform!r}, "
            f"active={self.is_active}, bundled={self.is_bundled})"
        )


class Credential(Base):
    """Encrypted credential used by the background session (Fernet ciphertext)."""
    __tablename__ = "credentials"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    token_type: Mapped[str] = mapped_column(String(50))
    encrypted_value: Mapped[str] = mapped_column(Text)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
