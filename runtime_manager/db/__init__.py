"""Persistence layer: engine helpers and ORM models."""
from .database import Base, create_engine, create_session_factory, init_db
from .models import ClaudeBinaryVersion, Credential

__all__ = [
    "Base",
    "ClaudeBinaryVersion",
    "Credential",
    "create_engine",
    "create_session_factory",
    "init_db",
]
