"""
Pytest configuration and fixtures for backend tests.

Provides fixtures for:
- In-memory test database and version registry
- A fake distribution server behind httpx.MockTransport
- A scripted runtime (SDK query function) for the background session
- Configuration rooted in a temporary data directory
"""
import asyncio
import hashlib
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio
from claude_agent_sdk import AssistantMessage, ResultMessage, SystemMessage
from claude_agent_sdk.types import TextBlock
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from runtime_manager.config import (
    BackgroundSessionConfig,
    BundledConfig,
    DistributionConfig,
    RuntimeConfig,
    StorageConfig,
)
from runtime_manager.core.runtime_client import RuntimeClient
from runtime_manager.db.database import Base
from runtime_manager.services.background_session import BackgroundSession
from runtime_manager.services.version_registry import VersionRegistry


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "unit: marks tests as unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (database, ASGI app)"
    )


# In-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DIST_BASE_URL = "https://dist.test/releases"
INSTALL_SCRIPT_URL = "https://install.test/install.sh"
TEST_PLATFORM = "linux-x64"


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )

    from runtime_manager.db import models  # noqa: F401 - registers tables

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def test_session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def registry(test_session_factory) -> VersionRegistry:
    return VersionRegistry(test_session_factory)


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def runtime_config(data_dir: Path) -> RuntimeConfig:
    """Configuration pointing at the fake distribution server and tmp dirs."""
    return RuntimeConfig(
        distribution=DistributionConfig(
            base_url=DIST_BASE_URL,
            install_script_url=INSTALL_SCRIPT_URL,
        ),
        storage=StorageConfig(
            data_dir=data_dir,
            database_url=TEST_DATABASE_URL,
        ),
        bundled=BundledConfig(binary_path=data_dir / "bundled" / "bin" / "claude"),
        background_session=BackgroundSessionConfig(auto_init=False),
    )


# =============================================================================
# Fake distribution server
# =============================================================================

def sha256_hex(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


class FakeDistribution:
    """
    In-process stand-in for the distribution server.

    Serves the install script, per-version manifests and binaries, and
    records every request it receives.
    """

    def __init__(self, latest: Optional[str] = None) -> None:
        self.latest = latest
        self.manifests: dict[str, dict[str, Any]] = {}
        self.binaries: dict[tuple[str, str], bytes] = {}
        self.failing_probes: set[str] = set()
        self.requests: list[httpx.Request] = []

    def publish(
        self,
        version: str,
        content: bytes = b"#!/bin/sh\necho runtime\n",
        platform: str = TEST_PLATFORM,
        checksum: Optional[str] = None,
    ) -> None:
        manifest = self.manifests.setdefault(version, {"version": version, "platforms": {}})
        manifest["platforms"][platform] = {
            "checksum": checksum or sha256_hex(content),
            "size": len(content),
        }
        self.binaries[(version, platform)] = content

    def binary_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if not r.url.path.endswith("manifest.json")
                and str(r.url) != INSTALL_SCRIPT_URL]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if str(request.url) == INSTALL_SCRIPT_URL:
            if self.latest is None:
                return httpx.Response(500, text="unavailable")
            return httpx.Response(
                200, text=f'#!/bin/bash\nCLAUDE_CODE_VERSION="{self.latest}"\necho install\n'
            )

        parts = request.url.path.split("/releases/", 1)[-1].split("/")
        version = parts[0]

        if parts[1:] == ["manifest.json"]:
            if version in self.failing_probes:
                raise httpx.ConnectError("connection refused", request=request)
            manifest = self.manifests.get(version)
            if manifest is None:
                return httpx.Response(404)
            if request.method == "HEAD":
                return httpx.Response(200)
            return httpx.Response(200, json=manifest)

        if len(parts) == 3:
            content = self.binaries.get((version, parts[1]))
            if content is not None:
                return httpx.Response(200, content=content)

        return httpx.Response(404)


@pytest.fixture
def distribution() -> FakeDistribution:
    return FakeDistribution()


@pytest_asyncio.fixture
async def http_client(distribution: FakeDistribution):
    client = httpx.AsyncClient(transport=httpx.MockTransport(distribution.handler))
    yield client
    await client.aclose()


# =============================================================================
# Scripted runtime
# =============================================================================

def system_init(session_id: str = "sess-1", model: str = "haiku") -> SystemMessage:
    return SystemMessage(
        subtype="init",
        data={"type": "system", "subtype": "init", "session_id": session_id, "model": model},
    )


def assistant(*texts: str) -> AssistantMessage:
    return AssistantMessage(content=[TextBlock(text=t) for t in texts], model="haiku")


def result(
    text: Optional[str] = None,
    session_id: str = "sess-1",
    is_error: bool = False,
) -> ResultMessage:
    return ResultMessage(
        subtype="error_during_execution" if is_error else "success",
        duration_ms=10,
        duration_api_ms=8,
        is_error=is_error,
        num_turns=1,
        session_id=session_id,
        result=text,
    )


class ScriptedQuery:
    """
    Replacement for claude_agent_sdk.query().

    Each call pops the next script; a script is a list of SDK messages or
    an exception instance to raise. When gate is set, the stream waits on
    it before yielding its messages.
    """

    def __init__(self, *scripts: Any) -> None:
        self.scripts = list(scripts)
        self.calls: list[dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, *, prompt: str, options: Any):
        self.calls.append({"prompt": prompt, "options": options})
        script = self.scripts.pop(0) if self.scripts else []
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(script, BaseException):
            raise script
        for message in script:
            yield message


class StaticCredentials:
    def __init__(self, token: Optional[str] = "oauth-token") -> None:
        self.token = token

    async def get_oauth_token(self) -> Optional[str]:
        return self.token


@pytest.fixture
def scripted_query() -> ScriptedQuery:
    return ScriptedQuery()


@pytest.fixture
def bundled_binary(runtime_config: RuntimeConfig) -> Path:
    path = runtime_config.bundled.binary_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"bundled")
    return path


@pytest.fixture
def background_session(
    scripted_query: ScriptedQuery,
    runtime_config: RuntimeConfig,
    bundled_binary: Path,
) -> BackgroundSession:
    async def resolve_binary_path() -> Path:
        return bundled_binary

    return BackgroundSession(
        runtime=RuntimeClient(query_fn=scripted_query),
        credentials=StaticCredentials(),
        resolve_binary_path=resolve_binary_path,
        config=runtime_config.background_session,
        storage=runtime_config.storage,
    )
