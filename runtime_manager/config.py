"""
Central configuration for the runtime manager.

Paths and settings are loaded from config/runtime.yaml. Every key is
optional; missing keys fall back to the defaults defined on the
dataclasses below.
"""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = Path(
    os.environ.get("RUNTIME_MANAGER_CONFIG_DIR", PROJECT_ROOT / "config")
)
CONFIG_FILE: Path = CONFIG_DIR / "runtime.yaml"
DEFAULT_DATA_DIR: Path = Path(
    os.environ.get("RUNTIME_MANAGER_DATA_DIR", Path.home() / ".runtime-manager")
)

DIST_BASE_URL = (
    "https://storage.googleapis.com/"
    "claude-code-dist-86c565f3-f756-42ad-8dfa-d59b1c096819/claude-code-releases"
)
INSTALL_SCRIPT_URL = "https://claude.ai/install.sh"


class ConfigNotFoundError(Exception):
    """Raised when a required configuration file does not exist."""
    pass


class ConfigValidationError(Exception):
    """Raised when a configuration file cannot be parsed or is malformed."""
    pass


@dataclass
class DistributionConfig:
    """Where runtime versions are published and how they are probed."""
    base_url: str = DIST_BASE_URL
    install_script_url: str = INSTALL_SCRIPT_URL
    fallback_version: str = "2.1.5"  # Probing baseline only, never reported
    latest_minor_window: int = 15
    previous_minor_window: int = 20
    cache_ttl_seconds: int = 300
    probe_timeout_seconds: float = 10.0
    request_timeout_seconds: float = 60.0


@dataclass
class StorageConfig:
    """On-disk locations for binaries, logs and the registry database."""
    data_dir: Path = DEFAULT_DATA_DIR
    database_url: Optional[str] = None

    @property
    def binaries_dir(self) -> Path:
        return self.data_dir / "claude-binaries"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "claude-sessions"

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"sqlite+aiosqlite:///{self.data_dir / 'runtime_manager.db'}"


@dataclass
class BundledConfig:
    """The runtime binary shipped with the host application."""
    binary_path: Path = DEFAULT_DATA_DIR / "bundled" / "bin" / "claude"


@dataclass
class BackgroundSessionConfig:
    """Settings for the long-lived utility session."""
    model: str = "haiku"
    cwd: Optional[Path] = None
    probe_prompt: str = "ping"
    auto_init: bool = True
    env: dict[str, str] = field(default_factory=dict)


@dataclass
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 40080


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = "runtime_manager.log"


@dataclass
class RuntimeConfig:
    """Combined configuration for the whole service."""
    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    bundled: BundledConfig = field(default_factory=BundledConfig)
    background_session: BackgroundSessionConfig = field(
        default_factory=BackgroundSessionConfig
    )
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _optional_path(value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    return Path(value).expanduser()


def parse_runtime_config(raw: dict[str, Any]) -> RuntimeConfig:
    """
    Build a RuntimeConfig from the parsed runtime.yaml mapping.

    Args:
        raw: Top-level mapping from runtime.yaml (may be empty).

    Returns:
        RuntimeConfig with all settings loaded, using defaults for missing values.

    Raises:
        ConfigValidationError: If a section is not a mapping.
    """
    sections = {}
    for name in ("distribution", "storage", "bundled", "background_session", "api", "logging"):
        section = raw.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigValidationError(
                f"Section '{name}' in {CONFIG_FILE} must be a mapping, got {type(section).__name__}"
            )
        sections[name] = section

    dist = sections["distribution"]
    defaults = DistributionConfig()
    distribution = DistributionConfig(
        base_url=str(dist.get("base_url", defaults.base_url)).rstrip("/"),
        install_script_url=dist.get("install_script_url", defaults.install_script_url),
        fallback_version=str(dist.get("fallback_version", defaults.fallback_version)),
        latest_minor_window=int(dist.get("latest_minor_window", defaults.latest_minor_window)),
        previous_minor_window=int(
            dist.get("previous_minor_window", defaults.previous_minor_window)
        ),
        cache_ttl_seconds=int(dist.get("cache_ttl_seconds", defaults.cache_ttl_seconds)),
        probe_timeout_seconds=float(
            dist.get("probe_timeout_seconds", defaults.probe_timeout_seconds)
        ),
        request_timeout_seconds=float(
            dist.get("request_timeout_seconds", defaults.request_timeout_seconds)
        ),
    )

    storage_dict = sections["storage"]
    storage = StorageConfig(
        data_dir=_optional_path(storage_dict.get("data_dir")) or DEFAULT_DATA_DIR,
        database_url=storage_dict.get("database_url"),
    )

    bundled_path = _optional_path(sections["bundled"].get("binary_path"))
    bundled = BundledConfig(
        binary_path=bundled_path or storage.data_dir / "bundled" / "bin" / "claude"
    )

    bg = sections["background_session"]
    background_session = BackgroundSessionConfig(
        model=bg.get("model", "haiku"),
        cwd=_optional_path(bg.get("cwd")),
        probe_prompt=bg.get("probe_prompt", "ping"),
        auto_init=bool(bg.get("auto_init", True)),
        env={str(k): str(v) for k, v in (bg.get("env") or {}).items()},
    )

    api_dict = sections["api"]
    api = ApiConfig(
        host=api_dict.get("host", "127.0.0.1"),
        port=int(api_dict.get("port", 40080)),
    )

    log_dict = sections["logging"]
    logging_config = LoggingConfig(
        level=str(log_dict.get("level", "INFO")).upper(),
        file=log_dict.get("file", "runtime_manager.log"),
    )

    return RuntimeConfig(
        distribution=distribution,
        storage=storage,
        bundled=bundled,
        background_session=background_session,
        api=api,
        logging=logging_config,
    )


def load_runtime_config(path: Optional[Path] = None, required: bool = False) -> RuntimeConfig:
    """
    Load configuration from runtime.yaml.

    Args:
        path: Config file to read. Defaults to CONFIG_DIR/runtime.yaml.
        required: Raise instead of using defaults when the file is missing.

    Raises:
        ConfigNotFoundError: If required and the file doesn't exist.
        ConfigValidationError: If the YAML is invalid.
    """
    config_path = path or CONFIG_FILE
    if not config_path.exists():
        if required:
            raise ConfigNotFoundError(f"Runtime configuration not found: {config_path}")
        logger.debug(f"No config file at {config_path}, using defaults")
        return RuntimeConfig()

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse {config_path}: {e}") from e

    if raw is None:
        return RuntimeConfig()
    if not isinstance(raw, dict):
        raise ConfigValidationError(f"Top level of {config_path} must be a mapping")

    return parse_runtime_config(raw)
