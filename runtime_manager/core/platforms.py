"""
Platform keys for published runtime binaries.

Keys follow the distribution server's naming: "<os>-<arch>" with os in
{darwin, linux, win32} and arch in {arm64, x64}.
"""
import platform
import sys
from dataclasses import dataclass
from typing import Optional

from .exceptions import UnsupportedPlatformError


@dataclass(frozen=True)
class PlatformTarget:
    """Where a platform's binary lives on the server and on disk."""
    dir: str
    binary: str


PLATFORMS: dict[str, PlatformTarget] = {
    "darwin-arm64": PlatformTarget(dir="darwin-arm64", binary="claude"),
    "darwin-x64": PlatformTarget(dir="darwin-x64", binary="claude"),
    "linux-arm64": PlatformTarget(dir="linux-arm64", binary="claude"),
    "linux-x64": PlatformTarget(dir="linux-x64", binary="claude"),
    "win32-x64": PlatformTarget(dir="win32-x64", binary="claude.exe"),
}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def current_platform_key(
    system: Optional[str] = None,
    machine: Optional[str] = None,
) -> str:
    """Return the platform key for this interpreter (or the given values)."""
    system = system or sys.platform
    machine = (machine or platform.machine()).lower()
    if system.startswith("linux"):
        os_name = "linux"
    elif system == "darwin":
        os_name = "darwin"
    elif system in ("win32", "cygwin"):
        os_name = "win32"
    else:
        os_name = system
    return f"{os_name}-{_ARCH_ALIASES.get(machine, machine)}"


def resolve_platform(key: Optional[str] = None) -> PlatformTarget:
    """
    Look up the binary target for a platform key.

    Raises:
        UnsupportedPlatformError: If no binary is published for the key.
    """
    key = key or current_platform_key()
    target = PLATFORMS.get(key)
    if target is None:
        raise UnsupportedPlatformError(f"Unsupported platform: {key}")
    return target


def is_windows(key: Optional[str] = None) -> bool:
    return (key or current_platform_key()).startswith("win32")
