#!/usr/bin/env python3
"""CLI for managing runtime versions and the background session."""
import argparse
import asyncio
import logging
import sys
from contextlib import aclosing
from pathlib import Path
from typing import Optional

from ..config import ConfigNotFoundError, ConfigValidationError, RuntimeConfig, load_runtime_config
from ..core.exceptions import RuntimeManagerError
from ..core.logging_config import setup_backend_logging
from ..core.schemas import VersionInfo
from ..services.container import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def format_version(info: VersionInfo) -> str:
    flags = []
    if info.is_active:
        flags.append("active")
    if info.is_bundled:
        flags.append("bundled")
    if info.is_downloaded:
        flags.append("downloaded")
    if not info.is_available:
        flags.append("local only")
    suffix = f"  ({', '.join(flags)})" if flags else ""
    return f"{info.id}{suffix}"


async def _list(services: ServiceContainer, args: argparse.Namespace) -> int:
    for info in await services.activator.list_versions():
        print(format_version(info))
    return 0


async def _current(services: ServiceContainer, args: argparse.Namespace) -> int:
    info = await services.activator.get_current_version_info()
    if info is None:
        logger.error("Could not determine the current version")
        return 1
    print(format_version(info))
    print(f"  path: {info.path}")
    return 0


async def _check_updates(services: ServiceContainer, args: argparse.Namespace) -> int:
    check = await services.activator.check_for_updates()
    print(f"Current: {check.current_version}")
    print(f"Latest:  {check.latest_version or 'unknown'}")
    if check.has_update:
        print(f"Newer versions: {', '.join(check.newer_versions)}")
    else:
        print("Up to date")
    return 0


async def _download(services: ServiceContainer, args: argparse.Namespace) -> int:
    async with aclosing(services.downloader.stream_download(args.version)) as events:
        async for event in events:
            if event.type == "progress":
                print(f"\r{event.percent}% ({event.bytes_downloaded}/{event.total_bytes})",
                      end="", flush=True)
            elif event.type == "verifying":
                print(f"\n{event.message}")
            elif event.type == "complete":
                print(event.message)
                return 0
            else:
                logger.error(f"Download failed: {event.message}")
                return 1
    return 1


async def _activate(services: ServiceContainer, args: argparse.Namespace) -> int:
    await services.activator.activate_version(args.version)
    print(f"Activated {args.version}")
    return 0


async def _delete(services: ServiceContainer, args: argparse.Namespace) -> int:
    await services.activator.delete_version(args.version)
    print(f"Deleted {args.version}")
    return 0


async def _reset_bundled(services: ServiceContainer, args: argparse.Namespace) -> int:
    version = await services.activator.reset_to_bundled()
    print(f"Activated bundled version {version}")
    return 0


async def _set_token(services: ServiceContainer, args: argparse.Namespace) -> int:
    if args.clear:
        cleared = await services.credentials.clear_oauth_token()
        print("Token cleared" if cleared else "No token stored")
        return 0
    if not args.token:
        logger.error("A token is required unless --clear is given")
        return 2
    await services.credentials.store_oauth_token(args.token)
    print("Token stored")
    return 0


async def _title(services: ServiceContainer, args: argparse.Namespace) -> int:
    state = await services.session.init()
    if state.error_message:
        logger.warning(f"Background session unavailable: {state.error_message}")
    print(await services.utility_tasks.generate_title(args.message))
    return 0


COMMANDS = {
    "list": _list,
    "current": _current,
    "check-updates": _check_updates,
    "download": _download,
    "activate": _activate,
    "delete": _delete,
    "reset-bundled": _reset_bundled,
    "set-token": _set_token,
    "title": _title,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runtime-manager",
        description="Manage agent runtime binary versions",
    )
    parser.add_argument("--config", type=Path, help="Path to runtime.yaml")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="List downloaded and available versions")
    sub.add_parser("current", help="Show the active version")
    sub.add_parser("check-updates", help="Show versions newer than the active one")

    download = sub.add_parser("download", help="Download and verify a version")
    download.add_argument("version")

    activate = sub.add_parser("activate", help="Make a downloaded version active")
    activate.add_argument("version")

    delete = sub.add_parser("delete", help="Delete a downloaded version")
    delete.add_argument("version")

    sub.add_parser("reset-bundled", help="Switch back to the bundled version")

    set_token = sub.add_parser("set-token", help="Store the runtime OAuth token")
    set_token.add_argument("token", nargs="?")
    set_token.add_argument("--clear", action="store_true", help="Remove the stored token")

    title = sub.add_parser("title", help="Generate a conversation title")
    title.add_argument("message")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


async def run_command(config: RuntimeConfig, args: argparse.Namespace) -> int:
    services = build_services(config)
    try:
        await services.startup()
        return await COMMANDS[args.command](services, args)
    except RuntimeManagerError as e:
        logger.error(str(e))
        return 1
    finally:
        await services.aclose()


def serve(config: RuntimeConfig, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from ..api.main import create_app

    app = create_app(config, configure_logging=False)
    uvicorn.run(app, host=host or config.api.host, port=port or config.api.port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_runtime_config(args.config, required=args.config is not None)
    except (ConfigNotFoundError, ConfigValidationError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_backend_logging(
        level=args.log_level or config.logging.level,
        log_dir=config.storage.logs_dir,
        log_file=config.logging.file,
    )

    if args.command == "serve":
        return serve(config, args.host, args.port)

    try:
        return asyncio.run(run_command(config, args))
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
