"""DevProbe entry point.

Runs the capability server on stdio. The minimal profile is the default;
``--full`` exposes every capability.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from pydantic import ValidationError

from DevProbe.config import Settings, get_config_path, get_settings
from DevProbe.errors import RegistryConfigError
from DevProbe.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _runtime_version() -> str:
    for dist_name in ("devprobe", "DevProbe"):
        try:
            return get_version(dist_name)
        except PackageNotFoundError:
            continue
    return "0.0.0"


def _print_config_error(detail: str) -> None:
    """Startup configuration problems go to stderr; stdout belongs to the protocol."""
    print("\n" + "=" * 64, file=sys.stderr)
    print("DEVPROBE CONFIG ERROR", file=sys.stderr)
    print("=" * 64, file=sys.stderr)
    print(detail, file=sys.stderr)
    print(f"\nConfig file: {get_config_path()}", file=sys.stderr)
    print("Environment overrides use the DEVPROBE_ prefix.", file=sys.stderr)
    print("=" * 64 + "\n", file=sys.stderr)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devprobe",
        description="Local tool-invocation server for Swift and Xcode developer tooling (MCP over stdio).",
    )
    profile = parser.add_mutually_exclusive_group()
    profile.add_argument(
        "--full", action="store_true", help="Expose the full capability set"
    )
    profile.add_argument(
        "--profile",
        choices=("minimal", "full"),
        default=None,
        help="Capability profile to serve (default: minimal, or DEVPROBE_PROFILE)",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the active profile's capability descriptors as JSON and exit",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {_runtime_version()}"
    )
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    overrides: dict[str, str] = {}
    if args.full:
        overrides["profile"] = "full"
    elif args.profile:
        overrides["profile"] = args.profile
    if args.log_level:
        overrides["log_level"] = args.log_level
    if not overrides:
        return get_settings()
    return Settings(**overrides)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        settings = _load_settings(args)
    except ValidationError as exc:
        _print_config_error(str(exc))
        return 2
    setup_logging(level=settings.log_level)

    from DevProbe.capabilities import build_registry
    from DevProbe.server.dispatch import DispatchEngine

    try:
        registry = build_registry(settings)
        engine = DispatchEngine(registry, settings)
    except RegistryConfigError as exc:
        _print_config_error(str(exc))
        return 2

    if args.list:
        from rich.console import Console

        Console().print_json(json.dumps(engine.describe()))
        return 0

    from DevProbe.server.mcp_server import run_stdio

    try:
        asyncio.run(run_stdio(engine))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
