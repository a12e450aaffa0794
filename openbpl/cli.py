"""Command-line interface for the OpenBPL monitoring engine."""

from __future__ import annotations

import argparse
import asyncio
import logging
import re
import signal
import sys
from typing import Sequence

from .config import ConfigError, create_sample_config, load_from_file
from .engine import Engine
from .storage import StorageError

VERSION = "0.1.0-dev"
COMMIT = "unknown"
BUILD_TIME = "unknown"
FULL_VERSION = f"{VERSION} (commit: {COMMIT}, built: {BUILD_TIME})"

DEFAULT_CONFIG_PATH = "openbpl.yaml"

log = logging.getLogger(__name__)

_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_COMPONENT = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> float:
    """Parse a duration such as "90s", "1h30m" or "250ms" into seconds."""
    rest = text
    sign = 1.0
    if rest[:1] in ("+", "-"):
        if rest[0] == "-":
            sign = -1.0
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f"invalid duration {text!r}")
    total = 0.0
    pos = 0
    while pos < len(rest):
        match = _COMPONENT.match(rest, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    return sign * total


def _duration_arg(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with the run, config and version commands."""
    parser = argparse.ArgumentParser(
        prog="openbpl",
        description=(
            "OpenBPL is an open-source framework for monitoring, detecting, "
            "and acting against brand infringements across the internet."
        ),
    )
    parser.add_argument("--version", action="version", version=f"openbpl {FULL_VERSION}")
    commands = parser.add_subparsers(dest="command")

    run = commands.add_parser(
        "run",
        help="Start the OpenBPL monitoring engine",
        description=(
            "Start the OpenBPL monitoring engine with the specified configuration. "
            "This will begin monitoring certificate transparency logs and taking "
            "actions on detected threats according to your rules."
        ),
    )
    run.add_argument(
        "-c", "--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path"
    )
    run.add_argument(
        "-d",
        "--dry-run",
        action="store_true",
        help="Run in dry-run mode (no enforcement actions)",
    )
    run.add_argument(
        "-s", "--storage", default="", help="Storage backend (memory, sqlite, postgres)"
    )
    run.add_argument(
        "--duration",
        type=_duration_arg,
        default=0.0,
        help="Run for specific duration (0 = run forever)",
    )

    config = commands.add_parser(
        "config",
        help="Configuration management commands",
        description="Commands for managing OpenBPL configuration",
    )
    config_commands = config.add_subparsers(dest="config_command")
    config_commands.add_parser(
        "init",
        help="Initialize a new OpenBPL configuration",
        description="Create a sample configuration file to get started with OpenBPL",
    )

    commands.add_parser("version", help="Show version information")
    return parser


async def _run_engine(engine: Engine, duration: float | None) -> None:
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(engine.run(duration))

    def _shutdown() -> None:
        log.info("shutdown signal received")
        task.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _shutdown)
        except (NotImplementedError, RuntimeError, ValueError):
            continue
        installed.append(sig)
    try:
        await task
    except asyncio.CancelledError:
        if not task.cancelled():
            raise
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _run(args: argparse.Namespace) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    log.info("starting OpenBPL monitoring engine")
    log.info("config: %s", args.config)
    try:
        cfg = load_from_file(args.config)
    except ConfigError as exc:
        raise ConfigError(f"failed to load config: {exc}") from exc

    if args.dry_run:
        cfg.dry_run = True
    if args.storage:
        cfg.storage.type = args.storage

    log.info("storage: %s", cfg.storage.type)
    if cfg.dry_run:
        log.info("running in DRY-RUN mode (no enforcement actions will be taken)")

    try:
        engine = Engine(cfg)
    except StorageError as exc:
        raise StorageError(f"failed to create engine: {exc}") from exc

    duration = args.duration if args.duration > 0 else None
    if duration is not None:
        log.info("will run for %ss", duration)
    log.info("starting monitoring engine")
    try:
        asyncio.run(_run_engine(engine, duration))
    except KeyboardInterrupt:
        log.info("shutdown signal received")


def _init_config() -> None:
    create_sample_config(DEFAULT_CONFIG_PATH)
    print(f"Configuration file created: {DEFAULT_CONFIG_PATH}")
    print("Edit the file to customize your monitoring settings.")
    print("Run 'openbpl run' to start monitoring.")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        if args.command == "run":
            _run(args)
        elif args.command == "config":
            if args.config_command == "init":
                _init_config()
            else:
                parser.parse_args(["config", "--help"])
        elif args.command == "version":
            print(f"OpenBPL {FULL_VERSION}")
        else:
            parser.print_help()
    except (ConfigError, StorageError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())