# =============================================================================
# Hangbridge -- Command Line Entry Point
# =============================================================================
#
#   python -m hangbridge [--env-file .env] [--log-level DEBUG] [--poll-interval 5]
#
# Runs until SIGINT/SIGTERM.  Exit code 1 if configuration or the initial
# connect fails.
# =============================================================================

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import signal
import sys

from ._logging import configure_logging, logger
from ._version import __version__
from .bot import build_bridge
from .config import BridgeConfig
from .errors import ConfigError, ConnectError


async def run(config: BridgeConfig) -> int:
    bridge = build_bridge(config)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await bridge.run(stop)
    except ConnectError as exc:
        logger.error("Could not connect: %s", exc)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="hangbridge", description="Chat/room bridge bot"
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument(
        "--poll-interval", type=float, default=None, help="Seconds between polls"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    try:
        config = BridgeConfig.from_env(args.env_file)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    overrides = {}
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.poll_interval is not None:
        if args.poll_interval <= 0:
            parser.error("--poll-interval must be positive")
        overrides["poll_interval"] = args.poll_interval
    if overrides:
        config = dataclasses.replace(config, **overrides)

    configure_logging(config.log_level, config.log_dir)
    return asyncio.run(run(config))


if __name__ == "__main__":
    sys.exit(main())
