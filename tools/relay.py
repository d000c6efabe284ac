#!/usr/bin/env python3
"""
Command-line entry point: forward every connection on a listen address to a
fixed target.

    tcp-relay -L 8080 127.0.0.1:9000
"""

import argparse
import importlib.metadata
import asyncio
import signal
import sys

import yaml

from components.logs.logger import get_logger
from components.network.address import parse_listen, parse_target
from components.network.exceptions import (
    BindFailure,
    InvalidAddress,
    ListenerFailure,
)
from components.network.settings import RelaySettings
from components.network.tcp_proxy import run
from config.config_loader import ConfigLoader

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_CONFIG = 2

DIST_NAME = "tcp-relay"


def get_version() -> str:
    try:
        return importlib.metadata.version(DIST_NAME)
    except importlib.metadata.PackageNotFoundError:
        # running from a source checkout that was never installed
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=DIST_NAME,
        description="Forward TCP connections from a local address to a target.",
    )
    parser.add_argument(
        "target", help="Target address to forward traffic to (host:port)"
    )
    parser.add_argument(
        "-L",
        "--listen",
        required=True,
        help="Listen address: a port (binds 0.0.0.0:port) or host:port",
    )
    parser.add_argument(
        "--config-dir", default="config", help="Directory of YAML configuration files"
    )
    parser.add_argument(
        "--log-config", default=None, help="Path to a YAML logging configuration file"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the relay log level",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {get_version()}"
    )
    return parser


async def serve(listen, target, settings, logger) -> int:
    """Run the relay until SIGINT/SIGTERM or a fatal listener error."""
    loop = asyncio.get_running_loop()
    task = asyncio.create_task(run(listen, target, settings, logger))

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (NotImplementedError, RuntimeError):
            # no signal handlers outside the main thread or on Windows
            pass

    try:
        await task
    except asyncio.CancelledError:
        logger.info("shutting down")
        return EXIT_OK
    except (BindFailure, ListenerFailure) as exc:
        logger.error("%s", exc)
        return EXIT_FATAL
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        target = parse_target(args.target)
        listen = parse_listen(args.listen)
    except InvalidAddress as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        config = ConfigLoader(config_dir=args.config_dir).load_all()
        settings = RelaySettings.from_config(config)
        logger = get_logger(config, args.log_config, args.log_level)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        print(f"error: invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    try:
        return asyncio.run(serve(listen, target, settings, logger))
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
