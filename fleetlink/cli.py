"""Command-line interface for fleetlink."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from . import constants
from .config import FleetLinkConfig, load_config
from .constants import CommandName
from .logging import configure_from_config
from .models import CommandOptions
from .sdk import EdgeSDK

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleetlink", description="Robot telemetry and command sessions"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    connect_parser = subparsers.add_parser(
        "connect", help="Keep a robot online and log the commands it receives"
    )
    connect_parser.add_argument("robot_id", help="Robot identifier")
    connect_parser.add_argument(
        "--name", default=None, help="Robot display name (default: robot id)"
    )

    return parser


def log_command(
    robot_id: str, command_name: str, args: List[Any], options: CommandOptions
) -> None:
    LOGGER.info(
        "Robot %s received %s %s (execution %s)",
        robot_id,
        command_name,
        args,
        options.execution_id,
    )
    if command_name == CommandName.CUSTOM_COMMAND.value:
        options.result_function("0")


async def run_connect(config: FleetLinkConfig, robot_id: str, name: str) -> None:
    sdk = EdgeSDK(config)
    sdk.register_command_callback(log_command)
    try:
        await sdk.connect_robot(robot_id, name)
        LOGGER.info("Robot %s online; press Ctrl+C to stop", robot_id)
        await asyncio.Event().wait()
    finally:
        await sdk.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "api_key" and value:
                    value = f"{value[:3]}..."
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "connect":
        configure_from_config(config.logging)
        try:
            asyncio.run(run_connect(config, args.robot_id, args.name or args.robot_id))
        except KeyboardInterrupt:
            LOGGER.info("fleetlink received shutdown signal")
        except Exception as exc:
            LOGGER.error("Connection failed: %s", exc)
            return 1
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
