"""Logging setup for fleetlink processes.

paho-mqtt's packet trace is routed to :data:`MQTT_WIRE_LOGGER` by the MQTT
adapter, so it can be switched on and off independently of the package's own
``fleetlink.*`` loggers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

MQTT_WIRE_LOGGER = "fleetlink.mqtt.wire"

# Loggers that only carry transport chatter
NETWORK_LOGGERS = (MQTT_WIRE_LOGGER, "aiohttp.client", "aiohttp.access")


def mqtt_wire_logger() -> logging.Logger:
    return logging.getLogger(MQTT_WIRE_LOGGER)


def set_network_logging(enabled: bool) -> None:
    """Show the MQTT packet trace and HTTP client logs, or limit them to warnings."""
    level = logging.DEBUG if enabled else logging.WARNING
    for name in NETWORK_LOGGERS:
        logging.getLogger(name).setLevel(level)


def configure_logging(
    level: str = "INFO", *, log_path: Optional[Path] = None, log_network: bool = False
) -> None:
    """Replace the root handlers with a console handler and an optional file.

    ``level`` is a level name such as ``"DEBUG"``; unknown names mean INFO.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.captureWarnings(True)
    set_network_logging(log_network)


def configure_from_config(config: "LoggingConfig") -> None:
    configure_logging(
        config.level, log_path=config.path, log_network=config.log_network
    )
