"""Configuration loader for fleetlink."""

from __future__ import annotations

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class CloudConfig:
    api_key: Optional[str] = None
    endpoint: str = constants.DEFAULT_CONFIG_ENDPOINT
    config_timeout_seconds: float = 10.0


@dataclass(slots=True)
class MQTTConfig:
    keepalive: int = 10
    connect_timeout_seconds: float = 30.0
    reconnect_min_delay_seconds: int = 1
    reconnect_max_delay_seconds: int = 120


@dataclass(slots=True)
class SDKConfig:
    require_connect: bool = True


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class FleetLinkConfig:
    cloud: CloudConfig
    mqtt: MQTTConfig
    sdk: SDKConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def load_config(path: Optional[Path] = None) -> FleetLinkConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "cloud": {
                "endpoint": constants.DEFAULT_CONFIG_ENDPOINT,
                "config_timeout_seconds": "10.0",
            },
            "mqtt": {
                "keepalive": "10",
                "connect_timeout_seconds": "30.0",
                "reconnect_min_delay_seconds": "1",
                "reconnect_max_delay_seconds": "120",
            },
            "sdk": {
                "require_connect": "true",
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    api_key = parser.get("cloud", "api_key", fallback=None) or os.getenv(
        constants.API_KEY_ENV_VAR
    )

    cloud = CloudConfig(
        api_key=api_key or None,
        endpoint=parser.get("cloud", "endpoint"),
        config_timeout_seconds=max(
            0.1, parser.getfloat("cloud", "config_timeout_seconds", fallback=10.0)
        ),
    )

    mqtt_defaults = MQTTConfig()
    reconnect_min = max(
        1,
        parser.getint(
            "mqtt",
            "reconnect_min_delay_seconds",
            fallback=mqtt_defaults.reconnect_min_delay_seconds,
        ),
    )

    mqtt = MQTTConfig(
        keepalive=max(
            1, parser.getint("mqtt", "keepalive", fallback=mqtt_defaults.keepalive)
        ),
        connect_timeout_seconds=parser.getfloat(
            "mqtt",
            "connect_timeout_seconds",
            fallback=mqtt_defaults.connect_timeout_seconds,
        ),
        reconnect_min_delay_seconds=reconnect_min,
        reconnect_max_delay_seconds=max(
            reconnect_min,
            parser.getint(
                "mqtt",
                "reconnect_max_delay_seconds",
                fallback=mqtt_defaults.reconnect_max_delay_seconds,
            ),
        ),
    )

    sdk = SDKConfig(
        require_connect=parser.getboolean("sdk", "require_connect", fallback=True),
    )

    log_path_value = parser.get("logging", "path", fallback="").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return FleetLinkConfig(
        cloud=cloud,
        mqtt=mqtt,
        sdk=sdk,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )
