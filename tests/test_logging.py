import logging
from pathlib import Path

import pytest

from fleetlink.config import LoggingConfig
from fleetlink.logging import (
    MQTT_WIRE_LOGGER,
    NETWORK_LOGGERS,
    configure_from_config,
    configure_logging,
)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    network_levels = {name: logging.getLogger(name).level for name in NETWORK_LOGGERS}

    yield

    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    for name, network_level in network_levels.items():
        logging.getLogger(name).setLevel(network_level)


def test_mqtt_trace_quiet_unless_network_logging(restore_logging) -> None:
    configure_logging("DEBUG")

    assert logging.getLogger().level == logging.DEBUG
    assert not logging.getLogger(MQTT_WIRE_LOGGER).isEnabledFor(logging.DEBUG)

    configure_logging("INFO", log_network=True)

    assert logging.getLogger(MQTT_WIRE_LOGGER).isEnabledFor(logging.DEBUG)
    assert not logging.getLogger("fleetlink.session").isEnabledFor(logging.DEBUG)


def test_configure_from_config_writes_log_file(tmp_path: Path, restore_logging) -> None:
    log_path = tmp_path / "logs" / "fleetlink.log"

    configure_from_config(LoggingConfig(level="warning", path=log_path))
    logging.getLogger("fleetlink.session").warning("robot %s offline", "robot-1")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert "| WARNING | fleetlink.session | robot robot-1 offline" in log_path.read_text()
