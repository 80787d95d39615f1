"""Adapter modules for external integrations."""

from .mqtt import LastWill, MQTTClient, MQTTConnectionError

__all__ = [
    "LastWill",
    "MQTTClient",
    "MQTTConnectionError",
]
