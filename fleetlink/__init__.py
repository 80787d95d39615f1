"""Persistent per-robot MQTT sessions for publishing telemetry and receiving commands."""

__version__ = "0.2.0"
