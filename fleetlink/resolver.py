"""Resolution of per-robot MQTT connection parameters."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp

from . import constants
from .models import ConnectionParameters

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class ConfigFetchError(RuntimeError):
    """Raised when connection parameters for a robot cannot be fetched."""


class RobotConfigResolver(Protocol):
    async def resolve(
        self, robot_id: str, robot_name: str, agent_version: str
    ) -> ConnectionParameters: ...


class ConfigResolver:
    """Fetches MQTT connection parameters for a robot from the config endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        endpoint: str = constants.DEFAULT_CONFIG_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._session = session

    async def resolve(
        self, robot_id: str, robot_name: str, agent_version: str
    ) -> ConnectionParameters:
        if not self.api_key:
            raise ConfigFetchError("An API key is required to fetch robot config")

        LOGGER.info(
            "Fetching MQTT config for robot %s (app key %s...)",
            robot_id,
            self.api_key[:3],
        )

        request = {
            "apiKey": self.api_key,
            "robotId": robot_id,
            "hostname": robot_name,
            "agentVersion": agent_version,
        }

        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )

        try:
            async with session.post(self.endpoint, json=request) as response:
                if response.status != 200:
                    detail = await response.text()
                    raise ConfigFetchError(
                        f"Failed to fetch config for robot {robot_id}: "
                        f"status {response.status}: {detail.strip()}"
                    )
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    raise ConfigFetchError(
                        f"Config response for robot {robot_id} is not valid JSON"
                    ) from exc
        except aiohttp.ClientError as exc:
            raise ConfigFetchError(
                f"Failed to fetch config for robot {robot_id}: {exc}"
            ) from exc
        except asyncio.TimeoutError as exc:
            raise ConfigFetchError(
                f"Timed out fetching config for robot {robot_id}"
            ) from exc
        finally:
            if owns_session:
                await session.close()

        return parse_connection_parameters(robot_id, payload)


def parse_connection_parameters(robot_id: str, payload: object) -> ConnectionParameters:
    """Build ``ConnectionParameters`` from a config endpoint response body."""

    if not isinstance(payload, dict):
        raise ConfigFetchError(f"Config response for robot {robot_id} is not an object")

    protocol = str(payload.get("protocol") or "mqtts://")

    try:
        port_key = (
            "websocket_port"
            if protocol in ("ws://", "wss://") and payload.get("websocket_port")
            else "port"
        )
        return ConnectionParameters(
            hostname=str(payload["hostname"]),
            port=int(payload[port_key]),
            username=str(payload["username"]),
            password=str(payload["password"]),
            robot_api_key=str(payload["robotApiKey"]),
            protocol=protocol,
            client_id=payload.get("clientId") or None,
        )
    except KeyError as exc:
        raise ConfigFetchError(
            f"Config response for robot {robot_id} missing field: {exc.args[0]}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ConfigFetchError(
            f"Config response for robot {robot_id} has an invalid port: {exc}"
        ) from exc
