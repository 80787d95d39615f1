"""Public entry point for publishing robot data and receiving robot commands."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Set

from . import constants
from .config import FleetLinkConfig, load_config
from .models import CommandOptions, CustomDataKV, Odometry, PathSet, Pose
from .pool import RobotSessionPool
from .session import RobotSession, RobotSessionFactory

LOGGER = logging.getLogger(__name__)

GlobalCommandCallback = Callable[
    [str, str, List[Any], CommandOptions], Awaitable[None] | None
]


class SessionUsageError(RuntimeError):
    """Raised when a robot is used before it has been connected."""


class EdgeSDK:
    """Manages robot sessions for one API key.

    Robots must be connected with :meth:`connect_robot` before publishing or
    registering per-robot callbacks, unless ``require_connect`` is false, in
    which case they are connected on first use.

    Callbacks registered with :meth:`register_command_callback` receive
    commands for every connected robot as
    ``callback(robot_id, command_name, args, options)``.
    """

    def __init__(
        self,
        config: Optional[FleetLinkConfig] = None,
        *,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
        require_connect: Optional[bool] = None,
        session_factory: Optional[RobotSessionFactory] = None,
    ) -> None:
        self._config = config or load_config()

        if session_factory is None:
            overrides: dict = {}
            if api_key is not None:
                overrides["api_key"] = api_key
            if endpoint is not None:
                overrides["endpoint"] = endpoint
            session_factory = RobotSessionFactory.from_config(self._config, **overrides)

        self.require_connect = (
            self._config.sdk.require_connect
            if require_connect is None
            else require_connect
        )
        self._pool = RobotSessionPool(session_factory)
        self._callbacks: List[GlobalCommandCallback] = []
        self._relayed: Set[str] = set()

    @property
    def pool(self) -> RobotSessionPool:
        return self._pool

    async def connect_robot(
        self, robot_id: str, name: str = constants.DEFAULT_ROBOT_NAME
    ) -> RobotSession:
        """Connect a robot, or return its existing session."""
        session = await self._pool.get_session(robot_id, name)
        if robot_id not in self._relayed:
            self._relayed.add(robot_id)
            session.register_command_callback(self._build_relay(robot_id))
        return session

    async def disconnect_robot(self, robot_id: str) -> None:
        self._relayed.discard(robot_id)
        await self._pool.free_session(robot_id)

    async def close(self) -> None:
        self._relayed.clear()
        await self._pool.tear_down()

    # ------------------------------------------------------------------
    # Command callbacks
    # ------------------------------------------------------------------
    def register_command_callback(self, callback: GlobalCommandCallback) -> None:
        """Register a callback for commands sent to any connected robot."""
        if not callable(callback):
            LOGGER.warning("Ignoring non-callable command callback")
            return
        self._callbacks.append(callback)

    def unregister_command_callback(self, callback: GlobalCommandCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            LOGGER.debug("Command callback was not registered")

    async def register_robot_command_callback(
        self, robot_id: str, callback: Callable[..., Any]
    ) -> None:
        """Register a callback receiving ``(command_name, args, options)`` for one robot."""
        session = await self._session_for(robot_id)
        session.register_command_callback(callback)

    def _build_relay(self, robot_id: str):
        async def relay(command_name: str, args: List[Any], options: CommandOptions) -> None:
            for callback in list(self._callbacks):
                callback_options = CommandOptions(
                    result_function=options.result_function,
                    progress_function=options.progress_function,
                    execution_id=options.execution_id,
                    metadata=dict(options.metadata),
                )
                try:
                    result = callback(robot_id, command_name, args, callback_options)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    LOGGER.exception(
                        "Command callback failed for %s on robot %s",
                        command_name,
                        robot_id,
                    )

        relay.__name__ = f"relay_{robot_id}"
        return relay

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------
    async def publish_custom_data_kv(self, robot_id: str, record: CustomDataKV) -> None:
        session = await self._session_for(robot_id)
        session.publish_custom_data_kv(record)

    async def publish_pose(self, robot_id: str, record: Pose) -> None:
        session = await self._session_for(robot_id)
        session.publish_pose(record)

    async def publish_odometry(self, robot_id: str, record: Odometry) -> None:
        session = await self._session_for(robot_id)
        session.publish_odometry(record)

    async def publish_paths(self, robot_id: str, record: PathSet) -> None:
        session = await self._session_for(robot_id)
        session.publish_paths(record)

    async def _session_for(self, robot_id: str) -> RobotSession:
        if not self._pool.has_session(robot_id):
            if self.require_connect:
                raise SessionUsageError(
                    f"Robot {robot_id} is not connected; call connect_robot() first"
                )
            LOGGER.info("Implicitly connecting robot %s", robot_id)
            return await self.connect_robot(robot_id, robot_id)
        return await self._pool.get_session(robot_id)
