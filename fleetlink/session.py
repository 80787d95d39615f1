"""Robot session lifecycle: connection bring-up, presence, telemetry and commands.

A :class:`RobotSession` owns one MQTT connection for one robot. It moves
forward through ``DISCONNECTED -> CONNECTING -> CONNECTED -> ENDED``:

- ``connect()`` fetches connection parameters, opens the transport with a
  last will that marks the robot offline, subscribes to the command topics
  and announces the robot online.
- Transport level reconnections re-announce the robot online.
- ``end()`` announces the robot offline and closes the transport. Ending a
  session that is still connecting closes the transport as soon as the
  handshake completes, before anything is published.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional, Set, Tuple, Union

from . import constants
from .adapters.mqtt import LastWill, MQTTClient, MQTTConnectionError
from .codec import Codec, ProtobufCodec
from .commands import CommandDecodeError, CommandDispatcher, decode_command
from .config import FleetLinkConfig, MQTTConfig
from .models import (
    CommandCallback,
    CommandResult,
    ConnectionParameters,
    CustomDataKV,
    Echo,
    Odometry,
    PathSet,
    Pose,
    RobotIdentity,
    SessionState,
    Unrecognized,
    now_ms,
)
from .resolver import ConfigResolver, RobotConfigResolver

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[..., MQTTClient]


class RobotSession:
    """Persistent MQTT session on behalf of a single robot."""

    def __init__(
        self,
        robot_id: str,
        name: str = constants.DEFAULT_ROBOT_NAME,
        *,
        resolver: RobotConfigResolver,
        codec: Optional[Codec] = None,
        transport_factory: TransportFactory = MQTTClient,
        mqtt_config: Optional[MQTTConfig] = None,
        agent_version: str = constants.AGENT_VERSION,
    ) -> None:
        self.identity = RobotIdentity(robot_id=robot_id, name=name)
        self.agent_version = agent_version
        self._resolver = resolver
        self._codec = codec or ProtobufCodec()
        self._transport_factory = transport_factory
        self._mqtt_config = mqtt_config or MQTTConfig()

        self._state = SessionState.DISCONNECTED
        self._ended = False
        self._params: Optional[ConnectionParameters] = None
        self._transport: Optional[MQTTClient] = None
        self._early_messages: List[Tuple[str, bytes]] = []
        self._replay_tasks: Set[asyncio.Task[None]] = set()
        self._dispatcher = CommandDispatcher(
            self._publish_command_result, robot_id=robot_id
        )

    @property
    def robot_id(self) -> str:
        return self.identity.robot_id

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    def topic(self, subtopic: str) -> str:
        """Return the full topic for a robot subtopic."""
        if subtopic.startswith("/"):
            raise ValueError("Subtopic shouldn't start with '/'.")
        return f"{constants.ROBOT_TOPIC_PREFIX}/{self.robot_id}/{subtopic}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        """Bring the session up.

        Raises:
            ConfigFetchError: If connection parameters cannot be fetched.
            MQTTConnectionError: If the broker rejects or times out the handshake.
            RuntimeError: If the session was already connected or ended.
        """
        if self._state != SessionState.DISCONNECTED or self._ended:
            raise RuntimeError(
                f"Cannot connect robot session {self.robot_id} in state {self._state.value}"
            )

        self._state = SessionState.CONNECTING

        try:
            params = await self._resolver.resolve(
                self.robot_id, self.name, self.agent_version
            )
            if self._ended:
                LOGGER.info(
                    "Robot session %s ended while fetching config", self.robot_id
                )
                self._state = SessionState.ENDED
                return

            self._params = params
            transport = self._transport_factory(
                params,
                client_id=params.client_id or self.robot_id,
                keepalive=self._mqtt_config.keepalive,
                will=LastWill(
                    topic=self.topic(constants.SUBTOPIC_STATE),
                    payload=self._presence_payload(online=False),
                    qos=constants.PRESENCE_QOS,
                    retain=True,
                ),
                reconnect_min_delay=self._mqtt_config.reconnect_min_delay_seconds,
                reconnect_max_delay=self._mqtt_config.reconnect_max_delay_seconds,
            )
            transport.set_message_handler(self._handle_message)
            transport.register_reconnect_handler(self._on_reconnected)
            self._transport = transport

            await transport.connect(timeout=self._mqtt_config.connect_timeout_seconds)
        except Exception:
            LOGGER.error("Failed to connect robot session %s", self.robot_id)
            self._transport = None
            self._params = None
            self._state = (
                SessionState.ENDED if self._ended else SessionState.DISCONNECTED
            )
            raise

        if self._ended:
            LOGGER.info(
                "Robot session %s ended while connecting; closing transport",
                self.robot_id,
            )
            self._state = SessionState.ENDED
            await self._close_transport()
            return

        for subtopic in constants.INBOUND_SUBTOPICS:
            transport.subscribe(self.topic(subtopic), qos=1)

        self._publish_presence(online=True)
        self._state = SessionState.CONNECTED
        LOGGER.info("Robot session %s connected", self.robot_id)

        self._replay_early_messages()

    async def end(self) -> None:
        """End the session, marking the robot offline. Safe to call repeatedly."""
        previous = self._state
        self._ended = True

        if previous == SessionState.CONNECTING:
            LOGGER.info(
                "Robot session %s will close once its connection completes",
                self.robot_id,
            )
            return

        if previous == SessionState.CONNECTED:
            # The last will only fires on unclean disconnects
            LOGGER.info("Setting robot %s state as offline", self.robot_id)
            self._publish_presence(online=False)

        self._state = SessionState.ENDED
        self._early_messages.clear()
        await self._close_transport()

    async def _close_transport(self) -> None:
        transport = self._transport
        self._transport = None
        self._params = None
        if transport is not None:
            await transport.disconnect()

    def _on_reconnected(self) -> None:
        if self._state != SessionState.CONNECTED:
            return
        LOGGER.info("Robot session %s reconnected; re-announcing presence", self.robot_id)
        self._publish_presence(online=True)

    # ------------------------------------------------------------------
    # Command callbacks
    # ------------------------------------------------------------------
    def register_command_callback(self, callback: CommandCallback) -> None:
        """Register a function called with ``(command_name, args, options)``.

        ``args`` is an ordered list of strings or dicts depending on the
        command. ``options`` is a :class:`~fleetlink.models.CommandOptions`
        with a ``result_function(code)`` for reporting the execution result
        (``"0"`` means success), a ``progress_function(output, error)`` and
        reserved ``metadata``.
        """
        self._dispatcher.register(callback)

    def unregister_command_callback(self, callback: CommandCallback) -> None:
        self._dispatcher.unregister(callback)

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------
    def publish_custom_data_kv(self, record: CustomDataKV) -> None:
        LOGGER.debug(
            "Publishing custom data key-values for robot %s: %s",
            self.robot_id,
            dict(record.key_values),
        )
        self._publish_telemetry(constants.SUBTOPIC_CUSTOM_DATA, record)

    def publish_pose(self, record: Pose) -> None:
        LOGGER.debug("Publishing pose for robot %s: %s", self.robot_id, record)
        self._publish_telemetry(constants.SUBTOPIC_POSE, record)

    def publish_odometry(self, record: Odometry) -> None:
        self._publish_telemetry(constants.SUBTOPIC_ODOMETRY, record)

    def publish_paths(self, record: PathSet) -> None:
        self._publish_telemetry(constants.SUBTOPIC_PATH, record)

    def _publish_telemetry(self, subtopic: str, record: Any) -> None:
        if self._state != SessionState.CONNECTED:
            raise RuntimeError(f"Robot session {self.robot_id} is not connected")
        self._publish(subtopic, self._codec.encode(record))

    def _publish(
        self,
        subtopic: str,
        payload: Union[str, bytes],
        *,
        qos: int = constants.TELEMETRY_QOS,
        retain: bool = False,
    ) -> None:
        transport = self._transport
        if transport is None:
            raise RuntimeError(f"Robot session {self.robot_id} has no transport")
        topic = self.topic(subtopic)
        LOGGER.debug("Publishing to topic %s", topic)
        try:
            transport.publish(topic, payload, qos=qos, retain=retain)
        except MQTTConnectionError as exc:
            LOGGER.warning("Dropping message for %s: %s", topic, exc)

    def _presence_payload(self, *, online: bool) -> str:
        robot_api_key = self._params.robot_api_key if self._params else ""
        return "{}|{}|{}|{}".format(
            "1" if online else "0", robot_api_key, self.agent_version, self.name
        )

    def _publish_presence(self, *, online: bool) -> None:
        self._publish(
            constants.SUBTOPIC_STATE,
            self._presence_payload(online=online),
            qos=constants.PRESENCE_QOS,
            retain=True,
        )

    def _publish_command_result(self, result: CommandResult) -> None:
        if self._state != SessionState.CONNECTED:
            LOGGER.warning(
                "Dropping result for execution %s; robot session %s is %s",
                result.execution_id,
                self.robot_id,
                self._state.value,
            )
            return
        LOGGER.info(
            "Reporting execution %s as %s (code %s) for robot %s",
            result.execution_id,
            result.execution_status,
            result.return_code,
            self.robot_id,
        )
        self._publish(
            constants.SUBTOPIC_CUSTOM_COMMAND_STATUS, self._codec.encode(result)
        )

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------
    async def _handle_message(self, topic: str, payload: bytes) -> None:
        if self._state == SessionState.CONNECTING:
            self._early_messages.append((topic, payload))
            return
        if self._state != SessionState.CONNECTED:
            LOGGER.debug("Ignoring message on %s; session is %s", topic, self._state.value)
            return

        self._send_echo(topic, payload)

        subtopic = "/".join(topic.split("/")[2:])
        try:
            decoded = decode_command(subtopic, payload, self._codec)
        except CommandDecodeError as exc:
            LOGGER.warning(
                "Failed to decode message on %s, ignoring: %s", topic, exc
            )
            return

        if isinstance(decoded, Unrecognized):
            LOGGER.debug("No handler for subtopic %s", decoded.subtopic)
            return

        await self._dispatcher.dispatch(decoded)

    def _send_echo(self, topic: str, payload: bytes) -> None:
        echo = Echo(
            topic=topic,
            time_stamp=now_ms(),
            string_payload=payload.decode("utf-8", errors="ignore"),
        )
        self._publish(constants.SUBTOPIC_ECHO, self._codec.encode(echo))

    def _replay_early_messages(self) -> None:
        messages, self._early_messages = self._early_messages, []
        for topic, payload in messages:
            task = asyncio.ensure_future(self._handle_message(topic, payload))
            self._replay_tasks.add(task)
            task.add_done_callback(self._replay_tasks.discard)


class RobotSessionFactory:
    """Builds robot sessions sharing one resolver, codec and MQTT settings."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        endpoint: str = constants.DEFAULT_CONFIG_ENDPOINT,
        config_timeout: float = 10.0,
        mqtt_config: Optional[MQTTConfig] = None,
        resolver: Optional[RobotConfigResolver] = None,
        codec: Optional[Codec] = None,
        transport_factory: TransportFactory = MQTTClient,
    ) -> None:
        self.resolver = resolver or ConfigResolver(
            api_key, endpoint=endpoint, timeout=config_timeout
        )
        self.codec = codec or ProtobufCodec()
        self.mqtt_config = mqtt_config or MQTTConfig()
        self.transport_factory = transport_factory

    @classmethod
    def from_config(cls, config: FleetLinkConfig, **overrides: Any) -> "RobotSessionFactory":
        kwargs: dict = {
            "api_key": config.cloud.api_key,
            "endpoint": config.cloud.endpoint,
            "config_timeout": config.cloud.config_timeout_seconds,
            "mqtt_config": config.mqtt,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def build(self, robot_id: str, name: str = constants.DEFAULT_ROBOT_NAME) -> RobotSession:
        return RobotSession(
            robot_id,
            name,
            resolver=self.resolver,
            codec=self.codec,
            transport_factory=self.transport_factory,
            mqtt_config=self.mqtt_config,
        )
