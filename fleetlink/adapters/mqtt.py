"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

import paho.mqtt.client as mqtt

from ..logging import mqtt_wire_logger
from ..models import ConnectionParameters

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None] | None]


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish a connection."""


@dataclass(frozen=True, slots=True)
class LastWill:
    """Message the broker publishes if the client disconnects uncleanly."""

    topic: str
    payload: Union[str, bytes]
    qos: int = 1
    retain: bool = True


def _reason_value(reason_code: Any) -> int:
    return int(getattr(reason_code, "value", reason_code))


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho reconnects on its own after a connection loss. Every successful
    CONNACK after the first one is reported to the reconnect handlers on the
    event loop that called :meth:`connect`.
    """

    def __init__(
        self,
        params: ConnectionParameters,
        *,
        client_id: str,
        keepalive: int = 10,
        will: Optional[LastWill] = None,
        clean_session: bool = False,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 120,
    ) -> None:
        self.params = params
        self.client_id = client_id
        self.keepalive = keepalive
        self.will = will
        self.clean_session = clean_session
        self.reconnect_min_delay = reconnect_min_delay
        self.reconnect_max_delay = reconnect_max_delay

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._last_connect_rc: Optional[int] = None
        self._connected: bool = False
        self._handshake_done: bool = False
        self._reconnect_handlers: List[Callable[[], None]] = []
        self._pending_deliveries: Set[asyncio.Task[None]] = set()

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None
        self._handshake_done = False

        params = self.params
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=self.clean_session,
            protocol=mqtt.MQTTv311,
            transport="websockets" if params.use_websockets else "tcp",
        )
        client.enable_logger(mqtt_wire_logger())

        if params.username:
            client.username_pw_set(params.username, params.password)

        if self.will is not None:
            client.will_set(
                self.will.topic,
                self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )

        if params.use_tls:
            client.tls_set()

        client.reconnect_delay_set(
            min_delay=self.reconnect_min_delay, max_delay=self.reconnect_max_delay
        )

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s%s:%s",
            params.protocol,
            params.hostname,
            params.port,
        )

        client.connect_async(params.hostname, params.port, self.keepalive)
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc is None or self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            client.loop_stop()
            self._client = None
            raise MQTTConnectionError("Timed out connecting to MQTT broker") from exc
        except MQTTConnectionError:
            client.loop_stop()
            self._client = None
            raise

        self._handshake_done = True

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker."""

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._disconnect_event.clear()
        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self._client.loop_stop()
            self._client = None
        self._connected = False

    def publish(
        self,
        topic: str,
        payload: Union[str, bytes],
        qos: int = 0,
        retain: bool = False,
    ) -> mqtt.MQTTMessageInfo:
        if not self._client:
            raise RuntimeError("MQTT client not connected")

        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish failed with rc={info.rc}")
        return info

    def subscribe(self, topic: str, qos: int = 1) -> None:
        if not self._client:
            raise RuntimeError("MQTT client not connected")
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Subscribe failed with rc={result}")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_reconnect_handler(self, handler: Callable[[], None]) -> None:
        self._reconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        self._last_connect_rc = rc
        loop = self._loop
        if rc != 0:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False
            if loop and self._connected_event and not self._handshake_done:
                loop.call_soon_threadsafe(self._connected_event.set)
            return

        self._connected = True
        if not loop:
            return
        if self._handshake_done:
            LOGGER.info("Reconnected to MQTT broker")
            for handler in self._reconnect_handlers:
                loop.call_soon_threadsafe(handler)
        else:
            LOGGER.info("Connected to MQTT broker")
            if self._connected_event:
                loop.call_soon_threadsafe(self._connected_event.set)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, disconnect_flags, reason_code, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        if rc != 0:
            LOGGER.warning("Unexpected disconnection from MQTT broker (rc=%s)", rc)
        else:
            LOGGER.info("Disconnected from MQTT broker")
        self._connected = False
        if self._loop and self._disconnect_event:
            self._loop.call_soon_threadsafe(self._disconnect_event.set)

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        loop = self._loop
        if not self._message_handler or not loop:
            return
        loop.call_soon_threadsafe(self._deliver, message.topic, message.payload)

    def _deliver(self, topic: str, payload: bytes) -> None:
        handler = self._message_handler
        if handler is None:
            return
        try:
            result = handler(topic, payload)
        except Exception:
            LOGGER.exception("MQTT message handler raised an exception")
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._pending_deliveries.add(task)
            task.add_done_callback(self._delivery_done)

    def _delivery_done(self, task: asyncio.Task[None]) -> None:
        self._pending_deliveries.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "MQTT message handler raised an exception", exc_info=exc
            )
