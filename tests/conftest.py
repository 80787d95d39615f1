import asyncio
from typing import Any, List, Optional

import pytest

from fleetlink.codec import ProtobufCodec
from fleetlink.models import ConnectionParameters
from fleetlink.session import RobotSession, RobotSessionFactory


def make_params(**overrides: Any) -> ConnectionParameters:
    values = dict(
        hostname="broker.example.com",
        port=8883,
        username="robot-user",
        password="robot-pass",
        robot_api_key="robot-key",
    )
    values.update(overrides)
    return ConnectionParameters(**values)


class FakeResolver:
    """Resolver returning canned parameters, optionally held on a gate."""

    def __init__(self, params: Optional[ConnectionParameters] = None) -> None:
        self.params = params or make_params()
        self.error: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []

    async def resolve(self, robot_id: str, robot_name: str, agent_version: str):
        self.calls.append((robot_id, robot_name, agent_version))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.params


class FakeTransport:
    """Stand-in for MQTTClient recording every call into a shared event list."""

    def __init__(self, recorder: "TransportRecorder", params, *, client_id, will=None, **options):
        self.recorder = recorder
        self.params = params
        self.client_id = client_id
        self.will = will
        self.options = options
        self.message_handler = None
        self.reconnect_handlers: list = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    def set_message_handler(self, handler) -> None:
        self.message_handler = handler

    def register_reconnect_handler(self, handler) -> None:
        self.reconnect_handlers.append(handler)

    async def connect(self, timeout: float = 30.0) -> None:
        self.connect_calls += 1
        self.recorder.events.append(("connect", self.client_id))
        if self.recorder.connect_gate is not None:
            await self.recorder.connect_gate.wait()
        if self.recorder.connect_error is not None:
            raise self.recorder.connect_error

    async def disconnect(self, timeout: float = 5.0) -> None:
        self.disconnect_calls += 1
        self.recorder.events.append(("disconnect", self.client_id))

    def publish(self, topic, payload, qos=0, retain=False):
        self.recorder.events.append(("publish", topic, payload, qos, retain))

    def subscribe(self, topic, qos=1):
        self.recorder.events.append(("subscribe", topic, qos))

    async def deliver(self, topic: str, payload: bytes) -> None:
        result = self.message_handler(topic, payload)
        if asyncio.iscoroutine(result):
            await result

    def simulate_reconnect(self) -> None:
        for handler in self.reconnect_handlers:
            handler()


class TransportRecorder:
    """Transport factory handing out FakeTransport instances."""

    def __init__(self) -> None:
        self.instances: List[FakeTransport] = []
        self.events: List[tuple] = []
        self.connect_error: Optional[BaseException] = None
        self.connect_gate: Optional[asyncio.Event] = None

    def __call__(self, params, **kwargs) -> FakeTransport:
        transport = FakeTransport(self, params, **kwargs)
        self.instances.append(transport)
        return transport

    @property
    def published(self) -> List[tuple]:
        return [event[1:] for event in self.events if event[0] == "publish"]

    def published_to(self, topic: str) -> List[tuple]:
        return [event for event in self.published if event[0] == topic]


@pytest.fixture
def codec() -> ProtobufCodec:
    return ProtobufCodec()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def transports() -> TransportRecorder:
    return TransportRecorder()


@pytest.fixture
def session_factory(resolver, transports, codec) -> RobotSessionFactory:
    return RobotSessionFactory(
        resolver=resolver, codec=codec, transport_factory=transports
    )


@pytest.fixture
def make_session(session_factory):
    def factory(robot_id: str = "robot-1", name: str = "Robot One") -> RobotSession:
        return session_factory.build(robot_id, name)

    return factory
