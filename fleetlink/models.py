"""Value objects exchanged between sessions, the codec and command callbacks."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from .constants import CommandName


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class SessionState(str, Enum):
    """Lifecycle state of a robot session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ENDED = "ended"


@dataclass(frozen=True, slots=True)
class RobotIdentity:
    robot_id: str
    name: str


@dataclass(frozen=True, slots=True)
class ConnectionParameters:
    """MQTT connection settings resolved for a single robot."""

    hostname: str
    port: int
    username: str
    password: str
    robot_api_key: str
    protocol: str = "mqtts://"
    client_id: Optional[str] = None

    @property
    def use_tls(self) -> bool:
        return self.protocol in ("mqtts://", "ssl://", "wss://")

    @property
    def use_websockets(self) -> bool:
        return self.protocol in ("ws://", "wss://")


# ---------------------------------------------------------------------------
# Outbound telemetry records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CustomDataKV:
    key_values: Mapping[str, Any]
    custom_field: str = "0"


@dataclass(frozen=True, slots=True)
class Pose:
    x: float
    y: float
    yaw: float
    frame_id: str = "map"
    ts: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class Odometry:
    linear_distance: float = 0.0
    angular_distance: float = 0.0
    linear_speed: float = 0.0
    angular_speed: float = 0.0
    ts_start: int = field(default_factory=now_ms)
    ts: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class RobotPath:
    points: Sequence[Tuple[float, float]]
    path_id: str = "0"
    frame_id: str = "map"
    ts: int = field(default_factory=now_ms)


@dataclass(frozen=True, slots=True)
class PathSet:
    paths: Sequence[RobotPath]
    ts: int = field(default_factory=now_ms)


TelemetryRecord = Union[CustomDataKV, Pose, Odometry, PathSet]


# ---------------------------------------------------------------------------
# Protocol records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Echo:
    """Receipt acknowledgement for an inbound message."""

    topic: str
    time_stamp: int
    string_payload: str


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Execution status reported back for a dispatched command."""

    file_name: str
    execution_id: str
    execution_status: str
    return_code: str
    execution_status_details: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    ts: int = field(default_factory=now_ms)


# ---------------------------------------------------------------------------
# Inbound commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PoseCommand:
    """Initial pose or navigation goal sent as ``seq|ts|x|y|theta`` text."""

    name: CommandName
    seq: str
    ts: str
    x: str
    y: str
    theta: str

    @property
    def command_name(self) -> str:
        return self.name.value

    @property
    def args(self) -> List[Any]:
        return [{"x": self.x, "y": self.y, "theta": self.theta}]

    @property
    def execution_id(self) -> str:
        return self.seq

    @property
    def file_name(self) -> str:
        return ""


@dataclass(frozen=True, slots=True)
class CustomScriptCommand:
    file_name: str
    arg_options: Tuple[str, ...]
    execution_id: str

    @property
    def command_name(self) -> str:
        return CommandName.CUSTOM_COMMAND.value

    @property
    def args(self) -> List[Any]:
        return [self.file_name, list(self.arg_options)]


@dataclass(frozen=True, slots=True)
class Unrecognized:
    """Message on a subscribed topic with no registered decoder."""

    subtopic: str


InboundCommand = Union[PoseCommand, CustomScriptCommand]
DecodedMessage = Union[PoseCommand, CustomScriptCommand, Unrecognized]


ResultFunction = Callable[..., None]
ProgressFunction = Callable[[Optional[str], Optional[str]], None]


@dataclass(slots=True)
class CommandOptions:
    """Per-callback handles passed alongside a dispatched command.

    ``result_function(code, execution_status_details=None, stdout=None,
    stderr=None)`` reports the outcome of the command. ``progress_function``
    accepts interim output and currently discards it. ``metadata`` is reserved.
    """

    result_function: ResultFunction
    progress_function: ProgressFunction
    execution_id: Optional[str]
    metadata: Dict[str, Any] = field(default_factory=dict)


CommandCallback = Callable[[str, List[Any], CommandOptions], Awaitable[None] | None]
