"""Protobuf wire encoding for telemetry and command records.

The schema is declared here as descriptor data and registered in a private
``DescriptorPool`` at import time, so no generated ``_pb2`` module is needed.
"""

from __future__ import annotations

import functools
import json
from typing import Any, Callable, Dict, List, Protocol, Type, TypeVar

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from google.protobuf.message import DecodeError, Message

from .models import (
    CommandResult,
    CustomDataKV,
    CustomScriptCommand,
    Echo,
    Odometry,
    PathSet,
    Pose,
    RobotPath,
)

PACKAGE = "fleetlink"

_F = descriptor_pb2.FieldDescriptorProto

_STRING = _F.TYPE_STRING
_DOUBLE = _F.TYPE_DOUBLE
_INT64 = _F.TYPE_INT64
_BOOL = _F.TYPE_BOOL
_MESSAGE = _F.TYPE_MESSAGE

# message name -> [(field name, number, type, repeated, message type name)]
SCHEMA: Dict[str, List[tuple]] = {
    "KeyValueCustomElement": [
        ("key", 1, _STRING, False, None),
        ("value", 2, _STRING, False, None),
    ],
    "KeyValuePairs": [
        ("pairs", 1, _MESSAGE, True, "KeyValueCustomElement"),
    ],
    "CustomDataMessage": [
        ("custom_field", 1, _STRING, False, None),
        ("key_value_payload", 2, _MESSAGE, False, "KeyValuePairs"),
    ],
    "LocationAndPoseMessage": [
        ("ts", 1, _INT64, False, None),
        ("pos_x", 2, _DOUBLE, False, None),
        ("pos_y", 3, _DOUBLE, False, None),
        ("yaw", 4, _DOUBLE, False, None),
        ("frame_id", 5, _STRING, False, None),
    ],
    "OdometryDataMessage": [
        ("ts_start", 1, _INT64, False, None),
        ("ts", 2, _INT64, False, None),
        ("linear_distance", 3, _DOUBLE, False, None),
        ("angular_distance", 4, _DOUBLE, False, None),
        ("linear_speed", 5, _DOUBLE, False, None),
        ("angular_speed", 6, _DOUBLE, False, None),
        ("speed_available", 7, _BOOL, False, None),
    ],
    "PathPoint": [
        ("x", 1, _DOUBLE, False, None),
        ("y", 2, _DOUBLE, False, None),
    ],
    "RobotPath": [
        ("ts", 1, _INT64, False, None),
        ("path_id", 2, _STRING, False, None),
        ("frame_id", 3, _STRING, False, None),
        ("points", 4, _MESSAGE, True, "PathPoint"),
    ],
    "PathDataMessage": [
        ("ts", 1, _INT64, False, None),
        ("paths", 2, _MESSAGE, True, "RobotPath"),
    ],
    "Echo": [
        ("topic", 1, _STRING, False, None),
        ("time_stamp", 2, _INT64, False, None),
        ("string_payload", 3, _STRING, False, None),
    ],
    "CustomScriptCommandMessage": [
        ("file_name", 1, _STRING, False, None),
        ("arg_options", 2, _STRING, True, None),
        ("execution_id", 3, _STRING, False, None),
    ],
    "CustomScriptStatusMessage": [
        ("file_name", 1, _STRING, False, None),
        ("execution_id", 2, _STRING, False, None),
        ("execution_status", 3, _STRING, False, None),
        ("return_code", 4, _STRING, False, None),
        ("execution_status_details", 5, _STRING, False, None),
        ("stdout", 6, _STRING, False, None),
        ("stderr", 7, _STRING, False, None),
        ("ts", 8, _INT64, False, None),
    ],
}


def _build_file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name=f"{PACKAGE}/telemetry.proto", package=PACKAGE, syntax="proto3"
    )
    for message_name, fields in SCHEMA.items():
        message = proto.message_type.add(name=message_name)
        for name, number, field_type, repeated, type_name in fields:
            field = message.field.add(
                name=name,
                number=number,
                type=field_type,
                label=_F.LABEL_REPEATED if repeated else _F.LABEL_OPTIONAL,
            )
            if type_name:
                field.type_name = f".{PACKAGE}.{type_name}"
    return proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file_descriptor().SerializeToString())


@functools.lru_cache(maxsize=None)
def message_class(name: str) -> Type[Message]:
    """Return the protobuf message class registered for ``name``."""
    descriptor = _POOL.FindMessageTypeByName(f"{PACKAGE}.{name}")
    return message_factory.GetMessageClass(descriptor)


def _convert_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


RecordT = TypeVar("RecordT")


class Codec(Protocol):
    """Serializes records to wire bytes and back."""

    def encode(self, record: Any) -> bytes: ...

    def decode(self, record_type: Type[RecordT], payload: bytes) -> RecordT: ...


class ProtobufCodec:
    """Codec backed by the protobuf schema above."""

    def __init__(self) -> None:
        self._encoders: Dict[type, Callable[[Any], Message]] = {
            CustomDataKV: self._encode_custom_data,
            Pose: self._encode_pose,
            Odometry: self._encode_odometry,
            PathSet: self._encode_paths,
            Echo: self._encode_echo,
            CommandResult: self._encode_command_result,
            CustomScriptCommand: self._encode_custom_command,
        }
        self._decoders: Dict[type, Callable[[bytes], Any]] = {
            CustomDataKV: self._decode_custom_data,
            Pose: self._decode_pose,
            PathSet: self._decode_paths,
            Echo: self._decode_echo,
            CommandResult: self._decode_command_result,
            CustomScriptCommand: self._decode_custom_command,
        }

    def encode(self, record: Any) -> bytes:
        encoder = self._encoders.get(type(record))
        if encoder is None:
            raise TypeError(f"No encoder for {type(record).__name__}")
        return encoder(record).SerializeToString()

    def decode(self, record_type: Type[RecordT], payload: bytes) -> RecordT:
        """Decode ``payload`` into ``record_type``.

        Raises ``ValueError`` when the payload is not a valid message.
        """
        decoder = self._decoders.get(record_type)
        if decoder is None:
            raise TypeError(f"No decoder for {record_type.__name__}")
        try:
            return decoder(payload)
        except DecodeError as exc:
            raise ValueError(f"Malformed {record_type.__name__} payload: {exc}") from exc

    # ------------------------------------------------------------------
    # Encoders
    # ------------------------------------------------------------------
    def _encode_custom_data(self, record: CustomDataKV) -> Message:
        msg = message_class("CustomDataMessage")()
        msg.custom_field = record.custom_field
        for key, value in record.key_values.items():
            msg.key_value_payload.pairs.add(key=str(key), value=_convert_value(value))
        return msg

    def _encode_pose(self, record: Pose) -> Message:
        return message_class("LocationAndPoseMessage")(
            ts=record.ts,
            pos_x=record.x,
            pos_y=record.y,
            yaw=record.yaw,
            frame_id=record.frame_id,
        )

    def _encode_odometry(self, record: Odometry) -> Message:
        return message_class("OdometryDataMessage")(
            ts_start=record.ts_start,
            ts=record.ts,
            linear_distance=record.linear_distance,
            angular_distance=record.angular_distance,
            linear_speed=record.linear_speed,
            angular_speed=record.angular_speed,
            speed_available=True,
        )

    def _encode_paths(self, record: PathSet) -> Message:
        msg = message_class("PathDataMessage")(ts=record.ts)
        for path in record.paths:
            robot_path = msg.paths.add(
                ts=path.ts, path_id=path.path_id, frame_id=path.frame_id
            )
            for x, y in path.points:
                robot_path.points.add(x=x, y=y)
        return msg

    def _encode_echo(self, record: Echo) -> Message:
        return message_class("Echo")(
            topic=record.topic,
            time_stamp=record.time_stamp,
            string_payload=record.string_payload,
        )

    def _encode_command_result(self, record: CommandResult) -> Message:
        msg = message_class("CustomScriptStatusMessage")(
            file_name=record.file_name,
            execution_id=record.execution_id,
            execution_status=record.execution_status,
            return_code=record.return_code,
            ts=record.ts,
        )
        if record.execution_status_details:
            msg.execution_status_details = record.execution_status_details
        if record.stdout:
            msg.stdout = record.stdout
        if record.stderr:
            msg.stderr = record.stderr
        return msg

    def _encode_custom_command(self, record: CustomScriptCommand) -> Message:
        return message_class("CustomScriptCommandMessage")(
            file_name=record.file_name,
            arg_options=list(record.arg_options),
            execution_id=record.execution_id,
        )

    # ------------------------------------------------------------------
    # Decoders
    # ------------------------------------------------------------------
    @staticmethod
    def _parse(name: str, payload: bytes) -> Any:
        msg = message_class(name)()
        msg.ParseFromString(payload)
        return msg

    def _decode_custom_data(self, payload: bytes) -> CustomDataKV:
        msg = self._parse("CustomDataMessage", payload)
        return CustomDataKV(
            key_values={pair.key: pair.value for pair in msg.key_value_payload.pairs},
            custom_field=msg.custom_field,
        )

    def _decode_pose(self, payload: bytes) -> Pose:
        msg = self._parse("LocationAndPoseMessage", payload)
        return Pose(
            x=msg.pos_x, y=msg.pos_y, yaw=msg.yaw, frame_id=msg.frame_id, ts=msg.ts
        )

    def _decode_paths(self, payload: bytes) -> PathSet:
        msg = self._parse("PathDataMessage", payload)
        return PathSet(
            ts=msg.ts,
            paths=[
                RobotPath(
                    points=[(point.x, point.y) for point in path.points],
                    path_id=path.path_id,
                    frame_id=path.frame_id,
                    ts=path.ts,
                )
                for path in msg.paths
            ],
        )

    def _decode_echo(self, payload: bytes) -> Echo:
        msg = self._parse("Echo", payload)
        return Echo(
            topic=msg.topic,
            time_stamp=msg.time_stamp,
            string_payload=msg.string_payload,
        )

    def _decode_command_result(self, payload: bytes) -> CommandResult:
        msg = self._parse("CustomScriptStatusMessage", payload)
        return CommandResult(
            file_name=msg.file_name,
            execution_id=msg.execution_id,
            execution_status=msg.execution_status,
            return_code=msg.return_code,
            execution_status_details=msg.execution_status_details or None,
            stdout=msg.stdout or None,
            stderr=msg.stderr or None,
            ts=msg.ts,
        )

    def _decode_custom_command(self, payload: bytes) -> CustomScriptCommand:
        msg = self._parse("CustomScriptCommandMessage", payload)
        return CustomScriptCommand(
            file_name=msg.file_name,
            arg_options=tuple(msg.arg_options),
            execution_id=msg.execution_id,
        )
