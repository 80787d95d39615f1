import pytest

from fleetlink.codec import ProtobufCodec, message_class
from fleetlink.models import (
    CommandResult,
    CustomDataKV,
    CustomScriptCommand,
    Odometry,
    PathSet,
    RobotPath,
    Unrecognized,
)


def test_custom_data_values_are_stringified():
    codec = ProtobufCodec()

    payload = codec.encode(
        CustomDataKV({"battery": 87, "status": "docked", "flags": [1, 2]})
    )
    decoded = codec.decode(CustomDataKV, payload)

    assert decoded.custom_field == "0"
    assert decoded.key_values == {
        "battery": "87",
        "status": "docked",
        "flags": "[1, 2]",
    }


def test_odometry_marks_speed_available():
    codec = ProtobufCodec()

    payload = codec.encode(
        Odometry(linear_distance=2.5, linear_speed=0.5, ts_start=100, ts=200)
    )
    msg = message_class("OdometryDataMessage")()
    msg.ParseFromString(payload)

    assert msg.speed_available is True
    assert msg.linear_distance == 2.5
    assert (msg.ts_start, msg.ts) == (100, 200)


def test_paths_keep_point_order():
    codec = ProtobufCodec()
    record = PathSet(
        paths=[RobotPath(points=[(0.0, 0.0), (1.5, 2.5)], path_id="route", ts=7)],
        ts=9,
    )

    decoded = codec.decode(PathSet, codec.encode(record))

    assert decoded.ts == 9
    [path] = decoded.paths
    assert path.path_id == "route"
    assert list(path.points) == [(0.0, 0.0), (1.5, 2.5)]


def test_command_result_omits_empty_optionals():
    codec = ProtobufCodec()
    result = CommandResult(
        file_name="run.sh",
        execution_id="exec-1",
        execution_status="finished",
        return_code="0",
        ts=42,
    )

    decoded = codec.decode(CommandResult, codec.encode(result))

    assert decoded == result


def test_custom_command_decode():
    codec = ProtobufCodec()
    msg = message_class("CustomScriptCommandMessage")(
        file_name="lights.sh", arg_options=["on"], execution_id="e-3"
    )

    command = codec.decode(CustomScriptCommand, msg.SerializeToString())

    assert command == CustomScriptCommand(
        file_name="lights.sh", arg_options=("on",), execution_id="e-3"
    )
    assert command.args == ["lights.sh", ["on"]]


def test_malformed_payload_raises_value_error():
    codec = ProtobufCodec()

    with pytest.raises(ValueError):
        codec.decode(CustomScriptCommand, b"\x0a\x05ab")


def test_unknown_record_type_rejected():
    codec = ProtobufCodec()

    with pytest.raises(TypeError):
        codec.encode(Unrecognized(subtopic="in_cmd"))
    with pytest.raises(TypeError):
        codec.decode(Unrecognized, b"")
