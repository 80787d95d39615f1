"""Tests for the robot session lifecycle and message handling."""

import asyncio
import dataclasses

import pytest

from fleetlink import constants
from fleetlink.adapters.mqtt import LastWill, MQTTConnectionError
from fleetlink.models import (
    CommandResult,
    CustomScriptCommand,
    Echo,
    Pose,
    SessionState,
)
from fleetlink.resolver import ConfigFetchError

ONLINE = f"1|robot-key|{constants.AGENT_VERSION}|Robot One"
OFFLINE = f"0|robot-key|{constants.AGENT_VERSION}|Robot One"


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_connect_subscribes_then_announces_online(make_session, transports, resolver):
    session = make_session()

    await session.connect()

    assert session.state is SessionState.CONNECTED
    assert resolver.calls == [("robot-1", "Robot One", constants.AGENT_VERSION)]
    assert transports.events == [
        ("connect", "robot-1"),
        ("subscribe", "r/robot-1/ros/loc/set_pose", 1),
        ("subscribe", "r/robot-1/ros/loc/nav_goal", 1),
        ("subscribe", "r/robot-1/custom_command/script/command", 1),
        ("subscribe", "r/robot-1/in_cmd", 1),
        ("publish", "r/robot-1/state", ONLINE, 1, True),
    ]


@pytest.mark.asyncio
async def test_connect_configures_offline_last_will(make_session, transports):
    session = make_session()

    await session.connect()

    transport = transports.instances[0]
    assert transport.will == LastWill(
        topic="r/robot-1/state", payload=OFFLINE, qos=1, retain=True
    )
    assert transport.options["keepalive"] == 10


@pytest.mark.asyncio
async def test_connect_uses_resolved_client_id(make_session, transports, resolver):
    resolver.params = dataclasses.replace(resolver.params, client_id="client-abc")
    session = make_session()

    await session.connect()

    assert transports.instances[0].client_id == "client-abc"


@pytest.mark.asyncio
async def test_connect_twice_is_rejected(make_session):
    session = make_session()
    await session.connect()

    with pytest.raises(RuntimeError):
        await session.connect()


@pytest.mark.asyncio
async def test_connect_failure_returns_to_disconnected(make_session, transports):
    transports.connect_error = MQTTConnectionError("refused")
    session = make_session()

    with pytest.raises(MQTTConnectionError):
        await session.connect()

    assert session.state is SessionState.DISCONNECTED
    assert transports.published == []

    transports.connect_error = None
    await session.connect()
    assert session.state is SessionState.CONNECTED


@pytest.mark.asyncio
async def test_config_fetch_failure_propagates(make_session, resolver, transports):
    resolver.error = ConfigFetchError("status 401")
    session = make_session()

    with pytest.raises(ConfigFetchError):
        await session.connect()

    assert session.state is SessionState.DISCONNECTED
    assert transports.instances == []


@pytest.mark.asyncio
async def test_end_publishes_offline_and_disconnects(make_session, transports):
    session = make_session()
    await session.connect()
    transports.events.clear()

    await session.end()
    await session.end()

    assert session.state is SessionState.ENDED
    assert transports.events == [
        ("publish", "r/robot-1/state", OFFLINE, 1, True),
        ("disconnect", "robot-1"),
    ]


@pytest.mark.asyncio
async def test_end_before_connect_prevents_connect(make_session, transports):
    session = make_session()

    await session.end()

    assert session.state is SessionState.ENDED
    with pytest.raises(RuntimeError):
        await session.connect()
    assert transports.events == []


@pytest.mark.asyncio
async def test_end_while_fetching_config_skips_transport(make_session, resolver, transports):
    resolver.gate = asyncio.Event()
    session = make_session()

    task = asyncio.ensure_future(session.connect())
    await settle()
    assert session.state is SessionState.CONNECTING

    await session.end()
    resolver.gate.set()
    await task

    assert session.state is SessionState.ENDED
    assert transports.instances == []


@pytest.mark.asyncio
async def test_end_during_handshake_closes_without_publishing(make_session, transports):
    transports.connect_gate = asyncio.Event()
    session = make_session()

    task = asyncio.ensure_future(session.connect())
    await settle()
    await session.end()
    transports.connect_gate.set()
    await task

    assert session.state is SessionState.ENDED
    assert transports.published == []
    assert [event[0] for event in transports.events] == ["connect", "disconnect"]
    assert transports.instances[0].disconnect_calls == 1


@pytest.mark.asyncio
async def test_reconnect_announces_online_once_without_resubscribing(make_session, transports):
    session = make_session()
    await session.connect()
    transports.events.clear()

    transports.instances[0].simulate_reconnect()

    assert transports.events == [("publish", "r/robot-1/state", ONLINE, 1, True)]


@pytest.mark.asyncio
async def test_reconnect_after_end_is_ignored(make_session, transports):
    session = make_session()
    await session.connect()
    transport = transports.instances[0]
    await session.end()
    transports.events.clear()

    transport.simulate_reconnect()

    assert transports.events == []


def test_topic_rejects_leading_slash(make_session):
    session = make_session()

    assert session.topic("state") == "r/robot-1/state"
    with pytest.raises(ValueError):
        session.topic("/state")


@pytest.mark.asyncio
async def test_publish_before_connect_raises(make_session):
    session = make_session()

    with pytest.raises(RuntimeError):
        session.publish_pose(Pose(x=1.0, y=2.0, yaw=0.5))


@pytest.mark.asyncio
async def test_publish_pose_encodes_record(make_session, transports, codec):
    session = make_session()
    await session.connect()

    session.publish_pose(Pose(x=1.0, y=2.0, yaw=0.5, ts=1234))

    [(topic, payload, qos, retain)] = transports.published_to("r/robot-1/ros/loc/data2")
    assert (qos, retain) == (0, False)
    assert codec.decode(Pose, payload) == Pose(
        x=1.0, y=2.0, yaw=0.5, frame_id="map", ts=1234
    )


@pytest.mark.asyncio
async def test_publish_failure_is_logged_not_raised(make_session, transports, caplog):
    session = make_session()
    await session.connect()

    def failing_publish(*args, **kwargs):
        raise MQTTConnectionError("Publish failed with rc=4")

    transports.instances[0].publish = failing_publish

    session.publish_pose(Pose(x=0.0, y=0.0, yaw=0.0))

    assert "Dropping message" in caplog.text


@pytest.mark.asyncio
async def test_every_message_is_echoed_once(make_session, transports, codec):
    session = make_session()
    await session.connect()
    transport = transports.instances[0]

    await transport.deliver("r/robot-1/in_cmd", b"hello")

    [(topic, payload, qos, retain)] = transports.published_to("r/robot-1/echo")
    echo = codec.decode(Echo, payload)
    assert echo.topic == "r/robot-1/in_cmd"
    assert echo.string_payload == "hello"
    assert echo.time_stamp > 0


@pytest.mark.asyncio
async def test_nav_goal_dispatched_to_callbacks(make_session, transports):
    session = make_session()
    received = []

    def callback(command_name, args, options):
        received.append((command_name, args, options.execution_id))

    session.register_command_callback(callback)
    await session.connect()

    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"42|1000|1.0|2.0|0.5"
    )

    assert received == [("navGoal", [{"x": "1.0", "y": "2.0", "theta": "0.5"}], "42")]


@pytest.mark.asyncio
async def test_initial_pose_dispatched(make_session, transports):
    session = make_session()
    received = []
    session.register_command_callback(
        lambda name, args, options: received.append((name, args))
    )
    await session.connect()

    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/set_pose", b"7|1000|3|4|1.57"
    )

    assert received == [("initialPose", [{"x": "3", "y": "4", "theta": "1.57"}])]


@pytest.mark.asyncio
async def test_malformed_command_is_echoed_but_not_dispatched(make_session, transports):
    session = make_session()
    received = []
    session.register_command_callback(lambda *args: received.append(args))
    await session.connect()

    await transports.instances[0].deliver("r/robot-1/ros/loc/nav_goal", b"1|2")

    assert received == []
    assert len(transports.published_to("r/robot-1/echo")) == 1


@pytest.mark.asyncio
async def test_custom_command_result_reports_status(make_session, transports, codec):
    session = make_session()

    def callback(command_name, args, options):
        assert command_name == "customCommand"
        assert args == ["run.sh", ["--fast", "1"]]
        options.result_function("0")

    session.register_command_callback(callback)
    await session.connect()

    payload = codec.encode(
        CustomScriptCommand(
            file_name="run.sh", arg_options=("--fast", "1"), execution_id="exec-7"
        )
    )
    await transports.instances[0].deliver(
        "r/robot-1/custom_command/script/command", payload
    )

    [(topic, status_payload, qos, retain)] = transports.published_to(
        "r/robot-1/custom_command/script/status"
    )
    result = codec.decode(CommandResult, status_payload)
    assert result.file_name == "run.sh"
    assert result.execution_id == "exec-7"
    assert result.execution_status == "finished"
    assert result.return_code == "0"


@pytest.mark.asyncio
async def test_nonzero_result_code_reports_aborted(make_session, transports, codec):
    session = make_session()

    async def callback(command_name, args, options):
        options.result_function(1, execution_status_details="boom", stderr="trace")

    session.register_command_callback(callback)
    await session.connect()

    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"9|1000|1|2|3"
    )

    [(_, status_payload, _, _)] = transports.published_to(
        "r/robot-1/custom_command/script/status"
    )
    result = codec.decode(CommandResult, status_payload)
    assert result.execution_id == "9"
    assert result.file_name == ""
    assert result.execution_status == "aborted"
    assert result.return_code == "1"
    assert result.execution_status_details == "boom"
    assert result.stderr == "trace"


@pytest.mark.asyncio
async def test_callbacks_run_in_order_and_failures_are_isolated(make_session, transports):
    session = make_session()
    calls = []

    def first(command_name, args, options):
        calls.append("first")
        raise RuntimeError("callback failure")

    async def second(command_name, args, options):
        calls.append("second")

    session.register_command_callback(first)
    session.register_command_callback(second)
    await session.connect()

    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"1|1000|1|2|3"
    )

    assert calls == ["first", "second"]


@pytest.mark.asyncio
async def test_unregistered_callback_not_called(make_session, transports):
    session = make_session()
    calls = []

    def callback(*args):
        calls.append(args)

    session.register_command_callback(callback)
    session.unregister_command_callback(callback)
    await session.connect()

    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"1|1000|1|2|3"
    )

    assert calls == []


@pytest.mark.asyncio
async def test_messages_during_handshake_replayed_after_presence(make_session, transports):
    transports.connect_gate = asyncio.Event()
    session = make_session()
    received = []
    session.register_command_callback(lambda name, args, options: received.append(name))

    task = asyncio.ensure_future(session.connect())
    await settle()
    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"1|1000|1|2|3"
    )
    assert transports.published == []

    transports.connect_gate.set()
    await task
    await settle()

    topics = [event[0] for event in transports.published]
    assert topics == ["r/robot-1/state", "r/robot-1/echo"]
    assert received == ["navGoal"]


@pytest.mark.asyncio
async def test_messages_after_end_are_ignored(make_session, transports):
    session = make_session()
    await session.connect()
    transport = transports.instances[0]
    await session.end()
    transports.events.clear()

    await transport.deliver("r/robot-1/in_cmd", b"late")

    assert transports.events == []


@pytest.mark.asyncio
async def test_result_after_end_is_dropped(make_session, transports):
    session = make_session()
    captured = []
    session.register_command_callback(
        lambda name, args, options: captured.append(options)
    )
    await session.connect()
    await transports.instances[0].deliver(
        "r/robot-1/ros/loc/nav_goal", b"1|1000|1|2|3"
    )
    await session.end()
    transports.events.clear()

    captured[0].result_function("0")

    assert transports.events == []
