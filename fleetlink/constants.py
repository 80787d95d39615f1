"""Constants used across the fleetlink package."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from . import __version__

APP_NAME = "fleetlink"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

API_KEY_ENV_VAR = "FLEETLINK_API_KEY"

AGENT_VERSION = f"{__version__}.edgesdk_py"

DEFAULT_CONFIG_ENDPOINT = "https://control.inorbit.ai/cloud_sdk_robot_config"
DEFAULT_ROBOT_NAME = "unknown"

# Robot topics are namespaced as r/{robot_id}/{subtopic}
ROBOT_TOPIC_PREFIX = "r"

SUBTOPIC_STATE = "state"
SUBTOPIC_CUSTOM_DATA = "custom"
SUBTOPIC_POSE = "ros/loc/data2"
SUBTOPIC_ODOMETRY = "ros/odometry/data"
SUBTOPIC_PATH = "ros/loc/path"
SUBTOPIC_ECHO = "echo"

SUBTOPIC_INITIAL_POSE = "ros/loc/set_pose"
SUBTOPIC_NAV_GOAL = "ros/loc/nav_goal"
SUBTOPIC_CUSTOM_COMMAND = "custom_command/script/command"
SUBTOPIC_CUSTOM_COMMAND_STATUS = "custom_command/script/status"
SUBTOPIC_IN_CMD = "in_cmd"

INBOUND_SUBTOPICS = (
    SUBTOPIC_INITIAL_POSE,
    SUBTOPIC_NAV_GOAL,
    SUBTOPIC_CUSTOM_COMMAND,
    SUBTOPIC_IN_CMD,
)

PRESENCE_QOS = 1
TELEMETRY_QOS = 0

RESULT_CODE_SUCCESS = "0"


class CommandName(str, Enum):
    """Command names handed to registered command callbacks."""

    INITIAL_POSE = "initialPose"
    NAV_GOAL = "navGoal"
    CUSTOM_COMMAND = "customCommand"


class CommandStatus(str, Enum):
    """Execution status reported for a custom command."""

    FINISHED = "finished"
    ABORTED = "aborted"
