"""Decoding and dispatch of inbound robot commands."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from . import constants
from .codec import Codec
from .constants import CommandName, CommandStatus
from .models import (
    CommandCallback,
    CommandOptions,
    CommandResult,
    CustomScriptCommand,
    DecodedMessage,
    InboundCommand,
    PoseCommand,
    Unrecognized,
)

LOGGER = logging.getLogger(__name__)

ResultReporter = Callable[[CommandResult], None]

_POSE_COMMANDS = {
    constants.SUBTOPIC_INITIAL_POSE: CommandName.INITIAL_POSE,
    constants.SUBTOPIC_NAV_GOAL: CommandName.NAV_GOAL,
}


class CommandDecodeError(ValueError):
    """Raised when a message on a known command topic cannot be parsed."""

    def __init__(self, message: str, *, subtopic: str) -> None:
        super().__init__(message)
        self.subtopic = subtopic


def parse_pose_command(name: CommandName, payload: bytes, *, subtopic: str = "") -> PoseCommand:
    """Parse a ``seq|ts|x|y|theta`` pose message.

    Values are kept as the strings received; callbacks convert as needed.
    """
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CommandDecodeError(
            f"Pose message is not valid UTF-8: {exc}", subtopic=subtopic
        ) from exc

    parts = text.split("|")
    if len(parts) < 5:
        raise CommandDecodeError(
            f"Pose message has {len(parts)} fields, expected 5: {text!r}",
            subtopic=subtopic,
        )
    seq, ts, x, y, theta = parts[:5]
    return PoseCommand(name=name, seq=seq, ts=ts, x=x, y=y, theta=theta)


def decode_command(subtopic: str, payload: bytes, codec: Codec) -> DecodedMessage:
    """Map a robot subtopic and raw payload to a command variant."""

    pose_command = _POSE_COMMANDS.get(subtopic)
    if pose_command is not None:
        return parse_pose_command(pose_command, payload, subtopic=subtopic)

    if subtopic == constants.SUBTOPIC_CUSTOM_COMMAND:
        try:
            return codec.decode(CustomScriptCommand, payload)
        except ValueError as exc:
            raise CommandDecodeError(str(exc), subtopic=subtopic) from exc

    return Unrecognized(subtopic=subtopic)


def build_command_result(
    command: InboundCommand,
    code: Any,
    execution_status_details: Optional[str] = None,
    stdout: Optional[str] = None,
    stderr: Optional[str] = None,
) -> CommandResult:
    return_code = str(code)
    status = (
        CommandStatus.FINISHED
        if return_code == constants.RESULT_CODE_SUCCESS
        else CommandStatus.ABORTED
    )
    return CommandResult(
        file_name=command.file_name,
        execution_id=command.execution_id,
        execution_status=status.value,
        return_code=return_code,
        execution_status_details=execution_status_details,
        stdout=stdout,
        stderr=stderr,
    )


class CommandDispatcher:
    """Ordered set of command callbacks for one robot.

    Every callback receives ``(command_name, args, options)`` where
    ``options`` is a fresh :class:`CommandOptions` whose ``result_function``
    reports the outcome of that command through ``report_result``. Several
    callbacks may report for the same command; the last report wins.
    """

    def __init__(self, report_result: ResultReporter, *, robot_id: str) -> None:
        self._report_result = report_result
        self._robot_id = robot_id
        self._callbacks: List[CommandCallback] = []

    @property
    def callbacks(self) -> List[CommandCallback]:
        return list(self._callbacks)

    def register(self, callback: CommandCallback) -> None:
        if not callable(callback):
            LOGGER.warning(
                "Ignoring non-callable command callback for robot %s", self._robot_id
            )
            return
        LOGGER.info(
            "Registering callback '%s' for robot '%s'",
            getattr(callback, "__name__", repr(callback)),
            self._robot_id,
        )
        self._callbacks.append(callback)

    def unregister(self, callback: CommandCallback) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            LOGGER.debug("Callback not registered for robot %s", self._robot_id)

    def options_for(self, command: InboundCommand) -> CommandOptions:
        def result_function(
            code: Any,
            execution_status_details: Optional[str] = None,
            stdout: Optional[str] = None,
            stderr: Optional[str] = None,
        ) -> None:
            self._report_result(
                build_command_result(
                    command, code, execution_status_details, stdout, stderr
                )
            )

        def progress_function(output: Optional[str], error: Optional[str]) -> None:
            return None

        return CommandOptions(
            result_function=result_function,
            progress_function=progress_function,
            execution_id=command.execution_id,
        )

    async def dispatch(self, command: InboundCommand) -> None:
        LOGGER.debug(
            "Dispatching %s (execution %s) to %d callbacks for robot %s",
            command.command_name,
            command.execution_id,
            len(self._callbacks),
            self._robot_id,
        )
        for callback in list(self._callbacks):
            try:
                result = callback(
                    command.command_name, command.args, self.options_for(command)
                )
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception(
                    "Command callback failed for %s on robot %s",
                    command.command_name,
                    self._robot_id,
                )
