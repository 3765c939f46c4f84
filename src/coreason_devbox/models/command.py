# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Data models for command requests and their outcomes."""

from typing import Literal

from pydantic import BaseModel, Field

CommandStatus = Literal["pending", "executing", "running", "completed", "failed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class CommandConfig(BaseModel):
    """A command to run inside a sandbox.

    Attributes:
        command: The executable name, e.g. ``pnpm``.
        args: Arguments passed to the executable.
        cwd: Working directory inside the sandbox.
        env: Extra environment variables for the process.
        sudo: Run the command through ``sudo``.
        wait: Block until the command exits and return its captured output.
        command_id: Pre-assigned identifier so a caller can follow the logs
            before the call returns.
    """

    command: str
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    sudo: bool = False
    wait: bool = False
    command_id: str | None = None

    @property
    def command_line(self) -> str:
        """The line run by the sandbox shell. Arguments are joined unquoted."""
        parts = [self.command, *self.args]
        if self.sudo:
            parts.insert(0, "sudo")
        return " ".join(parts)


class CommandOutput(BaseModel):
    """Raw outcome of a process that ran to exit."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""


class CommandResult(BaseModel):
    """Outcome of a ``run_command`` call.

    ``failed`` means the orchestration itself faulted. A process that exited
    non-zero is ``completed`` with its ``exit_code``. ``running`` means the
    command was detached; follow the log store for progress.
    """

    command_id: str
    status: CommandStatus
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def success(self) -> bool:
        return self.status != "failed"
