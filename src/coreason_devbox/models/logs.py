# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

LogStream = Literal["stdout", "stderr", "info"]
LogStatus = Literal["running", "completed", "failed"]


class LogLine(BaseModel):
    """A single chunk of command output."""

    model_config = ConfigDict(frozen=True)

    stream: LogStream = Field(..., description="Which stream produced the chunk.")
    data: str = Field(..., description="The raw chunk, not split on newlines.")
    timestamp: float = Field(..., description="Wall-clock seconds at append time.")


class CommandLogEntry(BaseModel):
    """Everything the log store knows about one command."""

    command_id: str
    status: LogStatus = "running"
    lines: list[LogLine] = Field(default_factory=list)
    exit_code: int | None = None
    error: str | None = None
    started_at: float
    finished_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"

    def text(self, stream: LogStream | None = None) -> str:
        """Concatenate the chunks, optionally of a single stream."""
        return "".join(line.data for line in self.lines if stream is None or line.stream == stream)
