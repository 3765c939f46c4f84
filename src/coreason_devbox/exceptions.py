# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Error taxonomy for sandbox orchestration.

A process exiting with a non-zero code is not an error here; it is reported as a
completed command carrying its exit code.
"""


class DevboxError(Exception):
    """Base class for all coreason-devbox errors."""


class ConfigurationError(DevboxError):
    """A required setting (such as the sandbox credential) is missing."""


class SandboxConnectionError(DevboxError, ConnectionError):
    """The remote sandbox is unreachable or the cached handle went stale."""

    def __init__(self, message: str, sandbox_id: str | None = None):
        super().__init__(message)
        self.sandbox_id = sandbox_id


class ExecutionError(DevboxError):
    """The remote command invocation itself faulted (timeout, killed sandbox, cancellation)."""

    def __init__(self, message: str, command_id: str | None = None):
        super().__init__(message)
        self.command_id = command_id


class DispatchError(DevboxError):
    """A job could not be submitted to, or collected from, the dispatch backend."""
