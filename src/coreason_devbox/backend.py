# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from abc import ABC, abstractmethod
from typing import Callable

from coreason_devbox.models import CommandOutput

OutputCallback = Callable[[str], None]


class RunningCommand(ABC):
    """
    A process started inside a sandbox that has not been waited on yet.
    """

    @property
    @abstractmethod
    def pid(self) -> int | None:
        """Remote process id, when the backend exposes one."""
        pass  # pragma: no cover

    @abstractmethod
    async def wait(self) -> CommandOutput:
        """Wait for the process to exit.

        Output chunks are delivered to the callbacks given to ``start`` while
        this coroutine is pending.

        Returns:
            CommandOutput: Exit code and the full captured output. A non-zero
            exit code is returned, not raised.

        Raises:
            ExecutionError: If the backend faulted (timeout, lost sandbox).
        """
        pass  # pragma: no cover

    @abstractmethod
    async def kill(self) -> bool:
        """Kill the process. Returns True if it was still running."""
        pass  # pragma: no cover


class SandboxHandle(ABC):
    """
    Live reference to one remote sandbox.
    """

    @property
    @abstractmethod
    def sandbox_id(self) -> str:
        pass  # pragma: no cover

    @abstractmethod
    async def start(
        self,
        command: str,
        *,
        cwd: str | None = None,
        envs: dict[str, str] | None = None,
        timeout: float | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> RunningCommand:
        """Launch a shell command without waiting for it.

        Args:
            command: The full shell command line.
            cwd: Working directory inside the sandbox.
            envs: Extra environment variables.
            timeout: Seconds before the backend gives up on the process.
                None disables the backend limit.
            on_stdout: Called with each stdout chunk, possibly from another thread.
            on_stderr: Called with each stderr chunk, possibly from another thread.

        Raises:
            ExecutionError: If the process could not be started.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        pass  # pragma: no cover

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read a text file.

        Raises:
            FileNotFoundError: If the path does not exist in the sandbox.
        """
        pass  # pragma: no cover

    @abstractmethod
    def resolve_host(self, port: int) -> str:
        """Public hostname that routes to ``port`` inside the sandbox."""
        pass  # pragma: no cover

    @abstractmethod
    async def probe(self, port: int) -> None:
        """Cheap liveness check.

        Raises:
            SandboxConnectionError: If the handle no longer reaches a live sandbox.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def kill(self) -> None:
        """Destroy the remote sandbox."""
        pass  # pragma: no cover


class SandboxBackend(ABC):
    """
    Provisioning backend for sandboxes (e.g., E2B).
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def create(
        self,
        api_key: str,
        timeout: float,
        metadata: dict[str, str] | None = None,
    ) -> SandboxHandle:
        """Provision a new sandbox."""
        pass  # pragma: no cover

    @abstractmethod
    async def connect(self, sandbox_id: str, api_key: str) -> SandboxHandle:
        """Attach to an existing sandbox.

        Raises:
            SandboxConnectionError: If the sandbox cannot be reached.
        """
        pass  # pragma: no cover
