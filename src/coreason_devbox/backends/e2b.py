# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
from typing import Any

from e2b import CommandExitException, NotFoundException, TimeoutException
from e2b_code_interpreter import Sandbox as E2BSandbox

from coreason_devbox.backend import OutputCallback, RunningCommand, SandboxBackend, SandboxHandle
from coreason_devbox.exceptions import ExecutionError, SandboxConnectionError
from coreason_devbox.models import CommandOutput
from coreason_devbox.utils.logger import logger


class E2BRunningCommand(RunningCommand):
    """Wraps an E2B ``CommandHandle`` started in background mode."""

    def __init__(
        self,
        handle: Any,
        command: str,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ):
        self._handle = handle
        self._command = command
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr

    @property
    def pid(self) -> int | None:
        return getattr(self._handle, "pid", None)

    async def wait(self) -> CommandOutput:
        """Block (in a worker thread) until the E2B process exits.

        Returns:
            CommandOutput: The exit code and captured output.

        Raises:
            ExecutionError: On an E2B timeout or any other SDK fault.
        """
        try:
            result = await asyncio.to_thread(
                self._handle.wait,
                on_stdout=self._on_stdout,
                on_stderr=self._on_stderr,
            )
        except CommandExitException as e:
            # Non-zero exit: a normal outcome, not a fault.
            return CommandOutput(exit_code=e.exit_code, stdout=e.stdout or "", stderr=e.stderr or "")
        except TimeoutException as e:
            raise ExecutionError(f"Command timed out: {self._command}: {e}") from e
        except Exception as e:
            logger.error(f"E2B command failed: {e}")
            raise ExecutionError(str(e)) from e

        return CommandOutput(
            exit_code=result.exit_code if result.exit_code is not None else 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    async def kill(self) -> bool:
        try:
            return bool(await asyncio.to_thread(self._handle.kill))
        except Exception as e:
            logger.warning(f"Error killing E2B process {self.pid}: {e}")
            return False


class E2BSandboxHandle(SandboxHandle):
    """E2B Cloud implementation of a sandbox handle.

    Every blocking SDK call runs in a worker thread.
    """

    def __init__(self, sandbox: E2BSandbox):
        self._sandbox = sandbox

    @property
    def sandbox_id(self) -> str:
        return str(self._sandbox.sandbox_id)

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
        try:
            handle = await asyncio.to_thread(
                self._sandbox.commands.run,
                command,
                background=True,
                cwd=cwd,
                envs=envs or None,
                # E2B treats 0 as "no limit"
                timeout=timeout if timeout is not None else 0,
            )
        except Exception as e:
            logger.error(f"Failed to start command in E2B sandbox {self.sandbox_id}: {e}")
            raise ExecutionError(str(e)) from e

        return E2BRunningCommand(handle, command, on_stdout=on_stdout, on_stderr=on_stderr)

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._sandbox.files.write, path, content)

    async def read_file(self, path: str) -> str:
        try:
            content = await asyncio.to_thread(self._sandbox.files.read, path)
        except NotFoundException as e:
            raise FileNotFoundError(f"Remote file not found: {path}") from e
        return str(content)

    def resolve_host(self, port: int) -> str:
        return str(self._sandbox.get_host(port))

    async def probe(self, port: int) -> None:
        try:
            self.resolve_host(port)
            running = await asyncio.to_thread(self._sandbox.is_running)
        except Exception as e:
            raise SandboxConnectionError(f"Sandbox {self.sandbox_id} is unreachable: {e}", self.sandbox_id) from e
        if not running:
            raise SandboxConnectionError(f"Sandbox {self.sandbox_id} is not running", self.sandbox_id)

    async def kill(self) -> None:
        await asyncio.to_thread(self._sandbox.kill)


class E2BBackend(SandboxBackend):
    """Provisions and attaches to E2B cloud microVMs."""

    def __init__(self, template: str | None = None):
        """Initializes the E2BBackend.

        Args:
            template: E2B template ID. Defaults to the SDK's own template.
        """
        self.template = template

    async def create(
        self,
        api_key: str,
        timeout: float,
        metadata: dict[str, str] | None = None,
    ) -> SandboxHandle:
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": int(timeout),
            "metadata": metadata or None,
        }
        if self.template:
            kwargs["template"] = self.template

        sandbox = await asyncio.to_thread(E2BSandbox.create, **kwargs)
        return E2BSandboxHandle(sandbox)

    async def connect(self, sandbox_id: str, api_key: str) -> SandboxHandle:
        try:
            sandbox = await asyncio.to_thread(E2BSandbox.connect, sandbox_id, api_key=api_key)
        except Exception as e:
            raise SandboxConnectionError(f"Failed to connect to sandbox {sandbox_id}: {e}", sandbox_id) from e
        return E2BSandboxHandle(sandbox)
