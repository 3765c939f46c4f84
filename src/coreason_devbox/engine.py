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
import random
import string
import time
from contextlib import AsyncExitStack

from coreason_devbox.backend import OutputCallback, RunningCommand, SandboxHandle
from coreason_devbox.classifier import (
    PACKAGE_MANAGER_INSTALL_TIMEOUT,
    CommandPolicy,
    TimeoutPolicy,
    classify,
)
from coreason_devbox.exceptions import ExecutionError
from coreason_devbox.log_store import LogStore
from coreason_devbox.models import CommandConfig, CommandOutput, CommandResult, LogStream
from coreason_devbox.utils.logger import logger

CANCELLED_MESSAGE = "Command cancelled"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_command_id() -> str:
    """``cmd_<epoch ms>_<9 base36 chars>``"""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"cmd_{int(time.time() * 1000)}_{suffix}"


class CommandEngine:
    """Runs commands against a sandbox handle and streams their output into a LogStore.

    Dev-server commands that the caller does not wait for are detached: ``run``
    returns a ``running`` result as soon as the process has started and a
    watcher task settles the log entry when the process exits.
    """

    def __init__(
        self,
        log_store: LogStore,
        timeouts: TimeoutPolicy | None = None,
        package_manager_install_timeout: float = PACKAGE_MANAGER_INSTALL_TIMEOUT,
        serialize_commands: bool = False,
        log_preview_chars: int = 200,
    ):
        """Initializes the CommandEngine.

        Args:
            log_store: Destination of streamed output.
            timeouts: Per-class timeouts. Defaults to the classifier's.
            package_manager_install_timeout: Limit for bootstrapping pnpm.
            serialize_commands: Hold a per-sandbox lock while a command runs.
            log_preview_chars: Length of output previews in the service log.
        """
        self.log_store = log_store
        self.timeouts = timeouts or TimeoutPolicy()
        self.package_manager_install_timeout = package_manager_install_timeout
        self.serialize_commands = serialize_commands
        self.log_preview_chars = log_preview_chars

        self._running: dict[str, RunningCommand] = {}
        self._cancelled: set[str] = set()
        self._background: dict[str, asyncio.Task[None]] = {}
        self._sandbox_locks: dict[str, asyncio.Lock] = {}
        self._package_manager_ready: set[str] = set()

    def running_commands(self) -> list[str]:
        """Ids of commands whose process has started and not yet been settled."""
        return list(self._running)

    def _sandbox_lock(self, sandbox_id: str) -> asyncio.Lock:
        lock = self._sandbox_locks.get(sandbox_id)
        if lock is None:
            lock = self._sandbox_locks[sandbox_id] = asyncio.Lock()
        return lock

    def forget_sandbox(self, sandbox_id: str) -> None:
        """Drop per-sandbox state once the sandbox is gone."""
        self._sandbox_locks.pop(sandbox_id, None)
        self._package_manager_ready.discard(sandbox_id)

    def _stream_callback(self, command_id: str, stream: LogStream) -> OutputCallback:
        def _on_output(data: str) -> None:
            if len(data) > self.log_preview_chars:
                preview = f"{data[: self.log_preview_chars]}..."
            else:
                preview = data
            self.log_store.append(command_id, stream, data)
            logger.debug("Command output", command_id=command_id, stream=stream, preview=preview)

        return _on_output

    async def _probe_command(self, handle: SandboxHandle, command: str, timeout: float) -> CommandOutput:
        process = await handle.start(command, timeout=timeout)
        try:
            return await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await process.kill()
            raise ExecutionError(f"'{command}' exceeded {timeout} seconds") from e

    async def ensure_package_manager(self, handle: SandboxHandle, command_id: str | None = None) -> bool:
        """Make sure pnpm is on the sandbox, installing it globally if absent.

        Failures are logged, never raised: the caller's command will then fail
        on its own.

        Returns:
            bool: True if pnpm is known to be available.
        """
        sandbox_id = handle.sandbox_id
        if sandbox_id in self._package_manager_ready:
            return True

        logger.info("Checking if pnpm is installed", sandbox_id=sandbox_id)
        try:
            check = await self._probe_command(handle, "which pnpm", self.timeouts.default)
            if check.exit_code == 0:
                logger.info("pnpm is already installed", sandbox_id=sandbox_id)
                self._package_manager_ready.add(sandbox_id)
                return True
        except Exception as e:
            logger.warning("Could not check for pnpm", sandbox_id=sandbox_id, error=str(e))

        logger.info("Installing pnpm globally", sandbox_id=sandbox_id)
        if command_id:
            self.log_store.append(command_id, "info", "pnpm not found, installing it globally")
        try:
            result = await self._probe_command(
                handle, "npm install -g pnpm@latest", self.package_manager_install_timeout
            )
        except Exception as e:
            logger.error("Error installing pnpm", sandbox_id=sandbox_id, error=str(e))
            if command_id:
                self.log_store.append(command_id, "info", f"pnpm installation failed: {e}")
            return False

        if result.exit_code != 0:
            logger.error("Failed to install pnpm", sandbox_id=sandbox_id, stderr=result.stderr)
            if command_id:
                self.log_store.append(command_id, "info", f"pnpm installation exited with {result.exit_code}")
            return False

        logger.info("pnpm installed successfully", sandbox_id=sandbox_id)
        self._package_manager_ready.add(sandbox_id)
        return True

    def _settle(self, command_id: str, output: CommandOutput) -> None:
        logger.info("Command completed", command_id=command_id, exit_code=output.exit_code)
        self.log_store.complete(command_id, output.exit_code)

    def _fail(self, command_id: str, error: str) -> CommandResult:
        logger.error("Command failed", command_id=command_id, error=error)
        self.log_store.fail(command_id, error)
        return CommandResult(command_id=command_id, status="failed", error=error)

    async def run(self, handle: SandboxHandle, config: CommandConfig) -> CommandResult:
        """Execute ``config`` in the sandbox behind ``handle``.

        Args:
            handle: Live sandbox handle. Only borrowed for this call.
            config: The command to run.

        Returns:
            CommandResult: ``completed`` with the exit code (output included
            when ``config.wait``), ``running`` for a detached dev server, or
            ``failed`` when the execution itself faulted.
        """
        command_id = config.command_id or new_command_id()
        policy = classify(config.command, config.args, self.timeouts)

        if not self.log_store.init(command_id):
            entry = self.log_store.read(command_id)
            if entry is None or entry.is_terminal:
                error = f"Command id {command_id} is already in use"
                logger.error("Command rejected", command_id=command_id, error=error)
                return CommandResult(command_id=command_id, status="failed", error=error)
        self.log_store.append(command_id, "info", f"Running: {config.command_line}")

        logger.info(
            "Starting command execution",
            sandbox_id=handle.sandbox_id,
            command=config.command,
            args=config.args,
            command_id=command_id,
        )

        try:
            if policy.needs_package_manager:
                await self.ensure_package_manager(handle, command_id)

            if policy.is_dev_server and not config.wait:
                logger.info("Dev server command detected, using background mode", command_id=command_id)
                return await self._run_background(handle, config, command_id, policy)

            if policy.is_install:
                logger.info("Install command detected", command_id=command_id, timeout=policy.timeout)

            async with AsyncExitStack() as stack:
                if self.serialize_commands:
                    await stack.enter_async_context(self._sandbox_lock(handle.sandbox_id))
                return await self._run_foreground(handle, config, command_id, policy)
        except asyncio.CancelledError:
            self._fail(command_id, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            if command_id in self._cancelled:
                return self._fail(command_id, CANCELLED_MESSAGE)
            return self._fail(command_id, str(e) or type(e).__name__)
        finally:
            # A detached command's watcher owns its cancellation flag.
            if command_id not in self._background:
                self._cancelled.discard(command_id)

    async def _start(
        self,
        handle: SandboxHandle,
        config: CommandConfig,
        command_id: str,
        timeout: float | None,
    ) -> RunningCommand:
        process = await handle.start(
            config.command_line,
            cwd=config.cwd,
            envs=config.env,
            timeout=timeout,
            on_stdout=self._stream_callback(command_id, "stdout"),
            on_stderr=self._stream_callback(command_id, "stderr"),
        )
        self._running[command_id] = process
        return process

    async def _run_foreground(
        self,
        handle: SandboxHandle,
        config: CommandConfig,
        command_id: str,
        policy: CommandPolicy,
    ) -> CommandResult:
        process = await self._start(handle, config, command_id, policy.timeout)
        try:
            output = await asyncio.wait_for(process.wait(), timeout=policy.timeout)
        except asyncio.TimeoutError as e:
            await process.kill()
            raise ExecutionError(
                f"Command exceeded {policy.timeout} seconds: {config.command_line}", command_id
            ) from e
        except asyncio.CancelledError:
            # Cancelled by the caller: the remote process goes with it.
            await process.kill()
            raise
        finally:
            self._running.pop(command_id, None)

        if command_id in self._cancelled:
            raise ExecutionError(CANCELLED_MESSAGE, command_id)

        self._settle(command_id, output)

        if config.wait:
            return CommandResult(
                command_id=command_id,
                status="completed",
                exit_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )
        return CommandResult(command_id=command_id, status="completed", exit_code=output.exit_code)

    async def _run_background(
        self,
        handle: SandboxHandle,
        config: CommandConfig,
        command_id: str,
        policy: CommandPolicy,
    ) -> CommandResult:
        async with AsyncExitStack() as stack:
            # Serialise only the launch; the server itself runs on.
            if self.serialize_commands:
                await stack.enter_async_context(self._sandbox_lock(handle.sandbox_id))
            process = await self._start(handle, config, command_id, policy.timeout)

        task = asyncio.create_task(self._watch(command_id, process, policy.timeout))
        self._background[command_id] = task
        return CommandResult(command_id=command_id, status="running")

    async def _watch(self, command_id: str, process: RunningCommand, timeout: float | None) -> None:
        """Settle the log entry of a detached command once it exits."""
        try:
            output = await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            await process.kill()
            self._fail(command_id, f"Command exceeded {timeout} seconds")
        except asyncio.CancelledError:
            self._fail(command_id, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            if command_id in self._cancelled:
                self._fail(command_id, CANCELLED_MESSAGE)
            else:
                self._fail(command_id, str(e) or type(e).__name__)
        else:
            if command_id in self._cancelled:
                self._fail(command_id, CANCELLED_MESSAGE)
            else:
                self._settle(command_id, output)
        finally:
            self._running.pop(command_id, None)
            self._background.pop(command_id, None)
            self._cancelled.discard(command_id)

    async def cancel(self, command_id: str) -> bool:
        """Kill an in-flight command and mark it failed.

        Returns:
            bool: False if no such command is running.
        """
        process = self._running.get(command_id)
        if process is None:
            return False

        logger.info("Cancelling command", command_id=command_id)
        self._cancelled.add(command_id)
        await process.kill()
        self.log_store.fail(command_id, CANCELLED_MESSAGE)
        return True

    async def shutdown(self) -> None:
        """Stop watching detached commands. Remote processes keep running."""
        tasks = list(self._background.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
