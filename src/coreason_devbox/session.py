# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from contextlib import AbstractContextManager
from functools import partial
from typing import Any

from anyio.from_thread import BlockingPortal, start_blocking_portal

from coreason_devbox.config import DevboxSettings
from coreason_devbox.exceptions import DevboxError
from coreason_devbox.models import (
    CommandConfig,
    CommandLogEntry,
    CommandResult,
    FileReadResult,
    FileUpload,
    PreviewURLResult,
    SandboxConfig,
    UploadResult,
)
from coreason_devbox.orchestrator import SandboxOrchestrator
from coreason_devbox.utils.logger import logger


class DevboxSession:
    """Async-native sandbox session (The Core).

    Creates a sandbox on enter and destroys it on exit. All operations are
    bound to that sandbox.
    """

    def __init__(
        self,
        orchestrator: SandboxOrchestrator | None = None,
        config: SandboxConfig | None = None,
        settings: DevboxSettings | None = None,
    ):
        """Initializes the DevboxSession.

        Args:
            orchestrator: Orchestrator to use. Built from settings if omitted.
            config: Parameters for the sandbox to create.
            settings: Configuration, used only when building an orchestrator.
        """
        self.orchestrator = orchestrator or SandboxOrchestrator.from_settings(settings)
        self.config = config or SandboxConfig()
        self.sandbox_id: str | None = None

    async def __aenter__(self) -> "DevboxSession":
        """Provisions the sandbox.

        Raises:
            DevboxError: If the sandbox could not be created.
        """
        info = await self.orchestrator.create(self.config)
        if info.status == "error":
            raise DevboxError(f"Failed to create sandbox: {info.error}")
        self.sandbox_id = info.sandbox_id
        logger.info("Session sandbox ready", sandbox_id=self.sandbox_id)
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Destroys the sandbox."""
        if self.sandbox_id is None:
            return
        result = await self.orchestrator.stop(self.sandbox_id)
        if not result.success:
            logger.warning(f"Failed to stop session sandbox {self.sandbox_id}: {result.error}")
        self.sandbox_id = None

    def _require_id(self) -> str:
        if self.sandbox_id is None:
            raise RuntimeError("Session not started")
        return self.sandbox_id

    async def run(self, command: str, *args: str, wait: bool = True, **kwargs: Any) -> CommandResult:
        """Runs a command. Extra keyword arguments are ``CommandConfig`` fields."""
        config = CommandConfig(command=command, args=list(args), wait=wait, **kwargs)
        return await self.orchestrator.run_command(self._require_id(), config)

    async def upload(self, files: dict[str, str | bytes]) -> UploadResult:
        uploads = [FileUpload(path=path, content=content) for path, content in files.items()]
        return await self.orchestrator.upload_files(self._require_id(), uploads)

    async def read(self, path: str) -> FileReadResult:
        return await self.orchestrator.read_file(self._require_id(), path)

    async def preview_url(self, port: int) -> PreviewURLResult:
        return await self.orchestrator.get_preview_url(self._require_id(), port)

    def logs(self, command_id: str) -> CommandLogEntry | None:
        return self.orchestrator.get_command_logs(command_id)


class Devbox:
    """Sync Facade for DevboxSession (The Facade).

    Drives DevboxSession on an event loop in a background thread, kept for
    the life of the context so that detached dev servers keep streaming.
    """

    def __init__(
        self,
        orchestrator: SandboxOrchestrator | None = None,
        config: SandboxConfig | None = None,
        settings: DevboxSettings | None = None,
    ):
        self._async = DevboxSession(orchestrator, config, settings)
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    @property
    def sandbox_id(self) -> str | None:
        return self._async.sandbox_id

    def _require_portal(self) -> BlockingPortal:
        if self._portal is None:
            raise RuntimeError("Devbox not started")
        return self._portal

    def __enter__(self) -> "Devbox":
        """Context entry point."""
        self._portal_cm = start_blocking_portal()
        self._portal = self._portal_cm.__enter__()
        try:
            self._portal.call(self._async.__aenter__)
        except BaseException:
            self._portal_cm.__exit__(None, None, None)
            self._portal = None
            self._portal_cm = None
            raise
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context exit point."""
        if self._portal is None or self._portal_cm is None:
            return
        try:
            self._portal.call(self._async.__aexit__, exc_type, exc_val, exc_tb)
            self._portal.call(self._async.orchestrator.engine.shutdown)
        finally:
            self._portal_cm.__exit__(None, None, None)
            self._portal = None
            self._portal_cm = None

    def run(self, command: str, *args: str, wait: bool = True) -> CommandResult:
        """Runs a command synchronously."""
        return self._require_portal().call(partial(self._async.run, command, *args, wait=wait))

    def upload(self, files: dict[str, str | bytes]) -> UploadResult:
        return self._require_portal().call(self._async.upload, files)

    def read(self, path: str) -> FileReadResult:
        return self._require_portal().call(self._async.read, path)

    def preview_url(self, port: int) -> PreviewURLResult:
        return self._require_portal().call(self._async.preview_url, port)

    def logs(self, command_id: str) -> CommandLogEntry | None:
        return self._async.logs(command_id)
