# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
Dispatch strategies.

A ``Dispatcher`` exposes the orchestrator operations to callers. The local
strategy awaits the orchestrator in-process; the queue strategy submits a named
Celery job with the same payload and adapts the job's return value to the same
result model. Which strategy runs is decided once, at startup, by
``create_dispatcher``.
"""

import enum
from abc import ABC, abstractmethod
from typing import Any, TypeVar

import anyio
from celery import Celery
from pydantic import BaseModel

from coreason_devbox.config import DevboxSettings
from coreason_devbox.exceptions import DispatchError
from coreason_devbox.models import (
    CommandConfig,
    CommandLogEntry,
    CommandResult,
    FileReadResult,
    FileUpload,
    OperationResult,
    PreviewURLResult,
    SandboxConfig,
    SandboxInfo,
    UploadResult,
)
from coreason_devbox.orchestrator import SandboxOrchestrator
from coreason_devbox.utils.logger import logger

ResultT = TypeVar("ResultT", bound=BaseModel)

CREATE_SANDBOX = "create-sandbox"
RUN_COMMAND = "run-command"
UPLOAD_FILES = "upload-files"
GET_PREVIEW_URL = "get-preview-url"
READ_FILE = "read-file"
STOP_SANDBOX = "stop-sandbox"

TASK_NAMES = (CREATE_SANDBOX, RUN_COMMAND, UPLOAD_FILES, GET_PREVIEW_URL, READ_FILE, STOP_SANDBOX)


class DispatchMode(str, enum.Enum):
    LOCAL = "local"
    QUEUE = "queue"


def select_dispatch_mode(settings: DevboxSettings) -> DispatchMode:
    """Local in development or when no dispatch credential is configured."""
    if settings.environment == "development" or not settings.dispatch_secret_key:
        return DispatchMode.LOCAL
    return DispatchMode.QUEUE


class Dispatcher(ABC):
    """Caller-facing sandbox API. Implementations never raise."""

    mode: DispatchMode

    @abstractmethod
    async def create_sandbox(self, config: SandboxConfig) -> SandboxInfo:
        pass  # pragma: no cover

    @abstractmethod
    async def run_command(self, sandbox_id: str, command: CommandConfig) -> CommandResult:
        pass  # pragma: no cover

    @abstractmethod
    async def upload_files(self, sandbox_id: str, files: list[FileUpload]) -> UploadResult:
        pass  # pragma: no cover

    @abstractmethod
    async def get_preview_url(self, sandbox_id: str, port: int) -> PreviewURLResult:
        pass  # pragma: no cover

    @abstractmethod
    async def read_file(self, sandbox_id: str, path: str) -> FileReadResult:
        pass  # pragma: no cover

    @abstractmethod
    async def stop_sandbox(self, sandbox_id: str) -> OperationResult:
        pass  # pragma: no cover

    @abstractmethod
    def get_command_logs(self, command_id: str) -> CommandLogEntry | None:
        """Log entry of a command, if this process holds it."""
        pass  # pragma: no cover


class LocalDispatcher(Dispatcher):
    """Runs every operation in-process on a ``SandboxOrchestrator``."""

    mode = DispatchMode.LOCAL

    def __init__(self, orchestrator: SandboxOrchestrator):
        self.orchestrator = orchestrator

    async def create_sandbox(self, config: SandboxConfig) -> SandboxInfo:
        return await self.orchestrator.create(config)

    async def run_command(self, sandbox_id: str, command: CommandConfig) -> CommandResult:
        return await self.orchestrator.run_command(sandbox_id, command)

    async def upload_files(self, sandbox_id: str, files: list[FileUpload]) -> UploadResult:
        return await self.orchestrator.upload_files(sandbox_id, files)

    async def get_preview_url(self, sandbox_id: str, port: int) -> PreviewURLResult:
        return await self.orchestrator.get_preview_url(sandbox_id, port)

    async def read_file(self, sandbox_id: str, path: str) -> FileReadResult:
        return await self.orchestrator.read_file(sandbox_id, path)

    async def stop_sandbox(self, sandbox_id: str) -> OperationResult:
        return await self.orchestrator.stop(sandbox_id)

    def get_command_logs(self, command_id: str) -> CommandLogEntry | None:
        return self.orchestrator.get_command_logs(command_id)


class QueueDispatcher(Dispatcher):
    """Submits every operation as a named Celery job and waits for its result.

    Command logs live in the worker process, so ``get_command_logs`` always
    returns None here.
    """

    mode = DispatchMode.QUEUE

    def __init__(self, app: Celery, timeout: float = 900.0):
        """Initializes the QueueDispatcher.

        Args:
            app: Celery application configured with the broker and result backend.
            timeout: Seconds to wait for a job result.
        """
        self.app = app
        self.timeout = timeout

    async def _submit(self, name: str, payload: dict[str, Any], result_type: type[ResultT]) -> ResultT:
        logger.info("Dispatching job", job=name)
        try:
            async_result = self.app.send_task(name, kwargs=payload)
        except Exception as e:
            raise DispatchError(f"Failed to submit job {name}: {e}") from e

        try:
            raw = await anyio.to_thread.run_sync(
                lambda: async_result.get(timeout=self.timeout, propagate=True)
            )
        except Exception as e:
            raise DispatchError(f"Job {name} ({async_result.id}) failed: {e}") from e

        try:
            return result_type.model_validate(raw)
        except Exception as e:
            raise DispatchError(f"Job {name} returned an unexpected result: {e}") from e

    async def create_sandbox(self, config: SandboxConfig) -> SandboxInfo:
        try:
            return await self._submit(CREATE_SANDBOX, {"config": config.model_dump(mode="json")}, SandboxInfo)
        except DispatchError as e:
            logger.error(f"Failed to create sandbox: {e}")
            return SandboxInfo(sandbox_id="", status="error", error=str(e))

    async def run_command(self, sandbox_id: str, command: CommandConfig) -> CommandResult:
        payload = {"sandbox_id": sandbox_id, "command": command.model_dump(mode="json")}
        try:
            return await self._submit(RUN_COMMAND, payload, CommandResult)
        except DispatchError as e:
            logger.error(f"Failed to run command: {e}")
            return CommandResult(command_id=command.command_id or "", status="failed", error=str(e))

    async def upload_files(self, sandbox_id: str, files: list[FileUpload]) -> UploadResult:
        payload = {"sandbox_id": sandbox_id, "files": [f.model_dump(mode="json") for f in files]}
        try:
            return await self._submit(UPLOAD_FILES, payload, UploadResult)
        except DispatchError as e:
            logger.error(f"Failed to upload files: {e}")
            return UploadResult(success=False, error=str(e))

    async def get_preview_url(self, sandbox_id: str, port: int) -> PreviewURLResult:
        try:
            return await self._submit(GET_PREVIEW_URL, {"sandbox_id": sandbox_id, "port": port}, PreviewURLResult)
        except DispatchError as e:
            logger.error(f"Failed to get preview URL: {e}")
            return PreviewURLResult(success=False, error=str(e))

    async def read_file(self, sandbox_id: str, path: str) -> FileReadResult:
        try:
            return await self._submit(READ_FILE, {"sandbox_id": sandbox_id, "path": path}, FileReadResult)
        except DispatchError as e:
            logger.error(f"Failed to read file: {e}")
            return FileReadResult(success=False, error=str(e))

    async def stop_sandbox(self, sandbox_id: str) -> OperationResult:
        try:
            return await self._submit(STOP_SANDBOX, {"sandbox_id": sandbox_id}, OperationResult)
        except DispatchError as e:
            logger.error(f"Failed to stop sandbox: {e}")
            return OperationResult(success=False, error=str(e))

    def get_command_logs(self, command_id: str) -> CommandLogEntry | None:
        return None


def create_dispatcher(
    settings: DevboxSettings | None = None,
    orchestrator: SandboxOrchestrator | None = None,
    app: Celery | None = None,
    mode: DispatchMode | None = None,
) -> Dispatcher:
    """Build the dispatcher for this process.

    Args:
        settings: Configuration. Loaded from the environment if omitted.
        orchestrator: In-process orchestrator for local mode.
        app: Celery application for queue mode.
        mode: Force a mode instead of deriving it from settings.
    """
    settings = settings or DevboxSettings()
    mode = mode or select_dispatch_mode(settings)
    logger.info("Selected dispatch mode", mode=mode.value, environment=settings.environment)

    if mode is DispatchMode.QUEUE:
        if app is None:
            from coreason_devbox.worker import create_celery_app

            app = create_celery_app(settings)
        return QueueDispatcher(app, timeout=settings.dispatch_timeout)

    return LocalDispatcher(orchestrator or SandboxOrchestrator.from_settings(settings))
