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
Celery worker side of the queue dispatch path.

Run with ``celery -A coreason_devbox.worker worker``. Each named task rebuilds
the pydantic payload, runs the matching orchestrator coroutine, and returns the
result as JSON-compatible data.
"""

from contextlib import AbstractContextManager
from typing import Any, Awaitable, Callable, TypeVar

from anyio.from_thread import BlockingPortal, start_blocking_portal
from celery import Celery
from celery.signals import worker_shutdown

from coreason_devbox.config import DevboxSettings
from coreason_devbox.dispatch import (
    CREATE_SANDBOX,
    GET_PREVIEW_URL,
    READ_FILE,
    RUN_COMMAND,
    STOP_SANDBOX,
    UPLOAD_FILES,
)
from coreason_devbox.models import CommandConfig, FileUpload, SandboxConfig
from coreason_devbox.orchestrator import SandboxOrchestrator
from coreason_devbox.utils.logger import logger

T = TypeVar("T")


class WorkerRuntime:
    """Owns the worker's orchestrator and the event loop it runs on.

    The loop lives in a background thread for the life of the worker process,
    so detached dev-server watchers keep running after their task returned.
    Both are created on first use.
    """

    def __init__(self, settings: DevboxSettings | None = None, orchestrator: SandboxOrchestrator | None = None):
        self.settings = settings or DevboxSettings()
        self._orchestrator = orchestrator
        self._portal_cm: AbstractContextManager[BlockingPortal] | None = None
        self._portal: BlockingPortal | None = None

    @property
    def orchestrator(self) -> SandboxOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = SandboxOrchestrator.from_settings(self.settings)
        return self._orchestrator

    @property
    def portal(self) -> BlockingPortal:
        if self._portal is None:
            self._portal_cm = start_blocking_portal()
            self._portal = self._portal_cm.__enter__()
            logger.info("Worker event loop started")
        return self._portal

    def call(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        """Run a coroutine function on the worker loop and wait for its result."""
        return self.portal.call(func, *args)

    def close(self) -> None:
        if self._portal is None or self._portal_cm is None:
            return
        if self._orchestrator is not None:
            try:
                self._portal.call(self._orchestrator.shutdown)
            except Exception as e:
                logger.error(f"Error shutting down orchestrator: {e}")
        self._portal_cm.__exit__(None, None, None)
        self._portal = None
        self._portal_cm = None
        logger.info("Worker event loop stopped")


def create_celery_app(
    settings: DevboxSettings | None = None,
    runtime: WorkerRuntime | None = None,
) -> Celery:
    """Create the Celery application and register the sandbox jobs.

    Args:
        settings: Broker and result backend configuration.
        runtime: Worker runtime the jobs run on. Created lazily if omitted.
    """
    settings = settings or DevboxSettings()
    runtime = runtime or WorkerRuntime(settings)

    app = Celery("coreason_devbox", broker=settings.broker_url, backend=settings.result_backend)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_track_started=True,
    )
    app.devbox_runtime = runtime  # type: ignore[attr-defined]

    @app.task(name=CREATE_SANDBOX)  # type: ignore[misc]
    def create_sandbox(config: dict[str, Any]) -> dict[str, Any]:
        info = runtime.call(runtime.orchestrator.create, SandboxConfig.model_validate(config))
        return info.model_dump(mode="json")

    @app.task(name=RUN_COMMAND)  # type: ignore[misc]
    def run_command(sandbox_id: str, command: dict[str, Any]) -> dict[str, Any]:
        result = runtime.call(runtime.orchestrator.run_command, sandbox_id, CommandConfig.model_validate(command))
        return result.model_dump(mode="json")

    @app.task(name=UPLOAD_FILES)  # type: ignore[misc]
    def upload_files(sandbox_id: str, files: list[dict[str, Any]]) -> dict[str, Any]:
        uploads = [FileUpload.model_validate(f) for f in files]
        result = runtime.call(runtime.orchestrator.upload_files, sandbox_id, uploads)
        return result.model_dump(mode="json")

    @app.task(name=GET_PREVIEW_URL)  # type: ignore[misc]
    def get_preview_url(sandbox_id: str, port: int) -> dict[str, Any]:
        result = runtime.call(runtime.orchestrator.get_preview_url, sandbox_id, port)
        return result.model_dump(mode="json")

    @app.task(name=READ_FILE)  # type: ignore[misc]
    def read_file(sandbox_id: str, path: str) -> dict[str, Any]:
        result = runtime.call(runtime.orchestrator.read_file, sandbox_id, path)
        return result.model_dump(mode="json")

    @app.task(name=STOP_SANDBOX)  # type: ignore[misc]
    def stop_sandbox(sandbox_id: str) -> dict[str, Any]:
        result = runtime.call(runtime.orchestrator.stop, sandbox_id)
        return result.model_dump(mode="json")

    return app


app = create_celery_app()


@worker_shutdown.connect  # type: ignore[misc]
def _close_runtime(**kwargs: Any) -> None:
    app.devbox_runtime.close()  # type: ignore[attr-defined]
