import time
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest
from celery import Celery

from coreason_devbox.config import DevboxSettings
from coreason_devbox.dispatch import (
    CREATE_SANDBOX,
    GET_PREVIEW_URL,
    READ_FILE,
    RUN_COMMAND,
    STOP_SANDBOX,
    TASK_NAMES,
    UPLOAD_FILES,
    QueueDispatcher,
)
from coreason_devbox.models import CommandConfig, FileUpload, SandboxConfig
from coreason_devbox.orchestrator import SandboxOrchestrator
from coreason_devbox.worker import WorkerRuntime, create_celery_app

from conftest import FakeBackend, Script


@pytest.fixture
def runtime(settings: DevboxSettings, backend: FakeBackend) -> Iterator[WorkerRuntime]:
    runtime = WorkerRuntime(settings, SandboxOrchestrator.from_settings(settings, backend=backend))
    yield runtime
    runtime.close()


@pytest.fixture
def app(settings: DevboxSettings, runtime: WorkerRuntime) -> Celery:
    return create_celery_app(settings, runtime)


def test_registers_named_tasks(app: Celery, runtime: WorkerRuntime) -> None:
    for name in TASK_NAMES:
        assert name in app.tasks
    assert app.devbox_runtime is runtime  # type: ignore[attr-defined]
    assert app.conf.task_serializer == "json"


def test_app_uses_configured_broker() -> None:
    settings = DevboxSettings(broker_url="redis://broker:6379/0", result_backend="redis://broker:6379/1")
    app = create_celery_app(settings)
    assert app.conf.broker_url == "redis://broker:6379/0"


def test_tasks_run_on_orchestrator(app: Celery, backend: FakeBackend) -> None:
    info = app.tasks[CREATE_SANDBOX].run(config=SandboxConfig(ports=[3000]).model_dump(mode="json"))
    assert info == {"sandbox_id": "sbx-1", "status": "running", "ports": [3000], "error": None}

    uploaded = app.tasks[UPLOAD_FILES].run(sandbox_id="sbx-1", files=[{"path": "/app/a.txt", "content": "hello"}])
    assert uploaded["success"] is True
    assert uploaded["uploaded"] == ["/app/a.txt"]

    read = app.tasks[READ_FILE].run(sandbox_id="sbx-1", path="/app/a.txt")
    assert read["content"] == "hello"

    result = app.tasks[RUN_COMMAND].run(
        sandbox_id="sbx-1", command={"command": "echo", "args": ["hi"], "wait": True}
    )
    assert result["status"] == "completed"
    assert result["stdout"] == "hi\n"

    preview = app.tasks[GET_PREVIEW_URL].run(sandbox_id="sbx-1", port=3000)
    assert preview["url"] == "https://3000-sbx-1.e2b.app"

    stopped = app.tasks[STOP_SANDBOX].run(sandbox_id="sbx-1")
    assert stopped == {"success": True, "error": None}
    assert backend.remotes["sbx-1"].alive is False


def test_detached_command_outlives_task(app: Celery, runtime: WorkerRuntime, backend: FakeBackend) -> None:
    app.tasks[CREATE_SANDBOX].run(config={})
    remote = backend.remotes["sbx-1"]
    remote.pnpm_installed = True
    remote.scripts["pnpm dev"] = Script(stdout=["ready\n"], hang=True)

    result = app.tasks[RUN_COMMAND].run(
        sandbox_id="sbx-1", command={"command": "pnpm", "args": ["dev"], "command_id": "dev-1"}
    )
    assert result["status"] == "running"

    # The watcher keeps running on the worker loop between tasks
    runtime.portal.call(remote.started[-1].kill)
    deadline = time.monotonic() + 2
    entry = runtime.orchestrator.get_command_logs("dev-1")
    while entry is not None and not entry.is_terminal and time.monotonic() < deadline:
        time.sleep(0.01)
        entry = runtime.orchestrator.get_command_logs("dev-1")
    assert entry is not None
    assert entry.status == "completed"
    assert entry.exit_code == 137
    assert entry.text("stdout") == "ready\n"


@pytest.mark.asyncio
async def test_queue_dispatcher_round_trip(app: Celery) -> None:
    def send_task(name: str, kwargs: dict[str, Any]) -> MagicMock:
        async_result = MagicMock(id=f"{name}-job")
        async_result.get.return_value = app.tasks[name].run(**kwargs)
        return async_result

    broker = MagicMock()
    broker.send_task.side_effect = send_task
    dispatcher = QueueDispatcher(broker)

    info = await dispatcher.create_sandbox(SandboxConfig())
    assert info.sandbox_id == "sbx-1"

    upload = await dispatcher.upload_files(info.sandbox_id, [FileUpload(path="/b.bin", content=b"bytes")])
    assert upload.success

    result = await dispatcher.run_command(info.sandbox_id, CommandConfig(command="echo", args=["x"], wait=True))
    assert result.stdout == "x\n"
    assert result.command_id.startswith("cmd_")


def test_runtime_builds_orchestrator_lazily(settings: DevboxSettings) -> None:
    runtime = WorkerRuntime(settings)
    assert runtime._orchestrator is None
    assert isinstance(runtime.orchestrator, SandboxOrchestrator)
    # Closing before the loop ever started is a no-op
    runtime.close()


def test_runtime_close_shuts_down_orchestrator(settings: DevboxSettings) -> None:
    orchestrator = MagicMock()
    shutdown_calls: list[bool] = []

    async def shutdown() -> None:
        shutdown_calls.append(True)

    orchestrator.shutdown = shutdown
    runtime = WorkerRuntime(settings, orchestrator)
    assert runtime.call(_answer) == 42

    runtime.close()

    assert shutdown_calls == [True]
    assert runtime._portal is None


async def _answer() -> int:
    return 42
