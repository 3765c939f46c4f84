from typing import Any
from unittest.mock import MagicMock

import pytest

from coreason_devbox.config import DevboxSettings
from coreason_devbox.dispatch import (
    CREATE_SANDBOX,
    GET_PREVIEW_URL,
    READ_FILE,
    RUN_COMMAND,
    STOP_SANDBOX,
    UPLOAD_FILES,
    DispatchMode,
    LocalDispatcher,
    QueueDispatcher,
    create_dispatcher,
    select_dispatch_mode,
)
from coreason_devbox.models import CommandConfig, FileUpload, SandboxConfig
from coreason_devbox.orchestrator import SandboxOrchestrator


def _celery_app(result: Any = None, error: Exception | None = None) -> MagicMock:
    async_result = MagicMock()
    async_result.id = "job-1"
    if error is not None:
        async_result.get.side_effect = error
    else:
        async_result.get.return_value = result
    app = MagicMock()
    app.send_task.return_value = async_result
    return app


@pytest.mark.parametrize(
    "environment, secret, expected",
    [
        ("development", None, DispatchMode.LOCAL),
        ("development", "s3cret", DispatchMode.LOCAL),
        ("production", None, DispatchMode.LOCAL),
        ("production", "s3cret", DispatchMode.QUEUE),
    ],
)
def test_select_dispatch_mode(environment: str, secret: str | None, expected: DispatchMode) -> None:
    settings = DevboxSettings(environment=environment, dispatch_secret_key=secret)  # type: ignore[arg-type]
    assert select_dispatch_mode(settings) is expected


def test_create_dispatcher_local(settings: DevboxSettings, orchestrator: SandboxOrchestrator) -> None:
    dispatcher = create_dispatcher(settings, orchestrator=orchestrator)

    assert isinstance(dispatcher, LocalDispatcher)
    assert dispatcher.mode is DispatchMode.LOCAL
    assert dispatcher.orchestrator is orchestrator


def test_create_dispatcher_queue() -> None:
    settings = DevboxSettings(environment="production", dispatch_secret_key="s3cret", dispatch_timeout=42.0)
    app = _celery_app()

    dispatcher = create_dispatcher(settings, app=app)

    assert isinstance(dispatcher, QueueDispatcher)
    assert dispatcher.app is app
    assert dispatcher.timeout == 42.0


def test_create_dispatcher_forced_mode(settings: DevboxSettings) -> None:
    app = _celery_app()
    dispatcher = create_dispatcher(settings, app=app, mode=DispatchMode.QUEUE)
    assert dispatcher.mode is DispatchMode.QUEUE


@pytest.mark.asyncio
async def test_local_dispatcher_delegates(orchestrator: SandboxOrchestrator) -> None:
    dispatcher = LocalDispatcher(orchestrator)

    info = await dispatcher.create_sandbox(SandboxConfig())
    assert info.status == "running"

    upload = await dispatcher.upload_files(info.sandbox_id, [FileUpload(path="/a.txt", content="a")])
    assert upload.success

    read = await dispatcher.read_file(info.sandbox_id, "/a.txt")
    assert read.content == "a"

    result = await dispatcher.run_command(info.sandbox_id, CommandConfig(command="echo", args=["hi"], wait=True))
    assert result.stdout == "hi\n"
    entry = dispatcher.get_command_logs(result.command_id)
    assert entry is not None and entry.status == "completed"

    preview = await dispatcher.get_preview_url(info.sandbox_id, 3000)
    assert preview.url == f"https://3000-{info.sandbox_id}.e2b.app"

    stopped = await dispatcher.stop_sandbox(info.sandbox_id)
    assert stopped.success


@pytest.mark.asyncio
async def test_queue_create_sandbox() -> None:
    app = _celery_app({"sandbox_id": "sbx-9", "status": "running", "ports": [3000], "error": None})
    dispatcher = QueueDispatcher(app, timeout=10)

    info = await dispatcher.create_sandbox(SandboxConfig(ports=[3000]))

    assert info.sandbox_id == "sbx-9"
    app.send_task.assert_called_once_with(
        CREATE_SANDBOX, kwargs={"config": {"timeout": None, "ports": [3000], "metadata": {}}}
    )
    app.send_task.return_value.get.assert_called_once_with(timeout=10, propagate=True)


@pytest.mark.asyncio
async def test_queue_run_command_payload() -> None:
    app = _celery_app({"command_id": "c1", "status": "running"})
    dispatcher = QueueDispatcher(app)

    result = await dispatcher.run_command("sbx-1", CommandConfig(command="pnpm", args=["dev"], command_id="c1"))

    assert result.status == "running"
    name, = app.send_task.call_args.args
    payload = app.send_task.call_args.kwargs["kwargs"]
    assert name == RUN_COMMAND
    assert payload["sandbox_id"] == "sbx-1"
    assert payload["command"]["command"] == "pnpm"
    assert payload["command"]["args"] == ["dev"]
    assert payload["command"]["command_id"] == "c1"


@pytest.mark.asyncio
async def test_queue_other_operations() -> None:
    app = _celery_app({"success": True, "uploaded": ["/a.txt"], "url": "https://x", "content": "a"})
    dispatcher = QueueDispatcher(app)

    assert (await dispatcher.upload_files("sbx-1", [FileUpload(path="/a.txt", content="a")])).uploaded == ["/a.txt"]
    assert (await dispatcher.get_preview_url("sbx-1", 3000)).url == "https://x"
    assert (await dispatcher.read_file("sbx-1", "/a.txt")).content == "a"
    assert (await dispatcher.stop_sandbox("sbx-1")).success

    names = [c.args[0] for c in app.send_task.call_args_list]
    assert names == [UPLOAD_FILES, GET_PREVIEW_URL, READ_FILE, STOP_SANDBOX]
    assert app.send_task.call_args_list[1].kwargs["kwargs"] == {"sandbox_id": "sbx-1", "port": 3000}


@pytest.mark.asyncio
async def test_queue_job_failure_becomes_error_result() -> None:
    app = _celery_app(error=RuntimeError("worker lost"))
    dispatcher = QueueDispatcher(app)

    info = await dispatcher.create_sandbox(SandboxConfig())
    assert info.status == "error"
    assert info.sandbox_id == ""
    assert "worker lost" in (info.error or "")

    result = await dispatcher.run_command("sbx-1", CommandConfig(command="ls", command_id="c1"))
    assert result.status == "failed"
    assert result.command_id == "c1"

    read = await dispatcher.read_file("sbx-1", "/a.txt")
    assert not read.success


@pytest.mark.asyncio
async def test_queue_submit_failure() -> None:
    app = MagicMock()
    app.send_task.side_effect = ConnectionError("broker unreachable")
    dispatcher = QueueDispatcher(app)

    result = await dispatcher.stop_sandbox("sbx-1")

    assert not result.success
    assert "broker unreachable" in (result.error or "")


@pytest.mark.asyncio
async def test_queue_unexpected_result() -> None:
    app = _celery_app("not a dict")
    dispatcher = QueueDispatcher(app)

    preview = await dispatcher.get_preview_url("sbx-1", 3000)

    assert not preview.success
    assert "unexpected result" in (preview.error or "")


def test_queue_has_no_local_logs() -> None:
    dispatcher = QueueDispatcher(_celery_app())
    assert dispatcher.get_command_logs("c1") is None
