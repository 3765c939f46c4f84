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
import itertools
import shlex
from dataclasses import dataclass, field
from typing import Any

import pytest

from coreason_devbox.backend import OutputCallback, RunningCommand, SandboxBackend, SandboxHandle
from coreason_devbox.config import DevboxSettings
from coreason_devbox.connection_cache import ConnectionCache
from coreason_devbox.engine import CommandEngine
from coreason_devbox.exceptions import ExecutionError, SandboxConnectionError
from coreason_devbox.log_store import LogStore
from coreason_devbox.models import CommandOutput
from coreason_devbox.orchestrator import SandboxOrchestrator


@dataclass
class Script:
    """Scripted behaviour of one command line in the fake sandbox."""

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    exit_code: int = 0
    hang: bool = False
    error: Exception | None = None


class FakeRunningCommand(RunningCommand):
    def __init__(
        self,
        command: str,
        script: Script,
        on_stdout: OutputCallback | None,
        on_stderr: OutputCallback | None,
    ):
        self.command = command
        self.script = script
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr
        self.killed = False
        self.exit_code = script.exit_code
        self._done = asyncio.Event()
        if not script.hang:
            self._done.set()

    @property
    def pid(self) -> int | None:
        return 42

    def finish(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self._done.set()

    async def wait(self) -> CommandOutput:
        for chunk in self.script.stdout:
            if self.on_stdout:
                self.on_stdout(chunk)
        for chunk in self.script.stderr:
            if self.on_stderr:
                self.on_stderr(chunk)
        await self._done.wait()
        if self.script.error is not None and not self.killed:
            raise self.script.error
        return CommandOutput(
            exit_code=self.exit_code,
            stdout="".join(self.script.stdout),
            stderr="".join(self.script.stderr),
        )

    async def kill(self) -> bool:
        was_running = not self._done.is_set()
        self.killed = True
        self.finish(137)
        return was_running


@dataclass
class FakeRemote:
    """Server-side state of one fake sandbox, shared by all its handles."""

    sandbox_id: str
    metadata: dict[str, str] = field(default_factory=dict)
    timeout: float = 0.0
    alive: bool = True
    pnpm_installed: bool = False
    files: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, Script] = field(default_factory=dict)
    started: list[FakeRunningCommand] = field(default_factory=list)
    kill_error: Exception | None = None


class FakeHandle(SandboxHandle):
    def __init__(self, remote: FakeRemote):
        self.remote = remote
        self.probe_error: Exception | None = None
        self.start_kwargs: list[dict[str, Any]] = []

    @property
    def sandbox_id(self) -> str:
        return self.remote.sandbox_id

    def _script_for(self, command: str) -> Script:
        if command in self.remote.scripts:
            return self.remote.scripts[command]
        if command == "which pnpm":
            return Script(exit_code=0 if self.remote.pnpm_installed else 1)
        if command == "npm install -g pnpm@latest":
            self.remote.pnpm_installed = True
            return Script(stdout=["added 1 package\n"])
        argv = shlex.split(command)
        if argv and argv[0] == "echo":
            return Script(stdout=[" ".join(argv[1:]) + "\n"])
        if argv and argv[0] == "ls":
            names = sorted(p.rsplit("/", 1)[-1] for p in self.remote.files)
            return Script(stdout=["".join(f"{n}\n" for n in names)])
        return Script()

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
        if not self.remote.alive:
            raise ExecutionError("sandbox is not running")
        self.start_kwargs.append({"command": command, "cwd": cwd, "envs": envs, "timeout": timeout})
        process = FakeRunningCommand(command, self._script_for(command), on_stdout, on_stderr)
        self.remote.started.append(process)
        return process

    async def write_file(self, path: str, content: str) -> None:
        if not self.remote.alive:
            raise ExecutionError("sandbox is not running")
        self.remote.files[path] = content

    async def read_file(self, path: str) -> str:
        if path not in self.remote.files:
            raise FileNotFoundError(f"Remote file not found: {path}")
        return self.remote.files[path]

    def resolve_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.e2b.app"

    async def probe(self, port: int) -> None:
        if self.probe_error is not None:
            raise self.probe_error
        if not self.remote.alive:
            raise SandboxConnectionError(f"Sandbox {self.sandbox_id} is not running", self.sandbox_id)

    async def kill(self) -> None:
        if self.remote.kill_error is not None:
            raise self.remote.kill_error
        self.remote.alive = False


class FakeBackend(SandboxBackend):
    def __init__(self) -> None:
        self.remotes: dict[str, FakeRemote] = {}
        self.create_calls: list[dict[str, Any]] = []
        self.connect_calls: list[str] = []
        self.create_error: Exception | None = None
        self._ids = itertools.count(1)

    def add_remote(self, sandbox_id: str) -> FakeRemote:
        remote = self.remotes[sandbox_id] = FakeRemote(sandbox_id=sandbox_id)
        return remote

    async def create(
        self,
        api_key: str,
        timeout: float,
        metadata: dict[str, str] | None = None,
    ) -> SandboxHandle:
        self.create_calls.append({"api_key": api_key, "timeout": timeout, "metadata": metadata})
        if self.create_error is not None:
            raise self.create_error
        remote = self.add_remote(f"sbx-{next(self._ids)}")
        remote.metadata = dict(metadata or {})
        remote.timeout = timeout
        return FakeHandle(remote)

    async def connect(self, sandbox_id: str, api_key: str) -> SandboxHandle:
        self.connect_calls.append(sandbox_id)
        remote = self.remotes.get(sandbox_id)
        if remote is None or not remote.alive:
            raise SandboxConnectionError(f"Sandbox {sandbox_id} not found", sandbox_id)
        return FakeHandle(remote)


@pytest.fixture
def settings() -> DevboxSettings:
    return DevboxSettings(e2b_api_key="test_key", environment="development")


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def log_store() -> LogStore:
    return LogStore()


@pytest.fixture
def cache(backend: FakeBackend, settings: DevboxSettings) -> ConnectionCache:
    return ConnectionCache(backend, settings)


@pytest.fixture
def engine(log_store: LogStore) -> CommandEngine:
    return CommandEngine(log_store)


@pytest.fixture
def orchestrator(
    cache: ConnectionCache, engine: CommandEngine, log_store: LogStore, settings: DevboxSettings
) -> SandboxOrchestrator:
    return SandboxOrchestrator(cache, engine, log_store, settings)
