# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from coreason_devbox.backend import SandboxBackend
from coreason_devbox.classifier import TimeoutPolicy
from coreason_devbox.config import DevboxSettings
from coreason_devbox.connection_cache import ConnectionCache
from coreason_devbox.engine import CommandEngine, new_command_id
from coreason_devbox.log_store import LogStore
from coreason_devbox.models import (
    CommandConfig,
    CommandLogEntry,
    CommandResult,
    FileListResult,
    FileReadResult,
    FileUpload,
    OperationResult,
    PreviewURLResult,
    SandboxConfig,
    SandboxInfo,
    UploadResult,
)
from coreason_devbox.utils.logger import logger


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SandboxOrchestrator:
    """Façade over the connection cache, command engine and log store.

    No method raises: every fault is returned in the result's ``error`` field.
    """

    def __init__(
        self,
        cache: ConnectionCache,
        engine: CommandEngine,
        log_store: LogStore,
        settings: DevboxSettings | None = None,
    ):
        self.cache = cache
        self.engine = engine
        self.log_store = log_store
        self.settings = settings or cache.settings

    @classmethod
    def from_settings(
        cls,
        settings: DevboxSettings | None = None,
        backend: SandboxBackend | None = None,
    ) -> "SandboxOrchestrator":
        """Build the default component graph.

        Args:
            settings: Configuration. Loaded from the environment if omitted.
            backend: Provisioning backend. Defaults to E2B.
        """
        settings = settings or DevboxSettings()
        if backend is None:
            from coreason_devbox.backends.e2b import E2BBackend

            backend = E2BBackend(template=settings.e2b_template)

        log_store = LogStore(retention=settings.log_retention)
        engine = CommandEngine(
            log_store,
            timeouts=TimeoutPolicy.from_settings(settings),
            package_manager_install_timeout=settings.package_manager_install_timeout,
            serialize_commands=settings.serialize_commands,
            log_preview_chars=settings.log_preview_chars,
        )
        return cls(ConnectionCache(backend, settings), engine, log_store, settings)

    async def create(self, config: SandboxConfig | None = None) -> SandboxInfo:
        """Provision a sandbox. On failure the info has an empty id and ``error`` status."""
        config = config or SandboxConfig()
        try:
            handle = await self.cache.create(config)
        except Exception as e:
            error = _error_message(e)
            logger.error("Failed to create sandbox", error=error)
            return SandboxInfo(sandbox_id="", status="error", error=error)

        return SandboxInfo(sandbox_id=handle.sandbox_id, status="running", ports=config.ports)

    async def run_command(self, sandbox_id: str, command: CommandConfig) -> CommandResult:
        """Run a command, streaming its output into the log store.

        The log entry is created before connecting, so a caller following a
        pre-assigned ``command_id`` also sees connection failures.
        """
        command_id = command.command_id or new_command_id()
        command = command.model_copy(update={"command_id": command_id})

        self.log_store.prune()
        if not self.log_store.init(command_id):
            error = f"Command id {command_id} is already in use"
            logger.error("Command rejected", sandbox_id=sandbox_id, command_id=command_id, error=error)
            return CommandResult(command_id=command_id, status="failed", error=error)

        try:
            handle = await self.cache.get_or_connect(sandbox_id)
        except Exception as e:
            error = _error_message(e)
            logger.error("Command failed", sandbox_id=sandbox_id, command_id=command_id, error=error)
            self.log_store.fail(command_id, error)
            return CommandResult(command_id=command_id, status="failed", error=error)

        return await self.engine.run(handle, command)

    async def upload_files(self, sandbox_id: str, files: list[FileUpload]) -> UploadResult:
        uploaded: list[str] = []
        try:
            handle = await self.cache.get_or_connect(sandbox_id)
            logger.info("Uploading files", sandbox_id=sandbox_id, count=len(files))
            for file in files:
                await handle.write_file(file.path, file.text())
                uploaded.append(file.path)
        except Exception as e:
            error = _error_message(e)
            logger.error("Failed to upload files", sandbox_id=sandbox_id, uploaded=uploaded, error=error)
            return UploadResult(success=False, uploaded=uploaded, error=error)

        logger.info("Files uploaded", sandbox_id=sandbox_id, paths=uploaded)
        return UploadResult(success=True, uploaded=uploaded)

    async def get_preview_url(self, sandbox_id: str, port: int) -> PreviewURLResult:
        logger.info("Getting preview URL", sandbox_id=sandbox_id, port=port)
        try:
            handle = await self.cache.get_or_connect(sandbox_id)
            host = handle.resolve_host(port)
        except Exception as e:
            error = _error_message(e)
            logger.error("Failed to get preview URL", sandbox_id=sandbox_id, port=port, error=error)
            return PreviewURLResult(success=False, error=error)

        if not host:
            return PreviewURLResult(success=False, error=f"No host exposed for port {port}")

        url = f"{self.settings.preview_scheme}://{host}"
        logger.info("Generated URL", url=url)
        return PreviewURLResult(success=True, url=url)

    async def read_file(self, sandbox_id: str, path: str) -> FileReadResult:
        try:
            handle = await self.cache.get_or_connect(sandbox_id)
            content = await handle.read_file(path)
        except Exception as e:
            error = _error_message(e)
            logger.error("Failed to read file", sandbox_id=sandbox_id, path=path, error=error)
            return FileReadResult(success=False, error=error)

        return FileReadResult(success=True, content=content)

    async def file_exists(self, sandbox_id: str, path: str) -> bool:
        result = await self.read_file(sandbox_id, path)
        return result.success

    async def list_files(self, sandbox_id: str, path: str = ".") -> FileListResult:
        """List a directory with ``ls -1``. A missing directory yields an empty list."""
        result = await self.run_command(
            sandbox_id,
            CommandConfig(command="ls", args=["-1", path], wait=True),
        )
        if result.status == "failed":
            return FileListResult(success=False, error=result.error)
        if result.exit_code != 0:
            return FileListResult(success=True, files=[])
        return FileListResult(success=True, files=[name for name in (result.stdout or "").splitlines() if name])

    async def stop(self, sandbox_id: str) -> OperationResult:
        try:
            await self.cache.kill(sandbox_id)
        except Exception as e:
            error = _error_message(e)
            logger.error("Failed to stop sandbox", sandbox_id=sandbox_id, error=error)
            return OperationResult(success=False, error=error)

        self.engine.forget_sandbox(sandbox_id)
        return OperationResult(success=True)

    def get_command_logs(self, command_id: str) -> CommandLogEntry | None:
        return self.log_store.read(command_id)

    async def cancel_command(self, command_id: str) -> OperationResult:
        try:
            cancelled = await self.engine.cancel(command_id)
        except Exception as e:
            return OperationResult(success=False, error=_error_message(e))
        if not cancelled:
            return OperationResult(success=False, error=f"Command {command_id} is not running")
        return OperationResult(success=True)

    async def shutdown(self, kill_sandboxes: bool = False) -> None:
        await self.engine.shutdown()
        await self.cache.shutdown(kill=kill_sandboxes)


