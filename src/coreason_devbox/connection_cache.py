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

from coreason_devbox.backend import SandboxBackend, SandboxHandle
from coreason_devbox.config import DevboxSettings
from coreason_devbox.exceptions import SandboxConnectionError
from coreason_devbox.models import SandboxConfig
from coreason_devbox.utils.logger import logger


class ConnectionCache:
    """Registry of live sandbox handles, keyed by sandbox id.

    Holds at most one handle per sandbox. A handle that fails its liveness
    probe is evicted and replaced by a fresh connection, never repaired in
    place.
    """

    def __init__(self, backend: SandboxBackend, settings: DevboxSettings | None = None):
        """Initializes the ConnectionCache.

        Args:
            backend: Provisioning backend used to create and connect.
            settings: Credential, sandbox timeout and probe port.
        """
        self.backend = backend
        self.settings = settings or DevboxSettings()
        self._handles: dict[str, SandboxHandle] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, sandbox_id: object) -> bool:
        return sandbox_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def _lock_for(self, sandbox_id: str) -> asyncio.Lock:
        lock = self._locks.get(sandbox_id)
        if lock is None:
            lock = self._locks[sandbox_id] = asyncio.Lock()
        return lock

    def get(self, sandbox_id: str) -> SandboxHandle | None:
        """Cached handle, without probing or connecting."""
        return self._handles.get(sandbox_id)

    def evict(self, sandbox_id: str) -> SandboxHandle | None:
        handle = self._handles.pop(sandbox_id, None)
        if handle is not None:
            logger.info("Evicted sandbox handle", sandbox_id=sandbox_id)
        return handle

    async def _probe(self, handle: SandboxHandle) -> bool:
        try:
            await handle.probe(self.settings.probe_port)
        except Exception as e:
            logger.warning(
                "Sandbox reference is stale",
                sandbox_id=handle.sandbox_id,
                error=str(e),
            )
            return False
        return True

    async def _connect(self, sandbox_id: str, api_key: str) -> SandboxHandle:
        logger.info("Connecting to sandbox", sandbox_id=sandbox_id)
        try:
            handle = await self.backend.connect(sandbox_id, api_key)
        except SandboxConnectionError:
            raise
        except Exception as e:
            raise SandboxConnectionError(f"Failed to connect to sandbox {sandbox_id}: {e}", sandbox_id) from e

        if not await self._probe(handle):
            raise SandboxConnectionError(f"Sandbox {sandbox_id} failed its liveness probe", sandbox_id)
        return handle

    async def get_or_connect(self, sandbox_id: str) -> SandboxHandle:
        """Return a live handle for ``sandbox_id``, connecting if needed.

        Args:
            sandbox_id: The remote sandbox identifier.

        Returns:
            SandboxHandle: A handle that passed the liveness probe.

        Raises:
            ValueError: If sandbox_id is empty.
            ConfigurationError: If no credential is configured.
            SandboxConnectionError: If the sandbox cannot be reached.
        """
        if not sandbox_id:
            raise ValueError("Sandbox ID is required")

        api_key = self.settings.require_api_key()

        # Optimistic check
        handle = self._handles.get(sandbox_id)
        if handle is not None and await self._probe(handle):
            return handle

        async with self._lock_for(sandbox_id):
            # Double-check inside lock: another caller may have reconnected.
            current = self._handles.get(sandbox_id)
            if current is not None and current is not handle and await self._probe(current):
                return current
            if current is not None:
                self.evict(sandbox_id)

            try:
                handle = await self._connect(sandbox_id, api_key)
            except SandboxConnectionError:
                # Unreachable ids keep no lock behind.
                self._locks.pop(sandbox_id, None)
                raise

            self._handles[sandbox_id] = handle
            logger.info("Connected to sandbox", sandbox_id=sandbox_id)
            return handle

    async def create(self, config: SandboxConfig) -> SandboxHandle:
        """Provision a new sandbox and cache its handle.

        Raises:
            ConfigurationError: If no credential is configured.
        """
        api_key = self.settings.require_api_key()
        timeout = config.timeout or self.settings.sandbox_timeout

        logger.info("Creating new sandbox", timeout=timeout)
        handle = await self.backend.create(api_key, timeout, config.metadata)

        self._handles[handle.sandbox_id] = handle
        logger.info("Sandbox created", sandbox_id=handle.sandbox_id)
        return handle

    async def kill(self, sandbox_id: str) -> None:
        """Destroy the remote sandbox and evict it.

        The entry is evicted only once the kill succeeded; a failed kill
        raises and leaves the sandbox state unknown.
        """
        handle = self._handles.get(sandbox_id)
        if handle is None:
            handle = await self.get_or_connect(sandbox_id)

        await handle.kill()
        self._handles.pop(sandbox_id, None)
        self._locks.pop(sandbox_id, None)
        logger.info("Sandbox killed", sandbox_id=sandbox_id)

    async def shutdown(self, kill: bool = False) -> None:
        """Drop every cached handle, optionally destroying the sandboxes."""
        logger.info(f"Shutting down ConnectionCache. Releasing {len(self._handles)} handles.")

        # Snapshot so kills may run while the dict is cleared
        handles = list(self._handles.values())
        self._handles.clear()
        self._locks.clear()

        if not kill:
            return

        for handle in handles:
            try:
                await handle.kill()
            except Exception as e:
                logger.error(f"Error killing sandbox {handle.sandbox_id} during shutdown: {e}")
