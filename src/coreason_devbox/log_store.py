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
import threading
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from coreason_devbox.models import CommandLogEntry, LogLine, LogStatus, LogStream
from coreason_devbox.utils.logger import logger


@dataclass
class _Entry:
    started_at: float
    status: LogStatus = "running"
    lines: list[LogLine] = field(default_factory=list)
    exit_code: int | None = None
    error: str | None = None
    finished_at: float | None = None


class LogStore:
    """In-memory, append-only output buffer per command id.

    Writers are the stream callbacks of running commands, which fire on SDK
    worker threads; readers poll from the event loop. Every operation takes a
    single lock, so readers always see whole lines.

    Lifecycle: ``init`` -> ``append``* -> ``complete`` | ``fail``. Terminal
    transitions are irreversible and freeze the line list.
    """

    def __init__(self, retention: float | None = None):
        """Initializes the LogStore.

        Args:
            retention: Seconds a finished entry is kept before ``prune`` drops
                it. None keeps entries for the life of the process.
        """
        self.retention = retention
        self._entries: dict[str, _Entry] = {}
        self._retired: set[str] = set()
        self._lock = threading.Lock()

    def __contains__(self, command_id: object) -> bool:
        with self._lock:
            return command_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def init(self, command_id: str) -> bool:
        """Create a ``running`` entry.

        Idempotent: an id that already exists, or was pruned, is left alone so
        that a pre-assigned id is never reused.

        Returns:
            bool: True if a new entry was created.
        """
        with self._lock:
            if command_id in self._entries or command_id in self._retired:
                return False
            self._entries[command_id] = _Entry(started_at=time.time())
        return True

    def append(self, command_id: str, stream: LogStream, data: str) -> bool:
        """Append a chunk. A no-op for unknown or finished commands."""
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None or entry.status != "running":
                return False
            entry.lines.append(LogLine(stream=stream, data=data, timestamp=time.time()))
        return True

    def complete(self, command_id: str, exit_code: int) -> bool:
        """Mark the command as exited with ``exit_code``."""
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None or entry.status != "running":
                return False
            entry.status = "completed"
            entry.exit_code = exit_code
            entry.finished_at = time.time()
        return True

    def fail(self, command_id: str, error: str) -> bool:
        """Mark the command as failed by the orchestration layer."""
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None or entry.status != "running":
                return False
            entry.status = "failed"
            entry.error = error
            entry.finished_at = time.time()
        return True

    def read(self, command_id: str) -> CommandLogEntry | None:
        """Snapshot of an entry, or None if the id is unknown."""
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None:
                return None
            return CommandLogEntry(
                command_id=command_id,
                status=entry.status,
                lines=list(entry.lines),
                exit_code=entry.exit_code,
                error=entry.error,
                started_at=entry.started_at,
                finished_at=entry.finished_at,
            )

    def read_since(self, command_id: str, offset: int = 0) -> tuple[list[LogLine], int, LogStatus | None]:
        """Cursor read.

        Returns:
            tuple: The lines at ``offset`` and after, the offset to resume
            from, and the entry status (None if the id is unknown).
        """
        with self._lock:
            entry = self._entries.get(command_id)
            if entry is None:
                return [], offset, None
            lines = entry.lines[offset:]
            return lines, offset + len(lines), entry.status

    async def stream(
        self,
        command_id: str,
        offset: int = 0,
        poll_interval: float = 0.25,
    ) -> AsyncIterator[LogLine]:
        """Yield lines in append order until the command finishes.

        Stops immediately for an unknown id. Restart from any offset to resume
        a dropped consumer.
        """
        while True:
            lines, offset, status = self.read_since(command_id, offset)
            for line in lines:
                yield line
            if status is None:
                return
            if status != "running":
                # Terminal entries are frozen; one last drain is enough.
                lines, offset, _ = self.read_since(command_id, offset)
                for line in lines:
                    yield line
                return
            await asyncio.sleep(poll_interval)

    def prune(self, now: float | None = None) -> int:
        """Drop finished entries older than the retention window.

        Returns:
            int: Number of entries removed.
        """
        if self.retention is None:
            return 0
        now = time.time() if now is None else now
        with self._lock:
            expired = [
                cid
                for cid, entry in self._entries.items()
                if entry.finished_at is not None and now - entry.finished_at > self.retention
            ]
            for cid in expired:
                del self._entries[cid]
                self._retired.add(cid)
        if expired:
            logger.debug(f"Pruned {len(expired)} finished command log(s)")
        return len(expired)
