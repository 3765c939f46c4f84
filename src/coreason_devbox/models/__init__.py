# src/coreason_devbox/models/__init__.py

"""
Data models for sandboxes, commands, files and command logs.
"""

from .command import TERMINAL_STATUSES, CommandConfig, CommandOutput, CommandResult, CommandStatus
from .files import FileListResult, FileReadResult, FileUpload, OperationResult, PreviewURLResult, UploadResult
from .logs import CommandLogEntry, LogLine, LogStatus, LogStream
from .sandbox import SandboxConfig, SandboxInfo, SandboxStatus

__all__ = [
    "TERMINAL_STATUSES",
    "CommandConfig",
    "CommandLogEntry",
    "CommandOutput",
    "CommandResult",
    "CommandStatus",
    "FileListResult",
    "FileReadResult",
    "FileUpload",
    "LogLine",
    "LogStatus",
    "LogStream",
    "OperationResult",
    "PreviewURLResult",
    "SandboxConfig",
    "SandboxInfo",
    "SandboxStatus",
    "UploadResult",
]
