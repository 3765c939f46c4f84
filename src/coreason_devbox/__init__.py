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
coreason-devbox
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .backend import RunningCommand, SandboxBackend, SandboxHandle
from .config import DevboxSettings
from .connection_cache import ConnectionCache
from .dispatch import DispatchMode, Dispatcher, LocalDispatcher, QueueDispatcher, create_dispatcher
from .engine import CommandEngine
from .exceptions import ConfigurationError, DevboxError, DispatchError, ExecutionError, SandboxConnectionError
from .log_store import LogStore
from .models import CommandConfig, CommandLogEntry, CommandResult, FileUpload, LogLine, SandboxConfig, SandboxInfo
from .orchestrator import SandboxOrchestrator
from .session import Devbox, DevboxSession

__all__ = [
    "CommandConfig",
    "CommandEngine",
    "CommandLogEntry",
    "CommandResult",
    "ConfigurationError",
    "ConnectionCache",
    "Devbox",
    "DevboxError",
    "DevboxSession",
    "DevboxSettings",
    "DispatchError",
    "DispatchMode",
    "Dispatcher",
    "ExecutionError",
    "FileUpload",
    "LocalDispatcher",
    "LogLine",
    "LogStore",
    "QueueDispatcher",
    "RunningCommand",
    "SandboxBackend",
    "SandboxConfig",
    "SandboxConnectionError",
    "SandboxHandle",
    "SandboxInfo",
    "SandboxOrchestrator",
    "create_dispatcher",
]
