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
Command classification.

Maps a command name and its arguments to an execution policy: how long it may
run, whether it is a long-lived dev server (launched detached), and whether it
needs the package manager bootstrapped first. All functions here are pure.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from coreason_devbox.config import DevboxSettings

PACKAGE_MANAGERS: tuple[str, ...] = ("pnpm", "npm", "yarn")
DEV_ARGS: tuple[str, ...] = ("dev", "start")
INSTALL_ARGS: tuple[str, ...] = ("install", "i", "add")

# The package manager the sandbox image does not ship with.
BOOTSTRAPPED_PACKAGE_MANAGER = "pnpm"

# Seconds
DEV_SERVER_TIMEOUT = 300.0
INSTALL_TIMEOUT = 300.0
DEFAULT_TIMEOUT = 120.0
SANDBOX_TIMEOUT = 600.0
PACKAGE_MANAGER_INSTALL_TIMEOUT = 60.0


@dataclass(frozen=True)
class TimeoutPolicy:
    """Per-class command timeouts. ``dev_server=None`` means unbounded."""

    dev_server: float | None = DEV_SERVER_TIMEOUT
    install: float = INSTALL_TIMEOUT
    default: float = DEFAULT_TIMEOUT

    @classmethod
    def from_settings(cls, settings: "DevboxSettings") -> "TimeoutPolicy":
        return cls(
            dev_server=settings.dev_server_timeout,
            install=settings.install_timeout,
            default=settings.default_timeout,
        )


DEFAULT_TIMEOUTS = TimeoutPolicy()


@dataclass(frozen=True)
class CommandPolicy:
    timeout: float | None
    is_dev_server: bool
    is_install: bool
    needs_package_manager: bool


def is_dev_server_command(command: str, args: Sequence[str] = ()) -> bool:
    """True for a package-manager invocation that starts a dev server (``pnpm dev``, ``npm start``)."""
    return command in PACKAGE_MANAGERS and any(arg in DEV_ARGS or "dev" in arg for arg in args)


def is_install_command(command: str, args: Sequence[str] = ()) -> bool:
    """True for a package-manager dependency install (``npm install``, ``pnpm add x``)."""
    return command in PACKAGE_MANAGERS and any(arg in INSTALL_ARGS for arg in args)


def needs_package_manager(command: str) -> bool:
    return command == BOOTSTRAPPED_PACKAGE_MANAGER


def get_command_timeout(
    command: str,
    args: Sequence[str] = (),
    timeouts: TimeoutPolicy = DEFAULT_TIMEOUTS,
) -> float | None:
    """Timeout for a command. Dev-server classification wins over install."""
    if is_dev_server_command(command, args):
        return timeouts.dev_server
    if is_install_command(command, args):
        return timeouts.install
    return timeouts.default


def classify(
    command: str,
    args: Sequence[str] = (),
    timeouts: TimeoutPolicy = DEFAULT_TIMEOUTS,
) -> CommandPolicy:
    return CommandPolicy(
        timeout=get_command_timeout(command, args, timeouts),
        is_dev_server=is_dev_server_command(command, args),
        is_install=is_install_command(command, args),
        needs_package_manager=needs_package_manager(command),
    )
