# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SandboxStatus = Literal["creating", "running", "stopped", "error"]


class SandboxConfig(BaseModel):
    """Parameters for provisioning a new sandbox."""

    timeout: float | None = Field(
        default=None,
        description="Seconds the sandbox stays alive. Defaults to the configured sandbox timeout.",
    )
    ports: list[int] = Field(default_factory=list, description="Ports the caller intends to expose.")
    metadata: dict[str, str] = Field(default_factory=dict, description="Free-form labels attached to the sandbox.")


class SandboxInfo(BaseModel):
    """Snapshot of a sandbox as returned by ``create``.

    The status is not kept up to date after the object is returned.
    """

    model_config = ConfigDict(frozen=True)

    sandbox_id: str
    status: SandboxStatus
    ports: list[int] = Field(default_factory=list)
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status != "error"
