# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from pydantic import BaseModel, Field


class FileUpload(BaseModel):
    """A file to write into the sandbox. Bytes are decoded as UTF-8."""

    path: str
    content: str | bytes

    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8")
        return self.content


class OperationResult(BaseModel):
    """Uniform success/error envelope for orchestrator operations."""

    success: bool
    error: str | None = None


class UploadResult(OperationResult):
    uploaded: list[str] = Field(default_factory=list)


class PreviewURLResult(OperationResult):
    url: str | None = None


class FileReadResult(OperationResult):
    content: str | None = None


class FileListResult(OperationResult):
    files: list[str] = Field(default_factory=list)
