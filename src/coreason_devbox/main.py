# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from coreason_devbox.dispatch import create_dispatcher
from coreason_devbox.models import CommandConfig, FileUpload, SandboxConfig

# Initialize dispatch strategy (local in development, Celery in production)
dispatcher = create_dispatcher()

# Initialize MCP Server
mcp = FastMCP("coreason-devbox")


def _text(text: str) -> TextContent:
    return TextContent(type="text", text=text)


def _render_line(stream: str, data: str) -> str:
    line = f"[{stream}] {data}"
    return line if line.endswith("\n") else f"{line}\n"


@mcp.tool()  # type: ignore[misc]
async def create_sandbox(ports: list[int] | None = None, timeout: float | None = None) -> str:
    """
    Create a new sandbox. Returns its id.
    """
    info = await dispatcher.create_sandbox(SandboxConfig(ports=ports or [], timeout=timeout))
    if info.status == "error":
        return f"Error creating sandbox: {info.error}"
    return f"Sandbox created: {info.sandbox_id}"


@mcp.tool()  # type: ignore[misc]
async def run_command(
    sandbox_id: str,
    command: str,
    args: list[str] | None = None,
    cwd: str | None = None,
    wait: bool = False,
    command_id: str | None = None,
) -> list[TextContent]:
    """
    Run a command in the sandbox.
    Dev servers (e.g. `pnpm dev`) keep running in the background unless `wait` is set;
    follow their output with get_command_logs.
    """
    result = await dispatcher.run_command(
        sandbox_id,
        CommandConfig(command=command, args=args or [], cwd=cwd, wait=wait, command_id=command_id),
    )

    output = [_text(f"Command ID: {result.command_id}"), _text(f"Status: {result.status}")]

    if result.error:
        output.append(_text(f"Error: {result.error}"))
    if result.stdout:
        output.append(_text(f"STDOUT:\n{result.stdout}"))
    if result.stderr:
        output.append(_text(f"STDERR:\n{result.stderr}"))
    if result.exit_code is not None:
        output.append(_text(f"Exit Code: {result.exit_code}"))

    return output


@mcp.tool()  # type: ignore[misc]
async def get_command_logs(command_id: str, offset: int = 0) -> list[TextContent]:
    """
    Read the output of a command, starting at line `offset`.
    Poll with the returned next offset until the status is no longer running.
    """
    entry = dispatcher.get_command_logs(command_id)
    if entry is None:
        return [_text(f"No logs found for command {command_id}")]

    lines = entry.lines[offset:]
    output = [_text(f"Status: {entry.status}"), _text(f"Next Offset: {offset + len(lines)}")]

    if lines:
        output.append(_text("".join(_render_line(line.stream, line.data) for line in lines)))
    if entry.exit_code is not None:
        output.append(_text(f"Exit Code: {entry.exit_code}"))
    if entry.error:
        output.append(_text(f"Error: {entry.error}"))

    return output


@mcp.tool()  # type: ignore[misc]
async def upload_files(sandbox_id: str, files: dict[str, str]) -> str:
    """
    Write files into the sandbox. `files` maps paths to their text content.
    """
    result = await dispatcher.upload_files(
        sandbox_id, [FileUpload(path=path, content=content) for path, content in files.items()]
    )
    if not result.success:
        return f"Error uploading files: {result.error}"
    return f"Uploaded {len(result.uploaded)} file(s): {', '.join(result.uploaded)}"


@mcp.tool()  # type: ignore[misc]
async def read_file(sandbox_id: str, path: str) -> str:
    """
    Read a text file from the sandbox.
    """
    result = await dispatcher.read_file(sandbox_id, path)
    if not result.success:
        return f"Error reading file: {result.error}"
    return result.content or ""


@mcp.tool()  # type: ignore[misc]
async def get_preview_url(sandbox_id: str, port: int) -> str:
    """
    Public URL of a port served from inside the sandbox.
    """
    result = await dispatcher.get_preview_url(sandbox_id, port)
    if not result.success:
        return f"Error getting preview URL: {result.error}"
    return result.url or ""


@mcp.tool()  # type: ignore[misc]
async def stop_sandbox(sandbox_id: str) -> str:
    """
    Destroy the sandbox.
    """
    result = await dispatcher.stop_sandbox(sandbox_id)
    if not result.success:
        return f"Error stopping sandbox: {result.error}"
    return f"Sandbox {sandbox_id} stopped."


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
