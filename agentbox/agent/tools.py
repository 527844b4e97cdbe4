"""Agent-facing sandbox tools.

Each tool takes a resolved sandbox, performs one operation and returns a
``ToolResult``. Sandbox errors become ``status="error"`` results carrying
the error code in ``details`` so the agent can pick a remediation.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from agentbox.backends.base import SandboxBackend
from agentbox.errors import SandboxError, SandboxIOError
from agentbox.schemas import GrepOptions, ToolResult
from agentbox.tools.edit import commit_changes


logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 30_000


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _truncate(text: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... [truncated {len(text) - limit} chars]"


def _error(tool: str, e: SandboxError | OSError, start: float) -> ToolResult:
    if isinstance(e, OSError):
        e = SandboxIOError.from_os_error(e)
    logger.warning(f"{tool} failed: [{e.code}] {e.message}")
    return ToolResult(
        status="error",
        message=e.message,
        details=e.to_dict(),
        latency_ms=_elapsed_ms(start),
    )


async def read_file(sandbox: SandboxBackend, file_path: str) -> ToolResult:
    start = time.perf_counter()
    try:
        content = await sandbox.fs.read_file(file_path)
    except (SandboxError, OSError) as e:
        return _error("read_file", e, start)
    return ToolResult(
        status="done",
        message=_truncate(content),
        metadata={"path": file_path, "size": len(content)},
        latency_ms=_elapsed_ms(start),
    )


async def write_file(sandbox: SandboxBackend, file_path: str, content: str) -> ToolResult:
    """Write a file and commit it as ``overwritten``."""
    start = time.perf_counter()
    try:
        await sandbox.fs.write_file(file_path, content)
        commit_hash = await commit_changes(sandbox, file_path, "overwritten")
    except (SandboxError, OSError) as e:
        return _error("write_file", e, start)
    return ToolResult(
        status="done",
        message=f"Wrote {file_path}",
        metadata={"path": file_path, "commit_hash": commit_hash},
        latency_ms=_elapsed_ms(start),
    )


async def edit_file(
    sandbox: SandboxBackend,
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> ToolResult:
    start = time.perf_counter()
    try:
        result = await sandbox.edit(file_path, old_string, new_string, replace_all)
    except (SandboxError, OSError) as e:
        return _error("edit_file", e, start)

    verb = "Created" if result.created else "Edited"
    return ToolResult(
        status="done",
        message=f"{verb} {file_path}",
        metadata=result.model_dump(),
        latency_ms=_elapsed_ms(start),
    )


async def bash(
    sandbox: SandboxBackend,
    command: str,
    cwd: str | None = None,
    timeout: float | None = None,
) -> ToolResult:
    """Run a shell command to completion.

    A non-zero exit is reported as an error result with the captured
    output, never raised.
    """
    start = time.perf_counter()
    try:
        result = await sandbox.bash.run(command, cwd=cwd, timeout=timeout)
    except (SandboxError, OSError) as e:
        return _error("bash", e, start)

    details = {
        "exit_code": result.exit_code,
        "stdout": _truncate(result.stdout),
        "stderr": _truncate(result.stderr),
    }
    if not result.ok:
        return ToolResult(
            status="error",
            message=result.error or f"Command exited with code {result.exit_code}",
            details=details,
            latency_ms=_elapsed_ms(start),
        )
    return ToolResult(
        status="done",
        message=_truncate(result.stdout),
        details=details,
        metadata={"command": command, "duration_ms": result.duration_ms},
        latency_ms=_elapsed_ms(start),
    )


async def grep(sandbox: SandboxBackend, pattern: str, **options: Any) -> ToolResult:
    start = time.perf_counter()
    try:
        result = await sandbox.bash.grep(pattern, GrepOptions(**options))
    except (SandboxError, OSError) as e:
        return _error("grep", e, start)

    lines: list[str] = []
    for file in result.files:
        if not file.matches:
            lines.append(file.filename)
            continue
        for match in file.matches:
            sep = "-" if match.is_context else ":"
            number = f"{match.line_number}{sep}" if match.line_number is not None else ""
            lines.append(f"{file.filename}{sep}{number}{match.line}")

    return ToolResult(
        status="done",
        message=_truncate("\n".join(lines)) if lines else "No matches found",
        metadata={"total_files": result.total_files, "total_matches": result.total_matches},
        latency_ms=_elapsed_ms(start),
    )


async def start_dev(
    sandbox: SandboxBackend,
    command: str,
    id: str | None = None,
    port: int | None = None,
) -> ToolResult:
    start = time.perf_counter()
    try:
        result = await sandbox.dev.start_dev(command, id=id)
    except (SandboxError, OSError) as e:
        return _error("start_dev", e, start)

    metadata = result.model_dump(exclude_none=True)
    if port is not None:
        metadata["url"] = sandbox.dev.get_host(port)
    return ToolResult(
        status="done",
        message=f"Dev server '{result.id}' started",
        metadata=metadata,
        latency_ms=_elapsed_ms(start),
    )


async def stop_dev(sandbox: SandboxBackend, id: str) -> ToolResult:
    start = time.perf_counter()
    try:
        result = await sandbox.dev.stop_dev(id)
    except (SandboxError, OSError) as e:
        return _error("stop_dev", e, start)
    return ToolResult(
        status="done",
        message=f"Dev server '{id}' stopped",
        details={"exit_code": result.exit_code, "stdout": _truncate(result.stdout or "")},
        latency_ms=_elapsed_ms(start),
    )


async def git_status(sandbox: SandboxBackend) -> ToolResult:
    start = time.perf_counter()
    try:
        status = await sandbox.git.status()
    except (SandboxError, OSError) as e:
        return _error("git_status", e, start)
    return ToolResult(
        status="done",
        message="Working tree clean" if status.is_clean else f"Changes on {status.branch}",
        metadata=status.model_dump(),
        latency_ms=_elapsed_ms(start),
    )
