"""Execution engine backed by a remote E2B container."""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable

from e2b import CommandExitException

from agentbox.execution.engine import CommandOptions, Execution, ExecutionEngine
from agentbox.schemas import CommandResult


DEFAULT_WORKING_DIRECTORY = "/home/user/workspace"


class RemoteExecutionEngine(ExecutionEngine):
    """Runs commands through ``sandbox.commands.run``.

    Remote processes are not tracked by pid, so ``stop`` waits for natural
    completion (``supports_kill`` is ``False``).
    """

    supports_kill = False

    def __init__(
        self,
        get_sandbox: Callable[[], Awaitable[Any]],
        touch: Callable[[], Awaitable[None]] | None = None,
        default_timeout: float = 120.0,
        default_cwd: str | None = DEFAULT_WORKING_DIRECTORY,
    ):
        super().__init__(default_timeout=default_timeout, default_cwd=default_cwd)
        self._get_sandbox = get_sandbox
        self._touch = touch

    async def _before_command(self) -> None:
        if self._touch is not None:
            await self._touch()

    async def _execute(self, command: str, options: CommandOptions, execution: Execution) -> CommandResult:
        start = time.perf_counter()
        stdout: list[str] = []
        stderr: list[str] = []

        def on_stdout(data: Any) -> None:
            text = str(data)
            stdout.append(text)
            execution.emit("stdout", text)

        def on_stderr(data: Any) -> None:
            text = str(data)
            stderr.append(text)
            execution.emit("stderr", text)

        run_kwargs: dict[str, Any] = {
            "cwd": options.cwd,
            "envs": options.env or None,
            "on_stdout": on_stdout,
            "on_stderr": on_stderr,
        }
        if options.timeout is not None:
            run_kwargs["timeout"] = options.timeout
        if options.request_timeout_ms is not None:
            run_kwargs["request_timeout"] = options.request_timeout_ms / 1000

        try:
            sandbox = await self._get_sandbox()
            execution.spawned(None)
            result = await sandbox.commands.run(command, **run_kwargs)
        except CommandExitException as e:
            return CommandResult(
                exit_code=e.exit_code,
                stdout="".join(stdout) or e.stdout,
                stderr="".join(stderr) or e.stderr,
                error=e.error or e.stderr or f"Command exited with code {e.exit_code}",
                command=command,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        except Exception as e:
            message = str(e)
            return CommandResult(
                exit_code=1,
                stdout="".join(stdout),
                stderr="".join(stderr) or message,
                error=message,
                command=command,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        return CommandResult(
            exit_code=result.exit_code or 0,
            stdout="".join(stdout) or result.stdout,
            stderr="".join(stderr) or result.stderr,
            error=result.error or None,
            command=command,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )
