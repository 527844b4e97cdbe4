"""Execution engine backed by processes on the calling machine."""

from __future__ import annotations

import asyncio
import codecs
import os
import signal
import time
from typing import Any

from agentbox.execution.engine import CommandOptions, Execution, ExecutionEngine
from agentbox.schemas import CommandResult


TIMEOUT_EXIT_CODE = 124
_CHUNK_SIZE = 4096


class LocalExecutionEngine(ExecutionEngine):
    """Spawns ``/bin/sh`` processes in their own session so they can be signalled."""

    supports_kill = True

    async def _execute(self, command: str, options: CommandOptions, execution: Execution) -> CommandResult:
        start = time.perf_counter()
        env = os.environ.copy()
        env.update(options.env)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=options.cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return CommandResult(
                exit_code=1,
                stderr=str(e),
                error=str(e),
                command=command,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )

        execution.spawned(process.pid, process)

        stdout: list[str] = []
        stderr: list[str] = []
        readers = asyncio.gather(
            _pump(process.stdout, "stdout", stdout, execution),
            _pump(process.stderr, "stderr", stderr, execution),
            process.wait(),
        )

        deadline = _deadline(options)
        timed_out = False
        try:
            await asyncio.wait_for(asyncio.shield(readers), timeout=deadline)
        except asyncio.TimeoutError:
            timed_out = True
            await self._terminate(process)
            await readers
        except asyncio.CancelledError:
            await self._terminate(process)
            readers.cancel()
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        out, err = "".join(stdout), "".join(stderr)

        if timed_out:
            message = f"Command timed out after {deadline:g}s"
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=out,
                stderr=err,
                error=message,
                command=command,
                duration_ms=duration_ms,
            )

        exit_code = process.returncode
        if exit_code is not None and exit_code < 0:
            # Killed by signal, report like a shell would.
            exit_code = 128 - exit_code
        return CommandResult(
            exit_code=exit_code or 0,
            stdout=out,
            stderr=err,
            error=(err or f"Command exited with code {exit_code}") if exit_code else None,
            command=command,
            duration_ms=duration_ms,
        )

    async def _terminate(self, process: Any) -> None:
        if process.returncode is not None:
            return
        try:
            os.killpg(os.getpgid(process.pid), signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            try:
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            except ProcessLookupError:
                pass


def _deadline(options: CommandOptions) -> float | None:
    candidates = []
    if options.timeout is not None:
        candidates.append(options.timeout)
    if options.request_timeout_ms is not None:
        candidates.append(options.request_timeout_ms / 1000)
    return min(candidates) if candidates else None


async def _pump(
    stream: asyncio.StreamReader,
    name: str,
    sink: list[str],
    execution: Execution,
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if text:
            sink.append(text)
            execution.emit(name, text)
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.append(tail)
        execution.emit(name, tail)
