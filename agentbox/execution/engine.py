"""Command execution engine shared by both backends.

The engine owns the per-sandbox registry of in-flight commands:
- ids are explicit or generated as ``command-{n}``
- an id that is still registered cannot be started again
- every command is removed from the registry exactly once, when it finishes
- streaming output goes through an unbounded channel so nothing is dropped
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, Optional, Union

from agentbox.errors import CommandAlreadyRunningError, CommandNotRunningError
from agentbox.execution.channel import StreamChannel
from agentbox.schemas import CommandHandle, CommandResult, OutputEvent, StatusEvent, StreamEvent


logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], Union[None, Awaitable[None]]]
StreamName = Literal["stdout", "stderr"]


@dataclass
class CommandOptions:
    """Per-command options. ``timeout`` is seconds, ``request_timeout_ms`` milliseconds."""
    id: Optional[str] = None
    cwd: Optional[str] = None
    env: dict[str, str] = field(default_factory=dict)
    timeout: Optional[float] = None
    request_timeout_ms: Optional[int] = None
    on_stdout: Optional[OutputCallback] = None
    on_stderr: Optional[OutputCallback] = None

    def merged(self, **overrides: Any) -> "CommandOptions":
        values = {k: v for k, v in overrides.items() if v is not None}
        if "env" in values:
            values["env"] = {**self.env, **values["env"]}
        return replace(self, **values)


class Execution:
    """Hooks handed to a backend while one command runs."""

    def __init__(self, managed: "_ManagedCommand"):
        self._managed = managed

    def spawned(self, pid: int | None, process: Any = None) -> None:
        """Report that the process exists; unblocks ``start``."""
        self._managed.handle.pid = pid
        self._managed.process = process
        if not self._managed.spawned.done():
            self._managed.spawned.set_result(pid)

    def emit(self, stream: StreamName, text: str) -> None:
        """Forward one chunk of output, in production order."""
        if not text:
            return
        managed = self._managed
        if managed.channel is not None:
            managed.channel.push(OutputEvent(type=stream, text=text))

        callback = managed.options.on_stdout if stream == "stdout" else managed.options.on_stderr
        if callback is None:
            return
        try:
            outcome = callback(text)
        except Exception as e:
            logger.warning(f"{stream} callback failed for '{managed.handle.id}': {e}")
            return
        if inspect.isawaitable(outcome):
            managed.pending_callbacks.append(asyncio.ensure_future(outcome))


@dataclass
class _ManagedCommand:
    handle: CommandHandle
    options: CommandOptions
    spawned: asyncio.Future
    channel: Optional[StreamChannel] = None
    task: Optional[asyncio.Task] = None
    process: Any = None
    pending_callbacks: list = field(default_factory=list)


class ExecutionEngine(ABC):
    """Runs shell commands against a working directory.

    ``supports_kill`` declares whether ``stop`` can terminate a process. When
    it is ``False`` a ``stop`` call waits for the command to finish instead.
    """

    supports_kill: bool = False

    def __init__(self, default_timeout: float = 120.0, default_cwd: str | None = None):
        self.default_timeout = default_timeout
        self.default_cwd = default_cwd
        self._registry: dict[str, _ManagedCommand] = {}
        self._counter = 0

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _execute(self, command: str, options: CommandOptions, execution: Execution) -> CommandResult:
        """Run ``command`` to completion, reporting through ``execution``.

        Must call ``execution.spawned`` once the process exists and must turn
        process-level failures into a ``CommandResult`` instead of raising.
        """
        ...

    async def _terminate(self, process: Any) -> None:
        """Forcibly stop a process. Only called when ``supports_kill`` is set."""
        raise NotImplementedError

    async def _before_command(self) -> None:
        """Called before each command is launched."""
        return None

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        self._counter += 1
        command_id = f"command-{self._counter}"
        while command_id in self._registry:
            self._counter += 1
            command_id = f"command-{self._counter}"
        return command_id

    def is_running(self, command_id: str) -> bool:
        return command_id in self._registry

    def get(self, command_id: str) -> CommandHandle | None:
        managed = self._registry.get(command_id)
        return managed.handle if managed else None

    def list_running(self) -> list[CommandHandle]:
        return [m.handle for m in self._registry.values()]

    def _register(self, command: str, options: CommandOptions, stream: bool) -> _ManagedCommand:
        # No await between the collision check and the insert.
        command_id = options.id or self._next_id()
        if command_id in self._registry:
            logger.warning(f"Refusing to start '{command_id}': already running")
            raise CommandAlreadyRunningError(command_id)

        managed = _ManagedCommand(
            handle=CommandHandle(
                id=command_id,
                command=command,
                started_at=datetime.now(timezone.utc),
            ),
            options=options,
            spawned=asyncio.get_running_loop().create_future(),
            channel=StreamChannel() if stream else None,
        )
        self._registry[command_id] = managed
        return managed

    async def _supervise(self, managed: _ManagedCommand) -> CommandResult:
        start = time.perf_counter()
        command = managed.handle.command
        try:
            try:
                result = await self._execute(command, managed.options, Execution(managed))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Command '{managed.handle.id}' failed to run: {e}")
                result = CommandResult(exit_code=1, stderr=str(e), error=str(e), command=command)

            for outcome in await asyncio.gather(*managed.pending_callbacks, return_exceptions=True):
                if isinstance(outcome, Exception):
                    logger.warning(f"Output callback failed for '{managed.handle.id}': {outcome}")

            if result.duration_ms is None or result.command is None:
                result = result.model_copy(update={
                    "command": result.command or command,
                    "duration_ms": result.duration_ms
                    if result.duration_ms is not None
                    else int((time.perf_counter() - start) * 1000),
                })
            return result
        finally:
            if self._registry.get(managed.handle.id) is managed:
                del self._registry[managed.handle.id]
            if not managed.spawned.done():
                managed.spawned.set_result(None)
            if managed.channel is not None:
                managed.channel.close()

    async def _launch(self, command: str, options: CommandOptions | None, stream: bool) -> _ManagedCommand:
        options = options or CommandOptions()
        if options.cwd is None and self.default_cwd is not None:
            options = replace(options, cwd=self.default_cwd)
        if options.timeout is None:
            options = replace(options, timeout=self.default_timeout)

        managed = self._register(command, options, stream)
        try:
            await self._before_command()
        except BaseException:
            del self._registry[managed.handle.id]
            raise

        managed.task = asyncio.create_task(self._supervise(managed))
        await asyncio.wait({managed.spawned, managed.task}, return_when=asyncio.FIRST_COMPLETED)
        return managed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, command: str, options: CommandOptions | None = None) -> CommandHandle:
        """Start ``command`` in the background and return its handle."""
        managed = await self._launch(command, options, stream=False)
        return managed.handle

    async def run(self, command: str, options: CommandOptions | None = None) -> CommandResult:
        """Run ``command`` and wait for its result."""
        managed = await self._launch(command, options, stream=False)
        return await asyncio.shield(managed.task)

    async def run_streaming(
        self,
        command: str,
        options: CommandOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield a status event, then every output chunk until the command ends."""
        managed = await self._launch(command, options, stream=True)
        handle = managed.handle
        yield StatusEvent(
            id=handle.id,
            command=handle.command,
            pid=handle.pid,
            started_at=handle.started_at,
        )
        async for event in managed.channel:
            yield event

    async def wait(self, command_id: str) -> CommandResult:
        managed = self._registry.get(command_id)
        if managed is None:
            raise CommandNotRunningError(command_id)
        return await asyncio.shield(managed.task)

    async def stop(self, command_id: str) -> CommandResult:
        """Stop a registered command and return its final result."""
        managed = self._registry.get(command_id)
        if managed is None:
            raise CommandNotRunningError(command_id)

        if self.supports_kill and managed.process is not None:
            logger.info(f"Terminating command '{command_id}'")
            await self._terminate(managed.process)
        else:
            logger.info(f"Waiting for command '{command_id}' to finish")
        return await asyncio.shield(managed.task)

    async def stop_all(self) -> None:
        for command_id in list(self._registry):
            try:
                await self.stop(command_id)
            except CommandNotRunningError:
                continue
