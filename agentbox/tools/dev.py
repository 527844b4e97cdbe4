"""Long-running dev processes (servers, watchers) inside a sandbox.

Dev commands live in the same registry as every other command of the
sandbox, so ids are unique across ``bash`` and ``dev``.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Awaitable, Callable

from agentbox.errors import CommandNotRunningError
from agentbox.schemas import DevServerResult, DevStreamOutput, OutputEvent
from agentbox.tools.bash import Bash


logger = logging.getLogger(__name__)

# Tool-chain banner lines that some package scripts echo on stderr.
NOISE_PREFIXES = ("$ cross-env",)

HostResolver = Callable[[int], "str | None"]


def strip_noise(text: str) -> str:
    return "".join(
        line for line in text.splitlines(keepends=True)
        if not line.startswith(NOISE_PREFIXES)
    )


class DevServerManager:
    """Start, stream and stop named background commands."""

    def __init__(self, bash: Bash, host_resolver: HostResolver | None = None):
        self.bash = bash
        self._host_resolver = host_resolver

    def start_dev(
        self,
        command: str,
        *,
        id: str | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        stream: bool = False,
    ) -> Awaitable[DevServerResult] | AsyncIterator[DevStreamOutput]:
        """Start ``command`` in the background.

        Returns an awaitable ``DevServerResult`` that resolves as soon as the
        process is running, or, with ``stream=True``, an async iterator that
        yields a status event followed by the command's output.
        """
        if stream:
            return self._start_streaming(command, id=id, cwd=cwd, env=env)
        return self._start(command, id=id, cwd=cwd, env=env)

    async def _start(self, command: str, **options) -> DevServerResult:
        handle = await self.bash.start(command, **options)
        logger.info(f"Dev command '{handle.id}' started: {command}")
        return DevServerResult(
            id=handle.id,
            command=handle.command,
            pid=handle.pid,
            started_at=handle.started_at,
            running=True,
        )

    async def _start_streaming(self, command: str, **options) -> AsyncIterator[DevStreamOutput]:
        async for event in self.bash.stream(command, **options):
            if isinstance(event, OutputEvent) and event.type == "stderr":
                text = strip_noise(event.text)
                if not text:
                    continue
                if text != event.text:
                    event = OutputEvent(type="stderr", text=text)
            yield event

    async def stop_dev(self, id: str) -> DevServerResult:
        """Stop a dev command and return its final output.

        Raises:
            CommandNotRunningError: no command with ``id`` is registered
        """
        handle = self.bash.engine.get(id)
        if handle is None:
            raise CommandNotRunningError(id)

        result = await self.bash.stop(id)
        logger.info(f"Dev command '{id}' finished with exit code {result.exit_code}")
        return DevServerResult(
            id=id,
            command=result.command or handle.command,
            pid=handle.pid,
            started_at=handle.started_at,
            running=False,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.error,
        )

    def list_running(self):
        return self.bash.engine.list_running()

    def get_host(self, port: int) -> str | None:
        """Public URL for ``port``, or ``None`` when the backend has none."""
        if self._host_resolver is None:
            return None
        try:
            return self._host_resolver(port)
        except Exception as e:
            logger.debug(f"No host for port {port}: {e}")
            return None
