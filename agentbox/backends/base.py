"""Abstract base class for sandbox backends."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any

from agentbox.schemas import BackendKind, EditResult, SandboxConfig, SandboxStatus
from agentbox.tools.bash import Bash
from agentbox.tools.dev import DevServerManager
from agentbox.tools.filesystem import FileSystem
from agentbox.tools.git_ops import Git


class SandboxBackend(ABC):
    """Capability surface every backend exposes.

    Tool code only talks to ``fs``, ``bash``, ``git`` and ``dev`` plus the
    lifecycle methods below, so a local directory and a remote container
    are interchangeable.
    """

    kind: BackendKind

    fs: FileSystem
    bash: Bash
    git: Git
    dev: DevServerManager

    def __init__(self, config: SandboxConfig):
        self.config = config
        self._created_at: float | None = None
        self._last_activity = time.monotonic()

    # ------------------------------------------------------------------
    # Shared state
    # ------------------------------------------------------------------

    @property
    def supports_kill(self) -> bool:
        """Whether ``stop`` on a command terminates it or waits for it."""
        return self.bash.supports_kill

    @property
    def uptime(self) -> float:
        """Seconds since the sandbox was created, 0 when not running."""
        if self._created_at is None:
            return 0.0
        return time.monotonic() - self._created_at

    @property
    def idle_time(self) -> float:
        return time.monotonic() - self._last_activity

    def expired(self) -> bool:
        """True once the sandbox has been reused for longer than ``max_lifetime``."""
        return self._created_at is not None and self.uptime > self.config.max_lifetime

    def _touch(self) -> None:
        self._last_activity = time.monotonic()

    def _mark_started(self) -> None:
        self._created_at = time.monotonic()
        self._touch()

    def _mark_stopped(self) -> None:
        self._created_at = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_sandbox(self) -> Any:
        """Return the underlying sandbox object (workspace handle or container)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def refresh(self, config: SandboxConfig | None = None) -> None:
        """Tear down and build a fresh sandbox, optionally with new config."""
        ...

    @abstractmethod
    async def get_status(self) -> SandboxStatus:
        ...

    @abstractmethod
    def get_sandbox_id(self) -> str | None:
        ...

    @abstractmethod
    async def is_active(self) -> bool:
        ...

    @abstractmethod
    async def keep_alive(self) -> None:
        ...

    @abstractmethod
    def set_config(self, config: SandboxConfig) -> None:
        ...

    async def dispose(self) -> None:
        await self.stop()

    async def edit(self, file_path: str, old_string: str, new_string: str, replace_all: bool = False) -> EditResult:
        from agentbox.tools.edit import edit_file

        return await edit_file(self, file_path, old_string, new_string, replace_all)

    async def __aenter__(self) -> "SandboxBackend":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()
