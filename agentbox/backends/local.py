"""Sandbox backed by a directory on the calling machine.

The sandbox lives exactly as long as the calling process, so there is no
heartbeat: ``keep_alive`` only records activity.
"""

from __future__ import annotations

import logging
import os
import uuid

from agentbox.execution.local import LocalExecutionEngine
from agentbox.schemas import BackendKind, SandboxConfig, SandboxStatus
from agentbox.backends.base import SandboxBackend
from agentbox.tools.bash import LocalBash
from agentbox.tools.dev import DevServerManager
from agentbox.tools.filesystem import LocalFileSystem
from agentbox.tools.git_ops import Git


logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE_DIRNAME = ".agentbox"


def default_workspace() -> str:
    return os.path.join(os.getcwd(), DEFAULT_WORKSPACE_DIRNAME)


def _new_sandbox_id() -> str:
    return f"local-{uuid.uuid4().hex[:12]}"


class LocalSandbox(SandboxBackend):
    """Workspace directory plus locally spawned processes."""

    kind = BackendKind.LOCAL

    def __init__(
        self,
        config: SandboxConfig,
        author_name: str | None = None,
        author_email: str | None = None,
    ):
        super().__init__(config)
        self._author = (author_name, author_email)
        self._sandbox_id = config.sandbox_id or _new_sandbox_id()
        self._active = False
        self._build_tools()

    @classmethod
    async def create(cls, config: SandboxConfig, **kwargs) -> "LocalSandbox":
        sandbox = cls(config, **kwargs)
        await sandbox.start()
        return sandbox

    @property
    def workspace(self) -> str:
        return self.fs.workspace

    def _build_tools(self) -> None:
        self.fs = LocalFileSystem(self.config.workspace_path or default_workspace())
        engine = LocalExecutionEngine(
            default_timeout=self.config.command_timeout,
            default_cwd=self.fs.workspace,
        )
        self.bash = LocalBash(engine, self.fs)
        token = self.config.github_token
        self.git = Git(
            self.bash,
            author_name=self._author[0],
            author_email=self._author[1],
            auth_token=token.get_secret_value() if token else None,
        )
        self.dev = DevServerManager(self.bash)

    async def start(self) -> None:
        os.makedirs(self.fs.workspace, exist_ok=True)
        self._active = True
        self._mark_started()
        logger.info(f"Local sandbox {self._sandbox_id} ready at {self.fs.workspace}")

    async def get_sandbox(self) -> "LocalSandbox":
        return self

    async def stop(self) -> None:
        running = self.bash.engine.list_running()
        if running:
            logger.info(f"Stopping {len(running)} running command(s) in {self._sandbox_id}")
        await self.bash.engine.stop_all()
        self._active = False
        self._mark_stopped()

    async def refresh(self, config: SandboxConfig | None = None) -> None:
        await self.stop()
        if config is not None:
            self.set_config(config)
        self._sandbox_id = (config.sandbox_id if config else None) or _new_sandbox_id()
        await self.start()

    async def get_status(self) -> SandboxStatus:
        return SandboxStatus(
            active=self._active,
            sandbox_id=self._sandbox_id,
            uptime=self.uptime,
            last_activity=self.idle_time,
            reusable=self._active,
            backend=self.kind,
        )

    def get_sandbox_id(self) -> str | None:
        return self._sandbox_id

    async def is_active(self) -> bool:
        return self._active

    async def keep_alive(self) -> None:
        self._touch()

    def set_config(self, config: SandboxConfig) -> None:
        previous = self.fs.workspace
        self.config = config
        workspace = os.path.abspath(config.workspace_path or default_workspace())
        if workspace != previous:
            if self.bash.engine.list_running():
                logger.warning(f"Workspace changed with commands still running in {previous}")
            self._build_tools()
