"""Sandbox backed by a remote E2B container.

The container service reclaims idle containers, and several processes may
share one container by id. Liveness is therefore kept in a shared
``HeartbeatStore`` and refreshed on every filesystem, shell, git and dev
operation.
"""

from __future__ import annotations

import logging
import os
import shlex
from typing import Any

from e2b import AsyncSandbox

from agentbox.backends.base import SandboxBackend
from agentbox.backends.heartbeat import HeartbeatStore
from agentbox.errors import SandboxNotInitializedError
from agentbox.execution.remote import DEFAULT_WORKING_DIRECTORY, RemoteExecutionEngine
from agentbox.schemas import BackendKind, SandboxConfig, SandboxStatus
from agentbox.tools.bash import RemoteBash
from agentbox.tools.dev import DevServerManager
from agentbox.tools.filesystem import RemoteFileSystem
from agentbox.tools.git_ops import Git


logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_TTL_MS = 60_000


class RemoteSandbox(SandboxBackend):
    """E2B container with a shared heartbeat.

    ``supports_kill`` is ``False``: stopping a command waits for it to finish.
    """

    kind = BackendKind.REMOTE

    def __init__(
        self,
        config: SandboxConfig,
        store: HeartbeatStore,
        sandbox_cls: Any = AsyncSandbox,
        author_name: str | None = None,
        author_email: str | None = None,
    ):
        super().__init__(config)
        self.store = store
        self._sandbox_cls = sandbox_cls
        self._author = (author_name, author_email)
        self._sandbox: Any = None
        self._sandbox_id: str | None = None
        self._active = False
        self._build_tools()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def connect_or_create(cls, config: SandboxConfig, store: HeartbeatStore, **kwargs: Any) -> "RemoteSandbox":
        """Reconnect to ``config.sandbox_id`` if its heartbeat is alive, else create."""
        manager = cls(config, store, **kwargs)

        if config.sandbox_id:
            if await store.is_alive(config.sandbox_id):
                try:
                    await manager._connect(config.sandbox_id)
                    return manager
                except Exception as e:
                    logger.warning(f"Failed to connect to sandbox {config.sandbox_id}, creating new one: {e}")
            else:
                logger.info(f"Sandbox {config.sandbox_id} expired (heartbeat missing), creating new one")

        await manager._create()
        return manager

    @classmethod
    async def force_create(cls, config: SandboxConfig, store: HeartbeatStore, **kwargs: Any) -> "RemoteSandbox":
        manager = cls(config, store, **kwargs)
        await manager._create()
        return manager

    @property
    def workspace(self) -> str:
        return self.config.workspace_path or DEFAULT_WORKING_DIRECTORY

    def _build_tools(self) -> None:
        self.fs = RemoteFileSystem(self.workspace, self.get_sandbox, self._implicit_keep_alive)
        engine = RemoteExecutionEngine(
            self.get_sandbox,
            self._implicit_keep_alive,
            default_timeout=self.config.command_timeout,
            default_cwd=self.fs.workspace,
        )
        self.bash = RemoteBash(engine, self.fs)
        token = self.config.github_token
        self.git = Git(
            self.bash,
            author_name=self._author[0],
            author_email=self._author[1],
            auth_token=token.get_secret_value() if token else None,
        )
        self.dev = DevServerManager(self.bash, host_resolver=self._public_host)

    def _api_key(self) -> str | None:
        return self.config.api_key.get_secret_value() if self.config.api_key else None

    async def _connect(self, sandbox_id: str) -> None:
        self._sandbox = await self._sandbox_cls.connect(sandbox_id, api_key=self._api_key())
        self._sandbox_id = sandbox_id
        self._active = True
        self._mark_started()
        logger.info(f"Connected to E2B sandbox {sandbox_id}")
        await self._refresh_heartbeat()

    async def _create(self) -> None:
        await self.stop()
        logger.info("Creating E2B sandbox...")

        metadata = {"env": os.environ.get("ENVIRONMENT", "development")}
        if self.config.resources.vcpus:
            metadata["vcpus"] = str(self.config.resources.vcpus)
        if self.config.ports:
            metadata["ports"] = ",".join(str(p) for p in self.config.ports)

        try:
            self._sandbox = await self._sandbox_cls.create(
                template=self.config.runtime,
                timeout=int(self.config.timeout),
                metadata=metadata,
                api_key=self._api_key(),
            )
            self._sandbox_id = self._sandbox.sandbox_id
            await self._sandbox.commands.run(f"mkdir -p {shlex.quote(self.workspace)}")
            self._active = True
            self._mark_started()
            await self.store.mark_alive(self._sandbox_id, self.heartbeat_ttl_ms())
        except Exception as e:
            logger.error(f"Failed to create E2B sandbox {self._sandbox_id}: {e}")
            self._sandbox = None
            self._active = False
            self._mark_stopped()
            raise

        logger.info(f"E2B sandbox created: {self._sandbox_id}")

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def heartbeat_ttl_ms(self) -> int:
        seconds = self.config.auto_stop_delay or self.config.timeout
        ttl = int(seconds * 1000) if seconds else DEFAULT_HEARTBEAT_TTL_MS
        return max(1, ttl)

    async def _refresh_heartbeat(self) -> None:
        if self._sandbox_id and self._active:
            self._touch()
            await self.store.mark_alive(self._sandbox_id, self.heartbeat_ttl_ms())

    async def keep_alive(self) -> None:
        """Extend the container's timeout and refresh the shared heartbeat.

        Failures propagate but leave the sandbox active, so the next call
        retries both refreshes.
        """
        if self._sandbox is None or not self._active:
            return
        await self._sandbox.set_timeout(int(self.config.timeout))
        await self._refresh_heartbeat()

    async def _implicit_keep_alive(self) -> None:
        try:
            await self.keep_alive()
        except Exception as e:
            logger.warning(f"Heartbeat refresh failed for sandbox {self._sandbox_id}, retrying on next operation: {e}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def get_sandbox(self) -> Any:
        if self._sandbox is None:
            raise SandboxNotInitializedError(
                "Sandbox not initialized. Use RemoteSandbox.connect_or_create() first."
            )
        return self._sandbox

    def _public_host(self, port: int) -> str | None:
        if self._sandbox is None:
            return None
        host = self._sandbox.get_host(port)
        return f"https://{host}" if host else None

    async def stop(self) -> None:
        if self._sandbox is not None and self._active:
            sandbox_id = self._sandbox_id
            try:
                logger.info(f"Stopping E2B sandbox: {sandbox_id}")
                await self._sandbox.kill()
                if sandbox_id:
                    await self.store.clear(sandbox_id)
                logger.info(f"E2B sandbox stopped: {sandbox_id}")
            except Exception as e:
                logger.error(f"Error stopping E2B sandbox {sandbox_id}: {e}")

        self._sandbox = None
        self._sandbox_id = None
        self._active = False
        self._mark_stopped()

    async def refresh(self, config: SandboxConfig | None = None) -> None:
        if config is not None:
            self.set_config(config)
        await self.stop()
        await self._create()

    async def get_status(self) -> SandboxStatus:
        alive = await self.store.is_alive(self._sandbox_id) if self._sandbox_id else False
        return SandboxStatus(
            active=self._active,
            sandbox_id=self._sandbox_id,
            uptime=self.uptime,
            last_activity=self.idle_time,
            reusable=self._active and alive,
            backend=self.kind,
        )

    def get_sandbox_id(self) -> str | None:
        return self._sandbox_id

    async def is_active(self) -> bool:
        if not self._active or not self._sandbox_id:
            return False
        return await self.store.is_alive(self._sandbox_id)

    def set_config(self, config: SandboxConfig) -> None:
        previous = self.workspace
        self.config = config
        if self.workspace != previous:
            self._build_tools()
