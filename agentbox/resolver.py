"""Sandbox resolution with a deduplicating creation cache.

Concurrent callers asking for the same sandbox share one creation task, so
only one backend instance is ever built per cache key. A failed creation is
evicted before the error propagates, so the next call starts from scratch.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Hashable

from agentbox.backends.base import SandboxBackend
from agentbox.backends.heartbeat import HeartbeatStore
from agentbox.backends.local import LocalSandbox, default_workspace
from agentbox.backends.remote import RemoteSandbox
from agentbox.config import Settings, get_settings
from agentbox.errors import (
    SANDBOX_API_KEY_MISSING,
    SECONDARY_MEMORY_MISSING,
    UNKNOWN_BACKEND,
    ConfigurationError,
)
from agentbox.schemas import BackendKind, SandboxConfig


logger = logging.getLogger(__name__)

SandboxFactory = Callable[[SandboxConfig], Awaitable[SandboxBackend]]


class SandboxResolver:
    """Owns the sandbox cache for one process root.

    Construct one per application (or per test) and pass it by reference.
    ``factories`` overrides how a backend kind is built.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        heartbeat_store: HeartbeatStore | None = None,
        factories: dict[BackendKind, SandboxFactory] | None = None,
    ):
        self.settings = settings or get_settings()
        self._store = heartbeat_store
        self._owns_store = False
        self._factories: dict[BackendKind, SandboxFactory] = {
            BackendKind.LOCAL: self._create_local,
            BackendKind.REMOTE: self._create_remote,
        }
        if factories:
            self._factories.update(factories)
        self._cache: dict[Hashable, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Cache keys and validation
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(config: SandboxConfig) -> tuple[Any, ...]:
        if config.backend == BackendKind.LOCAL:
            workspace = os.path.abspath(config.workspace_path or default_workspace())
            return (BackendKind.LOCAL.value, workspace, config.sandbox_id)
        return (BackendKind(config.backend).value, config.sandbox_id)

    def heartbeat_store(self) -> HeartbeatStore:
        """Shared store for remote heartbeats, built from ``redis_url`` on first use."""
        if self._store is None:
            if self.settings.redis_url is None:
                raise ConfigurationError(
                    "Remote sandboxes require a shared key-value store (set REDIS_URL)",
                    code=SECONDARY_MEMORY_MISSING,
                )
            self._store = HeartbeatStore.from_url(str(self.settings.redis_url))
            self._owns_store = True
        return self._store

    def _validate(self, config: SandboxConfig) -> None:
        if config.backend not in self._factories:
            raise ConfigurationError(f"Unknown sandbox backend: {config.backend}", code=UNKNOWN_BACKEND)
        if config.backend == BackendKind.REMOTE:
            if config.api_key is None or not config.api_key.get_secret_value():
                raise ConfigurationError(
                    "Remote sandboxes require an API key (set E2B_API_KEY)",
                    code=SANDBOX_API_KEY_MISSING,
                )
            self.heartbeat_store()

    # ------------------------------------------------------------------
    # Default factories
    # ------------------------------------------------------------------

    async def _create_local(self, config: SandboxConfig) -> SandboxBackend:
        return await LocalSandbox.create(
            config,
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )

    async def _create_remote(self, config: SandboxConfig) -> SandboxBackend:
        return await RemoteSandbox.connect_or_create(
            config,
            self.heartbeat_store(),
            author_name=self.settings.git_author_name,
            author_email=self.settings.git_author_email,
        )

    async def _create(self, config: SandboxConfig) -> SandboxBackend:
        factory = self._factories[config.backend]
        logger.info(f"Creating {BackendKind(config.backend).value} sandbox")
        return await factory(config)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, config: SandboxConfig | None = None) -> SandboxBackend:
        """Return the sandbox for ``config``, creating it at most once per key.

        Raises:
            ConfigurationError: credentials or the shared store are missing
        """
        if config is None:
            config = SandboxConfig.from_settings(self.settings)
        self._validate(config)

        key = self.cache_key(config)
        task = self._cache.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._create(config))
            self._cache[key] = task

        try:
            sandbox = await asyncio.shield(task)
        except Exception as e:
            if self._cache.get(key) is task:
                del self._cache[key]
                logger.warning(f"Sandbox creation failed for {key}: {e}")
            raise

        if sandbox.expired():
            if self._cache.get(key) is task:
                del self._cache[key]
                logger.info(f"Sandbox {sandbox.get_sandbox_id()} exceeded max lifetime, recreating")
                await sandbox.dispose()
            return await self.resolve(config)

        return sandbox

    def cached(self) -> list[tuple[Any, ...]]:
        return list(self._cache)

    async def _release(self, task: asyncio.Task) -> None:
        if not task.done():
            task.cancel()
            return
        if task.cancelled() or task.exception() is not None:
            return
        await task.result().dispose()

    async def evict(self, config: SandboxConfig) -> bool:
        """Drop and dispose the cached sandbox for ``config``."""
        task = self._cache.pop(self.cache_key(config), None)
        if task is None:
            return False
        await self._release(task)
        return True

    async def dispose(self) -> None:
        tasks = list(self._cache.values())
        self._cache.clear()
        for task in tasks:
            try:
                await self._release(task)
            except Exception as e:
                logger.error(f"Error disposing sandbox: {e}")
        await self.close()

    async def close(self) -> None:
        """Close a heartbeat store this resolver created, leaving sandboxes running."""
        if self._owns_store and self._store is not None:
            await self._store.close()
            self._store = None
            self._owns_store = False
