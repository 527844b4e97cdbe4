"""Sandbox liveness shared across processes through Redis.

Every caller attached to a remote sandbox refreshes a short-lived key on
each operation, so activity from any caller extends the lease for all.
A sandbox whose key has expired is treated as reclaimed.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

from redis import asyncio as redis_async


logger = logging.getLogger(__name__)

HEARTBEAT_KEY_PREFIX = "sandbox:heartbeat:"


class KeyValueStore(Protocol):
    """Subset of the ``redis.asyncio.Redis`` API the heartbeat needs."""

    async def set(self, name: str, value: Any, px: int | None = None) -> Any: ...

    async def exists(self, *names: str) -> int: ...

    async def delete(self, *names: str) -> int: ...


def heartbeat_key(sandbox_id: str) -> str:
    return f"{HEARTBEAT_KEY_PREFIX}{sandbox_id}"


class HeartbeatStore:
    """Reads and writes heartbeat keys in a shared key-value store."""

    def __init__(self, client: KeyValueStore):
        self.client = client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "HeartbeatStore":
        client = redis_async.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=kwargs.pop("socket_connect_timeout", 2),
            **kwargs,
        )
        return cls(client)

    async def mark_alive(self, sandbox_id: str, ttl_ms: int) -> None:
        await self.client.set(heartbeat_key(sandbox_id), str(int(time.time() * 1000)), px=max(1, int(ttl_ms)))

    async def is_alive(self, sandbox_id: str) -> bool:
        return await self.client.exists(heartbeat_key(sandbox_id)) > 0

    async def clear(self, sandbox_id: str) -> None:
        await self.client.delete(heartbeat_key(sandbox_id))

    async def close(self) -> None:
        close = getattr(self.client, "aclose", None) or getattr(self.client, "close", None)
        if close is not None:
            await close()
