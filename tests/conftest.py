"""Shared fixtures and fakes for the sandbox tests."""

from __future__ import annotations

import posixpath
import shutil
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from agentbox.backends.heartbeat import HeartbeatStore
from agentbox.backends.local import LocalSandbox
from agentbox.config import Settings
from agentbox.schemas import SandboxConfig


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


# =============================================================================
# Key-value store
# =============================================================================

class FakeKeyValueStore:
    """In-memory stand-in for ``redis.asyncio.Redis`` (set/exists/delete)."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int | None] = {}
        self.closed = False

    async def set(self, name: str, value: Any, px: int | None = None) -> bool:
        self.data[name] = value
        self.ttls[name] = px
        return True

    async def exists(self, *names: str) -> int:
        return sum(1 for name in names if name in self.data)

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.data.pop(name, None) is not None:
                removed += 1
            self.ttls.pop(name, None)
        return removed

    def expire(self, name: str) -> None:
        self.data.pop(name, None)

    async def aclose(self) -> None:
        self.closed = True


# =============================================================================
# E2B container
# =============================================================================

class FakeCommands:
    """Records commands; ``handler(command, kwargs)`` scripts the outcome."""

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.handler: Callable[[str, dict[str, Any]], Any] | None = None

    async def run(self, command: str, **kwargs: Any) -> Any:
        self.calls.append((command, kwargs))
        if self.handler is not None:
            outcome = self.handler(command, kwargs)
            if outcome is not None:
                return outcome
        return SimpleNamespace(exit_code=0, stdout="", stderr="", error=None)

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


class FakeFiles:
    """In-memory ``sandbox.files``."""

    def __init__(self):
        self.files: dict[str, str | bytes] = {}
        self.dirs: set[str] = {"/"}

    def _add_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        while parent and parent not in self.dirs:
            self.dirs.add(parent)
            parent = posixpath.dirname(parent)

    async def read(self, path: str, format: str = "text") -> str | bytes:
        content = self.files[path]
        if format == "bytes":
            return content.encode() if isinstance(content, str) else content
        return content if isinstance(content, str) else content.decode()

    async def write(self, path: str, data: str | bytes) -> Any:
        self._add_parents(path)
        self.files[path] = data
        return SimpleNamespace(name=posixpath.basename(path), path=path)

    async def make_dir(self, path: str) -> bool:
        self._add_parents(path)
        self.dirs.add(path)
        return True

    async def exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    async def remove(self, path: str) -> None:
        self.files.pop(path, None)
        self.dirs.discard(path)
        for key in [k for k in self.files if k.startswith(path + "/")]:
            del self.files[key]

    async def rename(self, old_path: str, new_path: str) -> Any:
        self._add_parents(new_path)
        self.files[new_path] = self.files.pop(old_path)
        return SimpleNamespace(name=posixpath.basename(new_path), path=new_path)

    def _entry(self, path: str) -> Any:
        is_dir = path in self.dirs
        content = self.files.get(path, "")
        return SimpleNamespace(
            name=posixpath.basename(path),
            path=path,
            type=SimpleNamespace(value="dir" if is_dir else "file"),
            size=0 if is_dir else len(content),
            modified_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

    async def get_info(self, path: str) -> Any:
        return self._entry(path)

    async def list(self, path: str) -> list[Any]:
        children = {p for p in (*self.files, *self.dirs) if p != path and posixpath.dirname(p) == path}
        return [self._entry(p) for p in children]


class FakeE2BSandbox:
    """Stand-in for ``e2b.AsyncSandbox`` with class-level bookkeeping."""

    created: list["FakeE2BSandbox"] = []
    connected: list[str] = []
    fail_create: bool = False
    fail_connect: bool = False

    def __init__(self, sandbox_id: str):
        self.sandbox_id = sandbox_id
        self.commands = FakeCommands()
        self.files = FakeFiles()
        self.timeouts: list[int] = []
        self.killed = False
        self.create_kwargs: dict[str, Any] = {}

    @classmethod
    def reset(cls) -> None:
        cls.created = []
        cls.connected = []
        cls.fail_create = False
        cls.fail_connect = False

    @classmethod
    async def create(cls, **kwargs: Any) -> "FakeE2BSandbox":
        if cls.fail_create:
            raise ConnectionError("sandbox service unavailable")
        sandbox = cls(f"sbx-{len(cls.created) + 1}")
        sandbox.create_kwargs = kwargs
        cls.created.append(sandbox)
        return sandbox

    @classmethod
    async def connect(cls, sandbox_id: str, **kwargs: Any) -> "FakeE2BSandbox":
        if cls.fail_connect:
            raise ConnectionError(f"sandbox {sandbox_id} not found")
        cls.connected.append(sandbox_id)
        return cls(sandbox_id)

    async def set_timeout(self, timeout: int) -> None:
        self.timeouts.append(timeout)

    async def kill(self) -> bool:
        self.killed = True
        return True

    def get_host(self, port: int) -> str:
        return f"{port}-{self.sandbox_id}.e2b.app"


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        sandbox_workspace_path=str(tmp_path / "workspace"),
        redis_url=None,
        e2b_api_key=None,
        github_token=None,
    )


@pytest.fixture
def workspace(tmp_path) -> str:
    path = tmp_path / "workspace"
    path.mkdir()
    return str(path)


@pytest.fixture
def local_config(workspace) -> SandboxConfig:
    return SandboxConfig(workspace_path=workspace, command_timeout=30)


@pytest.fixture
async def local_sandbox(local_config):
    sandbox = await LocalSandbox.create(local_config, author_name="Test", author_email="test@example.com")
    yield sandbox
    await sandbox.dispose()


@pytest.fixture
def kv() -> FakeKeyValueStore:
    return FakeKeyValueStore()


@pytest.fixture
def heartbeat(kv) -> HeartbeatStore:
    return HeartbeatStore(kv)


@pytest.fixture
def fake_e2b():
    FakeE2BSandbox.reset()
    yield FakeE2BSandbox
    FakeE2BSandbox.reset()


@pytest.fixture
def remote_config() -> SandboxConfig:
    return SandboxConfig(backend="remote", api_key="e2b_test_key", timeout=300)
