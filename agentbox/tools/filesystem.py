"""Workspace-confined filesystem access.

Provides the same file API for both backends:
- resolve_path: map a caller path into the workspace (escapes are rejected)
- read_file / write_file: text or bytes, parents created on write
- mkdir / rm / rename / stat / exists
- readdir: optionally recursive listing with ignore patterns
- glob: pattern search relative to the workspace
"""

from __future__ import annotations

import fnmatch
import logging
import os
import posixpath
import re
import shutil
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable

from agentbox.errors import NotFoundError, PathEscapeError
from agentbox.schemas import FileInfo, FileType


logger = logging.getLogger(__name__)


DEFAULT_IGNORES = [
    ".git", "node_modules", "__pycache__", ".venv", "venv",
    ".next", "dist", "build", ".pytest_cache", "*.pyc", ".DS_Store",
]


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern:
    """Compile a glob where ``*`` stays inside one path segment and ``**`` spans them."""
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
            continue
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
            continue
        if char == "*":
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(char))
            else:
                body = pattern[i + 1:end].replace("\\", "\\\\")
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("".join(out))


def matches_any(rel_path: str, patterns: list[str]) -> bool:
    """Match a workspace-relative posix path against glob patterns.

    Patterns without a slash are tested against every path component, so
    ``node_modules`` or ``*.pyc`` exclude at any depth.
    """
    parts = rel_path.split("/")
    for pattern in patterns:
        if glob_to_regex(pattern).fullmatch(rel_path):
            return True
        if "/" not in pattern and any(fnmatch.fnmatchcase(part, pattern) for part in parts):
            return True
    return False


class FileSystem(ABC):
    """File API rooted at a workspace directory."""

    path_module: Any = os.path

    def __init__(self, workspace: str):
        self.workspace = self.path_module.normpath(workspace)

    def resolve_path(self, file_path: str) -> str:
        """Resolve ``file_path`` against the workspace.

        Relative paths are joined to the workspace, ``/`` is the workspace
        itself and absolute paths must already lie inside it.
        """
        pm = self.path_module
        trimmed = (file_path or "").strip()
        if trimmed in ("", ".", "./", "/"):
            return self.workspace

        candidate = pm.normpath(trimmed if pm.isabs(trimmed) else pm.join(self.workspace, trimmed))
        if candidate != self.workspace and not candidate.startswith(self.workspace.rstrip("/") + "/"):
            raise PathEscapeError(
                f"Path '{file_path}' is outside the sandbox workspace '{self.workspace}'",
                details={"path": file_path},
            )
        return candidate

    def relative_path(self, absolute_path: str) -> str:
        rel = self.path_module.relpath(absolute_path, self.workspace)
        return "" if rel == "." else rel.replace("\\", "/")

    @abstractmethod
    async def read_file(self, file_path: str, binary: bool = False) -> str | bytes:
        ...

    @abstractmethod
    async def write_file(self, file_path: str, content: str | bytes) -> None:
        ...

    @abstractmethod
    async def mkdir(self, dir_path: str, recursive: bool = True) -> None:
        ...

    @abstractmethod
    async def rm(self, target_path: str, recursive: bool = False, force: bool = False) -> None:
        ...

    @abstractmethod
    async def rename(self, old_path: str, new_path: str) -> None:
        ...

    @abstractmethod
    async def stat(self, file_path: str) -> FileInfo:
        ...

    @abstractmethod
    async def exists(self, target_path: str) -> bool:
        ...

    @abstractmethod
    async def readdir(
        self,
        dir_path: str = ".",
        recursive: bool = False,
        ignores: list[str] | None = None,
    ) -> list[FileInfo]:
        ...

    async def glob(
        self,
        pattern: str | list[str],
        cwd: str | None = None,
        exclude: list[str] | None = None,
    ) -> list[str]:
        """Return sorted file paths, relative to ``cwd``, matching any pattern."""
        patterns = [pattern] if isinstance(pattern, str) else list(pattern)
        base = self.resolve_path(cwd or ".")
        base_rel = self.relative_path(base)

        found: set[str] = set()
        for entry in await self.readdir(base_rel or ".", recursive=True, ignores=[]):
            if entry.type != FileType.FILE:
                continue
            rel = entry.path[len(base_rel) + 1:] if base_rel else entry.path
            if exclude and matches_any(rel, exclude):
                continue
            if any(_glob_match(rel, p) for p in patterns):
                found.add(rel)
        return sorted(found)


def _glob_match(rel_path: str, pattern: str) -> bool:
    return glob_to_regex(pattern).fullmatch(rel_path) is not None


# =============================================================================
# Local
# =============================================================================

class LocalFileSystem(FileSystem):
    """Filesystem on the calling machine."""

    def __init__(self, workspace: str):
        super().__init__(os.path.abspath(workspace))

    async def read_file(self, file_path: str, binary: bool = False) -> str | bytes:
        full_path = self.resolve_path(file_path)
        if not os.path.isfile(full_path):
            raise NotFoundError(f"File not found: {file_path}", details={"path": file_path})
        if binary:
            with open(full_path, "rb") as f:
                return f.read()
        with open(full_path, "r", encoding="utf-8", errors="replace", newline="") as f:
            return f.read()

    async def write_file(self, file_path: str, content: str | bytes) -> None:
        full_path = self.resolve_path(file_path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        if isinstance(content, bytes):
            with open(full_path, "wb") as f:
                f.write(content)
        else:
            with open(full_path, "w", encoding="utf-8", newline="") as f:
                f.write(content)

    async def mkdir(self, dir_path: str, recursive: bool = True) -> None:
        full_path = self.resolve_path(dir_path)
        if recursive:
            os.makedirs(full_path, exist_ok=True)
        else:
            os.mkdir(full_path)

    async def rm(self, target_path: str, recursive: bool = False, force: bool = False) -> None:
        full_path = self.resolve_path(target_path)
        if full_path == self.workspace:
            raise PathEscapeError("Refusing to remove the workspace root")
        if not os.path.lexists(full_path):
            if force:
                return
            raise NotFoundError(f"Path not found: {target_path}", details={"path": target_path})
        if os.path.isdir(full_path) and not os.path.islink(full_path):
            if recursive:
                logger.info(f"Removing directory tree {self.relative_path(full_path)}")
                shutil.rmtree(full_path)
            else:
                os.rmdir(full_path)
        else:
            os.remove(full_path)

    async def rename(self, old_path: str, new_path: str) -> None:
        source = self.resolve_path(old_path)
        target = self.resolve_path(new_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        os.replace(source, target)

    async def stat(self, file_path: str) -> FileInfo:
        full_path = self.resolve_path(file_path)
        try:
            st = os.stat(full_path)
        except FileNotFoundError:
            raise NotFoundError(f"Path not found: {file_path}", details={"path": file_path})
        return FileInfo(
            name=os.path.basename(full_path),
            path=self.relative_path(full_path),
            type=FileType.DIR if os.path.isdir(full_path) else FileType.FILE,
            size=st.st_size,
            modified_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    async def exists(self, target_path: str) -> bool:
        return os.path.exists(self.resolve_path(target_path))

    async def readdir(
        self,
        dir_path: str = ".",
        recursive: bool = False,
        ignores: list[str] | None = None,
    ) -> list[FileInfo]:
        root = self.resolve_path(dir_path)
        if not os.path.isdir(root):
            raise NotFoundError(f"Directory not found: {dir_path}", details={"path": dir_path})
        ignores = DEFAULT_IGNORES if ignores is None else ignores

        entries: list[FileInfo] = []
        for current, dirnames, filenames in os.walk(root):
            dirnames.sort()
            kept_dirs = []
            for name in dirnames:
                full = os.path.join(current, name)
                rel = self.relative_path(full)
                if matches_any(rel, ignores):
                    continue
                kept_dirs.append(name)
                entries.append(FileInfo(name=name, path=rel, type=FileType.DIR))
            dirnames[:] = kept_dirs

            for name in sorted(filenames):
                full = os.path.join(current, name)
                rel = self.relative_path(full)
                if matches_any(rel, ignores):
                    continue
                try:
                    st = os.stat(full)
                except OSError:
                    continue
                entries.append(FileInfo(
                    name=name,
                    path=rel,
                    type=FileType.FILE,
                    size=st.st_size,
                    modified_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                ))

            if not recursive:
                break
        return entries


# =============================================================================
# Remote
# =============================================================================

class RemoteFileSystem(FileSystem):
    """Filesystem inside an E2B container, reached through ``sandbox.files``."""

    path_module = posixpath

    def __init__(
        self,
        workspace: str,
        get_sandbox: Callable[[], Awaitable[Any]],
        touch: Callable[[], Awaitable[None]] | None = None,
    ):
        super().__init__(workspace)
        self._get_sandbox = get_sandbox
        self._touch = touch

    async def _files(self) -> Any:
        if self._touch is not None:
            await self._touch()
        sandbox = await self._get_sandbox()
        return sandbox.files

    async def read_file(self, file_path: str, binary: bool = False) -> str | bytes:
        full_path = self.resolve_path(file_path)
        files = await self._files()
        if not await files.exists(full_path):
            raise NotFoundError(f"File not found: {file_path}", details={"path": file_path})
        if binary:
            return bytes(await files.read(full_path, format="bytes"))
        return await files.read(full_path)

    async def write_file(self, file_path: str, content: str | bytes) -> None:
        full_path = self.resolve_path(file_path)
        files = await self._files()
        await files.write(full_path, content)

    async def mkdir(self, dir_path: str, recursive: bool = True) -> None:
        files = await self._files()
        await files.make_dir(self.resolve_path(dir_path))

    async def rm(self, target_path: str, recursive: bool = False, force: bool = False) -> None:
        full_path = self.resolve_path(target_path)
        if full_path == self.workspace:
            raise PathEscapeError("Refusing to remove the workspace root")
        files = await self._files()
        if not await files.exists(full_path):
            if force:
                return
            raise NotFoundError(f"Path not found: {target_path}", details={"path": target_path})
        await files.remove(full_path)

    async def rename(self, old_path: str, new_path: str) -> None:
        files = await self._files()
        await files.rename(self.resolve_path(old_path), self.resolve_path(new_path))

    async def stat(self, file_path: str) -> FileInfo:
        full_path = self.resolve_path(file_path)
        files = await self._files()
        if not await files.exists(full_path):
            raise NotFoundError(f"Path not found: {file_path}", details={"path": file_path})
        return self._to_info(await files.get_info(full_path), full_path)

    async def exists(self, target_path: str) -> bool:
        files = await self._files()
        return await files.exists(self.resolve_path(target_path))

    async def readdir(
        self,
        dir_path: str = ".",
        recursive: bool = False,
        ignores: list[str] | None = None,
    ) -> list[FileInfo]:
        root = self.resolve_path(dir_path)
        files = await self._files()
        if not await files.exists(root):
            raise NotFoundError(f"Directory not found: {dir_path}", details={"path": dir_path})
        ignores = DEFAULT_IGNORES if ignores is None else ignores

        entries: list[FileInfo] = []
        pending = [root]
        while pending:
            current = pending.pop(0)
            for raw in sorted(await files.list(current), key=lambda e: e.name):
                full = getattr(raw, "path", None) or posixpath.join(current, raw.name)
                info = self._to_info(raw, full)
                if matches_any(info.path, ignores):
                    continue
                entries.append(info)
                if recursive and info.type == FileType.DIR:
                    pending.append(full)
        return entries

    def _to_info(self, raw: Any, full_path: str) -> FileInfo:
        raw_type = getattr(raw, "type", None)
        type_value = getattr(raw_type, "value", raw_type)
        modified = getattr(raw, "modified_time", None)
        return FileInfo(
            name=getattr(raw, "name", None) or posixpath.basename(full_path),
            path=self.relative_path(full_path),
            type=FileType.DIR if type_value == "dir" else FileType.FILE,
            size=getattr(raw, "size", 0) or 0,
            modified_time=modified if isinstance(modified, datetime) else None,
        )
