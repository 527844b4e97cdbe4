"""Sandbox tools: filesystem, shell, git, dev servers and edits."""

from agentbox.tools.bash import Bash, LocalBash, RemoteBash
from agentbox.tools.dev import DevServerManager
from agentbox.tools.filesystem import FileSystem, LocalFileSystem, RemoteFileSystem
from agentbox.tools.git_ops import Git

__all__ = [
    "Bash",
    "DevServerManager",
    "FileSystem",
    "Git",
    "LocalBash",
    "LocalFileSystem",
    "RemoteBash",
    "RemoteFileSystem",
]
