"""agentbox: isolated local or remote sandboxes for coding agents."""

from agentbox.backends import LocalSandbox, RemoteSandbox, SandboxBackend
from agentbox.resolver import SandboxResolver
from agentbox.schemas import SandboxConfig

__version__ = "0.1.0"

__all__ = [
    "LocalSandbox",
    "RemoteSandbox",
    "SandboxBackend",
    "SandboxConfig",
    "SandboxResolver",
]
