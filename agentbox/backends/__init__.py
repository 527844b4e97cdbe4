"""Sandbox backends: a local directory or a remote E2B container."""

from agentbox.backends.base import SandboxBackend
from agentbox.backends.heartbeat import HeartbeatStore, heartbeat_key
from agentbox.backends.local import LocalSandbox
from agentbox.backends.remote import RemoteSandbox

__all__ = [
    "SandboxBackend",
    "HeartbeatStore",
    "heartbeat_key",
    "LocalSandbox",
    "RemoteSandbox",
]
