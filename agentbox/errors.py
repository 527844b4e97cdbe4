"""Error taxonomy for sandbox operations.

Every error carries a machine readable ``code`` so tool wrappers can turn it
into a structured result without string matching on messages.
"""

from __future__ import annotations

from typing import Any


class SandboxError(Exception):
    """Base class for every error raised by the sandbox core."""

    code = "SANDBOX_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(SandboxError):
    """Missing credentials or collaborators; fatal at resolve time."""

    code = "CONFIGURATION_ERROR"


SANDBOX_API_KEY_MISSING = "SANDBOX_API_KEY_MISSING"
SECONDARY_MEMORY_MISSING = "SECONDARY_MEMORY_MISSING"
UNKNOWN_BACKEND = "UNKNOWN_BACKEND"


class SandboxNotInitializedError(SandboxError):
    code = "SANDBOX_NOT_INITIALIZED"


# =============================================================================
# Command registry
# =============================================================================

class CommandAlreadyRunningError(SandboxError):
    code = "COMMAND_ALREADY_RUNNING"

    def __init__(self, command_id: str):
        super().__init__(f"Command '{command_id}' is already running", details={"id": command_id})
        self.command_id = command_id


class CommandNotRunningError(SandboxError):
    code = "COMMAND_NOT_RUNNING"

    def __init__(self, command_id: str):
        super().__init__(f"Command '{command_id}' is not running", details={"id": command_id})
        self.command_id = command_id


# =============================================================================
# Edits and paths
# =============================================================================

class InvalidArgumentError(SandboxError):
    code = "INVALID_ARGUMENT"


class NotFoundError(SandboxError):
    code = "NOT_FOUND"


class AmbiguousMatchError(SandboxError):
    code = "AMBIGUOUS_MATCH"


class PathEscapeError(SandboxError):
    code = "PATH_ESCAPE"


class GitOperationError(SandboxError):
    code = "GIT_ERROR"


class SandboxIOError(SandboxError):
    """Filesystem failure reported by the operating system."""

    code = "IO_ERROR"

    @classmethod
    def from_os_error(cls, e: OSError) -> "SandboxIOError":
        return cls(str(e), details={"errno": e.errno, "path": e.filename})
