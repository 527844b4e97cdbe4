"""Pydantic schemas for the sandbox capability surface.

These schemas define the contracts between:
- The resolver and the backends it builds
- Execution engines and their callers (blocking and streaming)
- Search, git and edit tools
- Tool wrappers and the agent that consumes them
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr


# =============================================================================
# Enums
# =============================================================================

class BackendKind(str, Enum):
    """Where a sandbox lives."""
    LOCAL = "local"
    REMOTE = "remote"


class FileType(str, Enum):
    FILE = "file"
    DIR = "dir"


# =============================================================================
# Sandbox configuration and status
# =============================================================================

class SandboxResources(BaseModel):
    model_config = ConfigDict(frozen=True)

    vcpus: int | None = Field(default=None, ge=1, description="Requested vCPU count")


class SandboxConfig(BaseModel):
    """Parameters for building one sandbox instance. Durations are seconds."""

    model_config = ConfigDict(frozen=True)

    backend: BackendKind = Field(default=BackendKind.LOCAL, description="Backend kind")
    sandbox_id: str | None = Field(default=None, description="Identity of the sandbox to reuse")
    timeout: float = Field(default=300, gt=0, description="Idle timeout of the container")
    max_lifetime: float = Field(default=3600, gt=0, description="Max reuse time before recreation")
    command_timeout: float = Field(default=120, gt=0, description="Default per-command timeout")
    workspace_path: str | None = Field(default=None, description="Working directory root")
    ports: tuple[int, ...] = Field(default=(), description="Ports exposed by the sandbox")
    runtime: str | None = Field(default=None, description="Runtime/template identifier")
    resources: SandboxResources = Field(default_factory=SandboxResources)
    auto_stop_delay: float | None = Field(default=None, gt=0, description="Remote idle reclaim delay")
    api_key: SecretStr | None = Field(default=None, description="Remote container service API key")
    github_token: SecretStr | None = Field(default=None, description="Token for git remotes")

    @classmethod
    def from_settings(cls, settings: Any, **overrides: Any) -> "SandboxConfig":
        """Build a config from the flat application settings."""
        values: dict[str, Any] = {
            "backend": settings.sandbox_backend,
            "sandbox_id": settings.sandbox_id,
            "timeout": settings.sandbox_timeout_seconds,
            "max_lifetime": settings.sandbox_max_lifetime_seconds,
            "command_timeout": settings.sandbox_command_timeout_seconds,
            "workspace_path": settings.sandbox_workspace_path,
            "ports": tuple(settings.sandbox_ports),
            "runtime": settings.sandbox_runtime,
            "resources": SandboxResources(vcpus=settings.sandbox_vcpus),
            "auto_stop_delay": settings.sandbox_auto_stop_delay_seconds,
            "api_key": settings.e2b_api_key,
            "github_token": settings.github_token,
        }
        values.update(overrides)
        return cls(**values)


class SandboxStatus(BaseModel):
    """Point-in-time snapshot of a sandbox. Durations are seconds."""
    active: bool
    sandbox_id: str | None = None
    uptime: float = 0.0
    last_activity: float = 0.0
    reusable: bool = False
    backend: BackendKind = BackendKind.LOCAL


# =============================================================================
# Command execution
# =============================================================================

class CommandHandle(BaseModel):
    """Registry entry for an in-flight command."""
    id: str
    command: str
    pid: int | None = None
    started_at: datetime


class CommandResult(BaseModel):
    """Outcome of one command. Non-zero exits are data, not exceptions."""

    model_config = ConfigDict(frozen=True)

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    command: str | None = None
    duration_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class OutputEvent(BaseModel):
    type: Literal["stdout", "stderr"]
    text: str


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    id: str
    command: str
    pid: int | None = None
    started_at: datetime


StreamEvent = Union[StatusEvent, OutputEvent]
DevStreamOutput = StreamEvent


class DevServerResult(BaseModel):
    """Normalized shape for dev server start/stop."""
    id: str
    command: str
    pid: int | None = None
    started_at: datetime
    running: bool = True
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None


# =============================================================================
# Filesystem
# =============================================================================

class FileInfo(BaseModel):
    name: str
    path: str = Field(..., description="Path relative to the workspace root")
    type: FileType
    size: int = 0
    modified_time: datetime | None = None


# =============================================================================
# Search
# =============================================================================

class GrepOptions(BaseModel):
    path: str = Field(default=".", description="File or directory to search")
    include: list[str] = Field(default_factory=list, description="Glob patterns to include")
    exclude: list[str] = Field(default_factory=list, description="Glob patterns to skip")
    ignore_case: bool = False
    show_line_numbers: bool = False
    max_results: int | None = Field(default=None, ge=1)
    context: int = Field(default=0, ge=0, description="Lines of context around matches")
    whole_word: bool = False
    recursive: bool = True
    show_files_only: bool = False
    sort_by_time: bool = False


class Highlight(BaseModel):
    start: int
    end: int


class GrepLineMatch(BaseModel):
    line: str
    line_number: int | None = None
    highlights: list[Highlight] = Field(default_factory=list)
    is_context: bool = False


class GrepFileResult(BaseModel):
    filename: str
    matches: list[GrepLineMatch] | None = None
    match_count: int = 0
    modified_time: datetime | None = None


class GrepResult(BaseModel):
    files: list[GrepFileResult] = Field(default_factory=list)
    duration_ms: int = 0
    total_files: int = 0
    total_matches: int = 0


# =============================================================================
# Git
# =============================================================================

class GitRename(BaseModel):
    source: str
    target: str


class GitStatus(BaseModel):
    branch: str | None = None
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    staged: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)
    renamed: list[GitRename] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.modified or self.deleted or self.untracked or self.renamed)


class GitResult(BaseModel):
    success: bool
    output: str = ""
    error: str | None = None
    commit_hash: str | None = None
    skipped: bool = False


class GitLogEntry(BaseModel):
    hash: str
    author: str
    email: str
    date: str
    message: str


# =============================================================================
# Edits
# =============================================================================

class EditResult(BaseModel):
    commit_hash: str | None = None
    replacements: int = 0
    created: bool = False
    strategy: str | None = None


# =============================================================================
# Tool boundary
# =============================================================================

class ToolResult(BaseModel):
    """Structured result returned to the agent by every sandbox tool."""
    status: Literal["done", "error"]
    message: str = ""
    details: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    latency_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.status == "done"
