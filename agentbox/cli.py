"""CLI entrypoint (Typer).

Commands resolve a sandbox from settings (``SANDBOX_BACKEND``,
``SANDBOX_WORKSPACE_PATH``, ``E2B_API_KEY``, ``REDIS_URL``...) and run a
single tool against it:

    agentbox run "npm test"
    agentbox grep TODO --include "*.py"
    agentbox edit src/app.py --old "foo" --new "bar"
    agentbox status
    agentbox dev "npm run dev" --port 3000
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional

import typer

from agentbox.agent import tools
from agentbox.backends.base import SandboxBackend
from agentbox.config import get_settings
from agentbox.errors import SandboxError
from agentbox.resolver import SandboxResolver
from agentbox.schemas import OutputEvent, SandboxConfig, StatusEvent, ToolResult

app = typer.Typer(help="Run commands, searches and edits inside an agentbox sandbox.")

logger = logging.getLogger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    workspace: Optional[str] = typer.Option(None, "--workspace", "-w", help="Sandbox workspace path"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="local or remote"),
    sandbox_id: Optional[str] = typer.Option(None, "--sandbox-id", help="Reuse an existing sandbox"),
):
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    overrides: dict[str, Any] = {}
    if workspace:
        overrides["workspace_path"] = workspace
    if backend:
        overrides["backend"] = backend
    if sandbox_id:
        overrides["sandbox_id"] = sandbox_id
    ctx.obj = SandboxConfig.from_settings(settings, **overrides)


def _with_sandbox(ctx: typer.Context, action: Callable[[SandboxBackend], Awaitable[Any]], keep: bool = False) -> Any:
    """Resolve the sandbox, run ``action`` and release the sandbox afterwards.

    ``keep`` leaves a remote container running so its id can be reused.
    """
    config: SandboxConfig = ctx.obj

    async def _run() -> Any:
        resolver = SandboxResolver()
        try:
            sandbox = await resolver.resolve(config)
            return await action(sandbox)
        finally:
            if keep:
                await resolver.close()
            else:
                await resolver.dispose()

    try:
        return asyncio.run(_run())
    except SandboxError as e:
        typer.secho(f"[{e.code}] {e.message}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _report(result: ToolResult, show_metadata: bool = False) -> None:
    if result.ok:
        if result.message:
            typer.echo(result.message)
        if show_metadata and result.metadata:
            typer.echo(json.dumps(result.metadata, indent=2, default=str))
        return
    typer.secho(result.message, fg=typer.colors.RED, err=True)
    stderr = result.details.get("stderr")
    if stderr:
        typer.echo(stderr, err=True)
    raise typer.Exit(code=result.details.get("exit_code") or 1)


@app.command()
def run(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Shell command to run"),
    cwd: Optional[str] = typer.Option(None, "--cwd", help="Working directory inside the workspace"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout in seconds"),
    stream: bool = typer.Option(False, "--stream", help="Print output as it is produced"),
):
    """Run a shell command in the sandbox."""
    if not stream:
        _report(_with_sandbox(ctx, lambda sb: tools.bash(sb, command, cwd=cwd, timeout=timeout)))
        return

    async def _stream(sandbox: SandboxBackend) -> None:
        async for event in sandbox.bash.stream(command, cwd=cwd, timeout=timeout):
            if isinstance(event, StatusEvent):
                logger.info(f"Started '{event.id}' (pid {event.pid})")
            elif isinstance(event, OutputEvent):
                typer.echo(event.text, nl=False, err=event.type == "stderr")

    _with_sandbox(ctx, _stream)


@app.command()
def grep(
    ctx: typer.Context,
    pattern: str = typer.Argument(..., help="Literal text to search for"),
    path: str = typer.Option(".", "--path", help="File or directory to search"),
    include: list[str] = typer.Option([], "--include", help="Glob of files to search"),
    exclude: list[str] = typer.Option([], "--exclude", help="Glob of files to skip"),
    ignore_case: bool = typer.Option(False, "--ignore-case", "-i"),
    whole_word: bool = typer.Option(False, "--word", "-w"),
    files_only: bool = typer.Option(False, "--files-with-matches", "-l"),
    context: int = typer.Option(0, "--context", "-C"),
    max_results: Optional[int] = typer.Option(None, "--max-results"),
):
    """Search file contents in the sandbox workspace."""
    options = {
        "path": path,
        "include": include,
        "exclude": exclude,
        "ignore_case": ignore_case,
        "whole_word": whole_word,
        "show_files_only": files_only,
        "context": context,
        "max_results": max_results,
    }
    _report(_with_sandbox(ctx, lambda sb: tools.grep(sb, pattern, **options)))


@app.command()
def edit(
    ctx: typer.Context,
    file_path: str = typer.Argument(..., help="File to edit, relative to the workspace"),
    old: str = typer.Option("", "--old", help="Text to replace; empty creates the file"),
    new: str = typer.Option(..., "--new", help="Replacement text"),
    replace_all: bool = typer.Option(False, "--all", help="Replace every occurrence"),
):
    """Replace text in a file and commit the change."""
    _report(
        _with_sandbox(ctx, lambda sb: tools.edit_file(sb, file_path, old, new, replace_all)),
        show_metadata=True,
    )


@app.command()
def status(ctx: typer.Context):
    """Show sandbox status, keeping a remote sandbox alive for reuse."""

    async def _status(sandbox: SandboxBackend) -> None:
        result = await sandbox.get_status()
        typer.echo(result.model_dump_json(indent=2))

    _with_sandbox(ctx, _status, keep=True)


@app.command()
def dev(
    ctx: typer.Context,
    command: str = typer.Argument(..., help="Dev server command"),
    id: str = typer.Option("dev", "--id", help="Command id"),
    port: Optional[int] = typer.Option(None, "--port", help="Port to print a public URL for"),
):
    """Run a dev server in the foreground until interrupted."""

    async def _dev(sandbox: SandboxBackend) -> None:
        if port is not None:
            host = sandbox.dev.get_host(port)
            if host:
                typer.secho(f"Listening on {host}", fg=typer.colors.GREEN)
        try:
            async for event in sandbox.dev.start_dev(command, id=id, stream=True):
                if isinstance(event, OutputEvent):
                    typer.echo(event.text, nl=False, err=event.type == "stderr")
        finally:
            if sandbox.bash.engine.is_running(id):
                await sandbox.dev.stop_dev(id)

    try:
        _with_sandbox(ctx, _dev)
    except KeyboardInterrupt:
        typer.echo("Stopped.")


if __name__ == "__main__":
    app()
