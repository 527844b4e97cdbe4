"""Shell access for a sandbox.

``Bash.run`` takes an explicit ``(command, args)`` pair; args are shell
quoted so they are never interpolated. ``Bash.with_options`` returns a
builder bound to a set of options, which is the usual way tools issue
several commands against the same cwd/env.
"""

from __future__ import annotations

import logging
import re
import shlex
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Sequence

from agentbox.errors import NotFoundError
from agentbox.execution.engine import CommandOptions, ExecutionEngine, OutputCallback
from agentbox.schemas import (
    CommandHandle,
    CommandResult,
    FileType,
    GrepFileResult,
    GrepLineMatch,
    GrepOptions,
    GrepResult,
    Highlight,
    StreamEvent,
)
from agentbox.tools.filesystem import FileSystem


logger = logging.getLogger(__name__)

CommandBuilder = Callable[..., Awaitable[CommandResult]]


def build_command(command: str, args: Sequence[Any] | None = None) -> str:
    """Join a command with shell-quoted arguments."""
    if not args:
        return command
    return f"{command} {shlex.join(str(a) for a in args)}"


def compile_search_pattern(pattern: str, ignore_case: bool = False, whole_word: bool = False) -> re.Pattern:
    """Literal search pattern, optionally bounded to whole words."""
    source = re.escape(pattern)
    if whole_word:
        source = rf"\b{source}\b"
    return re.compile(source, re.IGNORECASE if ignore_case else 0)


def line_highlights(regex: re.Pattern, line: str) -> list[Highlight]:
    return [Highlight(start=m.start(), end=m.end()) for m in regex.finditer(line) if m.end() > m.start()]


class Bash(ABC):
    """Shell API over an execution engine."""

    def __init__(self, engine: ExecutionEngine, fs: FileSystem):
        self.engine = engine
        self.fs = fs

    @property
    def supports_kill(self) -> bool:
        return self.engine.supports_kill

    def _options(
        self,
        *,
        id: str | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        timeout: float | None = None,
        request_timeout_ms: int | None = None,
    ) -> CommandOptions:
        return CommandOptions(
            id=id,
            cwd=self.fs.resolve_path(cwd) if cwd else None,
            env=dict(env or {}),
            timeout=timeout,
            request_timeout_ms=request_timeout_ms,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
        )

    async def run(self, command: str, args: Sequence[Any] | None = None, **options: Any) -> CommandResult:
        """Run a command to completion.

        Args:
            command: Command text, passed to the shell as is
            args: Arguments appended after shell quoting
            **options: id, cwd, env, on_stdout, on_stderr, timeout, request_timeout_ms

        Returns:
            CommandResult; a non-zero exit is reported, never raised
        """
        return await self.engine.run(build_command(command, args), self._options(**options))

    def stream(self, command: str, args: Sequence[Any] | None = None, **options: Any) -> AsyncIterator[StreamEvent]:
        """Run a command and yield a status event followed by its output."""
        return self.engine.run_streaming(build_command(command, args), self._options(**options))

    async def start(self, command: str, args: Sequence[Any] | None = None, **options: Any) -> CommandHandle:
        return await self.engine.start(build_command(command, args), self._options(**options))

    async def stop(self, command_id: str) -> CommandResult:
        return await self.engine.stop(command_id)

    def with_options(self, **options: Any) -> CommandBuilder:
        """Return ``run`` bound to ``options``; per-call options win."""
        def builder(command: str, args: Sequence[Any] | None = None, **overrides: Any) -> Awaitable[CommandResult]:
            merged = {**options, **overrides}
            if "env" in options and "env" in overrides:
                merged["env"] = {**options["env"], **overrides["env"]}
            return self.run(command, args, **merged)
        return builder

    async def grep(self, pattern: str, options: GrepOptions | None = None, **kwargs: Any) -> GrepResult:
        """Search file contents for a literal pattern."""
        opts = options or GrepOptions(**kwargs)
        start = time.perf_counter()
        files = await self._grep(pattern, opts)
        if opts.sort_by_time:
            files.sort(key=lambda f: f.modified_time.timestamp() if f.modified_time else 0, reverse=True)
        return GrepResult(
            files=files,
            duration_ms=int((time.perf_counter() - start) * 1000),
            total_files=len(files),
            total_matches=sum(f.match_count for f in files),
        )

    @abstractmethod
    async def _grep(self, pattern: str, opts: GrepOptions) -> list[GrepFileResult]:
        ...


# =============================================================================
# Local
# =============================================================================

class LocalBash(Bash):
    """Searches in-process; runs commands through the local engine."""

    async def _grep(self, pattern: str, opts: GrepOptions) -> list[GrepFileResult]:
        regex = compile_search_pattern(pattern, opts.ignore_case, opts.whole_word)
        root = self.fs.resolve_path(opts.path)
        root_rel = self.fs.relative_path(root)

        if await self.fs.exists(root_rel or ".") and (await self.fs.stat(root_rel or ".")).type == FileType.FILE:
            candidates = [root_rel]
        else:
            includes = opts.include or ["**/*" if opts.recursive else "*"]
            if not opts.recursive:
                includes = [p.replace("**", "*") for p in includes]
            found = await self.fs.glob(includes, cwd=root_rel or ".", exclude=[*opts.exclude, ".git"])
            candidates = [f"{root_rel}/{f}" if root_rel else f for f in found]

        results: list[GrepFileResult] = []
        collected = 0
        for rel in candidates:
            if opts.max_results is not None and collected >= opts.max_results:
                break
            try:
                content = await self.fs.read_file(rel)
            except (OSError, NotFoundError) as e:
                logger.debug(f"Skipping unreadable file {rel}: {e}")
                continue

            lines = content.splitlines()
            matches: list[GrepLineMatch] = []
            emitted: set[int] = set()
            for index, line in enumerate(lines):
                if opts.max_results is not None and collected >= opts.max_results:
                    break
                if not line:
                    continue
                highlights = line_highlights(regex, line)
                if not highlights:
                    continue

                if opts.context and not opts.show_files_only:
                    for ctx in range(max(0, index - opts.context), index):
                        if ctx not in emitted:
                            emitted.add(ctx)
                            matches.append(_context_line(lines, ctx, opts))
                emitted.add(index)
                matches.append(GrepLineMatch(
                    line=line,
                    line_number=index + 1 if opts.show_line_numbers else None,
                    highlights=highlights,
                ))
                collected += 1
                if opts.show_files_only:
                    break
                if opts.context:
                    for ctx in range(index + 1, min(len(lines), index + 1 + opts.context)):
                        if ctx not in emitted and not line_highlights(regex, lines[ctx]):
                            emitted.add(ctx)
                            matches.append(_context_line(lines, ctx, opts))

            match_count = sum(1 for m in matches if not m.is_context)
            if match_count:
                stat = await self.fs.stat(rel)
                results.append(GrepFileResult(
                    filename=rel,
                    matches=None if opts.show_files_only else matches,
                    match_count=match_count,
                    modified_time=stat.modified_time,
                ))
        return results


def _context_line(lines: list[str], index: int, opts: GrepOptions) -> GrepLineMatch:
    return GrepLineMatch(
        line=lines[index],
        line_number=index + 1 if opts.show_line_numbers else None,
        is_context=True,
    )


# =============================================================================
# Remote
# =============================================================================

_GREP_LINE = re.compile(r"^(?P<file>.+?)(?P<sep>[:-])(?P<num>\d+)(?P=sep)(?P<line>.*)$")


class RemoteBash(Bash):
    """Runs ``grep`` inside the container and parses its output."""

    def build_grep_command(self, pattern: str, opts: GrepOptions) -> str:
        args = ["-F", "-H", "-n", "-I", "--exclude-dir=.git"]
        if opts.ignore_case:
            args.append("-i")
        if opts.show_files_only:
            args.append("-l")
        if opts.whole_word:
            args.append("-w")
        if opts.recursive:
            args.append("-r")
        if opts.context and not opts.show_files_only:
            args.extend(["-C", str(opts.context)])
        for item in opts.include:
            args.append(f"--include={item}")
        for item in opts.exclude:
            args.append(f"--exclude={item}")
            args.append(f"--exclude-dir={item}")
        path = self.fs.relative_path(self.fs.resolve_path(opts.path)) or "."
        return build_command("grep", [*args, "-e", pattern, "--", path])

    async def _grep(self, pattern: str, opts: GrepOptions) -> list[GrepFileResult]:
        command = self.build_grep_command(pattern, opts)
        result = await self.run(command, cwd="/")
        # grep exits 1 when nothing matched
        if result.exit_code == 1 and not result.stdout:
            return []
        if result.exit_code not in (0, 1):
            logger.warning(f"grep failed with exit {result.exit_code}: {result.stderr.strip()}")
            return []
        return parse_grep_output(result.stdout, pattern, opts)


def parse_grep_output(stdout: str, pattern: str, opts: GrepOptions) -> list[GrepFileResult]:
    """Parse ``grep -H -n`` output (with optional ``-C`` context) into file results."""
    regex = compile_search_pattern(pattern, opts.ignore_case, opts.whole_word)
    by_file: dict[str, list[GrepLineMatch]] = {}
    collected = 0

    for raw in stdout.splitlines():
        if not raw or raw == "--":
            continue
        if opts.show_files_only:
            by_file.setdefault(_clean_name(raw), [])
            collected += 1
        else:
            parsed = _GREP_LINE.match(raw)
            if parsed is None:
                continue
            is_context = parsed.group("sep") == "-"
            if not is_context and opts.max_results is not None and collected >= opts.max_results:
                break
            line = parsed.group("line")
            by_file.setdefault(_clean_name(parsed.group("file")), []).append(GrepLineMatch(
                line=line,
                line_number=int(parsed.group("num")) if opts.show_line_numbers else None,
                highlights=[] if is_context else line_highlights(regex, line),
                is_context=is_context,
            ))
            if not is_context:
                collected += 1
        if opts.max_results is not None and collected >= opts.max_results and opts.show_files_only:
            break

    files = []
    for filename, matches in by_file.items():
        count = sum(1 for m in matches if not m.is_context)
        files.append(GrepFileResult(
            filename=filename,
            matches=None if opts.show_files_only else matches,
            match_count=count if not opts.show_files_only else 1,
        ))
    return files


def _clean_name(name: str) -> str:
    return name[2:] if name.startswith("./") else name
