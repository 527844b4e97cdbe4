"""Git operations inside a sandbox workspace.

Every operation shells out through the sandbox's ``Bash`` so it works the
same way against a local directory and a remote container:
- init / clone / set_auth_token
- status (porcelain v1 with branch info), add, commit, reset
- push / pull (skipped when no remote is configured), fetch
- checkout, branches, create_branch, delete_branch
- log, diff, config, remotes
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Sequence

from agentbox.errors import GitOperationError
from agentbox.schemas import CommandResult, GitLogEntry, GitRename, GitResult, GitStatus
from agentbox.tools.bash import Bash


logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "agentbox"
DEFAULT_AUTHOR_EMAIL = "agentbox@users.noreply.github.com"

MAX_MESSAGE_LENGTH = 5000
MAX_SUBJECT_LENGTH = 72

_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"


def parse_status_porcelain(output: str) -> GitStatus:
    """Parse ``git status --porcelain=v1 --branch`` output."""
    status = GitStatus()

    for line in output.splitlines():
        if not line:
            continue
        if line.startswith("##"):
            match = re.match(r"## (.+?)(?:\.\.\.(\S+))?(?: \[(.+)\])?$", line)
            if not match:
                continue
            branch = match.group(1)
            no_commits = re.match(r"(?:No commits yet|Initial commit) on (.+)", branch)
            status.branch = no_commits.group(1) if no_commits else branch
            status.upstream = match.group(2)
            if match.group(3):
                ahead = re.search(r"ahead (\d+)", match.group(3))
                behind = re.search(r"behind (\d+)", match.group(3))
                status.ahead = int(ahead.group(1)) if ahead else 0
                status.behind = int(behind.group(1)) if behind else 0
            continue

        code = line[:2]
        filename = line[3:]
        index_status, worktree_status = code[0], code[1]

        if code == "??":
            status.untracked.append(filename)
            continue
        if index_status == "R":
            source, _, target = filename.partition(" -> ")
            if target:
                status.renamed.append(GitRename(source=source, target=target))
                filename = target
        if index_status in ("A", "M", "D", "R"):
            status.staged.append(filename)
        if index_status == "M" or worktree_status == "M":
            status.modified.append(filename)
        if index_status == "D" or worktree_status == "D":
            status.deleted.append(filename)

    return status


def split_commit_message(message: str) -> list[str]:
    """Split a message into paragraphs, enforcing subject and body limits."""
    if len(message) > MAX_MESSAGE_LENGTH:
        logger.warning(f"Commit message truncated to {MAX_MESSAGE_LENGTH} characters")
        message = message[:MAX_MESSAGE_LENGTH]

    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", message) if p.strip()]
    if paragraphs and len(paragraphs[0]) > MAX_SUBJECT_LENGTH:
        logger.warning(f"Commit subject truncated to {MAX_SUBJECT_LENGTH} characters")
        paragraphs[0] = paragraphs[0][:MAX_SUBJECT_LENGTH - 3] + "..."
    return paragraphs


def _to_result(result: CommandResult) -> GitResult:
    output = (result.stdout or "").strip()
    if result.exit_code == 0:
        return GitResult(success=True, output=output)
    return GitResult(
        success=False,
        output=output,
        error=(result.stderr or result.error or "").strip() or f"git exited with code {result.exit_code}",
    )


class Git:
    """Git API over a sandbox shell."""

    def __init__(
        self,
        bash: Bash,
        author_name: str | None = None,
        author_email: str | None = None,
        auth_token: str | None = None,
    ):
        self.bash = bash
        self.author_name = author_name or DEFAULT_AUTHOR_NAME
        self.author_email = author_email or DEFAULT_AUTHOR_EMAIL
        self._auth_token = auth_token or None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _env(self) -> dict[str, str]:
        env = {"GIT_TERMINAL_PROMPT": "0"}
        if self._auth_token:
            # Passed through git's env config so the token never shows up in argv.
            basic = base64.b64encode(f"x-access-token:{self._auth_token}".encode()).decode()
            env.update({
                "GIT_CONFIG_COUNT": "1",
                "GIT_CONFIG_KEY_0": "http.extraHeader",
                "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
            })
        return env

    async def run(self, args: Sequence[str], cwd: str | None = None, timeout: float | None = None) -> CommandResult:
        """Run ``git <args>`` in the workspace (or ``cwd`` inside it)."""
        return await self.bash.run("git", list(args), cwd=cwd, env=self._env(), timeout=timeout)

    async def _checked(self, args: Sequence[str], cwd: str | None = None) -> str:
        result = await self.run(args, cwd=cwd)
        if result.exit_code != 0:
            raise GitOperationError(
                f"git {args[0]} failed: {(result.stderr or result.error or '').strip()}",
                details={"exit_code": result.exit_code},
            )
        return result.stdout

    # ------------------------------------------------------------------
    # Repository
    # ------------------------------------------------------------------

    async def init(self, initial_branch: str | None = None, bare: bool = False) -> GitResult:
        args = ["init"]
        if initial_branch:
            args.append(f"--initial-branch={initial_branch}")
        if bare:
            args.append("--bare")
        return _to_result(await self.run(args))

    async def is_repo(self, path: str | None = None) -> bool:
        """True when the workspace (or ``path``) is itself a repository root."""
        result = await self.run(["rev-parse", "--git-dir"], cwd=path)
        return result.exit_code == 0 and result.stdout.strip() == ".git"

    async def clone(
        self,
        url: str,
        directory: str | None = None,
        branch: str | None = None,
        depth: int | None = None,
        recursive: bool = False,
    ) -> GitResult:
        args = ["clone", url]
        if directory:
            args.append(directory)
        if branch:
            args.extend(["--branch", branch])
        if depth:
            args.extend(["--depth", str(depth)])
        if recursive:
            args.append("--recursive")
        logger.info(f"Cloning {url}")
        return _to_result(await self.run(args))

    async def set_auth_token(self, token: str | None) -> None:
        """Use ``token`` for HTTPS remotes; ``None`` clears it."""
        self._auth_token = token or None

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    async def status(self, path: str | None = None) -> GitStatus:
        output = await self._checked(["status", "--porcelain=v1", "--branch"], cwd=path)
        return parse_status_porcelain(output)

    async def add(self, files: str | Sequence[str] = ".", force: bool = False, update: bool = False) -> GitResult:
        paths = [files] if isinstance(files, str) else list(files)
        args = ["add"]
        if force:
            args.append("--force")
        if update:
            args.append("--update")
        args.extend(["--", *paths])
        return _to_result(await self.run(args))

    async def commit(
        self,
        message: str,
        all: bool = False,
        amend: bool = False,
        allow_empty: bool = False,
        no_verify: bool = False,
        author: tuple[str, str] | None = None,
    ) -> GitResult:
        """Commit staged changes and return the new commit hash.

        "Nothing to commit" is reported as success without a hash.
        """
        args = ["commit"]
        if all:
            args.append("--all")
        if amend:
            args.append("--amend")
        if allow_empty:
            args.append("--allow-empty")
        if no_verify:
            args.append("--no-verify")
        if author:
            args.append(f"--author={author[0]} <{author[1]}>")
        for paragraph in split_commit_message(message) or ["Update"]:
            args.extend(["-m", paragraph])

        result = await self.run(args)
        if result.exit_code != 0:
            combined = f"{result.stdout}\n{result.stderr}"
            if "nothing to commit" in combined or "no changes added to commit" in combined:
                return GitResult(success=True, output="Nothing to commit", skipped=True)
            return _to_result(result)

        commit_hash = (await self._checked(["rev-parse", "HEAD"])).strip()
        logger.info(f"Committed {commit_hash[:8]}: {message.splitlines()[0] if message else ''}")
        return GitResult(success=True, output=result.stdout.strip(), commit_hash=commit_hash)

    async def reset(self, target: str = "HEAD", mode: str = "mixed", paths: Sequence[str] | None = None) -> GitResult:
        if paths:
            return _to_result(await self.run(["reset", target, "--", *paths]))
        if mode not in ("soft", "mixed", "hard"):
            raise GitOperationError(f"Unsupported reset mode: {mode}", code="INVALID_ARGUMENT")
        return _to_result(await self.run(["reset", f"--{mode}", target]))

    async def diff(self, staged: bool = False, path: str | None = None, stat: bool = False) -> str:
        args = ["diff"]
        if staged:
            args.append("--staged")
        if stat:
            args.append("--stat")
        if path:
            args.extend(["--", path])
        return await self._checked(args)

    async def log(self, max_count: int = 10, path: str | None = None) -> list[GitLogEntry]:
        args = [
            "log",
            f"-{max_count}",
            f"--format=%H{_FIELD_SEP}%an{_FIELD_SEP}%ae{_FIELD_SEP}%aI{_FIELD_SEP}%s{_RECORD_SEP}",
        ]
        if path:
            args.extend(["--", path])
        result = await self.run(args)
        if result.exit_code != 0:
            # Empty repository
            if "does not have any commits" in result.stderr:
                return []
            raise GitOperationError(f"git log failed: {result.stderr.strip()}")

        entries = []
        for record in result.stdout.split(_RECORD_SEP):
            fields = record.strip().split(_FIELD_SEP)
            if len(fields) != 5:
                continue
            entries.append(GitLogEntry(
                hash=fields[0],
                author=fields[1],
                email=fields[2],
                date=fields[3],
                message=fields[4],
            ))
        return entries

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    async def checkout(self, target: str, create: bool = False, force: bool = False, file: bool = False) -> GitResult:
        args = ["checkout"]
        if create:
            args.append("-b")
        if force:
            args.append("--force")
        if file:
            args.append("--")
        args.append(target)
        return _to_result(await self.run(args))

    async def branches(self) -> list[str]:
        output = await self._checked(["branch", "--format=%(refname:short)"])
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def create_branch(self, name: str, checkout: bool = True) -> GitResult:
        if checkout:
            return await self.checkout(name, create=True)
        return _to_result(await self.run(["branch", name]))

    async def delete_branch(self, name: str, force: bool = False) -> GitResult:
        return _to_result(await self.run(["branch", "-D" if force else "-d", name]))

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    async def remotes(self) -> list[str]:
        result = await self.run(["remote"])
        if result.exit_code != 0:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def _sync(self, operation: str, args: list[str]) -> GitResult:
        if not await self.remotes():
            logger.info(f"Skipping git {operation}: no remote configured")
            return GitResult(
                success=True,
                output=f"No remote configured, skipped {operation}",
                skipped=True,
            )
        return _to_result(await self.run([operation, *args]))

    async def push(
        self,
        remote: str | None = None,
        branch: str | None = None,
        force: bool = False,
        set_upstream: bool = False,
        tags: bool = False,
    ) -> GitResult:
        args = []
        if set_upstream:
            args.append("--set-upstream")
        if force:
            args.append("--force")
        if tags:
            args.append("--tags")
        args.extend(a for a in (remote, branch) if a)
        return await self._sync("push", args)

    async def pull(self, remote: str | None = None, branch: str | None = None, rebase: bool = False) -> GitResult:
        args = ["--rebase"] if rebase else []
        args.extend(a for a in (remote, branch) if a)
        return await self._sync("pull", args)

    async def fetch(self, remote: str | None = None, all: bool = False, prune: bool = False, tags: bool = False) -> GitResult:
        args = ["fetch"]
        if all:
            args.append("--all")
        elif remote:
            args.append(remote)
        if prune:
            args.append("--prune")
        if tags:
            args.append("--tags")
        return _to_result(await self.run(args))

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    async def config(self, key: str | None = None, value: str | None = None, scope: str = "local") -> GitResult:
        """List config with no key, read with a key, write with key and value."""
        args = ["config", f"--{scope}"]
        if key is None:
            args.append("--list")
        elif value is None:
            args.extend(["--get", key])
        else:
            args.extend([key, value])
        return _to_result(await self.run(args))

    async def configure_author(self) -> None:
        await self.config("user.name", self.author_name)
        await self.config("user.email", self.author_email)
