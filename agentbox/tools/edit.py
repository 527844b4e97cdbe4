"""File edits that commit every change.

- edit_file: locate and replace text with the replacer cascade, then commit
- commit_changes: stage one file and commit it with a Conventional Commit message
"""

from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from agentbox.errors import GitOperationError, InvalidArgumentError, NotFoundError
from agentbox.schemas import EditResult
from agentbox.tools.replacers import replace

if TYPE_CHECKING:
    from agentbox.backends.base import SandboxBackend


logger = logging.getLogger(__name__)

STYLE_EXTENSIONS = (".css", ".scss", ".less", ".sass")


def commit_type(description: str, file_path: str) -> str:
    """Conventional Commit type for a change to ``file_path``.

    The operation keyword wins over semantic keywords, which win over the
    kind of file that changed.
    """
    desc = description.lower()
    file_name = posixpath.basename(file_path.replace("\\", "/")).lower()

    if desc == "created":
        return "feat"
    if desc == "overwritten" or "edited" in desc or desc.startswith("executed:"):
        return "chore"

    if "fix" in desc or "bug" in desc:
        return "fix"
    if "add" in desc or "new" in desc:
        return "feat"
    if any(word in desc for word in ("remove", "delete", "update", "change")):
        return "chore"

    if "test" in file_name or ".spec." in file_name:
        return "test"
    if file_name.startswith("readme") or file_name.endswith(".md"):
        return "docs"
    if file_name.endswith(STYLE_EXTENSIONS):
        return "style"
    return "chore"


async def commit_changes(sandbox: "SandboxBackend", file_path: str, description: str) -> str | None:
    """Stage ``file_path``, commit it and push when a remote exists.

    Returns:
        The new commit hash, or ``None`` when there was nothing to commit

    Raises:
        GitOperationError: staging, committing or pushing failed
    """
    git = sandbox.git
    rel_path = sandbox.fs.relative_path(sandbox.fs.resolve_path(file_path))
    message = f"{commit_type(description, rel_path)}({posixpath.basename(rel_path)}): {description}"

    if not await git.is_repo():
        logger.info(f"Initializing git repository in {sandbox.fs.workspace}")
        init = await git.init()
        if not init.success:
            raise GitOperationError(f"Failed to initialize repository: {init.error}")
    await git.configure_author()

    added = await git.add(rel_path)
    if not added.success:
        raise GitOperationError(f"Failed to add file {rel_path}: {added.error}")

    committed = await git.commit(message)
    if not committed.success:
        raise GitOperationError(f"Failed to commit {rel_path}: {committed.error}")

    pushed = await git.push()
    if not pushed.success:
        raise GitOperationError(
            f"Failed to push changes for {rel_path}: {pushed.error}",
            details={"commit_hash": committed.commit_hash},
        )
    return committed.commit_hash


async def edit_file(
    sandbox: "SandboxBackend",
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
) -> EditResult:
    """Replace ``old_string`` with ``new_string`` in a file and commit it.

    An empty ``old_string`` on a missing or empty file creates it with
    ``new_string`` as its exact content. The file is only written once the
    target has been located unambiguously.

    Raises:
        InvalidArgumentError: strings are equal or ``file_path`` is empty
        NotFoundError: the file or the target text does not exist
        AmbiguousMatchError: the target occurs more than once and ``replace_all`` is false
    """
    if not file_path:
        raise InvalidArgumentError("filePath is required")
    if old_string == new_string:
        raise InvalidArgumentError("oldString and newString must be different")

    exists = await sandbox.fs.exists(file_path)
    content = await sandbox.fs.read_file(file_path) if exists else None

    if old_string == "" and not content:
        await sandbox.fs.write_file(file_path, new_string)
        commit_hash = await commit_changes(sandbox, file_path, "created")
        return EditResult(commit_hash=commit_hash, replacements=1, created=True)

    if content is None:
        raise NotFoundError(f"File not found: {file_path}", details={"path": file_path})

    outcome = replace(content, old_string, new_string, replace_all)
    await sandbox.fs.write_file(file_path, outcome.content)

    description = "edited (replace all)" if replace_all and outcome.replacements > 1 else "edited"
    commit_hash = await commit_changes(sandbox, file_path, description)
    logger.info(f"Edited {file_path}: {outcome.replacements} replacement(s) via {outcome.strategy}")
    return EditResult(
        commit_hash=commit_hash,
        replacements=outcome.replacements,
        strategy=outcome.strategy,
    )
