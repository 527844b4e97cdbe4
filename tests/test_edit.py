"""Tests for file edits that commit every change."""

from __future__ import annotations

import os

import pytest

from agentbox.errors import AmbiguousMatchError, InvalidArgumentError, NotFoundError
from agentbox.tools.edit import commit_type

from conftest import requires_git


@pytest.mark.parametrize(
    ("description", "file_path", "expected"),
    [
        ("created", "src/app.py", "feat"),
        ("edited", "src/app.py", "chore"),
        ("edited (replace all)", "README.md", "chore"),
        ("overwritten", "styles.css", "chore"),
        ("executed: npm install", "package.json", "chore"),
        ("fix crash on empty input", "src/app.py", "fix"),
        ("add login page", "src/login.tsx", "feat"),
        ("remove dead code", "src/app.py", "chore"),
        ("tweak", "tests/test_app.py", "test"),
        ("tweak", "src/app.spec.ts", "test"),
        ("tweak", "docs/guide.md", "docs"),
        ("tweak", "theme.scss", "style"),
        ("tweak", "main.go", "chore"),
    ],
)
def test_commit_type(description, file_path, expected):
    assert commit_type(description, file_path) == expected


@requires_git
async def test_edit_creates_missing_file_and_commits(local_sandbox, workspace):
    result = await local_sandbox.edit("notes/hello.txt", "", "hello")

    with open(os.path.join(workspace, "notes", "hello.txt")) as f:
        assert f.read() == "hello"
    assert result.created
    assert result.commit_hash and len(result.commit_hash) == 40

    log = await local_sandbox.git.log()
    assert log[0].hash == result.commit_hash
    assert log[0].message == "feat(hello.txt): created"


async def test_edit_equal_strings_rejected_without_write(local_sandbox, workspace):
    with pytest.raises(InvalidArgumentError):
        await local_sandbox.edit("a.txt", "x", "x")
    assert not os.path.exists(os.path.join(workspace, "a.txt"))


async def test_edit_requires_path(local_sandbox):
    with pytest.raises(InvalidArgumentError):
        await local_sandbox.edit("", "a", "b")


async def test_edit_missing_file_with_old_string(local_sandbox):
    with pytest.raises(NotFoundError):
        await local_sandbox.edit("missing.txt", "a", "b")


async def test_ambiguous_edit_leaves_file_unchanged(local_sandbox):
    await local_sandbox.fs.write_file("code.py", "foo()\nfoo()\n")

    with pytest.raises(AmbiguousMatchError):
        await local_sandbox.edit("code.py", "foo", "bar")

    assert await local_sandbox.fs.read_file("code.py") == "foo()\nfoo()\n"


@requires_git
async def test_replace_all_rewrites_every_occurrence(local_sandbox):
    await local_sandbox.fs.write_file("code.py", "foo()\nfoo()\n")

    result = await local_sandbox.edit("code.py", "foo", "bar", replace_all=True)

    content = await local_sandbox.fs.read_file("code.py")
    assert content == "bar()\nbar()\n"
    assert content.count("bar") == 2
    assert result.replacements == 2
    assert result.commit_hash

    log = await local_sandbox.git.log()
    assert log[0].message == "chore(code.py): edited (replace all)"


@requires_git
async def test_successive_edits_create_successive_commits(local_sandbox):
    first = await local_sandbox.edit("app.py", "", "x = 1\n")
    second = await local_sandbox.edit("app.py", "x = 1", "x = 2")

    assert first.commit_hash != second.commit_hash
    assert second.strategy == "simple"
    assert await local_sandbox.fs.read_file("app.py") == "x = 2\n"
    assert len(await local_sandbox.git.log()) == 2
