"""Tests for the shell API and grep on both backends."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from agentbox.execution.remote import RemoteExecutionEngine
from agentbox.schemas import GrepOptions, OutputEvent, StatusEvent
from agentbox.tools.bash import RemoteBash, build_command, parse_grep_output
from agentbox.tools.filesystem import RemoteFileSystem

from conftest import FakeE2BSandbox


def test_build_command_quotes_arguments():
    assert build_command("ls") == "ls"
    assert build_command("git", ["commit", "-m", "it's done"]) == "git commit -m 'it'\"'\"'s done'"


async def test_run_passes_args_without_interpolation(local_sandbox):
    result = await local_sandbox.bash.run("printf", ["%s", "a b; echo injected"])
    assert result.stdout == "a b; echo injected"


async def test_with_options_binds_cwd_and_merges_env(local_sandbox):
    await local_sandbox.fs.mkdir("sub")
    run = local_sandbox.bash.with_options(cwd="sub", env={"A": "1"})

    result = await run('printf "$A$B "; pwd', env={"B": "2"})

    assert result.stdout.startswith("12 ")
    assert result.stdout.strip().endswith("/sub")


async def test_stream_through_bash(local_sandbox):
    events = [e async for e in local_sandbox.bash.stream("echo streamed")]
    assert isinstance(events[0], StatusEvent)
    assert "".join(e.text for e in events if isinstance(e, OutputEvent)) == "streamed\n"


# =============================================================================
# Local grep
# =============================================================================

@pytest.fixture
async def grep_tree(local_sandbox):
    fs = local_sandbox.fs
    await fs.write_file("README.md", "TODO: docs\nnothing here\n")
    await fs.write_file("src/app.py", "def foo():\n    return 'TODO'\n# todo later\nfoobar = foo\n")
    await fs.write_file("src/util.py", "x = 1\n")
    return local_sandbox


async def test_grep_literal_case_sensitive(grep_tree):
    result = await grep_tree.bash.grep("TODO")

    assert result.total_files == 2
    assert result.total_matches == 2
    assert sorted(f.filename for f in result.files) == ["README.md", "src/app.py"]


async def test_grep_ignore_case_and_line_numbers(grep_tree):
    result = await grep_tree.bash.grep("todo", ignore_case=True, show_line_numbers=True, path="src")

    assert [f.filename for f in result.files] == ["src/app.py"]
    matches = result.files[0].matches
    assert [(m.line_number, m.line) for m in matches] == [(2, "    return 'TODO'"), (3, "# todo later")]
    assert matches[1].highlights[0].start == 2
    assert matches[1].highlights[0].end == 6


async def test_grep_whole_word(grep_tree):
    result = await grep_tree.bash.grep("foo", whole_word=True)
    lines = [m.line for m in result.files[0].matches]
    assert lines == ["def foo():", "foobar = foo"]
    assert [h.start for h in result.files[0].matches[1].highlights] == [9]


async def test_grep_include_exclude(grep_tree):
    only_md = await grep_tree.bash.grep("TODO", include=["*.md"])
    assert [f.filename for f in only_md.files] == ["README.md"]

    no_src = await grep_tree.bash.grep("TODO", exclude=["src"])
    assert [f.filename for f in no_src.files] == ["README.md"]


async def test_grep_files_only_and_max_results(grep_tree):
    files_only = await grep_tree.bash.grep("o", show_files_only=True)
    assert all(f.matches is None and f.match_count == 1 for f in files_only.files)

    limited = await grep_tree.bash.grep("o", max_results=1)
    assert limited.total_matches == 1


async def test_grep_context_lines(grep_tree):
    result = await grep_tree.bash.grep("return", context=1, show_line_numbers=True, path="src/app.py")

    matches = result.files[0].matches
    assert [(m.line_number, m.is_context) for m in matches] == [(1, True), (2, False), (3, True)]
    assert result.files[0].match_count == 1


async def test_grep_skips_git_directory(grep_tree):
    await grep_tree.fs.write_file(".git/HEAD", "TODO in git\n")
    result = await grep_tree.bash.grep("TODO")
    assert not any(f.filename.startswith(".git") for f in result.files)


async def test_grep_accepts_options_model(grep_tree):
    result = await grep_tree.bash.grep("x = 1", GrepOptions(include=["**/*.py"]))
    assert [f.filename for f in result.files] == ["src/util.py"]


# =============================================================================
# Remote grep
# =============================================================================

@pytest.fixture
def remote_bash():
    sandbox = FakeE2BSandbox("sbx-grep")

    async def get_sandbox():
        return sandbox

    fs = RemoteFileSystem("/home/user/workspace", get_sandbox)
    engine = RemoteExecutionEngine(get_sandbox, default_cwd=fs.workspace)
    return RemoteBash(engine, fs), sandbox


def test_remote_grep_command_flags(remote_bash):
    bash, _ = remote_bash
    opts = GrepOptions(
        path="src",
        include=["*.py"],
        exclude=["build"],
        ignore_case=True,
        whole_word=True,
        context=2,
    )

    command = bash.build_grep_command("a.b", opts)

    assert command.startswith("grep -F -H -n -I --exclude-dir=.git -i -w -r -C 2")
    assert "'--include=*.py'" in command
    assert "--exclude=build --exclude-dir=build" in command
    assert command.endswith("-e a.b -- src")


async def test_remote_grep_runs_in_workspace_and_parses(remote_bash):
    bash, sandbox = remote_bash
    sandbox.commands.handler = lambda cmd, kw: SimpleNamespace(
        exit_code=0,
        stdout="./src/app.py:2:    return 'TODO'\n./README.md:1:TODO: docs\n",
        stderr="",
        error=None,
    )

    result = await bash.grep("TODO", show_line_numbers=True)

    command, kwargs = sandbox.commands.calls[0]
    assert command.startswith("grep ")
    assert kwargs["cwd"] == "/home/user/workspace"
    assert [f.filename for f in result.files] == ["src/app.py", "README.md"]
    assert result.files[0].matches[0].line_number == 2
    assert result.total_matches == 2


async def test_remote_grep_no_match_exit_code(remote_bash):
    bash, sandbox = remote_bash
    sandbox.commands.handler = lambda cmd, kw: SimpleNamespace(exit_code=1, stdout="", stderr="", error=None)

    result = await bash.grep("absent")
    assert result.files == []
    assert result.total_matches == 0


def test_parse_grep_output_with_context_and_files_only():
    output = "a.py-1-before\na.py:2:hit here\na.py-3-after\n--\nb.py:7:hit again\n"
    files = parse_grep_output(output, "hit", GrepOptions(context=1, show_line_numbers=True))

    assert [f.filename for f in files] == ["a.py", "b.py"]
    assert [m.is_context for m in files[0].matches] == [True, False, True]
    assert files[0].match_count == 1
    assert files[1].matches[0].highlights[0].start == 0

    names = parse_grep_output("a.py\n./b.py\n", "hit", GrepOptions(show_files_only=True))
    assert [(f.filename, f.matches, f.match_count) for f in names] == [("a.py", None, 1), ("b.py", None, 1)]
