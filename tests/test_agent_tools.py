"""Tests for the agent-facing tool wrappers."""

from __future__ import annotations

from agentbox.agent import tools

from conftest import requires_git


async def test_read_file_tool(local_sandbox):
    await local_sandbox.fs.write_file("a.txt", "content")

    result = await tools.read_file(local_sandbox, "a.txt")

    assert result.ok
    assert result.message == "content"
    assert result.metadata["size"] == 7
    assert result.latency_ms is not None


async def test_errors_become_structured_results(local_sandbox):
    missing = await tools.read_file(local_sandbox, "nope.txt")
    assert missing.status == "error"
    assert missing.details["code"] == "NOT_FOUND"

    escaped = await tools.read_file(local_sandbox, "../../etc/passwd")
    assert escaped.details["code"] == "PATH_ESCAPE"

    stopped = await tools.stop_dev(local_sandbox, "ghost")
    assert stopped.details["code"] == "COMMAND_NOT_RUNNING"
    assert stopped.details["id"] == "ghost"


async def test_edit_tool_reports_invalid_and_ambiguous(local_sandbox):
    same = await tools.edit_file(local_sandbox, "a.py", "x", "x")
    assert same.details["code"] == "INVALID_ARGUMENT"

    await local_sandbox.fs.write_file("a.py", "x\nx\n")
    ambiguous = await tools.edit_file(local_sandbox, "a.py", "x", "y")
    assert ambiguous.status == "error"
    assert ambiguous.details["code"] == "AMBIGUOUS_MATCH"


@requires_git
async def test_edit_tool_returns_commit_hash(local_sandbox):
    result = await tools.edit_file(local_sandbox, "hello.txt", "", "hello")

    assert result.ok
    assert result.message == "Created hello.txt"
    assert len(result.metadata["commit_hash"]) == 40


@requires_git
async def test_write_file_tool_commits(local_sandbox):
    result = await tools.write_file(local_sandbox, "b.txt", "data")

    assert result.ok
    log = await local_sandbox.git.log()
    assert log[0].message == "chore(b.txt): overwritten"


async def test_bash_tool_success_and_failure(local_sandbox):
    ok = await tools.bash(local_sandbox, "echo hi")
    assert ok.ok
    assert ok.message == "hi\n"
    assert ok.details["exit_code"] == 0

    failed = await tools.bash(local_sandbox, "echo bad >&2; exit 4")
    assert failed.status == "error"
    assert failed.details["exit_code"] == 4
    assert failed.details["stderr"] == "bad\n"


async def test_bash_tool_truncates_large_output(local_sandbox):
    result = await tools.bash(local_sandbox, "head -c 40000 /dev/zero | tr '\\0' 'a'")
    assert "[truncated 10000 chars]" in result.message


async def test_grep_tool_formats_matches(local_sandbox):
    await local_sandbox.fs.write_file("src/a.py", "one\nneedle here\n")

    found = await tools.grep(local_sandbox, "needle", show_line_numbers=True)
    assert found.message == "src/a.py:2:needle here"
    assert found.metadata == {"total_files": 1, "total_matches": 1}

    missing = await tools.grep(local_sandbox, "haystack")
    assert missing.message == "No matches found"


async def test_dev_tools(local_sandbox):
    started = await tools.start_dev(local_sandbox, "sleep 30", id="web", port=3000)
    assert started.ok
    assert started.metadata["id"] == "web"
    assert started.metadata["url"] is None

    again = await tools.start_dev(local_sandbox, "sleep 30", id="web")
    assert again.details["code"] == "COMMAND_ALREADY_RUNNING"

    stopped = await tools.stop_dev(local_sandbox, "web")
    assert stopped.ok


@requires_git
async def test_git_status_tool(local_sandbox):
    not_repo = await tools.git_status(local_sandbox)
    assert not_repo.details["code"] == "GIT_ERROR"

    await local_sandbox.git.init(initial_branch="main")
    await local_sandbox.fs.write_file("new.txt", "x")
    result = await tools.git_status(local_sandbox)

    assert result.ok
    assert result.metadata["untracked"] == ["new.txt"]
    assert result.message == "Changes on main"


async def test_os_errors_become_io_error_results(local_sandbox):
    await local_sandbox.fs.mkdir("somedir")

    result = await tools.write_file(local_sandbox, "somedir", "x")

    assert result.status == "error"
    assert result.details["code"] == "IO_ERROR"
    assert result.details["path"].endswith("somedir")
