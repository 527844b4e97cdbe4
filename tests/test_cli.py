"""Tests for the Typer CLI against a local sandbox."""

from __future__ import annotations

import shutil

import pytest
from typer.testing import CliRunner

from agentbox.cli import app
from agentbox.config import get_settings


runner = CliRunner()


@pytest.fixture(autouse=True)
def local_env(monkeypatch, workspace):
    monkeypatch.setenv("SANDBOX_BACKEND", "local")
    monkeypatch.setenv("SANDBOX_WORKSPACE_PATH", workspace)
    monkeypatch.delenv("SANDBOX_ID", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_run_prints_stdout():
    result = runner.invoke(app, ["run", "echo from-cli"])
    assert result.exit_code == 0
    assert "from-cli" in result.stdout


def test_run_propagates_exit_code():
    result = runner.invoke(app, ["run", "exit 3"])
    assert result.exit_code == 3


def test_grep_command(workspace):
    with open(f"{workspace}/notes.txt", "w") as f:
        f.write("alpha\nneedle\n")

    result = runner.invoke(app, ["grep", "needle"])

    assert result.exit_code == 0
    assert "notes.txt" in result.stdout


@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_edit_command_creates_file(workspace):
    result = runner.invoke(app, ["edit", "hello.txt", "--new", "hello"])

    assert result.exit_code == 0
    assert "Created hello.txt" in result.stdout
    with open(f"{workspace}/hello.txt") as f:
        assert f.read() == "hello"


def test_edit_command_reports_ambiguity(workspace):
    with open(f"{workspace}/dup.txt", "w") as f:
        f.write("x\nx\n")

    result = runner.invoke(app, ["edit", "dup.txt", "--old", "x", "--new", "y"])

    assert result.exit_code == 1


def test_status_command():
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert '"backend": "local"' in result.stdout
    assert '"active": true' in result.stdout


def test_remote_without_credentials_fails_cleanly(monkeypatch):
    monkeypatch.delenv("E2B_API_KEY", raising=False)
    get_settings.cache_clear()

    result = runner.invoke(app, ["--backend", "remote", "status"])

    assert result.exit_code == 1
