"""Tests for the shell and git tools."""

import dataclasses
import shutil
import subprocess

import pytest

from codeloop.ai.tools.base import ToolErrorKind
from codeloop.ai.tools.executor import ExecutorTool, format_output, is_safe_command, truncate_output
from codeloop.ai.tools.git import GitSummaryTool, GitTool
from codeloop.ai.tools.params import ToolArgumentError
from codeloop.core.types import SandboxPolicy


@pytest.fixture
def full_access(tool_context):
    return dataclasses.replace(tool_context, sandbox_policy=SandboxPolicy.FULL_ACCESS)


@pytest.fixture
def read_only(tool_context):
    return dataclasses.replace(tool_context, sandbox_policy=SandboxPolicy.READ_ONLY)


class TestHelpers:
    def test_safe_commands(self):
        assert is_safe_command("ls -la")
        assert is_safe_command("  git status")
        assert is_safe_command("python -m pytest tests")
        assert not is_safe_command("touch a.txt")
        assert not is_safe_command("git commit -m x")

    def test_truncate_keeps_head_and_tail(self):
        text = "\n".join(str(i) for i in range(200))

        result = truncate_output(text)

        lines = result.split("\n")
        assert lines[0] == "0"
        assert lines[-1] == "199"
        assert "... (100 lines omitted) ..." in result

    def test_short_output_untouched(self):
        assert truncate_output("a\nb") == "a\nb"

    def test_format_output(self):
        assert format_output("hi", "", 0) == "STDOUT:\nhi\n\nExit code: 0"
        assert format_output("", "boom", 2) == "STDERR:\nboom\n\nExit code: 2"


@pytest.mark.asyncio
class TestExecutor:
    async def test_runs_in_workspace(self, full_access, workspace):
        (workspace / "marker.txt").write_text("")

        result = await ExecutorTool().execute({"command": "ls"}, full_access)

        assert result.success is True
        assert "marker.txt" in result.output
        assert "Exit code: 0" in result.output

    async def test_safe_command_under_workspace_write(self, tool_context):
        result = await ExecutorTool().execute({"command": "echo hello"}, tool_context)

        assert result.success is True
        assert result.output.startswith("STDOUT:\nhello")

    async def test_unsafe_command_needs_full_access(self, tool_context, workspace):
        result = await ExecutorTool().execute({"command": "touch created.txt"}, tool_context)

        assert result.error_kind == ToolErrorKind.POLICY_DENIED
        assert not (workspace / "created.txt").exists()

    async def test_read_only_rejects_all(self, read_only):
        result = await ExecutorTool().execute({"command": "echo hi"}, read_only)

        assert result.error_kind == ToolErrorKind.POLICY_DENIED

    async def test_blocked_command_never_runs(self, full_access):
        result = await ExecutorTool().execute({"command": "rm -rf /"}, full_access)

        assert result.error_kind == ToolErrorKind.POLICY_DENIED
        assert "blocked" in result.error

    async def test_non_zero_exit_is_failure_with_output(self, full_access):
        result = await ExecutorTool().execute({"command": "echo partial; exit 3"}, full_access)

        assert result.success is False
        assert result.error == "Command exited with code 3"
        assert "partial" in result.output
        assert "Exit code: 3" in result.as_message_content()

    async def test_timeout(self, full_access):
        result = await ExecutorTool().execute({"command": "sleep 5", "timeout": 1}, full_access)

        assert result.error_kind == ToolErrorKind.TIMEOUT
        assert "timed out after 1 seconds" in result.error


@pytest.mark.asyncio
class TestGit:
    async def test_subcommand_whitelist(self, tool_context):
        result = await GitTool().execute({"subcommand": "push", "args": "origin main"}, tool_context)

        assert result.error_kind == ToolErrorKind.POLICY_DENIED
        assert "not allowed" in result.error

    async def test_write_subcommand_refused_read_only(self, read_only):
        result = await GitTool().execute({"subcommand": "commit", "args": "-m x"}, read_only)

        assert result.error_kind == ToolErrorKind.POLICY_DENIED
        assert "read-only" in result.error

    async def test_unbalanced_quotes(self, tool_context):
        result = await GitTool().execute({"subcommand": "log", "args": '"unterminated'}, tool_context)

        assert result.error_kind == ToolErrorKind.BAD_ARGUMENTS

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    async def test_status_in_repository(self, tool_context, workspace):
        subprocess.run(["git", "init", "-q"], cwd=workspace, check=True)

        clean = await GitTool().execute({"subcommand": "status"}, tool_context)
        (workspace / "new.txt").write_text("x")
        dirty = await GitTool().execute({"subcommand": "status"}, tool_context)

        assert clean.output == "git status: no output"
        assert "?? new.txt" in dirty.output

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    async def test_failure_outside_repository(self, tool_context):
        result = await GitTool().execute({"subcommand": "log"}, tool_context)

        # tmp directories are not inside a repository
        assert result.success is False
        assert result.error


def _git_repo(path) -> None:
    subprocess.run(["git", "init", "-q"], cwd=path, check=True)
    subprocess.run(["git", "config", "user.email", "dev@example.com"], cwd=path, check=True)
    subprocess.run(["git", "config", "user.name", "Dev"], cwd=path, check=True)


@pytest.mark.asyncio
class TestGitSummary:
    async def test_unknown_operation(self, tool_context):
        with pytest.raises(ToolArgumentError, match="Unknown operation"):
            await GitSummaryTool().execute({"operation": "auto_commit"}, tool_context)

    def test_is_read_only(self):
        assert GitSummaryTool().definition.mutating is False

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    async def test_outside_repository(self, tool_context):
        result = await GitSummaryTool().execute({"operation": "status_summary"}, tool_context)

        assert result.success is False

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    async def test_status_summary(self, tool_context, workspace):
        _git_repo(workspace)
        (workspace / "a.txt").write_text("one\n")
        subprocess.run(["git", "add", "a.txt"], cwd=workspace, check=True)
        subprocess.run(["git", "commit", "-q", "-m", "first commit"], cwd=workspace, check=True)
        (workspace / "b.txt").write_text("new\n")

        result = await GitSummaryTool().execute({"operation": "status_summary"}, tool_context)

        assert result.success is True
        assert "first commit" in result.output
        assert "?? b.txt" in result.output

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    async def test_diff_summary(self, tool_context, workspace):
        _git_repo(workspace)
        (workspace / "a.txt").write_text("one\n")
        subprocess.run(["git", "add", "a.txt"], cwd=workspace, check=True)
        subprocess.run(["git", "commit", "-q", "-m", "init"], cwd=workspace, check=True)

        clean = await GitSummaryTool().execute({"operation": "diff_summary"}, tool_context)
        (workspace / "a.txt").write_text("one\ntwo\n")
        dirty = await GitSummaryTool().execute({"operation": "diff_summary"}, tool_context)

        assert clean.output.endswith("No changes to show.")
        assert "Unstaged changes:" in dirty.output
        assert "a.txt" in dirty.output
        assert "Staged changes:" not in dirty.output
