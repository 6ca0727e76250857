"""Git tools: a whitelisted passthrough and read-only repository summaries."""

from __future__ import annotations

import asyncio
import os
import shlex
from typing import Any

from codeloop.ai.tools.base import Tool, ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import ToolArgumentError, read_string_param
from codeloop.core.types import SandboxPolicy

READ_SUBCOMMANDS = ("status", "diff", "log", "blame", "branch", "show")
WRITE_SUBCOMMANDS = ("add", "commit", "checkout", "stash")
GIT_TIMEOUT = 30

DEFAULT_FLAGS: dict[str, list[str]] = {
    "log": ["--oneline", "-n", "20"],
    "diff": ["--stat"],
    "status": ["--short"],
}

SUMMARY_OPERATIONS = ("status_summary", "diff_summary")


async def run_git(args: list[str], cwd: str, timeout: float = GIT_TIMEOUT) -> tuple[int, str, str]:
    """Run ``git args`` and return ``(exit_code, stdout, stderr)``.

    A process still running after ``timeout`` is killed and ``asyncio.TimeoutError``
    propagates. A missing git binary raises ``FileNotFoundError``.
    """
    process = await asyncio.create_subprocess_exec(
        "git",
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise
    exit_code = process.returncode if process.returncode is not None else 1
    return (
        exit_code,
        stdout.decode("utf-8", errors="replace").strip(),
        stderr.decode("utf-8", errors="replace").strip(),
    )


class GitTool(Tool):
    @property
    def name(self) -> str:
        return "git"

    @property
    def description(self) -> str:
        return "Execute git operations. Supports common git commands for version control."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "subcommand": {
                    "type": "string",
                    "enum": [*READ_SUBCOMMANDS, *WRITE_SUBCOMMANDS],
                    "description": "Git subcommand to run",
                },
                "args": {
                    "type": "string",
                    "description": "Additional arguments for the git command",
                },
            },
            "required": ["subcommand"],
        }

    @property
    def mutating(self) -> bool:
        return True

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        subcommand = read_string_param(args, "subcommand", required=True)
        extra = read_string_param(args, "args", default="")

        allowed = (*READ_SUBCOMMANDS, *WRITE_SUBCOMMANDS)
        if subcommand not in allowed:
            return ToolResult.fail(
                f"Git subcommand '{subcommand}' is not allowed. Allowed: {', '.join(allowed)}",
                ToolErrorKind.POLICY_DENIED,
            )
        if subcommand in WRITE_SUBCOMMANDS and context.sandbox_policy == SandboxPolicy.READ_ONLY:
            return ToolResult.fail(
                f"Git {subcommand} requires write access. Current policy: read-only",
                ToolErrorKind.POLICY_DENIED,
            )

        try:
            extra_args = shlex.split(extra)
        except ValueError as e:
            return ToolResult.fail(f"Could not parse git arguments: {e}", ToolErrorKind.BAD_ARGUMENTS)

        argv = [subcommand, *DEFAULT_FLAGS.get(subcommand, []), *extra_args]
        try:
            exit_code, output, error = await run_git(argv, context.working_directory)
        except asyncio.TimeoutError:
            return ToolResult.fail("Git command timed out", ToolErrorKind.TIMEOUT)

        if exit_code != 0:
            return ToolResult.fail(error or f"git exited with code {exit_code}", output=output)
        return ToolResult.ok(output or f"git {subcommand}: no output")


class GitSummaryTool(Tool):
    """Human-readable repository summaries. Reads only, so it may run in parallel."""

    @property
    def name(self) -> str:
        return "git_summary"

    @property
    def description(self) -> str:
        return (
            "Summarize the repository. status_summary: branch, last commit and uncommitted changes. "
            "diff_summary: staged and unstaged change statistics."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "operation": {
                    "type": "string",
                    "enum": list(SUMMARY_OPERATIONS),
                    "description": "Summary to produce",
                },
            },
            "required": ["operation"],
        }

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        operation = read_string_param(args, "operation", required=True)
        if operation not in SUMMARY_OPERATIONS:
            raise ToolArgumentError(
                f"Unknown operation: {operation}. Expected one of: {', '.join(SUMMARY_OPERATIONS)}"
            )

        cwd = context.working_directory
        try:
            exit_code, _, error = await run_git(["rev-parse", "--git-dir"], cwd)
            if exit_code != 0:
                return ToolResult.fail(error or "Not a git repository")
            if operation == "status_summary":
                return await self._status_summary(cwd)
            return await self._diff_summary(cwd)
        except asyncio.TimeoutError:
            return ToolResult.fail("Git command timed out", ToolErrorKind.TIMEOUT)

    @staticmethod
    async def _status_summary(cwd: str) -> ToolResult:
        (_, branch, _), (_, changes, _), (log_code, last_commit, _) = await asyncio.gather(
            run_git(["branch", "--show-current"], cwd),
            run_git(["status", "--short"], cwd),
            run_git(["log", "-1", "--oneline"], cwd),
        )
        lines = [
            "Git status summary",
            "",
            f"Branch: {branch or 'unknown'}",
            f"Last commit: {last_commit if log_code == 0 and last_commit else 'no commits'}",
            "",
            "Changes:",
            changes or "No uncommitted changes",
        ]
        return ToolResult.ok("\n".join(lines))

    @staticmethod
    async def _diff_summary(cwd: str) -> ToolResult:
        _, staged, _ = await run_git(["diff", "--cached", "--stat"], cwd)
        _, unstaged, _ = await run_git(["diff", "--stat"], cwd)

        lines = ["Diff summary", ""]
        if staged:
            lines.extend(["Staged changes:", staged, ""])
        if unstaged:
            lines.extend(["Unstaged changes:", unstaged])
        if not staged and not unstaged:
            lines.append("No changes to show.")
        return ToolResult.ok("\n".join(lines).rstrip())
