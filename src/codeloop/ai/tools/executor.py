"""Shell command execution tool."""

from __future__ import annotations

import asyncio
import os
import re
from typing import Any

from codeloop.ai.tools.base import Tool, ToolContext, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import read_number_param, read_string_param
from codeloop.core.safety import can_execute_commands, validate_command

DEFAULT_TIMEOUT = 30
MAX_TIMEOUT = 300

# Commands allowed under workspace-write; anything else needs full-access.
SAFE_COMMAND_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(npm|bun|yarn|pnpm)\s+(run|test|build|lint)", re.IGNORECASE),
    re.compile(r"^(tsc|eslint|prettier|pytest|ruff|mypy)\b", re.IGNORECASE),
    re.compile(r"^python3?\s+-m\s+(pytest|unittest|mypy|ruff)\b", re.IGNORECASE),
    re.compile(r"^git\s+(status|log|diff|branch|show)", re.IGNORECASE),
    re.compile(r"^(cat|head|tail|wc|grep|find|pwd|echo)\b", re.IGNORECASE),
    re.compile(r"^ls\b|^dir\b", re.IGNORECASE),
)


def is_safe_command(command: str) -> bool:
    return any(p.search(command.strip()) for p in SAFE_COMMAND_PATTERNS)


def truncate_output(text: str, head: int = 50, tail: int = 50) -> str:
    lines = text.split("\n")
    if len(lines) <= head + tail:
        return text
    skipped = len(lines) - head - tail
    return "\n".join(
        [*lines[:head], "", f"... ({skipped} lines omitted) ...", "", *lines[-tail:]]
    )


def format_output(stdout: str, stderr: str, exit_code: int) -> str:
    parts = []
    if stdout:
        parts.append(f"STDOUT:\n{truncate_output(stdout)}")
    if stderr:
        parts.append(f"STDERR:\n{truncate_output(stderr)}")
    parts.append(f"Exit code: {exit_code}")
    return "\n\n".join(parts)


class ExecutorTool(Tool):
    """Runs a shell command in the session workspace."""

    @property
    def name(self) -> str:
        return "exec_command"

    @property
    def description(self) -> str:
        return (
            "Execute a shell command in the working directory. Use for running builds, "
            "tests, linters and similar commands. Returns stdout, stderr and the exit code."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The command to execute",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default: {DEFAULT_TIMEOUT}, max: {MAX_TIMEOUT})",
                },
            },
            "required": ["command"],
        }

    @property
    def mutating(self) -> bool:
        return True

    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        command = read_string_param(args, "command", required=True)
        timeout = read_number_param(args, "timeout", minimum=1, default=DEFAULT_TIMEOUT)
        timeout = min(timeout, MAX_TIMEOUT)

        validation = validate_command(command, context.sandbox_policy)
        if not validation.allowed:
            return ToolResult.fail(validation.reason or "Command not allowed", ToolErrorKind.POLICY_DENIED)

        if not can_execute_commands(context.sandbox_policy) and not is_safe_command(command):
            return ToolResult.fail(
                "Command execution requires full-access sandbox policy. "
                "This command appears to modify system state.",
                ToolErrorKind.POLICY_DENIED,
            )

        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=context.working_directory,
            env={**os.environ, "FORCE_COLOR": "0", "NO_COLOR": "1"},
        )

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return ToolResult.fail(f"Command timed out after {timeout:g} seconds", ToolErrorKind.TIMEOUT)

        exit_code = process.returncode if process.returncode is not None else 1
        output = format_output(
            stdout.decode("utf-8", errors="replace").strip(),
            stderr.decode("utf-8", errors="replace").strip(),
            exit_code,
        )
        if exit_code != 0:
            return ToolResult.fail(f"Command exited with code {exit_code}", output=output)
        return ToolResult.ok(output)
