"""Prompt texts used by the agent loop."""

from __future__ import annotations

import platform
from datetime import datetime, timezone

from codeloop.ai.tools.base import ToolDefinition
from codeloop.core.types import ApprovalPolicy, SandboxPolicy

CONTINUATION_MESSAGE = (
    "Continue working on the previous task from where you left off. "
    "Check the current state of the workspace before repeating any step."
)

INCOMPLETE_MESSAGE = "Provide more specific instructions, or use /resume to continue."

BASE_PROMPT = """\
You are an AI coding assistant that helps users with software engineering tasks.

# Tool usage
- Call several tools in one response when they do not depend on each other.
- If a tool depends on an earlier result, call it in a later step. Never guess parameters.
- Prefer the dedicated tools over shell commands: read_file rather than cat, edit_file
  rather than sed, grep_search rather than grep, list_directory rather than ls.
- Reserve exec_command for builds, tests and real terminal work.

# Doing tasks
- Read files before changing them.
- Only make the changes that were asked for or are clearly required.
- After editing, run tests or linters when they exist and fix what they report.
- Keep responses short. Output is shown in a chat interface.
- Keep going until the task is resolved, then answer in plain text without tool calls.
"""


def build_system_prompt(
    tools: list[ToolDefinition],
    workspace: str,
    sandbox_policy: SandboxPolicy,
    approval_policy: ApprovalPolicy,
    model: str = "",
    context: str = "",
) -> str:
    """System prompt for a new session: instructions, toolset and runtime facts.

    ``context`` is the rendered project context line (project type, git state).
    """
    lines = [BASE_PROMPT, "# Tools", "Tool names are case-sensitive. Call tools exactly as listed.", ""]
    for tool in tools:
        suffix = " (modifies state)" if tool.mutating else ""
        lines.append(f"- {tool.name}: {tool.description}{suffix}")

    lines.extend(
        [
            "",
            "# Workspace",
            f"Working directory: {workspace}",
            "Relative paths are resolved against the working directory. "
            "Paths outside it are refused unless the sandbox allows full access.",
            "",
            "# Runtime",
            f"Sandbox policy: {sandbox_policy.value}",
            f"Approval policy: {approval_policy.value}",
            f"OS: {platform.system()} {platform.machine()}",
            f"Date: {datetime.now(timezone.utc).date().isoformat()}",
        ]
    )
    if model:
        lines.append(f"Model: {model}")
    if context:
        lines.extend(["", "# Project context", context])
    return "\n".join(lines)


def tool_error_prompt(error: str) -> str:
    """Corrective hint appended to the log after a failed tool call."""
    return (
        f"The previous tool call failed:\n{error}\n\n"
        "Analyze what went wrong and try a different approach:\n"
        "- Check file paths are correct\n"
        "- Verify search text matches exactly (including whitespace)\n"
        "- Use read_file to check current file state\n"
        "- Try a simpler approach"
    )
