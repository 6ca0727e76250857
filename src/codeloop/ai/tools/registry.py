"""Tool registry: definitions, handlers, policy filtering and safe execution."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Iterable

from codeloop.ai.tools.base import Tool, ToolContext, ToolDefinition, ToolErrorKind, ToolHandler, ToolResult
from codeloop.ai.tools.params import ToolArgumentError
from codeloop.ai.tools.policy import ToolPolicy, filter_by_policy, make_policy_matcher
from codeloop.ai.tools.schema import normalize_tool_parameters
from codeloop.log import get_logger
from codeloop.storage.models import ToolCall

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class _Entry:
    definition: ToolDefinition
    handler: ToolHandler


def parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode a tool call's argument payload. Blank input means no arguments."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ToolArgumentError(f"Invalid JSON arguments: {e.msg}") from e
    if not isinstance(parsed, dict):
        raise ToolArgumentError("Tool arguments must be a JSON object")
    return parsed


class ToolRegistry:
    """Registry of all available tools.

    Built once at startup and read-only afterwards, so it can be shared across
    concurrently running sessions.
    """

    def __init__(self, policy: ToolPolicy | None = None):
        self._tools: dict[str, _Entry] = {}
        self._policy = policy or ToolPolicy()
        self._allowed = make_policy_matcher(self._policy)

    @property
    def policy(self) -> ToolPolicy:
        return self._policy

    def set_policy(self, policy: ToolPolicy) -> None:
        self._policy = policy
        self._allowed = make_policy_matcher(policy)

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        """Register a tool. Re-registering a name replaces the earlier entry."""
        replaced = definition.name in self._tools
        self._tools[definition.name] = _Entry(definition, handler)
        logger.info(
            "tool_registered",
            tool_name=definition.name,
            mutating=definition.mutating,
            replaced=replaced,
        )

    def register_tool(self, tool: Tool) -> None:
        self.register(tool.definition, tool.execute)

    def register_all(self, tools: Iterable[Tool]) -> None:
        for tool in tools:
            self.register_tool(tool)

    def discover_and_register(self) -> None:
        """Import and register all built-in tools."""
        from codeloop.ai.tools.executor import ExecutorTool
        from codeloop.ai.tools.filesystem import EditFileTool, ListDirectoryTool, ReadFileTool, WriteFileTool
        from codeloop.ai.tools.git import GitSummaryTool, GitTool
        from codeloop.ai.tools.http_request import HttpRequestTool
        from codeloop.ai.tools.search import GrepSearchTool

        self.register_all(
            [
                ReadFileTool(),
                WriteFileTool(),
                EditFileTool(),
                ListDirectoryTool(),
                GrepSearchTool(),
                ExecutorTool(),
                GitTool(),
                GitSummaryTool(),
                HttpRequestTool(),
            ]
        )

    def get(self, name: str) -> ToolDefinition | None:
        entry = self._tools.get(name)
        return entry.definition if entry else None

    def tool_names(self) -> list[str]:
        return list(self._tools)

    def is_enabled(self, name: str) -> bool:
        return name in self._tools and self._allowed(name)

    def is_mutating(self, name: str) -> bool:
        entry = self._tools.get(name)
        return bool(entry and entry.definition.mutating)

    def enabled_definitions(self) -> list[ToolDefinition]:
        return filter_by_policy((e.definition for e in self._tools.values()), self._policy, lambda d: d.name)

    def tools_for_provider(self) -> list[ToolDefinition]:
        """Enabled tools with parameter schemas normalized for any provider."""
        return [
            ToolDefinition(
                name=d.name,
                description=d.description,
                parameters=normalize_tool_parameters(d.parameters),
                mutating=d.mutating,
            )
            for d in self.enabled_definitions()
        ]

    def can_execute_in_parallel(self, calls: list[ToolCall]) -> bool:
        """A batch may fan out only when none of its calls mutates state."""
        return not any(self.is_mutating(call.name) for call in calls)

    async def execute(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """Run one tool call. Failures come back as results, never as exceptions."""
        start = time.monotonic()
        result = await self._dispatch(call, context)
        result.tool_call_id = call.id
        result.elapsed_ms = round((time.monotonic() - start) * 1000, 2)

        log = logger.info if result.success else logger.warning
        log(
            "tool_executed",
            tool_name=call.name,
            tool_call_id=call.id,
            success=result.success,
            error_kind=result.error_kind.value if result.error_kind else None,
            elapsed_ms=result.elapsed_ms,
        )
        return result

    async def _dispatch(self, call: ToolCall, context: ToolContext) -> ToolResult:
        entry = self._tools.get(call.name)
        # A tool hidden by policy is indistinguishable from one that does not exist.
        if entry is None or not self._allowed(call.name):
            return ToolResult.fail(f"Unknown tool: {call.name}", ToolErrorKind.UNKNOWN_TOOL)

        try:
            args = parse_arguments(call.arguments)
        except ToolArgumentError as e:
            return ToolResult.fail(str(e), ToolErrorKind.BAD_ARGUMENTS)

        try:
            return await entry.handler(args, context)
        except ToolArgumentError as e:
            return ToolResult.fail(str(e), ToolErrorKind.BAD_ARGUMENTS)
        except Exception as e:
            logger.exception("tool_handler_error", tool_name=call.name, error=str(e))
            return ToolResult.fail(f"{type(e).__name__}: {e}", ToolErrorKind.EXECUTION_FAILED)
