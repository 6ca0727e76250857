"""Tests for the tool registry: registration, policy filtering and failure mapping."""

import json

import pytest

from codeloop.ai.tools.base import ToolDefinition, ToolErrorKind, ToolResult
from codeloop.ai.tools.params import ToolArgumentError, read_number_param, read_string_param
from codeloop.ai.tools.policy import ToolPolicy
from codeloop.ai.tools.registry import ToolRegistry, parse_arguments
from codeloop.storage.models import ToolCall

BUILTIN_TOOLS = {
    "read_file",
    "write_file",
    "edit_file",
    "list_directory",
    "grep_search",
    "exec_command",
    "git",
    "git_summary",
    "http_request",
}


def _definition(name: str, mutating: bool = False) -> ToolDefinition:
    return ToolDefinition(name=name, description=f"{name} tool", parameters={"type": "object"}, mutating=mutating)


class TestParseArguments:
    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_means_no_arguments(self, raw):
        assert parse_arguments(raw) == {}

    def test_object(self):
        assert parse_arguments('{"path": "a.txt"}') == {"path": "a.txt"}

    def test_invalid_json(self):
        with pytest.raises(ToolArgumentError, match="Invalid JSON"):
            parse_arguments("{not json")

    def test_non_object(self):
        with pytest.raises(ToolArgumentError, match="JSON object"):
            parse_arguments("[1, 2]")


class TestParamReaders:
    def test_string_reader(self):
        assert read_string_param({"a": "  x  "}, "a") == "x"
        assert read_string_param({"a": 5}, "a") == "5"
        assert read_string_param({}, "a", default="d") == "d"
        with pytest.raises(ToolArgumentError, match="required"):
            read_string_param({}, "a", required=True)
        with pytest.raises(ToolArgumentError, match="must be a string"):
            read_string_param({"a": ["x"]}, "a")

    def test_number_reader(self):
        assert read_number_param({"n": "7"}, "n", integer=True) == 7
        assert read_number_param({"n": "abc"}, "n", default=3) == 3
        with pytest.raises(ToolArgumentError, match=">="):
            read_number_param({"n": 0}, "n", minimum=1)


class TestRegistration:
    def test_discover_registers_builtins(self, registry):
        assert set(registry.tool_names()) == BUILTIN_TOOLS

    def test_mutating_flags(self, registry):
        mutating = {name for name in registry.tool_names() if registry.is_mutating(name)}

        assert mutating == {"write_file", "edit_file", "exec_command", "git"}

    def test_register_replaces_existing(self):
        reg = ToolRegistry()

        async def first(args, context):
            return ToolResult.ok("first")

        async def second(args, context):
            return ToolResult.ok("second")

        reg.register(_definition("echo"), first)
        reg.register(_definition("echo", mutating=True), second)

        assert reg.tool_names() == ["echo"]
        assert reg.is_mutating("echo")

    def test_tools_for_provider_have_object_schemas(self, registry):
        for definition in registry.tools_for_provider():
            assert definition.parameters["type"] == "object"
            assert "properties" in definition.parameters

    def test_policy_hides_denied_tools(self):
        reg = ToolRegistry(ToolPolicy.from_lists(deny=["exec_command", "git"]))
        reg.discover_and_register()

        names = {d.name for d in reg.enabled_definitions()}

        assert "exec_command" not in names
        assert "git" not in names
        assert "read_file" in names
        assert not reg.is_enabled("exec_command")

    def test_set_policy(self, registry):
        registry.set_policy(ToolPolicy.from_lists(allow=["read_file"]))

        assert [d.name for d in registry.enabled_definitions()] == ["read_file"]

    def test_parallel_only_without_mutating_calls(self, registry):
        reads = [ToolCall("1", "read_file"), ToolCall("2", "grep_search")]
        mixed = [ToolCall("1", "read_file"), ToolCall("2", "write_file")]

        assert registry.can_execute_in_parallel(reads)
        assert not registry.can_execute_in_parallel(mixed)


@pytest.mark.asyncio
class TestExecute:
    async def test_unknown_tool(self, registry, tool_context):
        result = await registry.execute(ToolCall("c1", "teleport", "{}"), tool_context)

        assert result.success is False
        assert result.error_kind == ToolErrorKind.UNKNOWN_TOOL
        assert result.tool_call_id == "c1"

    async def test_policy_denied_tool_reads_as_unknown(self, tool_context):
        reg = ToolRegistry(ToolPolicy.from_lists(deny=["read_file"]))
        reg.discover_and_register()

        result = await reg.execute(ToolCall("c1", "read_file", '{"path": "a.txt"}'), tool_context)

        assert result.error_kind == ToolErrorKind.UNKNOWN_TOOL

    async def test_malformed_arguments(self, registry, tool_context):
        result = await registry.execute(ToolCall("c1", "read_file", "{oops"), tool_context)

        assert result.error_kind == ToolErrorKind.BAD_ARGUMENTS

    async def test_missing_required_argument(self, registry, tool_context):
        result = await registry.execute(ToolCall("c1", "read_file", "{}"), tool_context)

        assert result.error_kind == ToolErrorKind.BAD_ARGUMENTS
        assert "path" in result.error

    async def test_handler_exception_becomes_failure(self, tool_context):
        reg = ToolRegistry()

        async def explode(args, context):
            raise RuntimeError("disk on fire")

        reg.register(_definition("explode"), explode)
        result = await reg.execute(ToolCall("c9", "explode"), tool_context)

        assert result.success is False
        assert result.error_kind == ToolErrorKind.EXECUTION_FAILED
        assert result.error == "RuntimeError: disk on fire"
        assert result.tool_call_id == "c9"

    async def test_result_carries_timing(self, registry, tool_context, workspace):
        (workspace / "a.txt").write_text("hello")

        result = await registry.execute(ToolCall("c1", "read_file", json.dumps({"path": "a.txt"})), tool_context)

        assert result.success is True
        assert result.elapsed_ms >= 0

    async def test_read_is_idempotent(self, registry, tool_context, workspace):
        (workspace / "a.txt").write_text("one\ntwo\n")
        call = ToolCall("c1", "read_file", '{"path": "a.txt"}')

        first = await registry.execute(call, tool_context)
        second = await registry.execute(call, tool_context)

        assert first.output == second.output
        assert (workspace / "a.txt").read_text() == "one\ntwo\n"
