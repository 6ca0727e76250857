"""Tests for the tool allow/deny policy."""

from codeloop.ai.tools.policy import (
    ToolPolicy,
    filter_by_policy,
    make_policy_matcher,
    merge_policies,
    sandbox_tool_policy,
)
from codeloop.core.types import SandboxPolicy


class TestMatcher:
    def test_empty_policy_allows_everything(self):
        allowed = make_policy_matcher(ToolPolicy())

        assert allowed("read_file")
        assert allowed("anything")

    def test_allow_list_restricts(self):
        allowed = make_policy_matcher(ToolPolicy.from_lists(allow=["read_file", "grep_*"]))

        assert allowed("read_file")
        assert allowed("grep_search")
        assert not allowed("exec_command")

    def test_deny_wins_over_allow(self):
        allowed = make_policy_matcher(ToolPolicy.from_lists(allow=["*"], deny=["exec_command"]))

        assert allowed("read_file")
        assert not allowed("exec_command")

    def test_matching_is_case_insensitive(self):
        allowed = make_policy_matcher(ToolPolicy.from_lists(deny=["Exec_*", "GIT"]))

        assert not allowed("exec_command")
        assert not allowed("git")

    def test_question_mark_glob(self):
        allowed = make_policy_matcher(ToolPolicy.from_lists(allow=["gi?"]))

        assert allowed("git")
        assert not allowed("gist")


class TestHelpers:
    def test_filter_by_policy(self):
        names = ["read_file", "write_file", "exec_command"]

        kept = filter_by_policy(names, ToolPolicy.from_lists(deny=["*_file"]), lambda n: n)

        assert kept == ["exec_command"]
        assert filter_by_policy(names, None, lambda n: n) == names

    def test_merge_policies_unions_lists(self):
        merged = merge_policies(
            ToolPolicy.from_lists(allow=["read_file"], deny=["git"]),
            None,
            ToolPolicy.from_lists(allow=["read_file", "grep_search"], deny=["exec_command"]),
        )

        assert merged.allow == ("read_file", "grep_search")
        assert merged.deny == ("git", "exec_command")

    def test_read_only_sandbox_hides_write_tools(self):
        allowed = make_policy_matcher(sandbox_tool_policy(SandboxPolicy.READ_ONLY))

        assert not allowed("write_file")
        assert not allowed("exec_command")
        assert allowed("git")
        assert allowed("read_file")

    def test_writable_sandboxes_hide_nothing(self):
        assert sandbox_tool_policy(SandboxPolicy.WORKSPACE_WRITE) is None
        assert sandbox_tool_policy(SandboxPolicy.FULL_ACCESS) is None
