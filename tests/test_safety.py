"""Tests for command and path safety classification."""

import pytest

from codeloop.core.safety import (
    assess_action_risk,
    assess_risk,
    can_execute_commands,
    can_write,
    validate_command,
    validate_path,
    validate_write_extension,
)
from codeloop.core.types import RiskLevel, SandboxPolicy


class TestValidateCommand:
    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /",
            "rm -rf ~",
            "mkfs.ext4 /dev/sda1",
            "dd if=/dev/zero of=/dev/sda",
            ":(){ :|:& };:",
            "sudo shutdown now",
            "chmod -R 777 /",
        ],
    )
    def test_blocked_even_with_full_access(self, command):
        result = validate_command(command, SandboxPolicy.FULL_ACCESS)

        assert result.allowed is False
        assert result.risk_level == RiskLevel.HIGH
        assert "blocked" in result.reason

    def test_block_list_checked_before_read_only_gate(self):
        result = validate_command("rm -rf /", SandboxPolicy.READ_ONLY)

        assert result.allowed is False
        assert result.risk_level == RiskLevel.HIGH

    def test_read_only_rejects_everything_else(self):
        result = validate_command("ls -la", SandboxPolicy.READ_ONLY)

        assert result.allowed is False
        assert result.risk_level == RiskLevel.LOW
        assert "read-only" in result.reason

    @pytest.mark.parametrize("command", ["rm notes.txt", "git push origin main", "git reset --hard HEAD~1"])
    def test_dangerous_commands_need_approval(self, command):
        result = validate_command(command, SandboxPolicy.WORKSPACE_WRITE)

        assert result.allowed is True
        assert result.requires_approval is True
        assert result.risk_level == RiskLevel.HIGH

    def test_package_install_needs_approval_unless_full_access(self):
        workspace = validate_command("pip install requests", SandboxPolicy.WORKSPACE_WRITE)
        full = validate_command("pip install requests", SandboxPolicy.FULL_ACCESS)

        assert workspace.requires_approval is True
        assert workspace.risk_level == RiskLevel.MEDIUM
        assert full.allowed is True
        assert full.requires_approval is False

    def test_ordinary_command_is_low_risk(self):
        result = validate_command("ls -la", SandboxPolicy.WORKSPACE_WRITE)

        assert result.allowed is True
        assert result.requires_approval is False
        assert result.risk_level == RiskLevel.LOW


class TestValidatePath:
    def test_relative_path_inside_workspace(self, workspace):
        result = validate_path("src/main.py", workspace, SandboxPolicy.WORKSPACE_WRITE)

        assert result.allowed is True
        assert result.normalized_path == workspace / "src" / "main.py"

    def test_workspace_root_itself_is_allowed(self, workspace):
        assert validate_path(".", workspace, SandboxPolicy.READ_ONLY).allowed is True

    def test_traversal_is_denied(self, workspace):
        result = validate_path("../outside.txt", workspace, SandboxPolicy.WORKSPACE_WRITE)

        assert result.allowed is False
        assert "traversal" in result.reason.lower()

    def test_absolute_path_outside_is_denied(self, workspace):
        assert validate_path("/etc/hosts", workspace, SandboxPolicy.WORKSPACE_WRITE).allowed is False

    def test_sibling_with_common_prefix_is_denied(self, workspace):
        sibling = f"../{workspace.name}-evil/file.txt"
        assert validate_path(sibling, workspace, SandboxPolicy.WORKSPACE_WRITE).allowed is False

    def test_full_access_may_leave_workspace(self, workspace):
        assert validate_path("../outside.txt", workspace, SandboxPolicy.FULL_ACCESS).allowed is True

    @pytest.mark.parametrize(
        "path", [".env", ".env.production", "keys/id_rsa", "certs/server.pem", ".ssh/config", ".git/config"]
    )
    def test_sensitive_files_denied_even_inside_workspace(self, workspace, path):
        result = validate_path(path, workspace, SandboxPolicy.FULL_ACCESS)

        assert result.allowed is False
        assert "sensitive" in result.reason

    def test_env_example_is_not_sensitive(self, workspace):
        assert validate_path("docs/env.md", workspace, SandboxPolicy.WORKSPACE_WRITE).allowed is True


class TestPolicyHelpers:
    def test_can_write(self):
        assert can_write(SandboxPolicy.READ_ONLY) is False
        assert can_write(SandboxPolicy.WORKSPACE_WRITE) is True
        assert can_write(SandboxPolicy.FULL_ACCESS) is True

    def test_can_execute_commands(self):
        assert can_execute_commands(SandboxPolicy.WORKSPACE_WRITE) is False
        assert can_execute_commands(SandboxPolicy.FULL_ACCESS) is True

    def test_write_extension(self):
        allowed, reason = validate_write_extension("deploy.SH")
        assert allowed is False
        assert ".sh" in reason
        assert validate_write_extension("app.py") == (True, None)


class TestRiskAssessment:
    def test_exec_risk(self):
        assert assess_risk("exec_command", {"command": "ls"}) == RiskLevel.LOW
        assert assess_risk("exec_command", {"command": "pytest -q"}) == RiskLevel.LOW
        assert assess_risk("exec_command", {"command": "pip install requests"}) == RiskLevel.MEDIUM
        assert assess_risk("exec_command", {"command": "rm -f a.txt"}) == RiskLevel.HIGH
        assert assess_risk("exec_command", {"command": "rm -rf /"}) == RiskLevel.HIGH

    def test_write_risk_depends_on_path(self):
        assert assess_risk("write_file", {"path": "src/app.py"}) == RiskLevel.LOW
        assert assess_risk("edit_file", {"path": "pyproject.toml"}) == RiskLevel.MEDIUM

    def test_git_risk(self):
        assert assess_risk("git", {"subcommand": "status"}) == RiskLevel.LOW
        assert assess_risk("git", {"subcommand": "commit", "args": "-m x"}) == RiskLevel.MEDIUM
        assert assess_risk("git", {"subcommand": "checkout", "args": "--force main"}) == RiskLevel.HIGH

    def test_http_risk(self):
        assert assess_risk("http_request", {"method": "get"}) == RiskLevel.LOW
        assert assess_risk("http_request", {"method": "POST"}) == RiskLevel.MEDIUM

    def test_read_tools_are_low(self):
        assert assess_risk("read_file", {"path": ".env"}) == RiskLevel.LOW

    def test_action_kinds(self):
        assert assess_action_risk("git_push", {}) == RiskLevel.HIGH
        assert assess_action_risk("file_delete", {}) == RiskLevel.HIGH
        assert assess_action_risk("command_exec", {"command": "rm x"}) == RiskLevel.HIGH
        assert assess_action_risk("command_exec", {"command": "npm test"}) == RiskLevel.MEDIUM
        assert assess_action_risk("command_exec", {"command": "ls"}) == RiskLevel.LOW
        assert assess_action_risk("file_write", {"path": "app/config.yml"}) == RiskLevel.MEDIUM
        assert assess_action_risk("something_else", {}) == RiskLevel.LOW
