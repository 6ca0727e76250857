"""Safety validation for shell commands and workspace paths.

Everything here is pure: classification depends only on the arguments, so the
same functions back the command tool, the file tools and the approval flow.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from codeloop.core.types import RiskLevel, SandboxPolicy

# Never allowed, whatever the sandbox policy.
BLOCKED_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"rm\s+(-[rRf]+|--recursive)\s+[/\\]"),
    re.compile(r"rm\s+(-[rRf]+|--recursive)\s+~"),
    re.compile(r"del\s+/s\s+/q\s+[A-Z]:\\", re.IGNORECASE),
    re.compile(r"format\s+[A-Z]:", re.IGNORECASE),
    re.compile(r"mkfs", re.IGNORECASE),
    re.compile(r"dd\s+if=.*of=/dev", re.IGNORECASE),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
    re.compile(r">\s*/dev/sd[a-z]", re.IGNORECASE),
    re.compile(r"\b(shutdown|reboot|halt|poweroff)\b|\binit\s+[0-6]\b", re.IGNORECASE),
    re.compile(r"chmod\s+(-R\s+)?777\s+/(\s|$)", re.IGNORECASE),
    re.compile(r"chown\s+-R.*\s+/(\s|$)", re.IGNORECASE),
)

# Allowed, but only after explicit approval.
DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\brm\s", re.IGNORECASE),
    re.compile(r"\bdel\s", re.IGNORECASE),
    re.compile(r"git\s+push", re.IGNORECASE),
    re.compile(r"git\s+reset\s+--hard", re.IGNORECASE),
    re.compile(r"(npm|yarn|pnpm)\s+publish", re.IGNORECASE),
    re.compile(r"twine\s+upload", re.IGNORECASE),
    re.compile(r"docker\s+(rm|rmi|kill)", re.IGNORECASE),
    re.compile(r"kubectl\s+delete", re.IGNORECASE),
    re.compile(r"DROP\s+(TABLE|DATABASE)", re.IGNORECASE),
    re.compile(r"TRUNCATE\s+TABLE", re.IGNORECASE),
)

PACKAGE_INSTALL_PATTERN = re.compile(
    r"(npm|pip|pip3|apt|apt-get|brew|yarn|pnpm)\s+(install|add)", re.IGNORECASE
)

SENSITIVE_PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(^|/)\.env$", re.IGNORECASE),
    re.compile(r"(^|/)\.env\.[^./]+$", re.IGNORECASE),
    re.compile(r"id_rsa|id_ed25519|id_ecdsa|id_dsa", re.IGNORECASE),
    re.compile(r"\.pem$|\.key$", re.IGNORECASE),
    re.compile(r"\.aws/credentials", re.IGNORECASE),
    re.compile(r"(^|/)\.ssh/", re.IGNORECASE),
    re.compile(r"\.git/config$", re.IGNORECASE),
    re.compile(r"(^|/)\.(npmrc|netrc|pypirc)$", re.IGNORECASE),
    re.compile(r"(^|/)\.(bash|zsh|sh|python)_history$", re.IGNORECASE),
)

BLOCKED_WRITE_EXTENSIONS = frozenset(
    {".exe", ".dll", ".so", ".dylib", ".bin", ".sh", ".bat", ".cmd", ".ps1", ".vbs"}
)


@dataclass(frozen=True, slots=True)
class CommandValidation:
    allowed: bool
    requires_approval: bool
    risk_level: RiskLevel
    reason: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PathValidation:
    allowed: bool
    normalized_path: Path
    reason: Optional[str] = None


def can_write(policy: SandboxPolicy) -> bool:
    return policy in (SandboxPolicy.WORKSPACE_WRITE, SandboxPolicy.FULL_ACCESS)


def can_execute_commands(policy: SandboxPolicy) -> bool:
    return policy == SandboxPolicy.FULL_ACCESS


def is_blocked_command(command: str) -> bool:
    return any(p.search(command) for p in BLOCKED_PATTERNS)


def is_dangerous_command(command: str) -> bool:
    return any(p.search(command) for p in DANGEROUS_PATTERNS)


def validate_command(command: str, policy: SandboxPolicy) -> CommandValidation:
    """Classify a shell command.

    The block list runs first so that a blocked command stays blocked even under
    ``full-access``; the policy gate comes second, then the approval tiers.
    """
    if is_blocked_command(command):
        return CommandValidation(
            allowed=False,
            requires_approval=False,
            risk_level=RiskLevel.HIGH,
            reason="This command is blocked for security reasons",
        )

    if policy == SandboxPolicy.READ_ONLY:
        return CommandValidation(
            allowed=False,
            requires_approval=False,
            risk_level=RiskLevel.LOW,
            reason="Command execution not allowed in read-only mode",
        )

    if is_dangerous_command(command):
        return CommandValidation(allowed=True, requires_approval=True, risk_level=RiskLevel.HIGH)

    if PACKAGE_INSTALL_PATTERN.search(command):
        return CommandValidation(
            allowed=True,
            requires_approval=policy != SandboxPolicy.FULL_ACCESS,
            risk_level=RiskLevel.MEDIUM,
        )

    return CommandValidation(allowed=True, requires_approval=False, risk_level=RiskLevel.LOW)


def _is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def validate_path(file_path: str, workspace_root: str | Path, policy: SandboxPolicy) -> PathValidation:
    """Resolve ``file_path`` against the workspace and check containment and sensitivity.

    Both checks must pass. Sensitive files are refused even inside the workspace
    and even under ``full-access``.
    """
    root = Path(os.path.abspath(workspace_root))
    normalized = Path(os.path.abspath(os.path.join(root, os.path.expanduser(file_path))))

    if not _is_within(normalized, root) and policy != SandboxPolicy.FULL_ACCESS:
        return PathValidation(
            allowed=False,
            normalized_path=normalized,
            reason="Path traversal attempt detected. Access denied outside workspace.",
        )

    posix = normalized.as_posix()
    for pattern in SENSITIVE_PATH_PATTERNS:
        if pattern.search(posix):
            return PathValidation(
                allowed=False,
                normalized_path=normalized,
                reason=f"Access to sensitive file blocked: {normalized.name}",
            )

    return PathValidation(allowed=True, normalized_path=normalized)


def validate_write_extension(file_path: str | Path) -> tuple[bool, Optional[str]]:
    ext = Path(file_path).suffix.lower()
    if ext in BLOCKED_WRITE_EXTENSIONS:
        return False, f"Writing executable files ({ext}) is not allowed"
    return True, None


def assess_risk(tool_name: str, args: dict[str, Any]) -> RiskLevel:
    """Risk tier of a tool invocation, used to decide whether to ask for approval."""
    match tool_name:
        case "exec_command":
            # Tier only; whether the sandbox allows the command is the tool's call.
            return validate_command(str(args.get("command", "")), SandboxPolicy.FULL_ACCESS).risk_level
        case "write_file" | "edit_file":
            path = str(args.get("path", ""))
            if re.search(r"package\.json|pyproject\.toml|\.env|config|secret", path, re.IGNORECASE):
                return RiskLevel.MEDIUM
            return RiskLevel.LOW
        case "git":
            subcommand = str(args.get("subcommand", ""))
            extra = str(args.get("args", ""))
            if re.search(r"push|reset|force", f"{subcommand} {extra}", re.IGNORECASE):
                return RiskLevel.HIGH
            if re.search(r"commit|branch|checkout|stash", subcommand, re.IGNORECASE):
                return RiskLevel.MEDIUM
            return RiskLevel.LOW
        case "http_request":
            method = str(args.get("method", "GET")).upper()
            return RiskLevel.LOW if method == "GET" else RiskLevel.MEDIUM
        case _:
            return RiskLevel.LOW


def assess_action_risk(action: str, details: dict[str, Any]) -> RiskLevel:
    """Risk tier of a non-tool action kind (``git_push``, ``file_delete``, ...)."""
    if action in ("git_push", "file_delete"):
        return RiskLevel.HIGH

    if action == "command_exec":
        command = str(details.get("command", "")).lower()
        if re.search(r"\b(rm|del|format)\b", command):
            return RiskLevel.HIGH
        if re.search(r"\b(npm|git|pip)\b", command):
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    if action == "file_write":
        path = str(details.get("path", "")).lower()
        if ".env" in path or "config" in path or "secret" in path:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    return RiskLevel.LOW
