"""Allow/deny policy deciding which tools the model gets to see."""

from __future__ import annotations

import fnmatch
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar

from codeloop.core.types import SandboxPolicy

T = TypeVar("T")

# Tools that can only fail under a read-only sandbox.
READ_ONLY_DENY_TOOLS = ("write_file", "edit_file", "exec_command")


@dataclass(frozen=True, slots=True)
class ToolPolicy:
    """Deny always wins. An empty allow list means "everything not denied"."""

    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()

    @classmethod
    def from_lists(cls, allow: Iterable[str] = (), deny: Iterable[str] = ()) -> ToolPolicy:
        return cls(allow=tuple(allow), deny=tuple(deny))


@dataclass(frozen=True, slots=True)
class _AllPattern:
    def matches(self, name: str) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class _ExactPattern:
    value: str

    def matches(self, name: str) -> bool:
        return name == self.value


@dataclass(frozen=True, slots=True)
class _GlobPattern:
    regex: re.Pattern[str]

    def matches(self, name: str) -> bool:
        return self.regex.match(name) is not None


CompiledPattern = _AllPattern | _ExactPattern | _GlobPattern


def _normalize_name(name: str) -> str:
    return name.strip().lower()


def compile_pattern(pattern: str) -> CompiledPattern:
    normalized = pattern.strip()
    if normalized == "*":
        return _AllPattern()
    if "*" in normalized or "?" in normalized:
        return _GlobPattern(re.compile(fnmatch.translate(normalized), re.IGNORECASE))
    return _ExactPattern(_normalize_name(normalized))


def make_policy_matcher(policy: ToolPolicy) -> Callable[[str], bool]:
    deny = [compile_pattern(p) for p in policy.deny]
    allow = [compile_pattern(p) for p in policy.allow]

    def _matcher(name: str) -> bool:
        normalized = _normalize_name(name)
        if any(p.matches(normalized) for p in deny):
            return False
        if not allow:
            return True
        return any(p.matches(normalized) for p in allow)

    return _matcher


def filter_by_policy(
    items: Iterable[T], policy: Optional[ToolPolicy], name_of: Callable[[T], str]
) -> list[T]:
    if policy is None:
        return list(items)
    matcher = make_policy_matcher(policy)
    return [item for item in items if matcher(name_of(item))]


def merge_policies(*policies: Optional[ToolPolicy]) -> ToolPolicy:
    """Union of the allow lists and of the deny lists; deny still wins."""
    allow: list[str] = []
    deny: list[str] = []
    for policy in policies:
        if policy is None:
            continue
        allow.extend(policy.allow)
        deny.extend(policy.deny)
    return ToolPolicy(allow=tuple(dict.fromkeys(allow)), deny=tuple(dict.fromkeys(deny)))


def sandbox_tool_policy(sandbox: SandboxPolicy) -> Optional[ToolPolicy]:
    """Hide the tools ``sandbox`` would refuse outright, or ``None`` when all may run."""
    if sandbox == SandboxPolicy.READ_ONLY:
        return ToolPolicy(deny=READ_ONLY_DENY_TOOLS)
    return None
