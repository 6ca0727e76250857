"""Tool definitions, execution context and results shared by every tool."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Optional

from codeloop.core.types import SandboxPolicy


class ToolErrorKind(StrEnum):
    UNKNOWN_TOOL = "unknown_tool"
    BAD_ARGUMENTS = "bad_arguments"
    POLICY_DENIED = "policy_denied"
    APPROVAL_REJECTED = "approval_rejected"
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Declarative description of a tool, as shown to the model."""

    name: str
    description: str
    parameters: dict[str, Any]
    mutating: bool = False


@dataclass(frozen=True, slots=True)
class ToolContext:
    working_directory: str
    session_id: str
    user_id: str
    sandbox_policy: SandboxPolicy
    max_file_size_kb: int = 500
    http_allowlist: tuple[str, ...] = ()


@dataclass
class ToolResult:
    success: bool
    output: str = ""
    error: Optional[str] = None
    error_kind: Optional[ToolErrorKind] = None
    tool_call_id: str = ""
    elapsed_ms: float = 0.0
    modified_files: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, output: str, modified_files: list[str] | None = None) -> ToolResult:
        return cls(success=True, output=output, modified_files=modified_files or [])

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ToolErrorKind = ToolErrorKind.EXECUTION_FAILED,
        output: str = "",
    ) -> ToolResult:
        return cls(success=False, output=output, error=error, error_kind=kind)

    def as_message_content(self) -> str:
        """Text fed back to the model for this result."""
        if self.success:
            return self.output
        if self.output:
            return f"Error: {self.error}\n\n{self.output}"
        return f"Error: {self.error}"


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[ToolResult]]


class Tool(ABC):
    """Base class for built-in tools; a tool bundles its definition and handler."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @property
    def mutating(self) -> bool:
        """Whether the tool changes workspace or repository state."""
        return False

    @abstractmethod
    async def execute(self, args: dict[str, Any], context: ToolContext) -> ToolResult:
        ...

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.input_schema,
            mutating=self.mutating,
        )
