"""Data models for the storage layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from codeloop.core.types import Role, SessionStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model. ``arguments`` is the raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(id=data["id"], name=data["name"], arguments=data.get("arguments", "{}"))


@dataclass
class Message:
    role: Role
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    def tool_calls_json(self) -> str | None:
        if not self.tool_calls:
            return None
        return json.dumps([tc.to_dict() for tc in self.tool_calls])


@dataclass
class Session:
    id: str
    chat_id: str
    user_id: str
    working_directory: str
    messages: list[Message] = field(default_factory=list)
    status: SessionStatus = SessionStatus.IDLE
    current_task: Optional[str] = None
    token_input: int = 0
    token_output: int = 0
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=utcnow)
    last_active_at: datetime = field(default_factory=utcnow)

    @property
    def total_tokens_used(self) -> int:
        return self.token_input + self.token_output

    def has_system_message(self) -> bool:
        return bool(self.messages) and self.messages[0].role == Role.SYSTEM
