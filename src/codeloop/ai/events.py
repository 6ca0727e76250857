"""Progress events emitted by the agent loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Awaitable, Callable, Optional


class EventType(StrEnum):
    TURN_STARTED = "turn.started"
    ITEM_STARTED = "item.started"
    ITEM_COMPLETED = "item.completed"
    TURN_COMPLETED = "turn.completed"
    ERROR = "error"


@dataclass(frozen=True)
class AgentEvent:
    type: EventType
    session_id: str
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def outcome(self) -> Optional[str]:
        if self.success is None:
            return None
        return "success" if self.success else "error"


EventHandler = Callable[[AgentEvent], Awaitable[None]]
