"""Unified message models for chat transports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from codeloop.core.types import Platform


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    bot_id: str
    chat_id: str
    user_id: str
    user_display_name: str
    text: str
    timestamp: datetime
    reply_to_message_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str
    parse_mode: Optional[str] = None  # "markdown", "html", None
    reply_to_message_id: Optional[str] = None
