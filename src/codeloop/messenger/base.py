"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from codeloop.messenger.models import IncomingMessage, OutgoingMessage

MessageCallback = Callable[[IncomingMessage], Awaitable[None]]


class MessengerAdapter(ABC):
    """Base class for chat transports.

    An adapter only moves text in and out; routing and the agent live in
    ``codeloop.ai.handler``.
    """

    def __init__(self, bot_id: str, config: dict):
        self.bot_id = bot_id
        self.config = config
        self._message_callback: MessageCallback | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> Optional[str]:
        """Send a message; returns the platform message id when there is one."""
        ...

    @abstractmethod
    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        """Replace the text of a message sent earlier by this adapter."""
        ...

    @abstractmethod
    async def send_typing_indicator(self, chat_id: str) -> None:
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        ...
