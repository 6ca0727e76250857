"""Terminal adapter used by ``codeloop run`` for one-shot local tasks."""

from __future__ import annotations

import itertools
import sys
from typing import Optional, TextIO

from codeloop.core.types import Platform
from codeloop.messenger.base import MessengerAdapter
from codeloop.messenger.models import OutgoingMessage


class ConsoleAdapter(MessengerAdapter):
    """Writes outgoing messages to a stream. Progress edits are printed as new lines."""

    def __init__(self, bot_id: str = "console", stream: TextIO | None = None):
        super().__init__(bot_id, {})
        self._stream = stream or sys.stdout
        self._ids = itertools.count(1)
        self._last_text: dict[str, str] = {}

    @property
    def platform_name(self) -> str:
        return Platform.CLI

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_message(self, message: OutgoingMessage) -> Optional[str]:
        message_id = str(next(self._ids))
        self._last_text[message_id] = message.text
        print(message.text, file=self._stream, flush=True)
        return message_id

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        previous = set(self._last_text.get(message_id, "").split("\n"))
        self._last_text[message_id] = text
        # A terminal cannot rewrite earlier output, so print only lines not shown yet.
        for line in text.split("\n")[1:]:
            if line not in previous:
                print(line, file=self._stream, flush=True)

    async def send_typing_indicator(self, chat_id: str) -> None:
        pass
