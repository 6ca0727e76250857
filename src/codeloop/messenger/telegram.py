"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telegram import Update
from telegram.constants import ChatAction
from telegram.error import BadRequest
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from codeloop.core.types import Platform
from codeloop.log import get_logger
from codeloop.messenger.base import MessengerAdapter
from codeloop.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using python-telegram-bot."""

    def __init__(self, bot_id: str, config: dict):
        super().__init__(bot_id, config)
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        token = self.config.get("token", "")
        if not token:
            raise ValueError(f"Telegram bot token not configured for bot '{self.bot_id}'")

        # Concurrent updates let /approve and /cancel through while a run is in progress.
        self._app = Application.builder().token(token).concurrent_updates(True).build()
        self._app.add_handler(TGMessageHandler(filters.TEXT, self._on_telegram_message))

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped", bot_id=self.bot_id)

    async def send_message(self, message: OutgoingMessage) -> Optional[str]:
        if not self._app or not self._app.bot:
            return None

        parse_mode = None
        if message.parse_mode == "markdown":
            parse_mode = "MarkdownV2"
        elif message.parse_mode == "html":
            parse_mode = "HTML"

        sent = await self._app.bot.send_message(
            chat_id=int(message.chat_id),
            text=message.text,
            parse_mode=parse_mode,
            reply_to_message_id=int(message.reply_to_message_id) if message.reply_to_message_id else None,
        )
        return str(sent.message_id)

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        if not self._app or not self._app.bot:
            return
        try:
            await self._app.bot.edit_message_text(
                chat_id=int(chat_id), message_id=int(message_id), text=text
            )
        except BadRequest as e:
            # Editing to identical text is rejected by Telegram.
            logger.debug("telegram_edit_skipped", chat_id=chat_id, error=str(e))

    async def send_typing_indicator(self, chat_id: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.send_chat_action(chat_id=int(chat_id), action=ChatAction.TYPING)

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        if not update.message or not self._message_callback:
            return

        msg = update.message
        text = msg.text or ""
        if not text:
            return

        incoming = IncomingMessage(
            platform=Platform.TELEGRAM,
            bot_id=self.bot_id,
            chat_id=str(msg.chat_id),
            user_id=str(msg.from_user.id) if msg.from_user else "unknown",
            user_display_name=msg.from_user.full_name if msg.from_user else "Unknown",
            text=text,
            timestamp=msg.date or datetime.now(timezone.utc),
            reply_to_message_id=str(msg.reply_to_message.message_id) if msg.reply_to_message else None,
        )

        try:
            await self._message_callback(incoming)
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), chat_id=str(msg.chat_id))
