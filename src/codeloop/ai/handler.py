"""Message handler: routes chat commands and tasks to the agent engine."""

from __future__ import annotations

import time
from typing import Callable, Optional

from codeloop.ai.agent import AgentEngine, RunResult
from codeloop.ai.events import AgentEvent, EventType
from codeloop.config import BotConfig
from codeloop.core.approval import ApprovalManager, ApprovalRequest
from codeloop.core.session import SessionNotFoundError
from codeloop.core.types import RunStatus, SessionStatus
from codeloop.log import get_logger
from codeloop.messenger.base import MessengerAdapter
from codeloop.messenger.models import IncomingMessage, OutgoingMessage
from codeloop.storage.models import Session

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000
PROGRESS_INTERVAL = 2.0
MAX_PROGRESS_LINES = 10
MAX_LISTED_FILES = 10

HELP_TEXT = """\
Send a task in plain text and the agent will work on it.

Commands:
/status - show the current session
/cancel - stop the running task at the next step
/resume - continue an interrupted task
/reset - clear the conversation
/pending - list actions waiting for approval
/approve <id> - approve a pending action
/reject <id> [reason] - reject a pending action"""

_STATUS_LABELS = {
    RunStatus.COMPLETED: "Task completed",
    RunStatus.INCOMPLETE: "Task incomplete",
    RunStatus.FAILED: "Task failed",
    RunStatus.CANCELLED: "Task cancelled",
}


class ProgressReporter:
    """Renders agent events into one chat message, edited at most every ``interval`` seconds."""

    def __init__(
        self,
        adapter: MessengerAdapter,
        chat_id: str,
        interval: float = PROGRESS_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._adapter = adapter
        self._chat_id = chat_id
        self._interval = interval
        self._clock = clock
        self._lines: list[str] = []
        self._pending: dict[str, int] = {}
        self._tool_count = 0
        self._message_id: Optional[str] = None
        self._last_render = float("-inf")

    async def handle(self, event: AgentEvent) -> None:
        match event.type:
            case EventType.ITEM_STARTED:
                self._tool_count += 1
                self._pending[event.tool_call_id or ""] = len(self._lines)
                self._lines.append(f"... {event.tool_name}")
            case EventType.ITEM_COMPLETED:
                marker = "ok" if event.success else "failed"
                line = f"[{marker}] {event.tool_name}"
                index = self._pending.pop(event.tool_call_id or "", None)
                if index is None:
                    self._lines.append(line)
                else:
                    self._lines[index] = line
            case EventType.ERROR:
                self._lines.append(f"[error] {event.error}")
            case _:
                return

        await self._render(force=event.type == EventType.ERROR)

    def render_text(self) -> str:
        header = f"Working... ({self._tool_count} tool call{'s' if self._tool_count != 1 else ''})"
        return "\n".join([header, *self._lines[-MAX_PROGRESS_LINES:]])

    async def _render(self, force: bool = False) -> None:
        now = self._clock()
        if not force and now - self._last_render < self._interval:
            return
        self._last_render = now

        text = self.render_text()
        if self._message_id is None:
            self._message_id = await self._adapter.send_message(
                OutgoingMessage(chat_id=self._chat_id, text=text)
            )
        else:
            await self._adapter.edit_message(self._chat_id, self._message_id, text)


def format_result(result: RunResult) -> str:
    lines = [_STATUS_LABELS.get(result.status, result.status.value), ""]
    if result.output:
        lines.extend([result.output, ""])

    if result.modified_files:
        lines.append("Modified files:")
        lines.extend(f"- {path}" for path in result.modified_files[:MAX_LISTED_FILES])
        if len(result.modified_files) > MAX_LISTED_FILES:
            lines.append(f"- ... and {len(result.modified_files) - MAX_LISTED_FILES} more")
        lines.append("")

    lines.append(
        f"Tools: {len(result.tool_calls)} | Tokens: {result.tokens_used} | Iterations: {result.iterations}"
    )
    return "\n".join(lines)


def format_session_status(session: Session, modified_files: list[str] | None = None) -> str:
    lines = [
        "Agent status",
        "",
        f"Session: {session.id}",
        f"Status: {session.status.value}",
        f"Working directory: {session.working_directory}",
        f"Messages: {len(session.messages)}",
        f"Tokens used: {session.total_tokens_used:,} ({session.token_input:,} in / {session.token_output:,} out)",
        f"Created: {session.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Last active: {session.last_active_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if session.current_task:
        lines.extend(["", f"Current task: {session.current_task}"])
    if modified_files:
        lines.extend(["", "Modified since last commit:"])
        lines.extend(f"- {path}" for path in modified_files[:MAX_LISTED_FILES])
    return "\n".join(lines)


class MessageHandler:
    """Handles the full flow: message -> command or agent run -> response."""

    def __init__(
        self,
        adapter: MessengerAdapter,
        engine: AgentEngine,
        bot_config: BotConfig | None = None,
        progress_interval: float = PROGRESS_INTERVAL,
    ):
        self._adapter = adapter
        self._engine = engine
        self._bot_config = bot_config
        self._progress_interval = progress_interval
        self._chats: set[str] = set()
        engine.approvals.on_request(self._notify_approval)

    @property
    def approvals(self) -> ApprovalManager:
        return self._engine.approvals

    async def handle(self, message: IncomingMessage) -> None:
        """Process an incoming message end-to-end."""
        chat_id = message.chat_id
        text = message.text.strip()
        if not text:
            return

        if not self._is_authorized(message.user_id):
            logger.warning("unauthorized_message", chat_id=chat_id, user_id=message.user_id)
            await self._reply(chat_id, "You are not authorized to use this bot.")
            return

        self._chats.add(chat_id)

        if text.startswith("/"):
            command, _, rest = text.partition(" ")
            # Telegram appends the bot name in groups: /status@my_bot
            await self._handle_command(command.split("@", 1)[0].lower(), rest.strip(), message)
            return

        session = await self._engine.sessions.find_by_chat(chat_id)
        if session is not None and session.status != SessionStatus.IDLE:
            await self._reply(chat_id, "A task is already running. Use /cancel to stop it.")
            return

        await self._adapter.send_typing_indicator(chat_id)
        progress = ProgressReporter(self._adapter, chat_id, self._progress_interval)
        result = await self._engine.run(text, chat_id, message.user_id, on_event=progress.handle)
        await self._reply(chat_id, format_result(result))

    async def _handle_command(self, command: str, args: str, message: IncomingMessage) -> None:
        chat_id = message.chat_id
        match command:
            case "/start" | "/help":
                await self._reply(chat_id, HELP_TEXT)

            case "/reset":
                await self._engine.reset(chat_id)
                await self._reply(chat_id, "Session reset. Starting fresh.")

            case "/status":
                session = await self._engine.sessions.get_or_create(chat_id, message.user_id)
                modified = self._engine.context.modified_files(session.id)
                await self._reply(chat_id, format_session_status(session, modified))

            case "/cancel":
                session = await self._engine.sessions.find_by_chat(chat_id)
                if session is not None and await self._engine.cancel(session.id):
                    await self._reply(chat_id, "Cancellation requested. The task stops at the next step.")
                else:
                    await self._reply(chat_id, "No task is running.")

            case "/resume":
                session = await self._engine.sessions.find_by_chat(chat_id)
                if session is None or not session.messages:
                    await self._reply(chat_id, "Nothing to resume.")
                    return
                if session.status != SessionStatus.IDLE:
                    await self._reply(chat_id, "A task is already running.")
                    return
                progress = ProgressReporter(self._adapter, chat_id, self._progress_interval)
                result = await self._engine.resume(session.id, on_event=progress.handle)
                await self._reply(chat_id, format_result(result))

            case "/approve":
                if not args:
                    await self._reply(chat_id, "Usage: /approve <id>")
                elif self.approvals.approve(args.split()[0]):
                    await self._reply(chat_id, "Approved.")
                else:
                    await self._reply(chat_id, "No pending request with that id.")

            case "/reject":
                if not args:
                    await self._reply(chat_id, "Usage: /reject <id> [reason]")
                    return
                request_id, _, reason = args.partition(" ")
                if self.approvals.reject(request_id, reason.strip() or None):
                    await self._reply(chat_id, "Rejected.")
                else:
                    await self._reply(chat_id, "No pending request with that id.")

            case "/pending":
                pending = self.approvals.get_pending()
                if not pending:
                    await self._reply(chat_id, "No pending approvals.")
                else:
                    await self._reply(
                        chat_id, "\n\n".join(ApprovalManager.format_request(r) for r in pending)
                    )

            case _:
                await self._reply(chat_id, f"Unknown command: {command}\n\n{HELP_TEXT}")

    async def _notify_approval(self, request: ApprovalRequest) -> None:
        session_id = request.details.get("session_id")
        if not session_id:
            return
        try:
            session = await self._engine.sessions.get(session_id)
        except SessionNotFoundError:
            return
        if session.chat_id in self._chats:
            await self._reply(session.chat_id, ApprovalManager.format_request(request))

    def _is_authorized(self, user_id: str) -> bool:
        if self._bot_config is None or not self._bot_config.admin_user_ids:
            return True
        return user_id in self._bot_config.admin_user_ids

    async def _reply(self, chat_id: str, text: str) -> None:
        for chunk in split_message(text, max_length=MAX_MESSAGE_LENGTH):
            await self._adapter.send_message(OutgoingMessage(chat_id=chat_id, text=chunk))


def split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a message into chunks that fit within platform limits."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks
