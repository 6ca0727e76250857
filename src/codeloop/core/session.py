"""Session store: in-memory cache over the durable session repository.

Disk is the source of truth. The cache only saves a round-trip on hot sessions
and is rebuilt lazily after a restart.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path

from codeloop.core.types import Role, SessionStatus
from codeloop.log import get_logger
from codeloop.storage.models import Message, Session, utcnow
from codeloop.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when a session id is not known to the store."""


def trim_messages(messages: list[Message], cap: int) -> tuple[list[Message], list[Message]]:
    """Bound ``messages`` to ``cap`` entries, returning ``(kept, dropped)``.

    A leading system message and the newest message always survive. The cut
    never separates tool results from their assistant request. A finished batch
    straddling the cut is dropped whole; the batch still being filled is kept
    whole, so the log may run over the cap by up to one batch.
    """
    if len(messages) <= cap:
        return messages, []

    head: list[Message] = []
    body = messages
    if messages and messages[0].role == Role.SYSTEM:
        head = [messages[0]]
        body = messages[1:]

    start = len(body) - max(cap - len(head), 1)
    if body[start].role == Role.TOOL:
        end = start
        while end < len(body) and body[end].role == Role.TOOL:
            end += 1
        if end < len(body):
            start = end
        else:
            while start > 0 and body[start].role == Role.TOOL:
                start -= 1
    recent = body[start:]

    kept = head + recent
    kept_ids = {id(m) for m in kept}
    dropped = [m for m in messages if id(m) not in kept_ids]
    return kept, dropped


class SessionStore:
    """CRUD over sessions. Every mutation is persisted before the call returns."""

    def __init__(
        self,
        repo: SessionRepository,
        default_workspace: str,
        max_history_messages: int = 50,
    ):
        self._repo = repo
        self._default_workspace = str(Path(default_workspace).resolve())
        self._max_history = max_history_messages
        self._sessions: dict[str, Session] = {}
        self._by_chat: dict[str, str] = {}
        self._write_lock = asyncio.Lock()

    @property
    def repo(self) -> SessionRepository:
        return self._repo

    async def create(self, chat_id: str, user_id: str, working_directory: str | None = None) -> Session:
        session = Session(
            id=f"thread_{uuid.uuid4().hex[:12]}",
            chat_id=chat_id,
            user_id=user_id,
            working_directory=working_directory or self._default_workspace,
        )
        async with self._write_lock:
            await self._repo.insert_session(session)
        self._remember(session)
        logger.info("session_created", session_id=session.id, chat_id=chat_id, user_id=user_id)
        return session

    async def get_or_create(self, chat_id: str, user_id: str = "") -> Session:
        """Return the session bound to ``chat_id``, creating it on first contact."""
        session_id = self._by_chat.get(chat_id)
        if session_id and session_id in self._sessions:
            return self._sessions[session_id]

        session = await self._repo.find_by_chat(chat_id)
        if session is not None:
            self._remember(session)
            logger.debug("session_loaded", session_id=session.id, chat_id=chat_id)
            return session

        return await self.create(chat_id, user_id)

    async def find_by_chat(self, chat_id: str) -> Session | None:
        session_id = self._by_chat.get(chat_id)
        if session_id and session_id in self._sessions:
            return self._sessions[session_id]
        session = await self._repo.find_by_chat(chat_id)
        if session is not None:
            self._remember(session)
        return session

    async def get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        session = await self._repo.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self._remember(session)
        return session

    async def append_message(self, session_id: str, message: Message) -> None:
        session = await self.get(session_id)
        kept, dropped = trim_messages([*session.messages, message], self._max_history)
        session.last_active_at = utcnow()

        async with self._write_lock:
            message.id = await self._repo.append_message(
                session,
                message,
                drop_ids=[m.id for m in dropped if m.id is not None],
            )
        session.messages = kept
        if dropped:
            logger.debug("session_trimmed", session_id=session_id, dropped=len(dropped))

    async def set_status(
        self, session_id: str, status: SessionStatus, current_task: str | None = None
    ) -> None:
        """Change the lifecycle status; ``current_task`` is kept when not given."""
        session = await self.get(session_id)
        session.status = status
        if current_task is not None:
            session.current_task = current_task
        await self._save(session)

    async def add_token_usage(self, session_id: str, input_tokens: int, output_tokens: int) -> None:
        session = await self.get(session_id)
        session.token_input += input_tokens
        session.token_output += output_tokens
        await self._save(session)

    async def request_cancel(self, session_id: str) -> None:
        session = await self.get(session_id)
        session.cancel_requested = True
        await self._save(session)
        logger.info("session_cancel_requested", session_id=session_id)

    async def clear_cancel(self, session_id: str) -> None:
        session = await self.get(session_id)
        if session.cancel_requested:
            session.cancel_requested = False
            await self._save(session)

    async def reset(self, session_id: str) -> None:
        """Clear the log and counters, keeping the session identity."""
        session = await self.get(session_id)
        async with self._write_lock:
            await self._repo.clear_messages(session_id)
        session.messages = []
        session.token_input = 0
        session.token_output = 0
        session.status = SessionStatus.IDLE
        session.current_task = None
        session.cancel_requested = False
        await self._save(session)
        logger.info("session_reset", session_id=session_id)

    async def delete(self, session_id: str) -> None:
        async with self._write_lock:
            await self._repo.delete_session(session_id)
        session = self._sessions.pop(session_id, None)
        if session is not None and self._by_chat.get(session.chat_id) == session_id:
            del self._by_chat[session.chat_id]
        logger.info("session_deleted", session_id=session_id)

    async def list_sessions(self) -> list[Session]:
        return await self._repo.list_sessions()

    async def recover_interrupted(self) -> list[str]:
        """Return sessions left running by a previous process to ``idle``.

        Their logs are untouched, so they can be picked up again with a resume.
        """
        recovered = []
        for session in await self._repo.list_sessions():
            if session.status == SessionStatus.IDLE:
                continue
            session.status = SessionStatus.IDLE
            session.cancel_requested = False
            async with self._write_lock:
                await self._repo.update_session(session)
            recovered.append(session.id)
        if recovered:
            logger.warning("sessions_recovered", count=len(recovered), session_ids=recovered)
        return recovered

    async def _save(self, session: Session) -> None:
        session.last_active_at = utcnow()
        async with self._write_lock:
            await self._repo.update_session(session)

    def _remember(self, session: Session) -> None:
        self._sessions[session.id] = session
        self._by_chat[session.chat_id] = session.id
