"""Session repository: durable CRUD over sessions and their message logs."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable, Optional

from codeloop.core.types import Role, SessionStatus
from codeloop.log import get_logger
from codeloop.storage.database import Database
from codeloop.storage.models import Message, Session, ToolCall

logger = get_logger(__name__)


class SessionRepository:
    """Every write commits before returning."""

    def __init__(self, db: Database):
        self._db = db

    async def insert_session(self, session: Session) -> None:
        await self._db.conn.execute(
            """INSERT INTO sessions
               (session_id, chat_id, user_id, working_directory, status, current_task,
                token_input, token_output, cancel_requested, created_at, last_active_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                session.id,
                session.chat_id,
                session.user_id,
                session.working_directory,
                session.status.value,
                session.current_task,
                session.token_input,
                session.token_output,
                int(session.cancel_requested),
                session.created_at.isoformat(),
                session.last_active_at.isoformat(),
            ),
        )
        await self._db.conn.commit()

    async def update_session(self, session: Session) -> None:
        """Persist the session metadata (not the message log)."""
        await self._db.conn.execute(
            """UPDATE sessions
               SET status = ?, current_task = ?, token_input = ?, token_output = ?,
                   cancel_requested = ?, working_directory = ?, last_active_at = ?
               WHERE session_id = ?""",
            (
                session.status.value,
                session.current_task,
                session.token_input,
                session.token_output,
                int(session.cancel_requested),
                session.working_directory,
                session.last_active_at.isoformat(),
                session.id,
            ),
        )
        await self._db.conn.commit()

    async def append_message(
        self,
        session: Session,
        message: Message,
        drop_ids: Iterable[int] = (),
    ) -> int:
        """Insert ``message`` and delete trimmed rows in a single transaction."""
        conn = self._db.conn
        cursor = await conn.execute(
            """INSERT INTO session_messages
               (session_id, role, content, tool_calls_json, tool_call_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                session.id,
                message.role.value,
                message.content,
                message.tool_calls_json(),
                message.tool_call_id,
                message.timestamp.isoformat(),
            ),
        )
        drop = list(drop_ids)
        if drop:
            placeholders = ",".join("?" for _ in drop)
            await conn.execute(
                f"DELETE FROM session_messages WHERE session_id = ? AND id IN ({placeholders})",
                (session.id, *drop),
            )
        await conn.execute(
            "UPDATE sessions SET last_active_at = ? WHERE session_id = ?",
            (session.last_active_at.isoformat(), session.id),
        )
        await conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def clear_messages(self, session_id: str) -> int:
        cursor = await self._db.conn.execute(
            "DELETE FROM session_messages WHERE session_id = ?", (session_id,)
        )
        await self._db.conn.commit()
        return cursor.rowcount

    async def get_session(self, session_id: str) -> Optional[Session]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        session = self._row_to_session(row)
        session.messages = await self.get_messages(session_id)
        return session

    async def find_by_chat(self, chat_id: str) -> Optional[Session]:
        cursor = await self._db.conn.execute(
            """SELECT session_id FROM sessions WHERE chat_id = ?
               ORDER BY last_active_at DESC LIMIT 1""",
            (chat_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return await self.get_session(row["session_id"])

    async def get_messages(self, session_id: str) -> list[Message]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM session_messages WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def list_sessions(self) -> list[Session]:
        """List session metadata, most recently active first. Message logs are not loaded."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM sessions ORDER BY last_active_at DESC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def delete_session(self, session_id: str) -> None:
        await self._db.conn.execute(
            "DELETE FROM session_messages WHERE session_id = ?", (session_id,)
        )
        await self._db.conn.execute(
            "DELETE FROM sessions WHERE session_id = ?", (session_id,)
        )
        await self._db.conn.commit()

    @staticmethod
    def _row_to_session(row) -> Session:
        return Session(
            id=row["session_id"],
            chat_id=row["chat_id"],
            user_id=row["user_id"],
            working_directory=row["working_directory"],
            status=SessionStatus(row["status"]),
            current_task=row["current_task"],
            token_input=row["token_input"],
            token_output=row["token_output"],
            cancel_requested=bool(row["cancel_requested"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_active_at=datetime.fromisoformat(row["last_active_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        tool_calls: list[ToolCall] = []
        if row["tool_calls_json"]:
            tool_calls = [ToolCall.from_dict(tc) for tc in json.loads(row["tool_calls_json"])]
        return Message(
            id=row["id"],
            role=Role(row["role"]),
            content=row["content"],
            tool_calls=tool_calls,
            tool_call_id=row["tool_call_id"],
            timestamp=datetime.fromisoformat(row["created_at"]),
        )
