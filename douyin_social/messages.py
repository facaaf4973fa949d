"""Chat messages stored in SQLite."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from .models import Message

_log = logging.getLogger(__name__)

SEND_ACTION = 1

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    sender_id INTEGER NOT NULL,
    receiver_id INTEGER NOT NULL,
    action_type INTEGER NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

_COLUMNS = "id, sender_id, receiver_id, action_type, content, created_at, updated_at"


class UnsupportedActionError(ValueError):
    """Raised for a message action other than sending."""


def create_schema(connection: sqlite3.Connection) -> None:
    """Create the messages table if it does not exist."""
    connection.execute(_SCHEMA)
    connection.commit()


def _stamp(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone().replace(tzinfo=None)
    return moment.isoformat(sep=" ", timespec="microseconds")


def _row_to_message(row: tuple) -> Message:
    return Message(
        id=row[0],
        sender_id=row[1],
        receiver_id=row[2],
        action_type=row[3],
        content=row[4],
        created_at=datetime.fromisoformat(row[5]),
        updated_at=datetime.fromisoformat(row[6]),
    )


class MessageService:
    """Sends messages and reads conversations between two users."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection

    def send_message(
        self, user_id: int, to_user_id: int, action_type: int, content: str
    ) -> Message:
        """Store a message from one user to another and return it."""
        if action_type != SEND_ACTION:
            raise UnsupportedActionError(f"Undefined actionType: {action_type}")
        now = datetime.now()
        stamp = _stamp(now)
        with self.connection:
            cursor = self.connection.execute(
                "INSERT INTO messages (sender_id, receiver_id, action_type, content, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (user_id, to_user_id, action_type, content, stamp, stamp),
            )
        return Message(
            id=cursor.lastrowid,
            sender_id=user_id,
            receiver_id=to_user_id,
            action_type=action_type,
            content=content,
            created_at=now,
            updated_at=now,
        )

    def get_chat_history(
        self, user_id: int, to_user_id: int, last_time: datetime
    ) -> list[Message]:
        """Return messages between the two users created after ``last_time``, oldest first."""
        rows = self.connection.execute(
            f"SELECT {_COLUMNS} FROM messages"
            " WHERE created_at > ? AND created_at < ?"
            " AND ((sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?))"
            " ORDER BY created_at, id",
            (_stamp(last_time), _stamp(datetime.now()), user_id, to_user_id, to_user_id, user_id),
        ).fetchall()
        return [_row_to_message(row) for row in rows]

    def get_latest_message(self, user_id: int, selected_user_id: int) -> Message | None:
        """Return the newest message exchanged between the two users, if any."""
        row = self.connection.execute(
            f"SELECT {_COLUMNS} FROM messages"
            " WHERE (sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?)"
            " ORDER BY created_at DESC, id DESC LIMIT 1",
            (user_id, selected_user_id, selected_user_id, user_id),
        ).fetchone()
        if row is None:
            _log.debug("no messages between %d and %d", user_id, selected_user_id)
            return None
        return _row_to_message(row)