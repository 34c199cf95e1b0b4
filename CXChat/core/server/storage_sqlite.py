"""SQLite persistence layer for CXChat.

Holds the three collections the messaging core touches:
  - users (the user directory: id, username, public profile fields)
  - messages (direct messages with read state)
  - notifications (like / comment / follow / message / reminder)

Design goals:
  - Zero extra dependencies (uses stdlib sqlite3)
  - Safe for multi-request use (single process): guarded by a lock
  - Each public method is one independent round-trip; there is no
    transaction spanning several calls

The DB file location is controlled by Config.SQLITE_DB_FILE.
"""

from __future__ import annotations

import secrets
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from CXChat.core.message.records import MessageRecord, NotificationRecord, UserProfile


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS users (
  id TEXT PRIMARY KEY,
  username TEXT UNIQUE NOT NULL,
  name TEXT NOT NULL DEFAULT '',
  avatar TEXT NOT NULL DEFAULT '',
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sender TEXT NOT NULL,
  receiver TEXT NOT NULL,
  content TEXT NOT NULL,
  type TEXT NOT NULL DEFAULT 'text', -- text / post_share
  post_id TEXT,
  is_read INTEGER NOT NULL DEFAULT 0,
  read_at REAL,
  created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  sender TEXT NOT NULL,
  receiver TEXT NOT NULL,
  type TEXT NOT NULL, -- like / comment / follow / message / reminder
  message_id INTEGER,
  post_id TEXT,
  content TEXT,
  is_read INTEGER NOT NULL DEFAULT 0,
  created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_pair_time ON messages(sender, receiver, created_at);
CREATE INDEX IF NOT EXISTS idx_messages_receiver_unread ON messages(receiver, is_read);
CREATE INDEX IF NOT EXISTS idx_notifications_receiver ON notifications(receiver, is_read, created_at);
"""

CHAT_PARTNERS_SQL = """
WITH ranked AS (
  SELECT m.id, m.sender, m.content, m.created_at,
         CASE WHEN m.sender = :user THEN m.receiver ELSE m.sender END AS partner,
         ROW_NUMBER() OVER (
           PARTITION BY CASE WHEN m.sender = :user THEN m.receiver ELSE m.sender END
           ORDER BY m.created_at DESC, m.id DESC
         ) AS rn
  FROM messages m
  WHERE m.sender = :user OR m.receiver = :user
)
SELECT r.partner, r.id, r.sender, r.content, r.created_at,
       (SELECT COUNT(*) FROM messages u
         WHERE u.sender = r.partner AND u.receiver = :user AND u.is_read = 0) AS unread_count
FROM ranked r
WHERE r.rn = 1
ORDER BY r.created_at DESC, r.id DESC
"""


@dataclass(frozen=True)
class ChatPartnerRow:
    partner: str
    last_message_id: int
    last_sender: str
    last_content: str
    last_created_at: float
    unread_count: int


def _escape_like(pattern: str) -> str:
    return pattern.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _message_from_row(row: sqlite3.Row) -> MessageRecord:
    return MessageRecord(
        id=int(row["id"]),
        sender=str(row["sender"]),
        receiver=str(row["receiver"]),
        content=str(row["content"]),
        type=str(row["type"]),
        post_id=row["post_id"],
        is_read=bool(row["is_read"]),
        read_at=(float(row["read_at"]) if row["read_at"] is not None else None),
        created_at=float(row["created_at"]),
    )


def _notification_from_row(row: sqlite3.Row) -> NotificationRecord:
    return NotificationRecord(
        id=int(row["id"]),
        sender=str(row["sender"]),
        receiver=str(row["receiver"]),
        type=str(row["type"]),
        message_id=(int(row["message_id"]) if row["message_id"] is not None else None),
        post_id=row["post_id"],
        content=row["content"],
        is_read=bool(row["is_read"]),
        created_at=float(row["created_at"]),
    )


def _profile_from_row(row: sqlite3.Row) -> UserProfile:
    return UserProfile(
        id=str(row["id"]),
        username=str(row["username"]),
        name=str(row["name"]),
        avatar=str(row["avatar"]),
    )


class SQLiteStore:
    """A tiny SQLite-backed user directory and document store."""

    def __init__(self, db_path: str):
        self.db_path = str(Path(db_path))
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self._conn.executescript(SCHEMA_SQL)
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --------------------------- users ---------------------------
    def create_user(
        self,
        username: str,
        name: str = "",
        avatar: str = "",
        user_id: Optional[str] = None
    ) -> Optional[UserProfile]:
        """Insert a user; None if the username (or id) is taken."""
        uid = user_id or secrets.token_hex(12)
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO users(id, username, name, avatar, created_at) VALUES(?,?,?,?,?)",
                    (uid, username, name, avatar, time.time()),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                return None
        return UserProfile(id=uid, username=username, name=name, avatar=avatar)

    def exists(self, user_id: str) -> bool:
        with self._lock:
            cur = self._conn.execute("SELECT 1 FROM users WHERE id=?", (user_id,))
            return cur.fetchone() is not None

    def public_profile(self, user_id: str) -> Optional[UserProfile]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT id, username, name, avatar FROM users WHERE id=?",
                (user_id,),
            )
            row = cur.fetchone()
            return None if row is None else _profile_from_row(row)

    def get_user_by_username(self, username: str) -> Optional[UserProfile]:
        with self._lock:
            cur = self._conn.execute(
                "SELECT id, username, name, avatar FROM users WHERE username=?",
                (username,),
            )
            row = cur.fetchone()
            return None if row is None else _profile_from_row(row)

    def find_by_username_pattern(self, pattern: str, limit: int = 20) -> List[str]:
        like = f"%{_escape_like((pattern or '').strip().lower())}%"
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT id FROM users
                WHERE lower(username) LIKE ? ESCAPE '\\'
                ORDER BY username
                LIMIT ?
                """,
                (like, int(limit)),
            )
            return [str(r["id"]) for r in cur.fetchall()]

    # -------------------------- messages --------------------------
    def insert_message(
        self,
        sender: str,
        receiver: str,
        content: str,
        type: str = "text",
        post_id: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> MessageRecord:
        now = time.time() if created_at is None else float(created_at)
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO messages(sender, receiver, content, type, post_id, is_read, read_at, created_at)
                VALUES(?,?,?,?,?,0,NULL,?)
                """,
                (sender, receiver, content, type, post_id, now),
            )
            self._conn.commit()
            message_id = int(cur.lastrowid)
        return MessageRecord(
            id=message_id,
            sender=sender,
            receiver=receiver,
            content=content,
            type=type,
            post_id=post_id,
            created_at=now,
        )

    def get_message(self, message_id: int) -> Optional[MessageRecord]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM messages WHERE id=?", (int(message_id),))
            row = cur.fetchone()
            return None if row is None else _message_from_row(row)

    def conversation(self, user1: str, user2: str) -> List[MessageRecord]:
        """All messages between two users, oldest first."""
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM messages
                WHERE (sender=? AND receiver=?) OR (sender=? AND receiver=?)
                ORDER BY created_at ASC, id ASC
                """,
                (user1, user2, user2, user1),
            )
            return [_message_from_row(r) for r in cur.fetchall()]

    def chat_partners(self, user_id: str) -> List[ChatPartnerRow]:
        """Latest message and unread count per conversation partner."""
        with self._lock:
            cur = self._conn.execute(CHAT_PARTNERS_SQL, {"user": user_id})
            return [
                ChatPartnerRow(
                    partner=str(r["partner"]),
                    last_message_id=int(r["id"]),
                    last_sender=str(r["sender"]),
                    last_content=str(r["content"]),
                    last_created_at=float(r["created_at"]),
                    unread_count=int(r["unread_count"]),
                )
                for r in cur.fetchall()
            ]

    def mark_messages_read(self, sender: str, receiver: str, read_at: float) -> int:
        with self._lock:
            cur = self._conn.execute(
                """
                UPDATE messages SET is_read=1, read_at=?
                WHERE sender=? AND receiver=? AND is_read=0
                """,
                (read_at, sender, receiver),
            )
            self._conn.commit()
            return int(cur.rowcount)

    def unread_counts_by_sender(self, receiver: str) -> Dict[str, int]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT sender, COUNT(*) AS n FROM messages
                WHERE receiver=? AND is_read=0
                GROUP BY sender
                """,
                (receiver,),
            )
            return {str(r["sender"]): int(r["n"]) for r in cur.fetchall()}

    # ----------------------- notifications -----------------------
    def insert_notification(
        self,
        sender: str,
        receiver: str,
        type: str,
        message_id: Optional[int] = None,
        post_id: Optional[str] = None,
        content: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> NotificationRecord:
        now = time.time() if created_at is None else float(created_at)
        with self._lock:
            cur = self._conn.execute(
                """
                INSERT INTO notifications(sender, receiver, type, message_id, post_id, content, is_read, created_at)
                VALUES(?,?,?,?,?,?,0,?)
                """,
                (sender, receiver, type, message_id, post_id, content, now),
            )
            self._conn.commit()
            notification_id = int(cur.lastrowid)
        return NotificationRecord(
            id=notification_id,
            sender=sender,
            receiver=receiver,
            type=type,
            message_id=message_id,
            post_id=post_id,
            content=content,
            created_at=now,
        )

    def get_notification(self, notification_id: int) -> Optional[NotificationRecord]:
        with self._lock:
            cur = self._conn.execute("SELECT * FROM notifications WHERE id=?", (int(notification_id),))
            row = cur.fetchone()
            return None if row is None else _notification_from_row(row)

    def list_notifications(self, receiver: str) -> List[NotificationRecord]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT * FROM notifications
                WHERE receiver=?
                ORDER BY created_at DESC, id DESC
                """,
                (receiver,),
            )
            return [_notification_from_row(r) for r in cur.fetchall()]

    def count_unread_notifications(self, receiver: str) -> int:
        with self._lock:
            cur = self._conn.execute(
                "SELECT COUNT(*) AS n FROM notifications WHERE receiver=? AND is_read=0",
                (receiver,),
            )
            return int(cur.fetchone()["n"])

    def mark_notifications_read(self, receiver: str) -> int:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE notifications SET is_read=1 WHERE receiver=? AND is_read=0",
                (receiver,),
            )
            self._conn.commit()
            return int(cur.rowcount)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            users = self._conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
            messages = self._conn.execute("SELECT COUNT(*) AS n FROM messages").fetchone()["n"]
            notifications = self._conn.execute("SELECT COUNT(*) AS n FROM notifications").fetchone()["n"]
        return {"users": int(users), "messages": int(messages), "notifications": int(notifications)}
