"""SQLite persistence layer for messages, tasks and config."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from pocketclaw.models import ChannelType, ConversationMessage, StoredMessage, Task

SCHEMA_VERSION = 1


class Database:
    """Small SQLite wrapper with explicit schema management."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create or migrate schema."""

        with self._connect() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if row is None:
                self._create_schema(conn)
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            elif row["version"] != SCHEMA_VERSION:
                raise RuntimeError(
                    f"Unsupported schema version {row['version']} (expected {SCHEMA_VERSION})"
                )

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS messages (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                group_id TEXT NOT NULL,
                sender TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                channel TEXT NOT NULL,
                is_from_me INTEGER NOT NULL,
                is_trigger INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_group_ts
                ON messages(group_id, timestamp, seq);

            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                schedule TEXT NOT NULL,
                prompt TEXT NOT NULL,
                enabled INTEGER NOT NULL,
                last_run INTEGER,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
        )

    # -- messages -----------------------------------------------------------

    def save_message(self, msg: StoredMessage) -> None:
        with self._connect() as conn:
            _insert_message(conn, msg)

    def get_recent_messages(self, group_id: str, limit: int) -> list[StoredMessage]:
        """Return the last ``limit`` messages of a group, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, group_id, sender, content, timestamp, channel, is_from_me, is_trigger
                FROM messages
                WHERE group_id = ?
                ORDER BY timestamp DESC, seq DESC
                LIMIT ?
                """,
                (group_id, limit),
            ).fetchall()
        return [_row_to_message(row) for row in reversed(rows)]

    def clear_group_messages(self, group_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))

    def replace_group_messages(self, group_id: str, msg: StoredMessage) -> None:
        """Drop a group's history and store ``msg`` as its only message, atomically."""

        with self._connect() as conn:
            conn.execute("DELETE FROM messages WHERE group_id = ?", (group_id,))
            _insert_message(conn, msg)

    # -- tasks --------------------------------------------------------------

    def save_task(self, task: Task) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO tasks(id, group_id, schedule, prompt, enabled, last_run, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    group_id=excluded.group_id,
                    schedule=excluded.schedule,
                    prompt=excluded.prompt,
                    enabled=excluded.enabled,
                    last_run=excluded.last_run
                """,
                (
                    task.id,
                    task.group_id,
                    task.schedule,
                    task.prompt,
                    int(task.enabled),
                    task.last_run,
                    task.created_at,
                ),
            )

    def get_task(self, task_id: str) -> Task | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row) if row else None

    def get_all_tasks(self) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM tasks ORDER BY created_at ASC").fetchall()
        return [_row_to_task(row) for row in rows]

    def get_enabled_tasks(self) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE enabled = 1 ORDER BY created_at ASC"
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def list_group_tasks(self, group_id: str) -> list[Task]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE group_id = ? ORDER BY created_at ASC", (group_id,)
            ).fetchall()
        return [_row_to_task(row) for row in rows]

    def update_task_last_run(self, task_id: str, last_run: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE tasks SET last_run = ? WHERE id = ?", (last_run, task_id))

    def set_task_enabled(self, task_id: str, enabled: bool) -> bool:
        with self._connect() as conn:
            cur = conn.execute("UPDATE tasks SET enabled = ? WHERE id = ?", (int(enabled), task_id))
            return cur.rowcount > 0

    def delete_task(self, task_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            return cur.rowcount > 0

    # -- config -------------------------------------------------------------

    def get_config(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO config(key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value
                """,
                (key, value),
            )


def build_conversation_messages(db: Database, group_id: str, limit: int) -> list[ConversationMessage]:
    """Map the last ``limit`` stored messages of a group to backend wire format."""

    return [
        {"role": "assistant" if msg.is_from_me else "user", "content": msg.content}
        for msg in db.get_recent_messages(group_id, limit)
    ]


def _insert_message(conn: sqlite3.Connection, msg: StoredMessage) -> None:
    conn.execute(
        """
        INSERT INTO messages(id, group_id, sender, content, timestamp, channel, is_from_me, is_trigger)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            msg.id,
            msg.group_id,
            msg.sender,
            msg.content,
            msg.timestamp,
            msg.channel.value,
            int(msg.is_from_me),
            int(msg.is_trigger),
        ),
    )


def _row_to_message(row: sqlite3.Row) -> StoredMessage:
    return StoredMessage(
        id=row["id"],
        group_id=row["group_id"],
        sender=row["sender"],
        content=row["content"],
        timestamp=int(row["timestamp"]),
        channel=ChannelType(row["channel"]),
        is_from_me=bool(row["is_from_me"]),
        is_trigger=bool(row["is_trigger"]),
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        group_id=row["group_id"],
        schedule=row["schedule"],
        prompt=row["prompt"],
        enabled=bool(row["enabled"]),
        last_run=row["last_run"],
        created_at=int(row["created_at"]),
    )
