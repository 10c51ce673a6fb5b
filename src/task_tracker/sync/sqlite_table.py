# src/task_tracker/sync/sqlite_table.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable

from ..core.clock import utc_now
from ..core.errors import RemoteOperationError
from ..core.ports import Row, Unsubscribe
from ..tasks.task_models import format_timestamp
from .changes import ChangeBroadcaster, RemoteChange, RemoteChangeKind

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "title",
    "description",
    "category",
    "priority",
    "due_date",
    "completed",
    "timer_duration",
    "timer_started_at",
    "timer_status",
    "created_at",
    "user_id",
)


class SqliteTaskTable:
    """
    SQLite stand-in for the remote `tasks` / `categories` tables.

    Implements RemoteTaskTable and ChangeFeed: every successful write is published to
    subscribers, so two gateways sharing one instance behave like two open tabs.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each blocking call opens its own SQLite connection and runs in a worker thread
    - change events are published on the event loop after the write returned
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._changes = ChangeBroadcaster()
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except Exception:
            total = -1
        logger.info("SqliteTaskTable ready db=%s total=%s", self._db_path, total)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT '',
                    priority TEXT NOT NULL DEFAULT 'medium',
                    due_date TEXT,
                    completed INTEGER NOT NULL DEFAULT 0,
                    timer_duration INTEGER,
                    timer_started_at TEXT,
                    timer_status TEXT,
                    created_at TEXT NOT NULL,
                    user_id TEXT,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    color TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    user_id TEXT
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SqliteTaskTable migration: added column %s", name)

            # Older files predate timers and per-user rows.
            add_col("timer_duration", "INTEGER")
            add_col("timer_started_at", "TEXT")
            add_col("timer_status", "TEXT")
            add_col("user_id", "TEXT")
            add_col("updated_at", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_created ON tasks(user_id, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id)")

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> Row:
        out = {k: row[k] for k in row.keys()}
        out["id"] = str(out["id"])
        out["completed"] = bool(out.get("completed") or 0)
        out.pop("updated_at", None)
        return out

    @staticmethod
    def _encode(name: str, value: Any) -> Any:
        if name == "completed":
            return 1 if value else 0
        return value

    @staticmethod
    def _parse_id(task_id: str) -> int:
        try:
            return int(task_id)
        except (TypeError, ValueError) as e:
            raise RemoteOperationError(f"invalid task id {task_id!r}", task_id=str(task_id)) from e

    # ---- blocking operations ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def _select_tasks_sync(self, user_id: str) -> list[Row]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT *
                FROM tasks
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            )
            return [self._row_to_dict(r) for r in cur.fetchall()]
        finally:
            conn.close()

    def _select_categories_sync(self, user_id: str) -> list[Row]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "SELECT id, name, color, created_at FROM categories WHERE user_id = ? ORDER BY created_at ASC, id ASC",
                (user_id,),
            )
            out = []
            for r in cur.fetchall():
                d = {k: r[k] for k in r.keys()}
                d["id"] = str(d["id"])
                out.append(d)
            return out
        finally:
            conn.close()

    def _fetch_one(self, conn: sqlite3.Connection, rowid: int) -> Row | None:
        cur = conn.execute("SELECT * FROM tasks WHERE id = ?", (rowid,))
        row = cur.fetchone()
        return self._row_to_dict(row) if row else None

    def _insert_sync(self, row: Row) -> Row:
        if not str(row.get("title") or "").strip():
            raise RemoteOperationError("title is required", op="insert")
        if not row.get("created_at"):
            raise RemoteOperationError("created_at is required", op="insert")

        names = [c for c in _TASK_COLUMNS if c in row]
        values = [self._encode(c, row[c]) for c in names]
        names.append("updated_at")
        values.append(time.time())

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"INSERT INTO tasks({', '.join(names)}) VALUES ({', '.join('?' for _ in names)})",
                values,
            )
            conn.commit()
            rowid = cur.lastrowid
            if rowid is None:
                raise RuntimeError("SQLite did not return lastrowid for tasks insert")
            created = self._fetch_one(conn, int(rowid))
            if created is None:
                raise RuntimeError("inserted task row vanished")
            logger.debug("Task row inserted id=%s user_id=%s", created["id"], created.get("user_id"))
            return created
        finally:
            conn.close()

    def _update_sync(self, task_id: str, fields: Row) -> Row | None:
        rowid = self._parse_id(task_id)
        assignments: list[str] = []
        params: list[Any] = []
        for name in _TASK_COLUMNS:
            if name in fields:
                assignments.append(f"{name} = ?")
                params.append(self._encode(name, fields[name]))

        conn = self._get_conn()
        try:
            if assignments:
                assignments.append("updated_at = ?")
                params.append(time.time())
                params.append(rowid)
                conn.execute(f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ?", params)
                conn.commit()
            return self._fetch_one(conn, rowid)
        finally:
            conn.close()

    def _delete_sync(self, task_id: str) -> bool:
        rowid = self._parse_id(task_id)
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (rowid,))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def add_category(self, *, name: str, user_id: str, color: str = "", created_at: str | None = None) -> str:
        """Category management lives elsewhere; this only exists to provision rows."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                "INSERT INTO categories(name, color, created_at, user_id) VALUES (?, ?, ?, ?)",
                (name, color, created_at or format_timestamp(utc_now()), user_id),
            )
            conn.commit()
            return str(cur.lastrowid)
        finally:
            conn.close()

    # ---- RemoteTaskTable (async) ----

    async def _call(self, op: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except RemoteOperationError as e:
            if e.op is None:
                e.op = op
            raise
        except sqlite3.Error as e:
            raise RemoteOperationError(f"sqlite error: {e}", op=op) from e

    async def select_tasks(self, *, user_id: str) -> list[Row]:
        return await self._call("select_tasks", self._select_tasks_sync, user_id)

    async def select_categories(self, *, user_id: str) -> list[Row]:
        return await self._call("select_categories", self._select_categories_sync, user_id)

    async def insert(self, row: Row) -> Row:
        created = await self._call("insert", self._insert_sync, dict(row))
        self._changes.publish(RemoteChange(RemoteChangeKind.INSERT, created["id"], dict(created)))
        return created

    async def update(self, task_id: str, fields: Row) -> Row | None:
        updated = await self._call("update", self._update_sync, task_id, dict(fields))
        if updated is not None:
            self._changes.publish(RemoteChange(RemoteChangeKind.UPDATE, updated["id"], dict(updated)))
        return updated

    async def delete(self, task_id: str) -> None:
        deleted = await self._call("delete", self._delete_sync, task_id)
        if deleted:
            self._changes.publish(RemoteChange(RemoteChangeKind.DELETE, str(task_id)))

    # ---- ChangeFeed ----

    def subscribe(self, callback: Callable[[RemoteChange], None]) -> Unsubscribe:
        return self._changes.subscribe(callback)
