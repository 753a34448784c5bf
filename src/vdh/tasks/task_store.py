# src/vdh/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from ..exceptions import StoreUnavailableError
from .task_models import TERMINAL_STATUSES, Task, TaskStatus, generate_task_id

logger = logging.getLogger(__name__)

_COLUMNS = "id, url, status, created_at, started_at, completed_at, error_message, file_path"


class TaskStore:
    """
    SQLite task store.

    The schema is created in full on first open (table plus status and created_at indexes).

    Thread-safety:
    - every access (reads included) goes through one lock, so the daemon has a single writer
    - each call opens its own short-lived SQLite connection inside that lock

    Error policy:
    - the constructor raises StoreUnavailableError if the database cannot be prepared
    - every other method logs storage errors and returns a failure value (None/False/empty)
    """

    def __init__(self, db_path: str | Path = "video_downloader.db") -> None:
        self._db_path = Path(db_path).expanduser()
        self._lock = threading.RLock()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as e:
            logger.exception("TaskStore open failed db=%s", self._db_path)
            raise StoreUnavailableError(f"Unable to open task database at {self._db_path}: {e}") from e
        logger.info("TaskStore ready db=%s total=%s", self._db_path, self.count_tasks())

    @property
    def db_path(self) -> Path:
        return self._db_path

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Serialize access and hand out a connection that is always closed."""
        with self._lock:
            conn = self._get_conn()
            try:
                yield conn
            finally:
                conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    url TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    started_at REAL,
                    completed_at REAL,
                    error_message TEXT,
                    file_path TEXT
                )
                """
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at)")

            conn.commit()

    @staticmethod
    def _opt_float(value: Any) -> float | None:
        return float(value) if value is not None else None

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return Task(
            id=str(row["id"]),
            url=str(row["url"] or ""),
            status=TaskStatus.from_db(row["status"]),
            created_at=float(row["created_at"] or 0.0),
            started_at=self._opt_float(row["started_at"]),
            completed_at=self._opt_float(row["completed_at"]),
            error_message=row["error_message"],
            file_path=row["file_path"],
        )

    # ---- public API ----

    def count_tasks(self) -> int:
        try:
            with self._session() as conn:
                (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
                return int(n)
        except sqlite3.Error:
            logger.exception("count_tasks failed")
            return -1

    def insert(self, url: str) -> str | None:
        """Create a pending task and return its id, or None on a storage error."""
        task_id = generate_task_id()
        now = time.time()

        try:
            with self._session() as conn:
                conn.execute(
                    "INSERT INTO tasks(id, url, status, created_at) VALUES (?, ?, ?, ?)",
                    (task_id, url, TaskStatus.PENDING.value, now),
                )
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to insert task url=%s", url)
            return None

        logger.info("Task added id=%s status=%s url=%s", task_id, TaskStatus.PENDING.value, url)
        return task_id

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        error_message: str | None = None,
        file_path: str | None = None,
    ) -> bool:
        """
        Move a task to `status`.

        Timestamps:
        - downloading             -> started_at = now
        - completed/failed/cancelled -> completed_at = now

        error_message/file_path are only written when supplied.
        Returns False if the id is unknown or the update failed.
        """
        fields: list[str] = ["status = ?"]
        params: list[Any] = [status.value]
        now = time.time()

        if status == TaskStatus.DOWNLOADING:
            fields.append("started_at = ?")
            params.append(now)
        elif status.is_terminal:
            fields.append("completed_at = ?")
            params.append(now)

        if error_message is not None:
            fields.append("error_message = ?")
            params.append(error_message)

        if file_path is not None:
            fields.append("file_path = ?")
            params.append(file_path)

        params.append(task_id)
        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        try:
            with self._session() as conn:
                cur = conn.execute(sql, params)
                conn.commit()
                updated = cur.rowcount == 1
        except sqlite3.Error:
            logger.exception("update_status failed task_id=%s status=%s", task_id, status.value)
            return False

        if not updated:
            logger.warning("update_status: no task with id=%s", task_id)
            return False

        logger.debug("Task %s -> %s", task_id, status.value)
        return True

    def get(self, task_id: str) -> Task | None:
        try:
            with self._session() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM tasks WHERE id = ?",
                    (task_id,),
                ).fetchone()
        except sqlite3.Error:
            logger.exception("get failed task_id=%s", task_id)
            return None
        return self._row_to_task(row) if row else None

    def list_tasks(
        self,
        status: TaskStatus | None = None,
        limit: int | None = 100,
        *,
        oldest_first: bool = False,
    ) -> list[Task]:
        """
        Tasks ordered by created_at (newest first unless oldest_first).

        limit=None returns every matching row; recovery needs that.
        """
        sql = f"SELECT {_COLUMNS} FROM tasks"
        params: list[Any] = []

        if status is not None:
            sql += " WHERE status = ?"
            params.append(status.value)

        # rowid breaks ties between rows inserted within the same clock tick.
        order = "ASC" if oldest_first else "DESC"
        sql += f" ORDER BY created_at {order}, rowid {order}"

        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        try:
            with self._session() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error:
            logger.exception("list_tasks failed status=%s", status)
            return []
        return [self._row_to_task(r) for r in rows]

    def stats(self) -> dict[TaskStatus, int]:
        """Row count per status; statuses without rows are absent."""
        try:
            with self._session() as conn:
                rows = conn.execute(
                    "SELECT status, COUNT(*) AS n FROM tasks GROUP BY status"
                ).fetchall()
        except sqlite3.Error:
            logger.exception("stats failed")
            return {}

        out: dict[TaskStatus, int] = {}
        for row in rows:
            try:
                status = TaskStatus(row["status"])
            except ValueError:
                logger.warning("stats: skipping unknown status %r", row["status"])
                continue
            out[status] = int(row["n"])
        return out

    def cleanup(self, older_than_days: int = 30) -> int:
        """Delete terminal tasks created more than `older_than_days` ago."""
        cutoff = time.time() - max(0, int(older_than_days)) * 86400
        terminal = sorted(s.value for s in TERMINAL_STATUSES)
        placeholders = ",".join("?" for _ in terminal)

        try:
            with self._session() as conn:
                cur = conn.execute(
                    f"DELETE FROM tasks WHERE status IN ({placeholders}) AND created_at < ?",
                    (*terminal, cutoff),
                )
                conn.commit()
                removed = int(cur.rowcount)
        except sqlite3.Error:
            logger.exception("cleanup failed older_than_days=%s", older_than_days)
            return 0

        logger.info("Cleaned up %d old tasks (older than %d days)", removed, older_than_days)
        return removed
