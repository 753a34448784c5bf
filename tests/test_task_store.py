# tests/test_task_store.py

from __future__ import annotations

import sqlite3
import time
from pathlib import Path

import pytest

from vdh.exceptions import StoreUnavailableError
from vdh.tasks.task_models import TASK_ID_ALPHABET, TASK_ID_LENGTH, TaskStatus
from vdh.tasks.task_store import TaskStore


def _backdate(db_path: Path, task_id: str, days: float) -> None:
    with sqlite3.connect(str(db_path)) as conn:
        conn.execute(
            "UPDATE tasks SET created_at = ? WHERE id = ?",
            (time.time() - days * 86400, task_id),
        )


def test_insert_creates_pending_task(store: TaskStore) -> None:
    before = time.time()
    task_id = store.insert("https://example.com/v/1")
    assert task_id is not None
    assert len(task_id) == TASK_ID_LENGTH
    assert set(task_id) <= set(TASK_ID_ALPHABET)

    task = store.get(task_id)
    assert task is not None
    assert task.url == "https://example.com/v/1"
    assert task.status == TaskStatus.PENDING
    assert task.created_at >= before
    assert task.started_at is None
    assert task.completed_at is None
    assert task.error_message is None
    assert task.file_path is None


def test_task_ids_are_unique(store: TaskStore) -> None:
    ids = {store.insert(f"https://example.com/v/{i}") for i in range(50)}
    assert None not in ids
    assert len(ids) == 50


def test_status_transitions_stamp_timestamps(store: TaskStore) -> None:
    task_id = store.insert("https://example.com/v/1")
    assert task_id is not None

    assert store.update_status(task_id, TaskStatus.QUEUED)
    t = store.get(task_id)
    assert t.status == TaskStatus.QUEUED
    assert t.started_at is None and t.completed_at is None

    assert store.update_status(task_id, TaskStatus.DOWNLOADING)
    t = store.get(task_id)
    assert t.started_at is not None
    assert t.completed_at is None

    assert store.update_status(task_id, TaskStatus.COMPLETED, file_path="/dl/x.mp4")
    t = store.get(task_id)
    assert t.status == TaskStatus.COMPLETED
    assert t.completed_at is not None
    assert t.completed_at >= t.started_at
    assert t.file_path == "/dl/x.mp4"
    assert t.error_message is None


def test_failed_task_keeps_error_message(store: TaskStore) -> None:
    task_id = store.insert("https://example.com/v/1")
    store.update_status(task_id, TaskStatus.DOWNLOADING)
    store.update_status(task_id, TaskStatus.FAILED, error_message="Download failed with exit code: 1")

    t = store.get(task_id)
    assert t.status == TaskStatus.FAILED
    assert t.error_message == "Download failed with exit code: 1"
    assert t.completed_at is not None


def test_update_unknown_id_reports_failure_without_creating_row(store: TaskStore) -> None:
    assert store.update_status("nosuchtask00", TaskStatus.QUEUED) is False
    assert store.get("nosuchtask00") is None
    assert store.count_tasks() == 0


def test_list_is_newest_first_with_filter_and_limit(store: TaskStore) -> None:
    ids = [store.insert(f"https://example.com/v/{i}") for i in range(5)]
    store.update_status(ids[1], TaskStatus.QUEUED)
    store.update_status(ids[3], TaskStatus.QUEUED)

    assert [t.id for t in store.list_tasks()] == list(reversed(ids))
    assert [t.id for t in store.list_tasks(limit=2)] == [ids[4], ids[3]]
    assert [t.id for t in store.list_tasks(TaskStatus.QUEUED)] == [ids[3], ids[1]]
    assert [t.id for t in store.list_tasks(TaskStatus.QUEUED, limit=None, oldest_first=True)] == [
        ids[1],
        ids[3],
    ]


def test_stats_counts_per_status(store: TaskStore) -> None:
    assert store.stats() == {}

    ids = [store.insert(f"https://example.com/v/{i}") for i in range(4)]
    store.update_status(ids[0], TaskStatus.COMPLETED)
    store.update_status(ids[1], TaskStatus.COMPLETED)
    store.update_status(ids[2], TaskStatus.FAILED)

    assert store.stats() == {
        TaskStatus.PENDING: 1,
        TaskStatus.COMPLETED: 2,
        TaskStatus.FAILED: 1,
    }


def test_cleanup_removes_only_old_terminal_tasks(store: TaskStore) -> None:
    old_done = store.insert("https://example.com/old-done")
    old_failed = store.insert("https://example.com/old-failed")
    old_queued = store.insert("https://example.com/old-queued")
    new_done = store.insert("https://example.com/new-done")

    store.update_status(old_done, TaskStatus.COMPLETED)
    store.update_status(old_failed, TaskStatus.FAILED)
    store.update_status(old_queued, TaskStatus.QUEUED)
    store.update_status(new_done, TaskStatus.COMPLETED)

    for task_id in (old_done, old_failed, old_queued):
        _backdate(store.db_path, task_id, days=40)
    _backdate(store.db_path, new_done, days=10)

    assert store.cleanup(30) == 2

    assert store.get(old_done) is None
    assert store.get(old_failed) is None
    assert store.get(old_queued) is not None
    assert store.get(new_done) is not None


def test_rows_survive_reopen(tmp_path: Path) -> None:
    db = tmp_path / "tasks.db"
    task_id = TaskStore(db).insert("https://example.com/v/1")

    reopened = TaskStore(db)
    t = reopened.get(task_id)
    assert t is not None
    assert t.status == TaskStatus.PENDING


def test_open_failure_raises_store_unavailable(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "plain-file"
    not_a_dir.write_text("x", encoding="utf-8")

    with pytest.raises(StoreUnavailableError):
        TaskStore(not_a_dir / "tasks.db")


def test_schema_has_every_column_and_index(tmp_path: Path) -> None:
    db_path = tmp_path / "tasks.db"
    TaskStore(db_path)
    # Opening an existing database leaves it intact.
    TaskStore(db_path)

    with sqlite3.connect(str(db_path)) as conn:
        cols = {row[1] for row in conn.execute("PRAGMA table_info(tasks)")}
        indexes = {row[1] for row in conn.execute("PRAGMA index_list(tasks)")}

    assert cols == {"id", "url", "status", "created_at", "started_at", "completed_at", "error_message", "file_path"}
    assert {"idx_tasks_status", "idx_tasks_created_at"} <= indexes
