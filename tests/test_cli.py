# tests/test_cli.py

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from types import SimpleNamespace

import pytest
from typer.testing import CliRunner

from vdh import __version__
from vdh.cli import main as cli_main
from vdh.server.control_server import ControlServer
from vdh.server.protocol import ControlContext
from vdh.tasks.queue_manager import QueueManager
from vdh.tasks.task_models import TaskStatus
from vdh.tasks.task_store import TaskStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def _use_test_settings(monkeypatch, settings: SimpleNamespace) -> Iterator[None]:
    monkeypatch.setattr(cli_main, "get_settings", lambda: settings)

    # Every command reconfigures root logging against CliRunner's temporary streams.
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


def test_version() -> None:
    result = runner.invoke(cli_main.app, ["version"])
    assert result.exit_code == 0
    assert "VDH (Video Downloader Helper)" in result.output
    assert __version__ in result.output


def test_stats_lists_every_status(store: TaskStore) -> None:
    ids = [store.insert(f"https://example.com/v/{i}") for i in range(3)]
    store.update_status(ids[0], TaskStatus.COMPLETED)
    store.update_status(ids[1], TaskStatus.FAILED)

    result = runner.invoke(cli_main.app, ["stats"])

    assert result.exit_code == 0
    for label in ("Pending", "Queued", "Downloading", "Completed", "Failed", "Cancelled", "Total"):
        assert label in result.output


def test_cleanup_uses_days_option(store: TaskStore) -> None:
    old = store.insert("https://example.com/old")
    store.update_status(old, TaskStatus.COMPLETED)
    with sqlite3.connect(str(store.db_path)) as conn:
        conn.execute("UPDATE tasks SET created_at = ? WHERE id = ?", (time.time() - 10 * 86400, old))

    kept = runner.invoke(cli_main.app, ["cleanup"])
    assert kept.exit_code == 0
    assert "0 old tasks removed (older than 30 days)" in kept.output

    removed = runner.invoke(cli_main.app, ["cleanup", "--days", "7"])
    assert removed.exit_code == 0
    assert "1 old tasks removed (older than 7 days)" in removed.output
    assert store.get(old) is None


def test_client_commands_fail_when_server_is_down() -> None:
    for args in (["input", "https://example.com/v"], ["task", "AbCdEf123456"], ["list"]):
        result = runner.invoke(cli_main.app, args)
        assert result.exit_code == 1
        assert "vdh start" in result.output


def test_status_when_server_is_down() -> None:
    result = runner.invoke(cli_main.app, ["status"])
    assert result.exit_code == 0
    assert "not running" in result.output


def test_download_rejects_invalid_url() -> None:
    result = runner.invoke(cli_main.app, ["download", "ftp://example.com/v"])
    assert result.exit_code == 1
    assert "Invalid URL format" in result.output


def test_download_reports_missing_binary() -> None:
    result = runner.invoke(cli_main.app, ["download", "https://example.com/v"])
    assert result.exit_code == 1
    assert "yt-dlp not found" in result.output


def test_client_commands_talk_to_running_server(
    settings: SimpleNamespace, store: TaskStore, queue: QueueManager
) -> None:
    server = ControlServer(settings.socket_path, ControlContext(store=store, queue=queue), accept_timeout=0.1)
    server.bind()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        added = runner.invoke(cli_main.app, ["send", "https://example.com/watch?v=1"])
        assert added.exit_code == 0
        assert "OK: Task added with ID" in added.output
        task_id = added.output.strip().rsplit(" ", 1)[-1]

        listed = runner.invoke(cli_main.app, ["ls"])
        assert f"ID:{task_id} [QUEUED] https://example.com/watch?v=1" in listed.output

        detail = runner.invoke(cli_main.app, ["task", task_id])
        assert f"TASK {task_id}: QUEUED" in detail.output

        status = runner.invoke(cli_main.app, ["status"])
        assert "VDH server is running" in status.output
        assert "QUEUE: 0 active, 1 queued" in status.output

        stopped = runner.invoke(cli_main.app, ["stop"])
        assert stopped.exit_code == 0
        assert "OK: Server shutting down" in stopped.output
        thread.join(timeout=5.0)
        assert not thread.is_alive()
    finally:
        server.stop()
        thread.join(timeout=5.0)


def test_help_lists_commands() -> None:
    result = runner.invoke(cli_main.app, ["help"])
    assert result.exit_code == 0
    assert "cleanup" in result.output
