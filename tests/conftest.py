# tests/conftest.py

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from vdh.tasks.queue_manager import QueueManager
from vdh.tasks.task_store import TaskStore

from .fakes import FakeDownloader


@pytest.fixture()
def sock_dir() -> Iterator[Path]:
    """
    Short directory for Unix sockets.

    pytest's tmp_path can exceed the ~108 byte AF_UNIX path limit on long test names.
    """
    d = Path(tempfile.mkdtemp(prefix="vdh-", dir="/tmp"))
    try:
        yield d
    finally:
        shutil.rmtree(d, ignore_errors=True)


@pytest.fixture()
def settings(tmp_path: Path, sock_dir: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the daemon wiring and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="vdh-test",
        log_level="DEBUG",
        # Paths (tmp per test run)
        data_dir=tmp_path / "data",
        db_path=tmp_path / "data" / "tasks.db",
        log_dir=tmp_path / "data" / "logs",
        socket_path=sock_dir / "ctl.sock",
        download_dir=tmp_path / "downloads",
        # Queue
        max_concurrent=2,
        cleanup_days=30,
        # yt-dlp
        ytdlp_path=str(tmp_path / "missing-yt-dlp"),
        proxy="",
        cookies_from_browser="",
        merge_output_format="mp4",
        client_timeout=2.0,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    return TaskStore(settings.db_path)


@pytest.fixture()
def downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture()
def queue(store: TaskStore, downloader: FakeDownloader, settings: SimpleNamespace) -> Iterator[QueueManager]:
    """
    QueueManager wired with the real SQLite store and a fake downloader.

    Not started: tests that need dispatch call queue.start() themselves.
    """
    qm = QueueManager(
        store,
        downloader,
        download_dir=settings.download_dir,
        max_concurrent=settings.max_concurrent,
    )
    try:
        yield qm
    finally:
        downloader.release_all()
        qm.stop(timeout=2.0)
