# src/vdh/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local directories exist,
- wires the store, downloader, queue manager and control server into a Daemon,
- runs the daemon: recovery, then the accept loop, then shutdown.
"""

from __future__ import annotations

import logging
import signal
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..downloader import YtDlpDownloader
from ..server.control_server import ControlServer
from ..server.protocol import ControlContext
from ..tasks.queue_manager import QueueManager
from ..tasks.recovery import recover_tasks
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class Daemon:
    settings: Settings
    store: TaskStore
    queue: QueueManager
    server: ControlServer


def _ensure_local_dirs(settings: Settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.socket_path.parent.mkdir(parents=True, exist_ok=True)


def build_downloader(settings: Settings) -> YtDlpDownloader:
    return YtDlpDownloader(
        settings.ytdlp_path,
        proxy=settings.proxy,
        cookies_from_browser=settings.cookies_from_browser,
        merge_output_format=settings.merge_output_format,
    )


def create_daemon(*, settings: Settings | None = None) -> Daemon:
    """
    Build a Daemon from the provided settings.

    Raises StoreUnavailableError if the task database cannot be opened; the daemon
    must not serve without it.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.db_path)
    queue = QueueManager(
        store,
        build_downloader(settings),
        download_dir=settings.download_dir,
        max_concurrent=settings.max_concurrent,
    )
    server = ControlServer(settings.socket_path, ControlContext(store=store, queue=queue))
    return Daemon(settings=settings, store=store, queue=queue, server=server)


def install_signal_handlers(daemon: Daemon) -> None:
    """SIGINT/SIGTERM stop the accept loop of this daemon; shutdown then runs normally."""

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down gracefully...", signum)
        daemon.server.stop()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Not on the main thread, or the platform lacks the signal.
        logger.debug("Signal handlers not installed.", exc_info=True)


def run_daemon(daemon: Daemon) -> None:
    """Recover, serve until SHUTDOWN or a signal, then stop the queue."""
    install_signal_handlers(daemon)

    daemon.queue.start()
    try:
        report = recover_tasks(daemon.store, daemon.queue)
        logger.info(
            "Startup recovery done: %d reset, %d re-queued, %d already queued",
            len(report.reset),
            len(report.requeued),
            len(report.already_queued),
        )

        daemon.server.bind()
        daemon.server.serve_forever()
    finally:
        daemon.queue.stop()
        daemon.store.close()
        logger.info("Bye.")
