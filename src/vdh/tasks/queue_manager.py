# src/vdh/tasks/queue_manager.py

from __future__ import annotations

"""
Download queue manager.

In-memory scheduling state on top of the durable TaskStore:
- a FIFO of queued task ids
- an active map (task id -> url), never larger than max_concurrent
- one scheduler thread that runs dispatch passes when signalled
- one worker thread per occupied slot that runs the downloader

The FIFO and active map are a cache: TaskStore is the source of truth, and
recovery rebuilds this state after a restart.
"""

import logging
import threading
from collections import deque
from collections.abc import Iterable
from pathlib import Path

from ..core.ports import Downloader, DownloadResult, QueueStatus, TaskRepo
from ..downloader import is_valid_url
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Bounded-concurrency dispatcher.

    Dispatch pass (scheduler thread):
    - while a slot is free and the FIFO is not empty, pop the front id
    - unknown id -> log and skip (no slot consumed)
    - otherwise mark active, persist `downloading`, start a worker

    Worker:
    - validate the URL, run the downloader (no lock held)
    - release the slot, persist `completed`/`failed`, signal the scheduler

    Signals (enqueue, completion, recovery) set one Event; the scheduler loop is
    iterative, so sustained throughput never grows the call stack.
    """

    def __init__(
        self,
        store: TaskRepo,
        downloader: Downloader,
        *,
        download_dir: str | Path,
        max_concurrent: int = 2,
    ) -> None:
        self._store = store
        self._downloader = downloader
        self._download_dir = Path(download_dir).expanduser()
        self._max_concurrent = max(1, int(max_concurrent))

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._queue: deque[str] = deque()
        self._active: dict[str, str] = {}
        # Dispatched tasks whose terminal status is not yet persisted.
        self._in_flight = 0

        self._wakeup = threading.Event()
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    # ---- lifecycle ----

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run_scheduler, name="vdh-scheduler", daemon=True)
        self._thread.start()
        logger.info("Queue manager started (max_concurrent=%d).", self._max_concurrent)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the scheduler. Running downloads are not interrupted; their worker
        threads are daemonic, and recovery re-queues them on the next start.
        """
        self._stopping.set()
        self._wakeup.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

        st = self.status()
        if st.active:
            logger.warning("Queue manager stopped with %d active download(s) still running.", st.active)
        logger.info("Queue manager stopped (%d queued left).", st.queued)

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until the FIFO is empty and every dispatched task has a terminal status."""
        with self._idle:
            return self._idle.wait_for(lambda: not self._queue and self._in_flight == 0, timeout)

    # ---- queue operations ----

    def submit(self, url: str) -> str | None:
        """
        Create a task for `url` and queue it.

        Returns None if the row could not be created or moved to `queued`; in the
        latter case the row stays `pending` and recovery picks it up on restart.
        """
        task_id = self._store.insert(url)
        if task_id is None:
            logger.error("Failed to add task to database url=%s", url)
            return None

        if not self._store.update_status(task_id, TaskStatus.QUEUED):
            logger.error("Failed to mark task %s as queued", task_id)
            return None

        self.enqueue(task_id)
        return task_id

    def enqueue(self, task_id: str) -> None:
        with self._lock:
            self._queue.append(task_id)
            active, queued = len(self._active), len(self._queue)
        logger.info("Queued task %s (%d active, %d queued)", task_id, active, queued)
        self.dispatch()

    def restore(self, task_ids: Iterable[str]) -> int:
        """Append ids without signalling (recovery triggers one pass afterwards)."""
        ids = list(task_ids)
        with self._lock:
            self._queue.extend(ids)
        return len(ids)

    def dispatch(self) -> None:
        """Request a dispatch pass."""
        self._wakeup.set()

    def status(self) -> QueueStatus:
        with self._lock:
            return QueueStatus(active=len(self._active), queued=len(self._queue))

    def queued_ids(self) -> list[str]:
        with self._lock:
            return list(self._queue)

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._active)

    # ---- scheduling ----

    def _run_scheduler(self) -> None:
        while not self._stopping.is_set():
            self._wakeup.wait()
            self._wakeup.clear()
            if self._stopping.is_set():
                break
            try:
                self._dispatch_ready()
            except Exception:
                logger.exception("Dispatch pass failed")

    def _dispatch_ready(self) -> int:
        started = 0
        while not self._stopping.is_set():
            with self._lock:
                if len(self._active) >= self._max_concurrent or not self._queue:
                    return started

                task_id = self._queue.popleft()
                task = self._store.get(task_id)
                if task is None:
                    logger.error("Task %s not found in database; skipping", task_id)
                    self._idle.notify_all()
                    continue

                self._active[task_id] = task.url
                self._in_flight += 1
                active, queued = len(self._active), len(self._queue)

            logger.info("Starting download %s url=%s (%d active, %d queued)", task_id, task.url, active, queued)
            self._store.update_status(task_id, TaskStatus.DOWNLOADING)

            worker = threading.Thread(
                target=self._run_worker,
                args=(task,),
                name=f"vdh-download-{task_id}",
                daemon=True,
            )
            worker.start()
            started += 1
        return started

    def _download(self, task: Task) -> DownloadResult:
        if not is_valid_url(task.url):
            logger.warning("Task %s: invalid URL %r", task.id, task.url)
            return DownloadResult(success=False, exit_status=-1, error_message="Invalid URL format")

        try:
            return self._downloader.invoke(task.url, self._download_dir)
        except Exception as e:
            logger.exception("Downloader crashed task_id=%s", task.id)
            return DownloadResult(success=False, exit_status=-1, error_message=f"Downloader error: {e}")

    def _run_worker(self, task: Task) -> None:
        result = DownloadResult(success=False, exit_status=-1, error_message="Download did not run")
        try:
            result = self._download(task)
        finally:
            with self._lock:
                self._active.pop(task.id, None)
                active, queued = len(self._active), len(self._queue)

            if result.success:
                logger.info("Download completed %s (%d active, %d queued)", task.id, active, queued)
                self._store.update_status(task.id, TaskStatus.COMPLETED, file_path=result.file_path)
            else:
                error = result.error_message or f"Download failed with exit code: {result.exit_status}"
                logger.warning("Download failed %s: %s (%d active, %d queued)", task.id, error, active, queued)
                self._store.update_status(task.id, TaskStatus.FAILED, error_message=error)

            with self._lock:
                self._in_flight -= 1
                self._idle.notify_all()
            self.dispatch()
