# src/vdh/tasks/recovery.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..core.ports import TaskRepo
from .queue_manager import QueueManager
from .task_models import TaskStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecoveryReport:
    reset: list[str] = field(default_factory=list)
    requeued: list[str] = field(default_factory=list)
    already_queued: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.requeued) + len(self.already_queued)


def recover_tasks(store: TaskRepo, queue: QueueManager) -> RecoveryReport:
    """
    Rebuild the in-memory FIFO from durable state. Run once, before serving clients.

    1. downloading -> pending (the previous process died mid-download; partial output is not trusted)
    2. read pending and queued rows, both oldest first, before changing anything else
    3. pending -> queued, appended to the FIFO in created_at order
    4. already-queued ids appended after them
    5. one dispatch pass

    Afterwards the FIFO holds every non-terminal task exactly once.
    """
    report = RecoveryReport()

    for task in store.list_tasks(TaskStatus.DOWNLOADING, limit=None, oldest_first=True):
        if store.update_status(task.id, TaskStatus.PENDING):
            report.reset.append(task.id)
        else:
            logger.error("Recovery: could not reset interrupted task %s", task.id)

    pending = store.list_tasks(TaskStatus.PENDING, limit=None, oldest_first=True)
    queued = store.list_tasks(TaskStatus.QUEUED, limit=None, oldest_first=True)

    for task in pending:
        if store.update_status(task.id, TaskStatus.QUEUED):
            report.requeued.append(task.id)
        else:
            # Left pending in the store; the next restart retries it.
            logger.error("Recovery: could not queue pending task %s", task.id)

    report.already_queued = [t.id for t in queued]

    queue.restore(report.requeued + report.already_queued)

    if report.reset:
        logger.info("Recovery: reset %d interrupted download(s)", len(report.reset))
    if report.total:
        logger.info("Recovered %d pending task(s) from database", report.total)
    else:
        logger.info("Recovery: nothing to resume")

    queue.dispatch()
    return report
