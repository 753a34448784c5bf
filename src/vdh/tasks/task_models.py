# src/vdh/tasks/task_models.py

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from enum import StrEnum

TASK_ID_ALPHABET = string.ascii_lowercase + string.ascii_uppercase + string.digits
TASK_ID_LENGTH = 12


class TaskStatus(StrEnum):
    """
    Download task lifecycle status.

    Forward path: pending -> queued -> downloading -> completed | failed.

    Notes:
    - "cancelled" is a valid terminal value in the schema, but nothing produces it yet.
    """

    PENDING = "pending"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


def generate_task_id() -> str:
    return "".join(secrets.choice(TASK_ID_ALPHABET) for _ in range(TASK_ID_LENGTH))


@dataclass(slots=True)
class Task:
    id: str
    url: str
    status: TaskStatus
    created_at: float

    started_at: float | None = None
    completed_at: float | None = None

    error_message: str | None = None
    file_path: str | None = None
