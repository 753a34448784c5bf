# src/vdh/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The queue manager and the control server depend on Protocols instead of concrete
implementations. This keeps the downloader swappable and makes testing easier.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..tasks.task_models import Task, TaskStatus


@dataclass(slots=True, frozen=True)
class DownloadResult:
    """Outcome of one external downloader run."""

    success: bool
    exit_status: int
    output: str = ""
    file_path: str | None = None
    error_message: str | None = None


@dataclass(slots=True, frozen=True)
class QueueStatus:
    active: int
    queued: int


class Downloader(Protocol):
    """External program that fetches one URL into `output_dir`."""

    def invoke(self, url: str, output_dir: Path) -> DownloadResult: ...


class QueueControl(Protocol):
    """What the control server needs from the queue manager."""

    def submit(self, url: str) -> str | None: ...
    def status(self) -> QueueStatus: ...


class TaskRepo(Protocol):
    def insert(self, url: str) -> str | None: ...

    def update_status(
            self,
            task_id: str,
            status: TaskStatus,
            error_message: str | None = None,
            file_path: str | None = None,
    ) -> bool: ...

    def get(self, task_id: str) -> Task | None: ...

    def list_tasks(
            self,
            status: TaskStatus | None = None,
            limit: int | None = 100,
            *,
            oldest_first: bool = False,
    ) -> list[Task]: ...

    def stats(self) -> dict[TaskStatus, int]: ...

    def cleanup(self, older_than_days: int = 30) -> int: ...
