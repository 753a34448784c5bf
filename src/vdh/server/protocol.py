# src/vdh/server/protocol.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..core.ports import QueueControl, QueueStatus, TaskRepo
from ..tasks.task_models import Task, TaskStatus

logger = logging.getLogger(__name__)

LIST_LIMIT = 10
TS_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class ControlContext:
    store: TaskRepo
    queue: QueueControl


@dataclass(slots=True, frozen=True)
class Reply:
    text: str
    shutdown: bool = False


CommandHandler = Callable[[ControlContext, str], Reply]


class CommandRegistry:
    """
    Control-channel command table.

    Lookup order:
    - exact command (STATUS, LIST, SHUTDOWN)
    - prefix command (TASK:<id>), handler receives the text after the prefix
    - anything else goes to the fallback handler (treated as a URL)

    Commands are case-sensitive.
    """

    def __init__(self, fallback: CommandHandler) -> None:
        self._exact: dict[str, CommandHandler] = {}
        self._prefix: dict[str, CommandHandler] = {}
        self._fallback = fallback

    def register(self, name: str, handler: CommandHandler) -> None:
        self._exact[name] = handler

    def register_prefix(self, prefix: str, handler: CommandHandler) -> None:
        self._prefix[prefix] = handler

    def handle(self, ctx: ControlContext, raw: str) -> Reply | None:
        """Return the reply for one command, or None for an empty command."""
        command = raw.strip()
        if not command:
            return None

        handler = self._exact.get(command)
        if handler is not None:
            return handler(ctx, "")

        for prefix, prefix_handler in self._prefix.items():
            if command.startswith(prefix):
                return prefix_handler(ctx, command[len(prefix):])

        return self._fallback(ctx, command)


def _fmt_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime(TS_FORMAT)


def format_status(queue_status: QueueStatus, stats: dict[TaskStatus, int]) -> str:
    total = sum(stats.values())
    parts = [
        f"QUEUE: {queue_status.active} active, {queue_status.queued} queued",
        f"TOTAL: {total} tasks",
    ]
    for status in TaskStatus:
        if status in stats:
            parts.append(f"{status.value.upper()}: {stats[status]}")
    return " | ".join(parts) + "\n"


def format_task_detail(task: Task) -> str:
    lines = [
        f"TASK {task.id}: {task.status.value.upper()}",
        f"URL: {task.url}",
        f"Created: {_fmt_ts(task.created_at)}",
    ]
    if task.started_at is not None:
        lines.append(f"Started: {_fmt_ts(task.started_at)}")
    if task.completed_at is not None:
        lines.append(f"Completed: {_fmt_ts(task.completed_at)}")
    if task.file_path:
        lines.append(f"File: {task.file_path}")
    if task.error_message:
        lines.append(f"Error: {task.error_message}")
    return "\n".join(lines) + "\n"


def format_task_list(tasks: list[Task]) -> str:
    lines = [f"RECENT TASKS ({len(tasks)}):"]
    for t in tasks:
        lines.append(f"ID:{t.id} [{t.status.value.upper()}] {t.url}")
    return "\n".join(lines) + "\n"


def cmd_status(ctx: ControlContext, arg: str) -> Reply:
    text = format_status(ctx.queue.status(), ctx.store.stats())
    logger.info("Status requested - %s", text.strip())
    return Reply(text)


def cmd_task(ctx: ControlContext, arg: str) -> Reply:
    task_id = arg.strip()
    logger.info("Task %s details requested", task_id)
    task = ctx.store.get(task_id) if task_id else None
    if task is None:
        return Reply("ERROR: Task not found\n")
    return Reply(format_task_detail(task))


def cmd_list(ctx: ControlContext, arg: str) -> Reply:
    logger.info("Task list requested")
    return Reply(format_task_list(ctx.store.list_tasks(limit=LIST_LIMIT)))


def cmd_shutdown(ctx: ControlContext, arg: str) -> Reply:
    logger.info("Shutdown command received")
    return Reply("OK: Server shutting down\n", shutdown=True)


def cmd_add(ctx: ControlContext, url: str) -> Reply:
    task_id = ctx.queue.submit(url)
    if task_id is None:
        return Reply("ERROR: Failed to add task\n")
    logger.info("Received download request for: %s (ID: %s)", url, task_id)
    return Reply(f"OK: Task added with ID {task_id}\n")


def build_registry() -> CommandRegistry:
    registry = CommandRegistry(fallback=cmd_add)
    registry.register("STATUS", cmd_status)
    registry.register("LIST", cmd_list)
    registry.register("SHUTDOWN", cmd_shutdown)
    registry.register_prefix("TASK:", cmd_task)
    return registry
