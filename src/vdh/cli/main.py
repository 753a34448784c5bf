# src/vdh/cli/main.py

"""
CLI entrypoint.

`vdh server` runs the daemon in the foreground. Every other command either talks to
a running daemon over the control socket or works directly on the task database.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import time

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .. import __version__
from ..client import is_server_running, send_command
from ..config import Settings, get_settings
from ..downloader import is_valid_url
from ..exceptions import ControlClientError, StoreUnavailableError
from ..logging_setup import level_from_name, setup_logging
from ..tasks.task_models import TaskStatus
from ..tasks.task_store import TaskStore
from .bootstrap import build_downloader, create_daemon, run_daemon

logger = logging.getLogger(__name__)

TEST_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"
START_TIMEOUT_SECONDS = 5.0
STOP_TIMEOUT_SECONDS = 3.0

app = typer.Typer(
    name="vdh",
    help="VDH (Video Downloader Helper) - Unix-socket download queue with SQLite persistence.",
    no_args_is_help=True,
    add_completion=False,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Show debug logs on stderr."),
) -> None:
    """Client commands log warnings only; `server` reconfigures logging for itself."""
    setup_logging(console_level=logging.DEBUG if verbose else logging.WARNING)


# ===== Helpers =====


def _send(settings: Settings, message: str) -> str:
    try:
        return send_command(settings.socket_path, message, timeout=settings.client_timeout)
    except ControlClientError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        console.print("[dim]Make sure the server is running with: vdh start[/dim]")
        raise typer.Exit(1) from e


def _print_reply(reply: str) -> None:
    console.print(reply, markup=False, highlight=False)


def _open_store(settings: Settings) -> TaskStore:
    try:
        return TaskStore(settings.db_path)
    except StoreUnavailableError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(1) from e


def _wait_for(predicate, timeout: float, interval: float = 0.1) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _render_stats(stats: dict[TaskStatus, int]) -> Table:
    table = Table(title="Task Statistics")
    table.add_column("Status")
    table.add_column("Count", justify="right")
    for status in TaskStatus:
        table.add_row(status.value.capitalize(), str(stats.get(status, 0)))
    table.add_row("[bold]Total[/bold]", f"[bold]{sum(stats.values())}[/bold]")
    return table


def _force_stop() -> None:
    try:
        subprocess.run(["pkill", "-f", "vdh server"], check=False)
    except OSError as e:
        console.print(f"[red]Failed to terminate server process:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(1) from e


# ===== Daemon lifecycle =====


@app.command()
def server() -> None:
    """Run the daemon in the foreground."""
    settings = get_settings()
    setup_logging(log_dir=settings.log_dir, console_level=level_from_name(settings.log_level))
    logger.info("Starting %s %s...", settings.app_name, __version__)

    try:
        daemon = create_daemon(settings=settings)
    except StoreUnavailableError as e:
        logger.error("Cannot start: %s", e)
        raise typer.Exit(1) from e

    run_daemon(daemon)


@app.command()
def start() -> None:
    """Start the daemon in the background."""
    settings = get_settings()
    if is_server_running(settings.socket_path):
        console.print("[yellow]Server is already running[/yellow]")
        return

    try:
        subprocess.Popen(
            [sys.executable, "-m", "vdh", "server"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        console.print(f"[red]Failed to start server:[/red] {escape(str(e))}", highlight=False)
        raise typer.Exit(1) from e

    if not _wait_for(lambda: is_server_running(settings.socket_path), START_TIMEOUT_SECONDS):
        console.print("[red]Failed to start VDH server[/red]")
        console.print(f"[dim]See logs in {settings.log_dir}[/dim]", highlight=False)
        raise typer.Exit(1)

    console.print("[green]✓[/green] VDH server started in background")
    console.print(f"Socket: {settings.socket_path}", highlight=False)
    console.print(f"Database: {settings.db_path}", highlight=False)


@app.command()
def stop() -> None:
    """Stop the running daemon."""
    settings = get_settings()
    if not is_server_running(settings.socket_path):
        console.print("[yellow]Server is not running[/yellow]")
        return

    try:
        _print_reply(send_command(settings.socket_path, "SHUTDOWN", timeout=settings.client_timeout))
    except ControlClientError as e:
        console.print(f"[yellow]Could not talk to server ({escape(str(e))}); terminating process[/yellow]", highlight=False)
        _force_stop()

    if _wait_for(lambda: not is_server_running(settings.socket_path), STOP_TIMEOUT_SECONDS):
        console.print("[green]✓[/green] VDH server stopped")
        return

    console.print("[yellow]Server may still be running, trying force stop...[/yellow]")
    _force_stop()
    if _wait_for(lambda: not is_server_running(settings.socket_path), STOP_TIMEOUT_SECONDS):
        console.print("[green]✓[/green] VDH server force stopped")
    else:
        console.print("[red]Failed to stop VDH server[/red]")
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show whether the daemon runs, its queue, and task statistics."""
    settings = get_settings()
    if not is_server_running(settings.socket_path):
        console.print("[red]VDH server is not running[/red]")
        console.print("[dim]Start with: vdh start[/dim]")
        return

    console.print("[green]✓[/green] VDH server is running")
    console.print(f"Socket: {settings.socket_path}", highlight=False)
    console.print(f"Database: {settings.db_path}", highlight=False)

    console.print("\n[bold]Queue Status[/bold]")
    _print_reply(_send(settings, "STATUS"))

    console.print()
    console.print(_render_stats(_open_store(settings).stats()))


# ===== Requests to the daemon =====


def input_url(url: str = typer.Argument(..., help="Video URL to queue.")) -> None:
    """Send a download request to the running daemon."""
    _print_reply(_send(get_settings(), url))


app.command("input")(input_url)
app.command("send", hidden=True)(input_url)


@app.command("task")
def task_detail(task_id: str = typer.Argument(..., help="12-character task id.")) -> None:
    """Show details for one task."""
    _print_reply(_send(get_settings(), f"TASK:{task_id}"))


def list_recent() -> None:
    """List the 10 most recent tasks."""
    _print_reply(_send(get_settings(), "LIST"))


app.command("list")(list_recent)
app.command("ls", hidden=True)(list_recent)


@app.command()
def test() -> None:
    """Send a known test URL through the control socket."""
    _print_reply(_send(get_settings(), TEST_URL))
    console.print("[green]✓[/green] Socket test completed")


# ===== Direct (in-process) commands =====


@app.command()
def download(url: str = typer.Argument(..., help="Video URL to download now.")) -> None:
    """Download one URL directly, bypassing the queue and the database."""
    settings = get_settings()
    if not is_valid_url(url):
        console.print("[red]Error:[/red] Invalid URL format (http/https required)")
        raise typer.Exit(1)

    console.print(f"Downloading {url} into {settings.download_dir} ...", highlight=False)
    result = build_downloader(settings).invoke(url, settings.download_dir)

    if not result.success:
        console.print(f"[red]Direct download failed:[/red] {escape(result.error_message or '')}", highlight=False)
        raise typer.Exit(1)

    console.print("[green]✓[/green] Direct download completed")
    if result.file_path:
        console.print(f"File: {result.file_path}", highlight=False)


@app.command()
def stats() -> None:
    """Show task counts per status."""
    console.print(_render_stats(_open_store(get_settings()).stats()))


@app.command()
def cleanup(
    days: int | None = typer.Option(None, "--days", min=0, help="Age threshold in days (default: VDH_CLEANUP_DAYS)."),
) -> None:
    """Remove finished tasks older than the threshold."""
    settings = get_settings()
    threshold = settings.cleanup_days if days is None else days
    removed = _open_store(settings).cleanup(threshold)
    console.print(f"Cleanup completed: {removed} old tasks removed (older than {threshold} days)")


@app.command("help")
def show_help(ctx: typer.Context) -> None:
    """Show available commands."""
    text = ctx.parent.get_help() if ctx.parent is not None else ctx.get_help()
    if text:
        typer.echo(text)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"[bold]VDH (Video Downloader Helper)[/bold] v{__version__}", highlight=False)
    console.print("Unix socket-based video downloader with SQLite database and queue management")
    console.print("Features: task persistence, status tracking, queue recovery")


if __name__ == "__main__":
    app()
