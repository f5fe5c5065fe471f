"""Rich console rendering of resilience diagnostics."""

import logging
from datetime import datetime
from typing import Any, Dict

from rich.console import Console
from rich.table import Table

from resilink.domain.interfaces.user_interface import UserInterface
from resilink.domain.models.common import QueueStats

logger = logging.getLogger(__name__)


def _format_age(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def _format_time(timestamp: float) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library."""

    def __init__(self, console: Console = None):
        self.console = console or Console()

    def display_info(self, message: str) -> None:
        self.console.print(f"[bold blue]Info:[/bold blue] {message}")

    def display_warning(self, message: str) -> None:
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {message}")

    def display_error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def display_state(self, snapshot: Dict[str, Any], intervals: Dict[str, float], now: float) -> None:
        call_records = snapshot.get("call_records", {})
        error_stats = snapshot.get("error_stats", {})
        escalated = snapshot.get("escalated_intervals", {})
        cache = snapshot.get("cache", {})

        keys = sorted(set(call_records) | set(error_stats) | set(escalated) | set(cache))
        if not keys:
            self.display_info("No resilience state recorded yet.")
            return

        table = Table(title="Operations", show_lines=False)
        table.add_column("Key", style="bold cyan")
        table.add_column("Last call")
        table.add_column("Interval", justify="right")
        table.add_column("OK", justify="right", style="green")
        table.add_column("Errors", justify="right", style="red")
        table.add_column("Streak", justify="right")
        table.add_column("Cached", justify="right")

        for key in keys:
            stats = error_stats.get(key, {})
            interval = intervals.get(key)
            interval_text = f"{interval:.1f}s" if interval is not None else "-"
            if key in escalated:
                interval_text += " [yellow](escalated)[/yellow]"
            entry = cache.get(key)
            cached_text = _format_age(now - entry["timestamp"]) + " old" if entry else "-"
            table.add_row(
                key,
                _format_time(call_records.get(key, 0.0)),
                interval_text,
                str(stats.get("successes", 0)),
                str(stats.get("errors", 0)),
                str(stats.get("consecutive_errors", 0)),
                cached_text,
            )

        self.console.print(table)

    def display_queue_stats(self, stats: QueueStats) -> None:
        status = "draining" if stats["is_draining"] else "idle"
        self.console.print(f"[bold]Retry queue:[/bold] {stats['size']} pending ({status})")
        if not stats["items"]:
            return

        table = Table(title="Queued retries")
        table.add_column("Id", style="dim")
        table.add_column("Attempts", justify="right")
        table.add_column("Enqueued")
        for item in stats["items"]:
            table.add_row(
                item["id"],
                f"{item['retry_count']}/{item['max_retries']}",
                _format_time(item["enqueued_at"]),
            )
        self.console.print(table)
