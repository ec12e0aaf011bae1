import logging
from typing import Any, Dict, Iterable, Tuple

from rich.box import HEAVY, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from callguard.domain.interfaces.user_interface import UserInterface
from callguard.domain.models.common import MonitorStatus
from callguard.infrastructure.monitoring.call_monitor import HealthReport

logger = logging.getLogger(__name__)

class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self):
        """Initializes the rich Console."""
        self._console = Console()

    @property
    def console(self):
        """Get the Rich console instance for direct operations."""
        return self._console

    @console.setter
    def console(self, console):
        self._console = console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message in a distinct style."""
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message."""
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message."""
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    @staticmethod
    def build_table(title: str, rows: Iterable[Tuple[str, Any]]) -> Table:
        table = Table(title=title, box=SIMPLE, show_header=False, title_justify="left")
        table.add_column("Metric", style="bold cyan")
        table.add_column("Value", style="white")
        for name, value in rows:
            table.add_row(name, str(value))
        return table

    def display_status(self, status: MonitorStatus) -> None:
        """Renders the status snapshot as one table per component."""
        api = status["api"]
        self.console.print(self.build_table("API Statistics", [
            ("Total Calls", api["total"]),
            ("Last Hour", api["last_hour"]),
            ("Last 24h", api["last_24_hours"]),
            ("Success Rate", api["success_rate"]),
            ("Avg Duration", api["average_duration"]),
            ("Uptime", api["uptime"]),
        ]))

        gate = status["rate_gate"]
        if gate is not None:
            self.console.print(self.build_table("Rate Gate", [
                ("Requests", gate["request_count"]),
                ("Current Delay", f"{gate['current_delay_ms']:.0f}ms"),
                ("Consecutive Failures", gate["consecutive_failures"]),
                ("Requests This Second", f"{gate['requests_this_second']}/{gate['queries_per_second']}"),
                ("Requests This 100s", f"{gate['requests_this_100_seconds']}/{gate['queries_per_100_seconds']}"),
            ]))

        cache = status["cache"]
        if cache is not None:
            self.console.print(self.build_table("Cache", [
                ("Hit Rate", cache["hit_rate"]),
                ("Size", f"{cache['current_size']}/{cache['max_size']}"),
                ("Hits / Misses", f"{cache['hits']} / {cache['misses']}"),
                ("Evictions", cache["evictions"]),
            ]))

        errors: Dict[str, Any] = status["errors"]
        if errors["total_errors"]:
            self.console.print(self.build_table("Errors", sorted(
                errors["error_types"].items(), key=lambda item: item[1], reverse=True
            )))

        quota = status["quota"]
        if quota["total"]:
            self.console.print(self.build_table("Quota Warnings by Endpoint", sorted(
                quota["by_endpoint"].items(), key=lambda item: item[1], reverse=True
            )))

    def display_health_report(self, report: HealthReport) -> None:
        """Prints the rendered health report in a panel colored by the verdict."""
        style = "green" if report.healthy else "red"
        title = "[bold green]Healthy[/bold green]" if report.healthy else "[bold red]Needs Attention[/bold red]"
        self.console.print(Panel(
            Text(report.render()),
            title=title,
            border_style=style,
            box=HEAVY,
            padding=(0, 1)
        ))
