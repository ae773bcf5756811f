"""Terminal output and diagnostic logging using rich."""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich import box


console = Console()
err_console = Console(stderr=True)


LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_level(name: str) -> int:
    """Map a level name to a logging level, falling back to WARNING."""
    return LOG_LEVELS.get(name.strip().lower(), logging.WARNING)


def setup_logging(level: str = "warning") -> None:
    """Send the package's diagnostic log to stderr through rich."""
    handler = RichHandler(
        console=err_console,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger("osprey")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(parse_level(level))
    root.propagate = False


def print_startup(strategy: str, address: str) -> None:
    """Print startup message."""
    err_console.print(
        Panel(
            f"[bold cyan]Osprey[/bold cyan] is shipping [green]{strategy}[/green] logs "
            f"to [green]{address}[/green]\n"
            "[dim]SIGHUP reloads, SIGTERM or Ctrl+C stops[/dim]",
            box=box.ROUNDED,
            border_style="cyan",
        )
    )


def print_summary(lines_sent: int, reconnects: int) -> None:
    """Print delivery totals at shutdown."""
    table = Table(title="Delivery Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Lines sent", str(lines_sent))
    reconnect_style = "yellow" if reconnects > 0 else "green"
    table.add_row("Reconnects", f"[{reconnect_style}]{reconnects}[/{reconnect_style}]")

    err_console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", highlight=False)
