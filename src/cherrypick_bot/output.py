from rich.console import Console
from rich.table import Table

from .dispatcher import EventRecord


def _format_status(record: EventRecord) -> str:
    """Format an event's outcome with color.

    Args:
        record: Finished event.

    Returns:
        Formatted status string with color.
    """
    if record.ok:
        return "[green]handled[/green]"
    return "[red]failed[/red]"


def print_dispatch_summary(
    records: list[EventRecord],
    console: Console | None = None,
) -> None:
    """Print the outcome of dispatched events as a table.

    Args:
        records: Finished events.
        console: Rich console instance. If None, a new one is created.
    """
    if console is None:
        console = Console()

    if not records:
        console.print("[yellow]No events handled.[/yellow]")
        return

    table = Table(title="Cherry-Pick Events", show_lines=True)
    table.add_column("Event", style="cyan", no_wrap=True)
    table.add_column("Delivery", style="dim")
    table.add_column("Status", justify="center")
    table.add_column("Error", max_width=60)

    # Failures first
    for record in sorted(records, key=lambda r: (r.ok, r.guid)):
        table.add_row(
            record.event_type,
            record.guid,
            _format_status(record),
            _truncate(str(record.error), 60) if record.error else "-",
        )

    console.print(table)

    failed = sum(1 for r in records if not r.ok)
    console.print()
    console.print(
        f"[bold]Summary:[/bold] {len(records)} events, "
        f"[green]{len(records) - failed} handled[/green], "
        f"[red]{failed} failed[/red]"
    )


def _truncate(text: str, max_len: int) -> str:
    """Truncate text with ellipsis if too long.

    Args:
        text: Text to truncate.
        max_len: Maximum length.

    Returns:
        Truncated text.
    """
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."
