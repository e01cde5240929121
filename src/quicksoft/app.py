"""quicksoft - Textual front end for the system monitor."""

from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from quicksoft.models import Category, ChangeEvent, ChangeKind, ProcessRecord
from quicksoft.monitor import TIMESTAMP_FORMAT, SystemMonitor

MAX_ROWS = 500


def describe_record(event: ChangeEvent) -> tuple[str, str]:
    """Return the name and a one-line detail for an event's record."""
    record = event.record
    if isinstance(record, ProcessRecord):
        return record.name, f"PID {record.pid}  {record.executable_path or ''}".rstrip()
    detail = f"{record.version or 'N/A'}  {record.architecture.value}"
    if record.product_guid:
        detail += f"  {record.product_guid}"
    return record.display_name, detail


class MonitorStats(Static):
    """Header widget showing event counts."""

    DEFAULT_CSS = """
    MonitorStats {
        height: auto;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize MonitorStats."""
        super().__init__(*args, **kwargs)
        self._counts: dict[tuple[Category, ChangeKind], int] = {
            (category, kind): 0 for category in Category for kind in ChangeKind
        }

    def on_mount(self) -> None:
        self.update(self.render_counts())

    def add_event(self, event: ChangeEvent) -> None:
        """Count one event and refresh the display."""
        self._counts[(event.category, event.kind)] += 1
        self.update(self.render_counts())

    def count(self, category: Category, kind: ChangeKind) -> int:
        return self._counts[(category, kind)]

    def render_counts(self) -> str:
        """Get the counts display."""
        parts = []
        for category in Category:
            added = self._counts[(category, ChangeKind.ADDED)]
            removed = self._counts[(category, ChangeKind.REMOVED)]
            parts.append(f"{category.value}: [green]+{added}[/green] [red]-{removed}[/red]")
        return "   ".join(parts)


class EventTable(Container):
    """Container for the change event table, oldest event at the top."""

    DEFAULT_CSS = """
    EventTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the event table."""
        yield DataTable(id="event-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#event-table", DataTable)
        table.cursor_type = "row"

        table.add_column("Time", key="time", width=19)
        table.add_column("Change", key="kind", width=8)
        table.add_column("Type", key="category", width=9)
        table.add_column("Name", key="name", width=40)
        table.add_column("Details", key="detail")

    def add_event(self, event: ChangeEvent) -> None:
        """Append one event, dropping the oldest rows past MAX_ROWS."""
        table = self.query_one("#event-table", DataTable)
        name, detail = describe_record(event)
        colour = "green" if event.kind is ChangeKind.ADDED else "red"
        table.add_row(
            event.timestamp.strftime(TIMESTAMP_FORMAT),
            f"[{colour}]{event.kind.value}[/{colour}]",
            event.category.value,
            name[:40],
            detail,
        )
        while table.row_count > MAX_ROWS:
            oldest = next(iter(table.rows))
            table.remove_row(oldest)

    def clear_events(self) -> None:
        self.query_one("#event-table", DataTable).clear()


class MonitorApp(App):
    """Live view of process and software changes."""

    TITLE = "quicksoft"
    SUB_TITLE = "System Change Monitor"

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("c", "clear", "Clear"),
    ]

    def __init__(self, monitor: SystemMonitor, event_queue: Queue[ChangeEvent]) -> None:
        """
        Initialize the MonitorApp.

        Args:
            monitor: Monitor to run; it must push its events into event_queue.
            event_queue: Queue the monitor thread feeds.
        """
        super().__init__()
        self._monitor = monitor
        self._event_queue = event_queue

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield MonitorStats(id="monitor-stats")
        yield EventTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.25, self._check_for_events)

    def _check_for_events(self) -> None:
        """Drain the event queue into the table."""
        stats = self.query_one("#monitor-stats", MonitorStats)
        table = self.query_one(EventTable)
        while True:
            try:
                event = self._event_queue.get_nowait()
            except Empty:
                break
            stats.add_event(event)
            table.add_event(event)

    def action_clear(self) -> None:
        """Clear the event table; the counts are kept."""
        self.query_one(EventTable).clear_events()

    async def action_quit(self) -> None:
        """Stop the monitor and exit."""
        self._monitor.stop()
        self.exit()
