"""Snapshot-diff monitoring engine for quicksoft."""

import logging
import threading
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from queue import Queue
from typing import TextIO, TypeVar

import psutil

from quicksoft.errors import StoreIOError
from quicksoft.models import Category, ChangeEvent, ChangeKind, ProcessRecord, SoftwareRecord
from quicksoft.registry import RegistryReader, scan_uninstall_entries

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
VERSION_DATE_FORMAT = "%Y%m%d"
RULE = "=" * 50

# Processes that churn constantly and would drown out real changes
IGNORED_PROCESSES = frozenset(
    {
        "svchost",
        "runtimebroker",
        "conhost",
        "backgroundtaskhost",
        "wmiprvse",
    }
)


def _is_ignored(name: str) -> bool:
    base = name.lower()
    if base.endswith(".exe"):
        base = base[:-4]
    return base in IGNORED_PROCESSES


def capture_processes() -> tuple[ProcessRecord, ...]:
    """
    Snapshot all running processes except the ignored system ones.

    Processes that vanish or deny access mid-scan are skipped.
    """
    records: list[ProcessRecord] = []

    for proc in psutil.process_iter(attrs=["pid", "name", "exe", "create_time"]):
        try:
            info = proc.info
            name = info.get("name") or ""
            if _is_ignored(name):
                continue

            create_time = info.get("create_time")
            records.append(
                ProcessRecord(
                    pid=info["pid"],
                    name=name,
                    executable_path=info.get("exe") or None,
                    start_time=datetime.fromtimestamp(create_time) if create_time else None,
                )
            )
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    return tuple(records)


def capture_software(reader: RegistryReader | None = None) -> tuple[SoftwareRecord, ...]:
    """Snapshot installed software from both uninstall registry views."""
    return tuple(scan_uninstall_entries(reader))


@dataclass(slots=True, frozen=True)
class Diff:
    """Records present in only one of two snapshots."""

    added: list
    removed: list

    def __bool__(self) -> bool:
        return bool(self.added or self.removed)


def process_key(record: ProcessRecord) -> int:
    return record.pid


def software_key(record: SoftwareRecord) -> str:
    return record.display_name


def diff(previous: Sequence[T], current: Sequence[T], key: Callable[[T], Hashable]) -> Diff:
    """
    Compare two snapshots by identity key.

    Args:
        previous: Older snapshot.
        current: Newer snapshot.
        key: Function returning a record's identity key.

    Returns:
        Diff whose added list keeps the order of current and whose removed
        list keeps the order of previous.
    """
    previous_keys = {key(record) for record in previous}
    current_keys = {key(record) for record in current}

    added = [record for record in current if key(record) not in previous_keys]
    removed = [record for record in previous if key(record) not in current_keys]
    return Diff(added=added, removed=removed)


def format_version(version: str | None) -> str:
    """Render a version that looks like an install date as a date, else verbatim."""
    if not version:
        return "N/A"
    try:
        return datetime.strptime(version, VERSION_DATE_FORMAT).strftime("%Y-%m-%d")
    except ValueError:
        return version


def format_record(record: ProcessRecord | SoftwareRecord) -> str:
    """Render the body text of an event for one record."""
    if isinstance(record, ProcessRecord):
        started = record.start_time.strftime(TIMESTAMP_FORMAT) if record.start_time else "N/A"
        return "\n".join(
            [
                f"Name: {record.name}",
                f"PID: {record.pid}",
                f"Path: {record.executable_path or 'N/A'}",
                f"Started: {started}",
            ]
        )

    return "\n".join(
        [
            f"Name: {record.display_name}",
            f"Version: {format_version(record.version)}",
            f"Architecture: {record.architecture.value}",
            f"Publisher: {record.publisher or 'N/A'}",
            f"Product GUID: {record.product_guid or 'N/A'}",
        ]
    )


def format_event(event: ChangeEvent) -> str:
    """Render a complete log block for one event."""
    return "\n".join(
        [
            RULE,
            f"-------{event.category.value}-------",
            RULE,
            f"[{event.timestamp.strftime(TIMESTAMP_FORMAT)}] {event.kind.value}",
            format_record(event.record),
            RULE,
        ]
    )


class ChangeReporter:
    """
    Writes change events to the monitor log file and a console sink.

    The console sink is any callable taking a ChangeEvent; by default events
    are printed to stdout. Log write failures are downgraded to warnings.
    """

    def __init__(
        self,
        log_path: Path,
        console: Callable[[ChangeEvent], None] | None = None,
    ) -> None:
        self._log_path = Path(log_path)
        self._console = console if console is not None else _print_event

    @property
    def log_path(self) -> Path:
        return self._log_path

    def start_log(self, started: datetime | None = None) -> None:
        """
        Create the log file, replacing any previous content.

        Raises:
            StoreIOError: The log file or its directory cannot be created.
        """
        started = started or datetime.now()
        try:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_path.write_text(
                f"System Monitoring Started at: {started.strftime(TIMESTAMP_FORMAT)}\n",
                encoding="utf-8",
            )
        except OSError as exc:
            raise StoreIOError(f"Cannot create monitor log {self._log_path}: {exc}") from exc

    def report(
        self,
        record: ProcessRecord | SoftwareRecord,
        kind: ChangeKind,
        category: Category,
        timestamp: datetime | None = None,
    ) -> ChangeEvent:
        """Emit one change to both sinks and return the event."""
        event = ChangeEvent(kind=kind, category=category, record=record, timestamp=timestamp or datetime.now())
        self._append(format_event(event))
        self._console(event)
        return event

    def _append(self, block: str) -> None:
        try:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(block + "\n")
        except OSError as exc:
            logger.warning("Could not write to monitor log %s: %s", self._log_path, exc)


def _print_event(event: ChangeEvent, stream: TextIO | None = None) -> None:
    print(format_event(event), file=stream, flush=True)


class MonitorState(Enum):
    """Lifecycle of a SystemMonitor."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPED = "stopped"


class SystemMonitor:
    """
    Polls processes and installed software and reports what changed.

    The loop in run() blocks the calling thread until the stop event is set.
    start()/stop() run the same loop on a daemon thread and optionally push
    each event to a queue, which is how the UI consumes it.
    """

    def __init__(
        self,
        reporter: ChangeReporter,
        poll_interval: float = 0.5,
        process_source: Callable[[], Sequence[ProcessRecord]] = capture_processes,
        software_source: Callable[[], Sequence[SoftwareRecord]] = capture_software,
        event_queue: Queue[ChangeEvent] | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            reporter: Sink for change events.
            poll_interval: Seconds to wait between polls.
            process_source: Callable returning a process snapshot.
            software_source: Callable returning a software snapshot.
            event_queue: Optional queue that also receives every event.
        """
        self._reporter = reporter
        self._poll_interval = poll_interval
        self._process_source = process_source
        self._software_source = software_source
        self._queue = event_queue
        self._state = MonitorState.IDLE
        self._previous_processes: Sequence[ProcessRecord] = ()
        self._previous_software: Sequence[SoftwareRecord] = ()
        self._counts = {Category.PROCESS: 0, Category.SOFTWARE: 0}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def poll_interval(self) -> float:
        """Get the current poll interval."""
        return self._poll_interval

    @poll_interval.setter
    def poll_interval(self, value: float) -> None:
        """Set the poll interval."""
        self._poll_interval = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def event_counts(self) -> dict[Category, int]:
        """Number of events reported so far, per category."""
        return dict(self._counts)

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def initialize(self) -> None:
        """
        Start the log and take the baseline snapshots.

        Raises:
            StoreIOError: The log file cannot be created. The monitor is left STOPPED.
        """
        self._state = MonitorState.INITIALIZING
        try:
            self._reporter.start_log()
        except StoreIOError:
            self._state = MonitorState.STOPPED
            raise

        self._previous_processes = tuple(self._process_source())
        self._previous_software = tuple(self._software_source())
        self._state = MonitorState.RUNNING
        logger.info(
            "Monitoring %d processes and %d installed programs",
            len(self._previous_processes),
            len(self._previous_software),
        )

    def poll_once(self) -> list[ChangeEvent]:
        """Take fresh snapshots, report every change and make them the new baseline."""
        current_processes = tuple(self._process_source())
        current_software = tuple(self._software_source())

        events = self._report_diff(
            diff(self._previous_processes, current_processes, process_key),
            Category.PROCESS,
        )
        events += self._report_diff(
            diff(self._previous_software, current_software, software_key),
            Category.SOFTWARE,
        )

        self._previous_processes = current_processes
        self._previous_software = current_software
        return events

    def _report_diff(self, changes: Diff, category: Category) -> list[ChangeEvent]:
        events: list[ChangeEvent] = []
        for kind, records in ((ChangeKind.REMOVED, changes.removed), (ChangeKind.ADDED, changes.added)):
            for record in records:
                event = self._reporter.report(record, kind, category)
                self._counts[category] += 1
                if self._queue is not None:
                    self._queue.put(event)
                events.append(event)
        return events

    def run(self, stop_event: threading.Event | None = None) -> None:
        """
        Poll until stop_event is set.

        Args:
            stop_event: Cancellation signal checked every iteration. Defaults
                to the monitor's own event, which stop() sets.
        """
        stop_event = stop_event or self._stop_event
        if self._state is not MonitorState.RUNNING:
            self.initialize()

        try:
            while not stop_event.is_set():
                self.poll_once()
                stop_event.wait(timeout=self._poll_interval)
        finally:
            self._state = MonitorState.STOPPED
            logger.info(
                "Monitoring stopped: %d process events, %d software events",
                self._counts[Category.PROCESS],
                self._counts[Category.SOFTWARE],
            )

    def start(self) -> None:
        """Run the poll loop on a background thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def _run_in_thread(self) -> None:
        try:
            self.run(self._stop_event)
        except Exception:
            logger.exception("Monitor loop terminated unexpectedly")

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
