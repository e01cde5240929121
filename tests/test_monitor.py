"""Tests for the snapshot-diff monitor."""

import threading
from datetime import datetime
from queue import Queue

import psutil
import pytest

from quicksoft import monitor as monitor_module
from quicksoft.errors import StoreIOError
from quicksoft.models import Architecture, Category, ChangeEvent, ChangeKind, ProcessRecord, SoftwareRecord
from quicksoft.monitor import (
    RULE,
    ChangeReporter,
    Diff,
    MonitorState,
    SystemMonitor,
    capture_processes,
    capture_software,
    diff,
    format_event,
    format_version,
    process_key,
    software_key,
)


def proc(pid: int, name: str | None = None) -> ProcessRecord:
    return ProcessRecord(pid=pid, name=name or f"proc{pid}", executable_path=None, start_time=None)


def software(name: str, version: str | None = "1.0") -> SoftwareRecord:
    return SoftwareRecord(
        display_name=name,
        version=version,
        architecture=Architecture.X64,
        product_guid=None,
        publisher=None,
    )


class SequenceSource:
    """Returns one prepared snapshot per call, repeating the last one."""

    def __init__(self, *snapshots):
        self._snapshots = list(snapshots)

    def __call__(self):
        if len(self._snapshots) > 1:
            return self._snapshots.pop(0)
        return self._snapshots[0]


@pytest.fixture
def events() -> list[ChangeEvent]:
    return []


@pytest.fixture
def reporter(tmp_path, events) -> ChangeReporter:
    return ChangeReporter(tmp_path / "logs" / "monitor.log", console=events.append)


class TestDiff:
    """Tests for diff()."""

    def test_same_snapshot_has_no_changes(self):
        """Test diff(S, S) is empty."""
        snapshot = (proc(1), proc(2), proc(3))
        result = diff(snapshot, snapshot, process_key)

        assert result.added == []
        assert result.removed == []
        assert not result

    def test_added_and_removed_partition_symmetric_difference(self):
        """Test added/removed cover exactly the symmetric difference of keys."""
        previous = (proc(1), proc(2), proc(3), proc(4))
        current = (proc(3), proc(4), proc(5), proc(6))
        result = diff(previous, current, process_key)

        added_keys = {process_key(r) for r in result.added}
        removed_keys = {process_key(r) for r in result.removed}
        previous_keys = {process_key(r) for r in previous}
        current_keys = {process_key(r) for r in current}

        assert added_keys | removed_keys == previous_keys ^ current_keys
        assert not added_keys & removed_keys
        assert added_keys == current_keys - previous_keys

    def test_order_follows_enumeration(self):
        """Test outputs keep the order of their source snapshot, unsorted."""
        previous = (proc(9), proc(1), proc(5))
        current = (proc(8), proc(2), proc(7))
        result = diff(previous, current, process_key)

        assert [r.pid for r in result.added] == [8, 2, 7]
        assert [r.pid for r in result.removed] == [9, 1, 5]

    def test_software_keyed_by_display_name(self):
        """Test a version change of the same display name is not a change."""
        result = diff((software("App", "1.0"),), (software("App", "2.0"),), software_key)
        assert result == Diff(added=[], removed=[])


class TestFormatting:
    """Tests for event formatting."""

    def test_version_date_is_formatted(self):
        """Test a yyyyMMdd version is rendered as a date."""
        assert format_version("20240115") == "2024-01-15"

    def test_unparseable_version_is_verbatim(self):
        """Test a non-date version is reported verbatim."""
        assert format_version("1.2.3-beta") == "1.2.3-beta"
        assert format_version(None) == "N/A"

    def test_event_block_layout(self):
        """Test a log block has rule, category marker, rule, body, rule."""
        event = ChangeEvent(ChangeKind.ADDED, Category.SOFTWARE, software("7-Zip"), datetime(2024, 1, 1, 9, 30))
        lines = format_event(event).splitlines()

        assert lines[0] == RULE
        assert lines[1] == "-------Software-------"
        assert lines[2] == RULE
        assert lines[3] == "[2024-01-01 09:30:00] Added"
        assert "Name: 7-Zip" in lines
        assert lines[-1] == RULE


class TestChangeReporter:
    """Tests for ChangeReporter."""

    def test_start_log_overwrites(self, reporter):
        """Test the start line replaces previous content."""
        reporter.log_path.parent.mkdir(parents=True)
        reporter.log_path.write_text("old content\n")

        reporter.start_log(datetime(2024, 3, 4, 5, 6, 7))

        assert reporter.log_path.read_text() == "System Monitoring Started at: 2024-03-04 05:06:07\n"

    def test_report_writes_both_sinks(self, reporter, events):
        """Test report appends to the log and calls the console sink."""
        reporter.start_log()
        event = reporter.report(proc(42, "calc.exe"), ChangeKind.ADDED, Category.PROCESS)

        assert events == [event]
        content = reporter.log_path.read_text()
        assert "-------Process-------" in content
        assert "Name: calc.exe" in content

    def test_log_write_failure_is_a_warning(self, tmp_path, events, caplog):
        """Test an unwritable log does not raise and still reaches the console."""
        # A directory cannot be opened for appending
        log_dir = tmp_path / "not-a-file"
        log_dir.mkdir()
        reporter = ChangeReporter(log_dir, console=events.append)

        reporter.report(proc(1), ChangeKind.REMOVED, Category.PROCESS)

        assert len(events) == 1
        assert any(record.levelname == "WARNING" for record in caplog.records)

    def test_start_log_failure_raises(self, tmp_path):
        """Test setup failure is fatal."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        reporter = ChangeReporter(blocker / "monitor.log")

        with pytest.raises(StoreIOError):
            reporter.start_log()


class TestSystemMonitor:
    """Tests for SystemMonitor."""

    def test_monitor_creation(self, reporter):
        """Test SystemMonitor starts idle."""
        monitor = SystemMonitor(reporter, process_source=tuple, software_source=tuple)

        assert monitor.state is MonitorState.IDLE
        assert monitor.poll_interval == 0.5
        assert not monitor.is_running

    def test_poll_interval_minimum(self, reporter):
        """Test poll interval has a minimum value."""
        monitor = SystemMonitor(reporter, process_source=tuple, software_source=tuple)
        monitor.poll_interval = 0.01
        assert monitor.poll_interval >= 0.1

    def test_process_scenario(self, reporter, events):
        """Test {A,B} -> {B,C} emits removed(A) and added(C) only."""
        a, b, c = proc(1, "A"), proc(2, "B"), proc(3, "C")
        monitor = SystemMonitor(
            reporter,
            process_source=SequenceSource((a, b), (b, c)),
            software_source=tuple,
        )
        monitor.initialize()
        assert monitor.state is MonitorState.RUNNING

        emitted = monitor.poll_once()

        assert [(e.kind, e.record) for e in emitted] == [(ChangeKind.REMOVED, a), (ChangeKind.ADDED, c)]
        assert events == emitted

    def test_no_changes_no_output(self, reporter, events):
        """Test an empty diff writes nothing after the start line."""
        monitor = SystemMonitor(reporter, process_source=lambda: (proc(1),), software_source=lambda: (software("X"),))
        monitor.initialize()

        assert monitor.poll_once() == []
        assert events == []
        assert reporter.log_path.read_text().count("\n") == 1

    def test_categories_are_independent(self, reporter):
        """Test a process and a program with the same name are tracked separately."""
        monitor = SystemMonitor(
            reporter,
            process_source=SequenceSource((), (proc(5, "Zoom"),)),
            software_source=SequenceSource((software("Zoom"),), ()),
        )
        monitor.initialize()
        emitted = monitor.poll_once()

        assert {(e.category, e.kind) for e in emitted} == {
            (Category.PROCESS, ChangeKind.ADDED),
            (Category.SOFTWARE, ChangeKind.REMOVED),
        }
        assert monitor.event_counts == {Category.PROCESS: 1, Category.SOFTWARE: 1}

    def test_previous_is_replaced_after_poll(self, reporter):
        """Test a change is reported once, not on every later poll."""
        monitor = SystemMonitor(
            reporter,
            process_source=SequenceSource((), (proc(1),)),
            software_source=tuple,
        )
        monitor.initialize()

        assert len(monitor.poll_once()) == 1
        assert monitor.poll_once() == []

    def test_initialize_failure_stops(self, tmp_path):
        """Test an uncreatable log leaves the monitor STOPPED."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        monitor = SystemMonitor(ChangeReporter(blocker / "x.log"), process_source=tuple, software_source=tuple)

        with pytest.raises(StoreIOError):
            monitor.initialize()
        assert monitor.state is MonitorState.STOPPED

    def test_run_honours_stop_event(self, reporter):
        """Test run() returns once the stop event is set."""
        stop_event = threading.Event()
        polls = []

        def source():
            polls.append(1)
            if len(polls) >= 3:
                stop_event.set()
            return ()

        monitor = SystemMonitor(reporter, poll_interval=0.1, process_source=source, software_source=tuple)
        monitor.run(stop_event)

        assert monitor.state is MonitorState.STOPPED
        assert len(polls) >= 3

    def test_start_stop_thread(self, reporter):
        """Test the background thread pushes events to the queue and stops."""
        queue: Queue[ChangeEvent] = Queue()
        monitor = SystemMonitor(
            reporter,
            poll_interval=0.1,
            process_source=SequenceSource((), (proc(10),)),
            software_source=tuple,
            event_queue=queue,
        )

        monitor.start()
        try:
            assert monitor.is_running
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "SystemMonitor"
            event = queue.get(timeout=2.0)
            assert event.record.pid == 10
        finally:
            monitor.stop()
        assert not monitor.is_running

    def test_start_idempotent(self, reporter):
        """Test starting an already running monitor is safe."""
        monitor = SystemMonitor(reporter, poll_interval=0.1, process_source=tuple, software_source=tuple)

        monitor.start()
        thread1 = monitor._thread
        monitor.start()
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()


class FakeProcess:
    def __init__(self, info=None, error=None):
        self._info = info
        self._error = error

    @property
    def info(self):
        if self._error is not None:
            raise self._error
        return self._info


class TestCaptureProcesses:
    """Tests for capture_processes()."""

    def test_ignored_and_failing_processes_are_skipped(self, monkeypatch):
        """Test noisy system processes and unreadable processes are left out."""
        fakes = [
            FakeProcess({"pid": 4, "name": "svchost.exe", "exe": None, "create_time": None}),
            FakeProcess({"pid": 5, "name": "RuntimeBroker.exe", "exe": None, "create_time": None}),
            FakeProcess(error=psutil.AccessDenied(6)),
            FakeProcess(error=psutil.NoSuchProcess(7)),
            FakeProcess({"pid": 8, "name": "notepad.exe", "exe": r"C:\notepad.exe", "create_time": 1700000000.0}),
        ]
        monkeypatch.setattr(monitor_module.psutil, "process_iter", lambda attrs=None: iter(fakes))

        records = capture_processes()

        assert [r.pid for r in records] == [8]
        assert records[0].executable_path == r"C:\notepad.exe"
        assert records[0].start_time == datetime.fromtimestamp(1700000000.0)

    def test_real_processes(self):
        """Test the real process table is captured as ProcessRecords."""
        records = capture_processes()

        assert isinstance(records, tuple)
        assert len(records) > 0
        assert all(isinstance(r, ProcessRecord) for r in records)


def test_capture_software_uses_reader(fake_reader):
    """Test capture_software returns an immutable snapshot from the reader."""
    snapshot = capture_software(fake_reader)

    assert isinstance(snapshot, tuple)
    assert [r.display_name for r in snapshot] == ["Contoso Tools", "Legacy App"]
