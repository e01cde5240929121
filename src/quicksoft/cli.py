"""Command-line entry points for quicksoft."""

import argparse
import logging
import subprocess
import sys
import threading
import webbrowser
from collections.abc import Sequence
from pathlib import Path
from queue import Queue

from quicksoft.aliases import AliasStore
from quicksoft.commands import Action, dispatch
from quicksoft.config import Settings, load_settings
from quicksoft.errors import QuickSoftError, UsageError
from quicksoft.models import Category, ChangeEvent
from quicksoft.monitor import ChangeReporter, SystemMonitor, format_record
from quicksoft.registry import find_software, uninstall_many

logger = logging.getLogger("quicksoft")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """
    Configure logging for the quicksoft package.

    Args:
        verbose: Include DEBUG messages; otherwise only warnings and errors.
        log_file: Optional file that receives the same messages.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    logger.handlers.clear()
    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def open_file_browser(target: str) -> None:
    """Show target in Explorer, or the platform's default handler elsewhere."""
    if sys.platform == "win32":
        subprocess.Popen(["explorer", target])
    else:
        webbrowser.open(Path(target).resolve().as_uri())


def run_qp(argv: Sequence[str], settings: Settings) -> int:
    """Run one alias command and print its result."""
    store = AliasStore(settings.alias_file)
    store.initialize()

    result = dispatch(store, argv)
    if result.action is Action.OPEN_BROWSER:
        open_file_browser(result.target)
    print(result.message)
    return 0


def print_summary(monitor: SystemMonitor, settings: Settings) -> None:
    """Print the closing line shown when monitoring ends."""
    counts = monitor.event_counts
    print(
        f"Monitoring stopped. {counts[Category.PROCESS]} process and "
        f"{counts[Category.SOFTWARE]} software changes logged to {settings.monitor_log}"
    )


def run_monitor(settings: Settings, plain: bool = False) -> int:
    """Run the change monitor until interrupted."""
    if plain:
        monitor = SystemMonitor(ChangeReporter(settings.monitor_log), poll_interval=settings.poll_interval)
        monitor.initialize()
        print(f"Monitoring started. Logging to {settings.monitor_log}. Press Ctrl+C to stop.")
        stop_event = threading.Event()
        try:
            monitor.run(stop_event)
        except KeyboardInterrupt:
            stop_event.set()
        finally:
            print_summary(monitor, settings)
        return 0

    from quicksoft.app import MonitorApp

    event_queue: Queue[ChangeEvent] = Queue()
    monitor = SystemMonitor(
        ChangeReporter(settings.monitor_log, console=lambda event: None),
        poll_interval=settings.poll_interval,
        event_queue=event_queue,
    )
    monitor.initialize()
    try:
        MonitorApp(monitor, event_queue).run()
    finally:
        print_summary(monitor, settings)
    return 0


def run_software(name: str, settings: Settings, remove: bool = False) -> int:
    """List installed software matching name, optionally uninstalling it."""
    matches = find_software(name)
    if not matches:
        print(f"No installed software matches '{name}'")
        return 1

    for record in matches:
        print(format_record(record))
        print()

    if remove:
        failures = uninstall_many(matches, timeout=settings.uninstall_timeout)
        for display_name, exc in failures.items():
            print(f"Failed to uninstall {display_name}: {exc}", file=sys.stderr)
        return 1 if failures else 0
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quicksoft", description="Windows administration helpers")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    parser.add_argument("--log-file", help="Also write diagnostic logging to this file")
    parser.add_argument("--env-file", help="Load settings from this .env file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor_parser = subparsers.add_parser("monitor", help="Watch for process and software changes")
    monitor_parser.add_argument("--plain", action="store_true", help="Print events instead of the live view")

    software_parser = subparsers.add_parser("software", help="Look up installed software")
    software_parser.add_argument("name", help="Part of the display name to search for")
    software_parser.add_argument("--uninstall", action="store_true", help="Uninstall every match")

    qp_parser = subparsers.add_parser("qp", help="QuickPaths directory aliases", add_help=False)
    qp_parser.add_argument("args", nargs=argparse.REMAINDER)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the quicksoft command."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)
    try:
        settings = load_settings(args.env_file)
        if args.command == "monitor":
            return run_monitor(settings, plain=args.plain)
        if args.command == "software":
            return run_software(args.name, settings, remove=args.uninstall)
        return run_qp(args.args, settings)
    except UsageError as exc:
        print(exc, file=sys.stderr)
        return 2
    except QuickSoftError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def qp_main() -> int:
    """Entry point for the standalone qp command."""
    return main(["qp", *sys.argv[1:]])


if __name__ == "__main__":
    sys.exit(main())
