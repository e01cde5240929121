"""Command dispatch for the QuickPaths alias commands."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from quicksoft.aliases import AliasStore
from quicksoft.errors import UsageError
from quicksoft.models import AliasEntry, ImportStrategy

HELP_TEXT = """\
Usage: qp <command> [arguments]

  <alias>                              Change to the directory of <alias>
  add <alias> <path>                   Add an alias for <path>
  rm <alias>                           Remove <alias>
  ls                                   List all aliases
  open                                 Open a file browser in the current directory
  backup                               Back up the alias file
  import <path> [--merge|--replace|--skip]
                                       Import aliases from another alias file
  help                                 Show this help
"""

STRATEGY_FLAGS = {
    "--merge": ImportStrategy.MERGE,
    "--replace": ImportStrategy.REPLACE,
    "--skip": ImportStrategy.SKIP,
}


class Action(Enum):
    """What the caller has to do with a command result."""

    PRINT = "print"
    CHANGE_DIR = "change_dir"
    OPEN_BROWSER = "open_browser"


@dataclass(slots=True)
class CommandResult:
    """Outcome of one dispatched command."""

    action: Action
    message: str = ""
    target: str | None = None
    entries: list[AliasEntry] = field(default_factory=list)


def _require(args: Sequence[str], count: int, usage: str) -> None:
    if len(args) < count or any(not arg for arg in args[:count]):
        raise UsageError(f"Usage: qp {usage}")


def format_entries(entries: Sequence[AliasEntry]) -> str:
    """Render aliases as a numbered table in document order."""
    if not entries:
        return "No aliases defined."
    width = max(len(entry.alias) for entry in entries)
    return "\n".join(
        f"{number:>3}. {entry.alias:<{width}}  {entry.location}" for number, entry in enumerate(entries, start=1)
    )


def dispatch(store: AliasStore, argv: Sequence[str], cwd: str | Path | None = None) -> CommandResult:
    """
    Run one alias command against store without doing any console I/O.

    Args:
        store: Alias store to operate on.
        argv: Command words, e.g. ["add", "dev", "C:/dev"] or ["dev"].
        cwd: Directory that "open" should show. Defaults to the process cwd.

    Raises:
        UsageError: A required argument is missing or a flag is unknown.
        NotFoundError: A bare alias does not exist.
    """
    if not argv or argv[0] in ("help", "-h", "--help"):
        return CommandResult(Action.PRINT, HELP_TEXT)

    command, args = argv[0], list(argv[1:])

    if command == "add":
        _require(args, 2, "add <alias> <path>")
        entry = store.add(args[0], args[1])
        return CommandResult(Action.PRINT, f"Added alias '{entry.alias}' -> {entry.location}", entries=[entry])

    if command == "rm":
        _require(args, 1, "rm <alias>")
        if store.remove(args[0]):
            return CommandResult(Action.PRINT, f"Removed alias '{args[0]}'")
        return CommandResult(Action.PRINT, f"Alias '{args[0]}' not found, nothing removed")

    if command == "ls":
        entries = store.list_entries()
        return CommandResult(Action.PRINT, format_entries(entries), entries=entries)

    if command == "open":
        target = str(cwd if cwd is not None else Path.cwd())
        return CommandResult(Action.OPEN_BROWSER, f"Opening {target}", target=target)

    if command == "backup":
        backup_path = store.backup()
        return CommandResult(Action.PRINT, f"Backup created: {backup_path}", target=str(backup_path))

    if command == "import":
        _require(args, 1, "import <path> [--merge|--replace|--skip]")
        strategy = ImportStrategy.MERGE
        for flag in args[1:]:
            if flag not in STRATEGY_FLAGS:
                raise UsageError(f"Unknown import option '{flag}'. Use --merge, --replace or --skip")
            strategy = STRATEGY_FLAGS[flag]
        counts = store.import_from(args[0], strategy)
        return CommandResult(
            Action.PRINT,
            f"Import complete ({strategy.value}): {counts.added} added, {counts.replaced} replaced, "
            f"{counts.merged} merged, {counts.skipped} skipped",
        )

    location = store.resolve(command)
    return CommandResult(Action.CHANGE_DIR, location, target=location)
