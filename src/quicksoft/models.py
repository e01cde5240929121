"""Data models for quicksoft."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Architecture(Enum):
    """Registry view an installed program was found under."""

    X64 = "64-bit"
    X86 = "32-bit"


class Category(Enum):
    """Kind of state the monitor watches."""

    PROCESS = "Process"
    SOFTWARE = "Software"


class ChangeKind(Enum):
    """Direction of a detected change."""

    ADDED = "Added"
    REMOVED = "Removed"


class ImportStrategy(Enum):
    """Conflict policy applied to colliding aliases during import."""

    MERGE = "merge"
    REPLACE = "replace"
    SKIP = "skip"


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of one running process."""

    pid: int
    name: str
    executable_path: str | None
    start_time: datetime | None


@dataclass(slots=True, frozen=True)
class SoftwareRecord:
    """Immutable snapshot of one uninstall-registry entry."""

    display_name: str
    version: str | None
    architecture: Architecture
    product_guid: str | None
    publisher: str | None
    uninstall_string: str | None = None


@dataclass(slots=True, frozen=True)
class AliasEntry:
    """An alias mapped to a filesystem location."""

    alias: str
    location: str


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """A single added/removed record reported by the monitor."""

    kind: ChangeKind
    category: Category
    record: ProcessRecord | SoftwareRecord
    timestamp: datetime


@dataclass(slots=True, frozen=True)
class ImportCounts:
    """Running totals of an alias import."""

    added: int = 0
    replaced: int = 0
    merged: int = 0
    skipped: int = 0
