"""File-backed alias store (QuickPaths) for quicksoft."""

import logging
import os
import shutil
import xml.etree.ElementTree as ET
from datetime import datetime
from pathlib import Path

from quicksoft.errors import NotFoundError, StoreIOError, ValidationError
from quicksoft.models import AliasEntry, ImportCounts, ImportStrategy

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
IMPORTED_SUFFIX = "_imported"


def default_aliases() -> list[AliasEntry]:
    """Seed entries written into a freshly created store."""
    home = Path.home()
    return [
        AliasEntry(alias="desktop", location=str(home / "Desktop")),
        AliasEntry(alias="documents", location=str(home / "Documents")),
    ]


def parse_document(data: bytes, origin: str | Path) -> tuple[str, list[AliasEntry]]:
    """
    Parse and validate a QuickPaths document.

    Args:
        data: Raw XML content.
        origin: Where the data came from, used in error messages.

    Returns:
        The Configuration/Source text and the entries in document order.

    Raises:
        ValidationError: The XML is malformed or lacks the Configuration or
            Paths section, or a Path element has no alias.
    """
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise ValidationError(f"Alias file {origin} is not valid XML: {exc}") from exc

    if root.tag != "QuickPaths":
        raise ValidationError(f"Alias file {origin} has root <{root.tag}>, expected <QuickPaths>")

    configuration = root.find("Configuration")
    paths = root.find("Paths")
    if configuration is None or paths is None:
        raise ValidationError(f"Alias file {origin} is missing the Configuration or Paths section")

    entries: list[AliasEntry] = []
    for element in paths.findall("Path"):
        alias = element.get("alias")
        if not alias:
            raise ValidationError(f"Alias file {origin} contains a Path without an alias")
        entries.append(AliasEntry(alias=alias, location=element.get("location", "")))

    return configuration.findtext("Source", default=""), entries


def render_document(source: str, entries: list[AliasEntry], updated: datetime | None = None) -> bytes:
    """Serialize entries into a complete QuickPaths document."""
    root = ET.Element("QuickPaths")
    configuration = ET.SubElement(root, "Configuration")
    ET.SubElement(configuration, "Source").text = source
    ET.SubElement(configuration, "LastUpdated").text = (updated or datetime.now()).strftime(TIMESTAMP_FORMAT)

    paths = ET.SubElement(root, "Paths")
    for entry in entries:
        ET.SubElement(paths, "Path", alias=entry.alias, location=entry.location)

    ET.indent(root)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True) + b"\n"


class AliasStore:
    """
    Alias to path mapping persisted as a QuickPaths XML document.

    Every operation reads the whole document, validates it, changes the
    in-memory list and writes the whole document back. There is no locking;
    with two concurrent writers the last one wins.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def initialize(self, reset: bool = False) -> bool:
        """
        Make sure the backing file exists.

        A missing file is created with the default aliases. An existing valid
        file is left untouched unless reset is requested.

        Returns:
            True if a new document was written.

        Raises:
            ValidationError: The existing file is not a valid document.
            StoreIOError: The file or its directory cannot be created.
        """
        if self._path.exists() and not reset:
            self._read()
            return False

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreIOError(f"Cannot create directory {self._path.parent}: {exc}") from exc

        self._write(str(self._path), default_aliases())
        logger.info("Created alias file %s", self._path)
        return True

    def list_entries(self) -> list[AliasEntry]:
        """Return all entries in document order."""
        return self._read()[1]

    def resolve(self, alias: str) -> str:
        """
        Return the location of the first entry named alias.

        Raises:
            NotFoundError: No entry has that alias.
        """
        for entry in self.list_entries():
            if entry.alias == alias:
                return entry.location
        raise NotFoundError(f"Alias '{alias}' not found. Use 'qp ls' to see available aliases.")

    def add(self, alias: str, path: str) -> AliasEntry:
        """
        Append a new alias.

        Existing paths are stored in absolute form; paths that do not exist
        yet are stored as given. A duplicate alias is appended as a second
        entry and resolve() keeps returning the first one.

        Raises:
            ValidationError: alias or path is empty.
        """
        if not alias or not alias.strip():
            raise ValidationError("Alias must not be empty")
        if not path or not path.strip():
            raise ValidationError("Path must not be empty")

        location = os.path.abspath(path) if os.path.exists(path) else path
        entry = AliasEntry(alias=alias, location=location)

        source, entries = self._read()
        if any(existing.alias == alias for existing in entries):
            logger.warning("Alias '%s' already exists; adding a second entry", alias)
        entries.append(entry)
        self._write(source, entries)
        return entry

    def remove(self, alias: str) -> bool:
        """
        Remove the first entry named alias.

        Returns:
            True if an entry was removed, False if none matched.
        """
        source, entries = self._read()
        for index, entry in enumerate(entries):
            if entry.alias == alias:
                del entries[index]
                self._write(source, entries)
                return True
        return False

    def backup(self) -> Path:
        """
        Copy the store to a timestamped sibling file.

        Returns:
            Path of the backup copy.

        Raises:
            StoreIOError: The store cannot be read or the copy cannot be written.
        """
        stamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
        target = self._path.with_name(f"{self._path.stem}_backup_{stamp}{self._path.suffix}")
        counter = 1
        while target.exists():
            target = self._path.with_name(f"{self._path.stem}_backup_{stamp}_{counter}{self._path.suffix}")
            counter += 1

        try:
            shutil.copy2(self._path, target)
        except OSError as exc:
            raise StoreIOError(f"Cannot back up {self._path}: {exc}") from exc

        logger.info("Backed up %s to %s", self._path, target)
        return target

    def import_from(self, source_path: str | Path, strategy: ImportStrategy = ImportStrategy.MERGE) -> ImportCounts:
        """
        Import entries from another QuickPaths document.

        The live store is backed up first and restored from that backup if
        anything fails before the new document is saved.

        Args:
            source_path: Document to import from.
            strategy: What to do when an imported alias already exists.
                REPLACE overwrites the existing location, SKIP keeps it, MERGE
                adds the imported location as <alias>_imported when the
                locations differ.

        Returns:
            Counts of added, replaced, merged and skipped entries.
        """
        source_path = Path(source_path)
        header, entries = self._read()
        backup_path = self.backup()

        try:
            incoming = self._read_file(source_path)[1]
            added = replaced = merged = skipped = 0

            for entry in incoming:
                index = next((i for i, existing in enumerate(entries) if existing.alias == entry.alias), None)
                if index is None:
                    entries.append(entry)
                    added += 1
                elif strategy is ImportStrategy.REPLACE:
                    entries[index] = AliasEntry(alias=entry.alias, location=entry.location)
                    replaced += 1
                elif strategy is ImportStrategy.SKIP:
                    skipped += 1
                elif entries[index].location != entry.location:
                    entries.append(AliasEntry(alias=entry.alias + IMPORTED_SUFFIX, location=entry.location))
                    merged += 1

            self._write(header, entries)
        except Exception:
            logger.error("Import from %s failed; restoring %s from %s", source_path, self._path, backup_path)
            shutil.copy2(backup_path, self._path)
            raise

        return ImportCounts(added=added, replaced=replaced, merged=merged, skipped=skipped)

    def _read(self) -> tuple[str, list[AliasEntry]]:
        return self._read_file(self._path)

    @staticmethod
    def _read_file(path: Path) -> tuple[str, list[AliasEntry]]:
        try:
            data = path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Alias file {path} does not exist") from exc
        except OSError as exc:
            raise StoreIOError(f"Cannot read alias file {path}: {exc}") from exc
        return parse_document(data, path)

    def _write(self, source: str, entries: list[AliasEntry]) -> None:
        data = render_document(source, entries)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, self._path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise StoreIOError(f"Cannot write alias file {self._path}: {exc}") from exc
