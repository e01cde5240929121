"""Installed-software inventory read from the Windows uninstall registry."""

import logging
import re
import subprocess
import sys
from collections.abc import Callable, Iterable, Iterator
from typing import Protocol

from quicksoft.errors import ExternalProcessError, NotFoundError, UninstallTimeoutError
from quicksoft.models import Architecture, SoftwareRecord

if sys.platform == "win32":
    import winreg

logger = logging.getLogger(__name__)

NATIVE_UNINSTALL_KEY = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
WOW64_UNINSTALL_KEY = r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"

UNINSTALL_LOCATIONS: tuple[tuple[str, Architecture], ...] = (
    (NATIVE_UNINSTALL_KEY, Architecture.X64),
    (WOW64_UNINSTALL_KEY, Architecture.X86),
)

GUID_PATTERN = re.compile(r"\{[^{}]+\}")

RegistryValues = dict[str, object]


class RegistryReader(Protocol):
    """Anything that can list the value sets of the subkeys under a key."""

    def iter_subkeys(self, path: str) -> Iterable[RegistryValues]: ...


class WinregReader:
    """Reads HKEY_LOCAL_MACHINE through the winreg module."""

    def __init__(self) -> None:
        if sys.platform != "win32":
            raise NotFoundError("The Windows registry is only available on Windows")

    def iter_subkeys(self, path: str) -> Iterator[RegistryValues]:
        """
        Yield the values of every readable subkey of HKLM\\<path>.

        A missing key yields nothing. Subkeys that cannot be opened are skipped.
        """
        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, path, 0, winreg.KEY_READ | winreg.KEY_WOW64_64KEY)
        except OSError:
            return

        with key:
            subkey_count = winreg.QueryInfoKey(key)[0]
            for i in range(subkey_count):
                try:
                    subkey_name = winreg.EnumKey(key, i)
                    with winreg.OpenKey(key, subkey_name) as subkey:
                        yield self._read_values(subkey)
                except OSError:
                    continue

    @staticmethod
    def _read_values(subkey) -> RegistryValues:
        values: RegistryValues = {}
        value_count = winreg.QueryInfoKey(subkey)[1]
        for i in range(value_count):
            try:
                name, data, _ = winreg.EnumValue(subkey, i)
            except OSError:
                continue
            values[name] = data
        return values


def _text(values: RegistryValues, name: str) -> str | None:
    value = values.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_product_guid(uninstall_string: str | None) -> str | None:
    """Return the first {...} token in an uninstall command, if any."""
    if not uninstall_string:
        return None
    match = GUID_PATTERN.search(uninstall_string)
    return match.group(0) if match else None


def scan_uninstall_entries(reader: RegistryReader | None = None) -> list[SoftwareRecord]:
    """
    Scan the native and WOW64 uninstall locations.

    Only entries that carry both a DisplayName and an UninstallString are kept.
    Records are returned in enumeration order, native location first.

    Args:
        reader: Registry reader to use. Defaults to WinregReader.
    """
    if reader is None:
        reader = WinregReader()

    records: list[SoftwareRecord] = []
    for path, architecture in UNINSTALL_LOCATIONS:
        for values in reader.iter_subkeys(path):
            display_name = _text(values, "DisplayName")
            uninstall_string = _text(values, "UninstallString")
            if not display_name or not uninstall_string:
                continue

            records.append(
                SoftwareRecord(
                    display_name=display_name,
                    version=_text(values, "DisplayVersion"),
                    architecture=architecture,
                    product_guid=extract_product_guid(uninstall_string),
                    publisher=_text(values, "Publisher"),
                    uninstall_string=uninstall_string,
                )
            )
    return records


def find_software(name: str, reader: RegistryReader | None = None) -> list[SoftwareRecord]:
    """Return installed software whose display name contains name (case-insensitive)."""
    needle = name.casefold()
    return [record for record in scan_uninstall_entries(reader) if needle in record.display_name.casefold()]


def build_uninstall_command(record: SoftwareRecord) -> list[str] | str:
    """
    Build the command used to remove an installed program.

    MSI installs are removed quietly through msiexec using the product GUID.
    Anything else runs the recorded uninstall string as-is.
    """
    if not record.uninstall_string:
        raise NotFoundError(f"No uninstall command recorded for '{record.display_name}'")

    if record.product_guid and "msiexec" in record.uninstall_string.lower():
        return ["msiexec.exe", "/x", record.product_guid, "/qn", "/norestart"]
    return record.uninstall_string


def uninstall(
    record: SoftwareRecord,
    timeout: float = 300.0,
    runner: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> None:
    """
    Uninstall one program and wait for it to finish.

    Raises:
        NotFoundError: The record has no uninstall command.
        UninstallTimeoutError: The process ran past timeout and was killed.
        ExternalProcessError: The process exited with a nonzero code.
    """
    command = build_uninstall_command(record)
    command_text = command if isinstance(command, str) else " ".join(command)
    logger.info("Uninstalling %s: %s", record.display_name, command_text)

    proc = runner(command)
    try:
        exit_code = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
        raise UninstallTimeoutError(command_text, timeout) from None

    if exit_code != 0:
        raise ExternalProcessError(command_text, exit_code)


def uninstall_many(
    records: Iterable[SoftwareRecord],
    timeout: float = 300.0,
    runner: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> dict[str, Exception]:
    """
    Uninstall several programs, continuing past individual failures.

    Returns:
        Mapping of display name to the error raised for each failed program.
    """
    failures: dict[str, Exception] = {}
    for record in records:
        try:
            uninstall(record, timeout=timeout, runner=runner)
        except (NotFoundError, ExternalProcessError, OSError) as exc:
            logger.error("Failed to uninstall %s: %s", record.display_name, exc)
            failures[record.display_name] = exc
    return failures
