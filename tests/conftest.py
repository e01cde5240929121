"""Shared fixtures for quicksoft tests."""

import pytest

from quicksoft.registry import NATIVE_UNINSTALL_KEY, WOW64_UNINSTALL_KEY


class FakeRegistryReader:
    """In-memory stand-in for the uninstall registry keys."""

    def __init__(self, keys: dict[str, list[dict[str, object]]]) -> None:
        self.keys = keys
        self.visited: list[str] = []

    def iter_subkeys(self, path: str):
        self.visited.append(path)
        return iter(self.keys.get(path, []))


@pytest.fixture
def fake_reader() -> FakeRegistryReader:
    return FakeRegistryReader(
        {
            NATIVE_UNINSTALL_KEY: [
                {
                    "DisplayName": "Contoso Tools",
                    "DisplayVersion": "4.2.0",
                    "Publisher": "Contoso",
                    "UninstallString": "MsiExec.exe /X{1234-ABCD}",
                },
                # No uninstall command: not listed
                {"DisplayName": "Orphaned Entry", "DisplayVersion": "1.0"},
                # No display name: not listed
                {"UninstallString": "C:\\hidden\\uninstall.exe"},
            ],
            WOW64_UNINSTALL_KEY: [
                {
                    "DisplayName": "Legacy App",
                    "DisplayVersion": "20190401",
                    "UninstallString": '"C:\\Program Files (x86)\\Legacy\\unins000.exe" /SILENT',
                },
            ],
        }
    )
