"""Configuration for quicksoft."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from quicksoft.errors import ValidationError

DEFAULT_HOME = Path.home() / ".quicksoft"
MIN_POLL_INTERVAL = 0.1


@dataclass(slots=True)
class Settings:
    """Runtime settings, overridable through QUICKSOFT_* environment variables."""

    alias_file: Path = DEFAULT_HOME / "QuickPaths.xml"
    monitor_log: Path = DEFAULT_HOME / "SystemMonitor.log"
    poll_interval: float = 0.5  # Seconds between monitor polls
    uninstall_timeout: float = 300.0

    def __post_init__(self) -> None:
        self.alias_file = Path(self.alias_file).expanduser()
        self.monitor_log = Path(self.monitor_log).expanduser()
        self.poll_interval = max(MIN_POLL_INTERVAL, float(self.poll_interval))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from None


def load_settings(env_file: str | None = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional .env file to load first. Without one, the nearest
            .env at or above the working directory is used. Variables already
            present in the environment take precedence over the file.

    Raises:
        ValidationError: A numeric setting is not a number.
    """
    load_dotenv(env_file or find_dotenv(usecwd=True))

    defaults = Settings()
    return Settings(
        alias_file=Path(os.getenv("QUICKSOFT_ALIAS_FILE", str(defaults.alias_file))),
        monitor_log=Path(os.getenv("QUICKSOFT_MONITOR_LOG", str(defaults.monitor_log))),
        poll_interval=_env_float("QUICKSOFT_POLL_INTERVAL", defaults.poll_interval),
        uninstall_timeout=_env_float("QUICKSOFT_UNINSTALL_TIMEOUT", defaults.uninstall_timeout),
    )
