"""Exception classes for quicksoft."""


class QuickSoftError(Exception):
    """Base exception for quicksoft errors."""


class ValidationError(QuickSoftError):
    """Raised for malformed input or a malformed alias document."""


class UsageError(ValidationError):
    """Raised when a command is missing a required argument."""


class NotFoundError(QuickSoftError):
    """Raised for an unknown alias, software entry or missing file."""


class StoreIOError(QuickSoftError):
    """Raised when a file cannot be read, written, created or backed up."""


class ExternalProcessError(QuickSoftError):
    """Raised when a spawned process exits with a nonzero code."""

    def __init__(self, command: str, exit_code: int | None, message: str | None = None) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(message or f"'{command}' exited with code {exit_code}")


class UninstallTimeoutError(ExternalProcessError, TimeoutError):
    """Raised when an uninstall process exceeds its wait budget and is killed."""

    def __init__(self, command: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(command, None, f"'{command}' did not finish within {timeout:g}s and was terminated")
