"""Exception hierarchy shared by every layer of the deployment run."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Union


class ShipwrightError(Exception):
    """Base class for all errors raised by shipwright."""


class HostConnectionError(ShipwrightError, ConnectionError):
    """The target host is unreachable or rejected our credentials."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.host = host


class ConfigError(ShipwrightError, ValueError):
    """Inventory, variables or task list cannot be used as given."""

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        line: Optional[int] = None,
    ):
        if path is not None:
            location = f"{path}:{line}" if line is not None else str(path)
            message = f"{location} {message}"
        super().__init__(message)
        self.path = path
        self.line = line


class TaskError(ShipwrightError):
    """A remote command exited with a status the task does not accept."""

    def __init__(
        self,
        message: str,
        *,
        task: Optional[str] = None,
        host: Optional[str] = None,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.task = task
        self.host = host
        self.command = list(command) if command is not None else None
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def summary(self) -> str:
        """Last meaningful output line, trimmed for single-line reports."""
        for text in (self.stderr, self.stdout):
            stripped = (text or "").strip()
            if not stripped:
                continue
            line = stripped.splitlines()[-1]
            return (line[:157] + "...") if len(line) > 160 else line
        return ""


class VerificationError(ShipwrightError):
    """The post-deploy status check could not run or did not match."""

    def __init__(self, message: str, output: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.output = list(output or [])


def toml_error(exc: ValueError, path: Union[str, Path]) -> ConfigError:
    """Translate a TOML decode error into a ``ConfigError`` at the file's location.

    ``msg`` and ``lineno`` are only present on newer ``tomllib`` releases; older
    ones carry the position inside the message text.
    """
    return ConfigError(getattr(exc, "msg", str(exc)), path, getattr(exc, "lineno", None))


def is_connection_failure(error: Optional[BaseException]) -> bool:
    """True when ``error`` is, or was raised from, a ``HostConnectionError``."""
    while error is not None:
        if isinstance(error, HostConnectionError):
            return True
        error = error.__cause__
    return False
