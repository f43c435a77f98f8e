"""Error types shared by the echoguard startup components.

Components raise these instead of terminating the process. The CLI entry
point is the only place that turns a ``FatalStartupError`` into an exit
status.
"""

from __future__ import annotations

from pathlib import Path

# Not an exit status: appears in the warning logged when a stale lock is cleared.
STALE_LOCK_CODE = 102


class FatalStartupError(Exception):
    """Startup cannot continue; the process must exit with ``exit_code``."""

    exit_code: int = 1

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class SingletonConflictError(FatalStartupError):
    """Another live instance owns the process lock.

    Attributes:
        pid: Process id found in the lock file.
        lock_path: Path of the lock file that was left untouched.
    """

    exit_code = 101

    def __init__(self, pid: int, lock_path: Path) -> None:
        self.pid = pid
        self.lock_path = lock_path
        super().__init__(
            f"Another server instance is running (PID={pid}, lock={lock_path})"
        )


class NoAvailablePortError(FatalStartupError):
    """Every candidate port was already in use."""

    exit_code = 111

    def __init__(self, candidates: list[int]) -> None:
        self.candidates = candidates
        if candidates:
            span = f"{candidates[0]}-{candidates[-1]}"
        else:
            span = "<none>"
        super().__init__(f"No available port in candidate range {span}")


class PortProbeError(FatalStartupError):
    """Probing a candidate port failed for a reason other than "in use"."""

    exit_code = 113

    def __init__(self, port: int, cause: OSError) -> None:
        self.port = port
        self.cause = cause
        super().__init__(f"Unexpected error while probing port {port}: {cause}")


class ServerBindError(FatalStartupError):
    """The connection server could not bind its negotiated port."""

    exit_code = 1

    def __init__(self, host: str, port: int, cause: OSError) -> None:
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(f"Failed to bind server on {host}:{port}: {cause}")


class LogSinkError(OSError):
    """A log segment could not be created or written.

    Raised to the caller of the write; it is never retried or dropped.
    """

    def __init__(self, path: Path, cause: OSError) -> None:
        self.path = path
        self.cause = cause
        super().__init__(cause.errno, f"Cannot write log segment {path}: {cause}")
