"""PID lock file that keeps a single server instance per host.

The lock file holds the owner's process id as plain text. A lock whose owner
is no longer alive is stale and is cleared on the next start.

Liveness uses ``psutil.pid_exists``, a signal-free probe (``kill(pid, 0)`` on
POSIX). For a process owned by another user or session the probe can be
wrong on some platforms; that limitation is accepted as-is.
"""

from __future__ import annotations

import os
from pathlib import Path

import psutil
from loguru import logger

from .errors import STALE_LOCK_CODE, SingletonConflictError

DEFAULT_LOCK_FILE = ".server.lock"
MAX_LOCK_RETRIES = 3  # create attempts when racing another starter


def is_process_alive(pid: int) -> bool:
    """Return True if a process with ``pid`` exists. Never signals it."""
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


class ProcessLock:
    """Single-instance guard backed by a lock file."""

    def __init__(self, path: Path | str = DEFAULT_LOCK_FILE) -> None:
        self.path = Path(path)
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def read_owner(self) -> int | None:
        """PID stored in the lock file, or None if missing or unreadable."""
        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def _try_create(self, pid: int) -> bool:
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, str(pid).encode("utf-8"))
        finally:
            os.close(fd)
        return True

    def _clear_stale(self, owner: int | None) -> None:
        if owner is None:
            logger.warning(
                f"[pid_lock]{STALE_LOCK_CODE}-Unreadable lock file {self.path}, "
                "treating it as stale and continuing startup"
            )
        else:
            logger.warning(
                f"[pid_lock]{STALE_LOCK_CODE}-Found stale lock file, process PID={owner} "
                "is not running, continuing startup"
            )
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    def acquire(self) -> None:
        """Claim the lock for the current process.

        Raises:
            SingletonConflictError: The lock is owned by another live process.
        """
        pid = os.getpid()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(MAX_LOCK_RETRIES):
            if self._try_create(pid):
                self._held = True
                logger.info(f"[pid_lock]Wrote server PID lock file, PID={pid}")
                return

            owner = self.read_owner()
            if owner == pid:
                # Left behind by a previous process that had our pid
                self.path.write_text(str(pid), encoding="utf-8")
                self._held = True
                logger.info(f"[pid_lock]Lock file already names this process, PID={pid}")
                return

            if owner is not None and is_process_alive(owner):
                logger.error(
                    f"[pid_lock]{SingletonConflictError.exit_code}-Another server "
                    f"process is running, PID={owner}, aborting startup"
                )
                raise SingletonConflictError(owner, self.path)

            self._clear_stale(owner)

        # Kept losing the create race to another starter
        owner = self.read_owner()
        logger.error(
            f"[pid_lock]{SingletonConflictError.exit_code}-Could not claim lock file "
            f"{self.path} after {MAX_LOCK_RETRIES} attempts, owner PID={owner}"
        )
        raise SingletonConflictError(owner if owner is not None else -1, self.path)

    def release(self) -> None:
        """Delete the lock file if present. Safe to call more than once."""
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.debug(f"[pid_lock]No lock file to release at {self.path}")
            return
        logger.info("[pid_lock]Server shutting down, removed PID lock file")

    def __enter__(self) -> ProcessLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()
