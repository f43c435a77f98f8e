# logging_utils.py
import logging
import os
import sys
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from .errors import LogSinkError

LOG_SEGMENT_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_PREFIX = "server"

# loguru level name -> level written to the segment files
_LEVEL_NAMES = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARN",
    "WARN": "WARN",
    "ERROR": "ERROR",
    "CRITICAL": "ERROR",
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_log_line(message: str, level: str, timestamp: datetime) -> str:
    """Render one entry as ``[LEVEL] [ISO-8601 timestamp] message``."""

    level_name = _LEVEL_NAMES.get(level.upper(), level.upper())
    stamp = timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return f"[{level_name}] [{stamp}] {message}\n"


class RotatingLogSink:
    """Append-only log writer split into size-capped segment files.

    Segments are named ``server_<start timestamp>_part<N>.log``. The base name
    is fixed when the sink is created; only the part number changes, and it
    only ever increases. A line is never split across two segments.
    """

    def __init__(
        self,
        log_dir: Path | str,
        max_bytes: int = LOG_SEGMENT_MAX_BYTES,
        start_time: datetime | None = None,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")
        self.log_dir = Path(log_dir)
        self.max_bytes = max_bytes
        start = (start_time or _utc_now()).astimezone(timezone.utc)
        self.base_name = f"{LOG_FILE_PREFIX}_{start.strftime('%Y-%m-%dT%H-%M-%S.%fZ')}"
        self._part = 1
        self._lock = threading.Lock()
        self._dir_ready = False

    @property
    def part(self) -> int:
        return self._part

    @property
    def current_path(self) -> Path:
        return self._segment_path(self._part)

    def _segment_path(self, part: int) -> Path:
        return self.log_dir / f"{self.base_name}_part{part}.log"

    def segments(self) -> list[Path]:
        """Existing segment files of this sink, oldest part first."""

        found = []
        for part in range(1, self._part + 1):
            path = self._segment_path(part)
            if path.exists():
                found.append(path)
        return found

    def _current_size(self) -> int:
        try:
            return self.current_path.stat().st_size
        except FileNotFoundError:
            return 0

    def write(
        self, message: str, level: str = "INFO", timestamp: datetime | None = None
    ) -> Path:
        """
        Append one entry and return once it is flushed to disk.

        Args:
            message: Free-text message.
            level: INFO, WARN or ERROR (loguru names such as WARNING are mapped).
            timestamp: Entry time; defaults to now.

        Returns:
            The segment the entry was written to.

        Raises:
            LogSinkError: The segment could not be created or written.
        """
        line = format_log_line(message, level, timestamp or _utc_now())
        data = line.encode("utf-8")

        # size check, part increment and append are one step
        with self._lock:
            path = self.current_path
            try:
                if not self._dir_ready:
                    self.log_dir.mkdir(parents=True, exist_ok=True)
                    self._dir_ready = True

                size = self._current_size()
                if size > 0 and size + len(data) > self.max_bytes:
                    self._part += 1
                    path = self.current_path

                with open(path, "ab") as fh:
                    fh.write(data)
                    fh.flush()
                    os.fsync(fh.fileno())
            except OSError as exc:
                raise LogSinkError(path, exc) from exc
        return path

    def emit(self, message: Any) -> None:
        """loguru sink entry point."""

        record = message.record
        text = record["message"]
        exc = record["exception"]
        if exc is not None and exc.type is not None:
            details = "".join(
                traceback.format_exception(exc.type, exc.value, exc.traceback)
            )
            text = f"{text}\n{details.rstrip()}"
        self.write(text, record["level"].name, record["time"])


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def configure_logging(
    log_dir: Path | None,
    console_level: str = "INFO",
    console_json: bool = False,
    max_bytes: int = LOG_SEGMENT_MAX_BYTES,
    file_level: str = "INFO",
) -> RotatingLogSink | None:
    """
    Initialize console logging and the optional rotating segment sink.

    The segment sink is synchronous and does not catch its own errors, so a
    failed write surfaces at the ``logger`` call that produced it.

    Args:
        log_dir: Directory for segment files; enables the file sink when set.
        console_level: Console level string (e.g., INFO/DEBUG).
        console_json: Emit console as JSON when True; otherwise colored text.
        max_bytes: Segment size ceiling in bytes.
        file_level: Minimum level written to the segment files.

    Returns:
        The segment sink, or None when file logging is disabled.
    """
    logger.remove()

    console_kwargs: dict[str, Any] = {
        "level": console_level.upper(),
        "serialize": console_json,
        "enqueue": False,
        "backtrace": False,
        "diagnose": False,
    }
    if not console_json:
        console_kwargs["format"] = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
        )

    logger.add(sys.stderr, **console_kwargs)

    sink: RotatingLogSink | None = None
    if log_dir is not None:
        sink = RotatingLogSink(log_dir, max_bytes=max_bytes)
        logger.add(
            sink.emit,
            level=file_level.upper(),
            format="{message}",
            enqueue=False,
            catch=False,
            backtrace=False,
            diagnose=False,
        )
        logger.info(f"File logging enabled at {sink.current_path}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    logging.captureWarnings(True)
    return sink
