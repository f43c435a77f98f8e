import socket
import subprocess
import sys

import pytest
from loguru import logger

from echoguard.config import ServerConfig


@pytest.fixture
def captured_logs():
    """Collect (level, message) pairs emitted through loguru during a test."""
    records: list[tuple[str, str]] = []
    handler_id = logger.add(
        lambda message: records.append(
            (message.record["level"].name, message.record["message"])
        ),
        level="DEBUG",
    )
    yield records
    logger.remove(handler_id)


@pytest.fixture
def dead_pid() -> int:
    """PID of a process that has already exited and been reaped."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


@pytest.fixture
def live_pid():
    """PID of a process that stays alive for the test's duration."""
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        yield proc.pid
    finally:
        proc.kill()
        proc.wait()


@pytest.fixture
def occupied_port():
    """A localhost port held by a listening socket for the test's duration."""
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    try:
        yield holder.getsockname()[1]
    finally:
        holder.close()


@pytest.fixture
def make_config(tmp_path):
    """Build a ServerConfig bound to localhost with the lock file in tmp_path."""

    def _make(**overrides) -> ServerConfig:
        values = {
            "host": "127.0.0.1",
            "base_port": 8080,
            "max_attempts": 8,
            "server_tag": "echoguard",
            "lock_file": str(tmp_path / ".server.lock"),
            "log_dir": None,
            "log_max_bytes": 5 * 1024 * 1024,
            "log_level_console": "INFO",
            "log_json_console": False,
        }
        values.update(overrides)
        return ServerConfig(**values)

    return _make
