"""
echoguard Server Package

A single-instance WebSocket echo service. On startup it claims a PID lock
file, probes a range of candidate ports for the first free one, serves a
WebSocket endpoint there that echoes every message back to its sender, and
records every event to size-capped rotating log segments.

Main Classes:
    EchoService: Startup sequencing (lock -> port -> server) and shutdown
    EchoServer: The WebSocket echo server
    ProcessLock: Single-instance guard
    RotatingLogSink: Size-capped segmented log writer

Examples:
    # Run server via CLI (after installation)
    echoguard-server --base-port 8080 --max-attempts 8

    # Use the pieces programmatically
    from echoguard import detect_available_port
    port = detect_available_port(8080, 8, on_ready=print)
"""

from .bootstrap import EchoService, run_service
from .errors import (
    FatalStartupError,
    LogSinkError,
    NoAvailablePortError,
    PortProbeError,
    ServerBindError,
    SingletonConflictError,
)
from .logging_utils import RotatingLogSink, configure_logging
from .pid_lock import ProcessLock
from .port_guard import detect_available_port
from .server import ConnectionRegistry, EchoServer, format_echo, start_server

__all__ = [
    # Service
    "EchoService",
    "run_service",
    # Components
    "EchoServer",
    "ConnectionRegistry",
    "ProcessLock",
    "RotatingLogSink",
    "configure_logging",
    "detect_available_port",
    "format_echo",
    "start_server",
    # Errors
    "FatalStartupError",
    "LogSinkError",
    "NoAvailablePortError",
    "PortProbeError",
    "ServerBindError",
    "SingletonConflictError",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("echoguard-server")
except PackageNotFoundError:
    __version__ = "unknown"
