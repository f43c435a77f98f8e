"""Sequential port negotiation.

Candidates are probed one at a time, in order, with a throwaway listener.
The first port that binds is handed to the caller's start function.
"""

from __future__ import annotations

import errno
import socket
import sys
from collections.abc import Callable

from loguru import logger

from .errors import NoAvailablePortError, PortProbeError

DEFAULT_BASE_PORT = 8080
DEFAULT_MAX_ATTEMPTS = 8
DEFAULT_HOST = "0.0.0.0"
MAX_PORT = 65535

_ADDR_IN_USE = {errno.EADDRINUSE}
if sys.platform == "win32":
    _ADDR_IN_USE.add(10048)  # WSAEADDRINUSE
    _ADDR_IN_USE.add(errno.EACCES)  # port held with SO_EXCLUSIVEADDRUSE


class PortInUse(Exception):
    """Internal signal: the probed port is taken."""


def _is_positive_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def candidate_ports(base_port: int, max_attempts: int) -> list[int]:
    """Ordered candidates ``[base_port, ..., base_port + max_attempts - 1]``."""
    return [base_port + offset for offset in range(max_attempts)]


def probe_port(host: str, port: int) -> None:
    """
    Bind and immediately close a listener on ``host:port``.

    Uses the same address-reuse setting as the asyncio server that will later
    bind the port, so a probe succeeds exactly when the real bind would.

    Raises:
        PortInUse: The address is already in use.
        OSError: Any other bind failure.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    with socket.socket(family, socket.SOCK_STREAM) as tester:
        if sys.platform != "win32":
            tester.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            tester.bind((host, port))
            tester.listen(1)
        except OSError as exc:
            if exc.errno in _ADDR_IN_USE:
                raise PortInUse(port) from exc
            raise


def detect_available_port(
    base_port: int = DEFAULT_BASE_PORT,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    on_ready: Callable[[int], object] | None = None,
    host: str = DEFAULT_HOST,
) -> int:
    """
    Find the first free port in the candidate range and hand it to ``on_ready``.

    ``on_ready`` is called at most once. Arguments are validated before any
    socket is opened.

    Args:
        base_port: First candidate port.
        max_attempts: Number of consecutive candidates to try.
        on_ready: Start function receiving the chosen port.
        host: Interface the probe listener binds to.

    Returns:
        The chosen port.

    Raises:
        ValueError: base_port/max_attempts are not positive ints, or the range
            runs past 65535.
        TypeError: on_ready is not callable.
        NoAvailablePortError: Every candidate is in use.
        PortProbeError: A probe failed for a reason other than "in use".
    """
    if not _is_positive_int(base_port) or not _is_positive_int(max_attempts):
        logger.error(
            f"[port_guard]115-base_port and max_attempts must be positive integers, "
            f"got base_port={base_port!r}, max_attempts={max_attempts!r}"
        )
        raise ValueError("base_port and max_attempts must be positive integers")
    if base_port + max_attempts - 1 > MAX_PORT:
        logger.error(
            f"[port_guard]115-candidate range {base_port}-{base_port + max_attempts - 1} "
            f"exceeds {MAX_PORT}"
        )
        raise ValueError(f"candidate ports must not exceed {MAX_PORT}")
    if not callable(on_ready):
        logger.error("[port_guard]116-on_ready must be callable")
        raise TypeError("on_ready must be callable")

    candidates = candidate_ports(base_port, max_attempts)
    logger.info(f"[port_guard]Candidate ports: {candidates}")

    for port in candidates:
        try:
            probe_port(host, port)
        except PortInUse:
            logger.warning(f"[port_guard]112-Port {port} is in use, trying the next one")
            continue
        except OSError as exc:
            logger.error(f"[port_guard]113-Error while probing port {port}: {exc}")
            raise PortProbeError(port, exc) from exc

        logger.info(f"[port_guard]Port {port} is available, probe listener closed")
        on_ready(port)
        return port

    logger.error("[port_guard]111-No available port, server cannot start")
    raise NoAvailablePortError(candidates)
