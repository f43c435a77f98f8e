"""Startup sequencing: lock, then port, then server.

Each step only runs after the previous one succeeded. Fatal errors propagate
to the caller as ``FatalStartupError``; the lock is released on every path
once it has been acquired.
"""

from __future__ import annotations

import asyncio
import signal

from loguru import logger

from .config import ServerConfig
from .network_utils import get_listen_urls
from .pid_lock import ProcessLock
from .port_guard import detect_available_port
from .server import EchoServer

_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class EchoService:
    """Owns the lock, the negotiated port and the server for one process."""

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.lock = ProcessLock(config.lock_file)
        self.server = EchoServer(host=config.host, server_tag=config.server_tag)
        self.port: int | None = None
        self._stop_event = asyncio.Event()

    def _on_port_ready(self, port: int) -> None:
        self.port = port

    def _on_server_ready(self, server: EchoServer) -> None:
        for url in get_listen_urls(self.config.host, server.port):
            logger.info(f"[bootstrap]  Reachable at {url}")

    async def start(self) -> EchoServer:
        """Acquire the lock, negotiate a port and start the server.

        Raises:
            FatalStartupError: A startup step failed; the lock is not held.
        """
        logger.info("[bootstrap]Server attempting to start")
        self.lock.acquire()
        try:
            detect_available_port(
                self.config.base_port,
                self.config.max_attempts,
                self._on_port_ready,
                host=self.config.host,
            )
            await self.server.start(self.port, self._on_server_ready)
        except BaseException:
            self.lock.release()
            raise
        return self.server

    def request_stop(self) -> None:
        """Ask a running service to shut down."""
        self._stop_event.set()

    def _install_signal_handlers(self) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in _STOP_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Windows: Ctrl+C arrives as KeyboardInterrupt instead
                continue
            installed.append(sig)
        return installed

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"[bootstrap]Received {signal.Signals(sig).name}, shutting down...")
        self.request_stop()

    async def shutdown(self) -> None:
        """Stop the server and release the lock. Safe to call twice."""
        try:
            await self.server.stop()
        finally:
            if self.lock.held:
                self.lock.release()

    async def run(self) -> None:
        """Start, wait for a stop request, then shut down cleanly.

        Signal handlers are in place before the lock is taken, so a signal
        during startup still ends in a release.
        """
        installed = self._install_signal_handlers()
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            loop = asyncio.get_running_loop()
            for sig in installed:
                loop.remove_signal_handler(sig)
            await self.shutdown()
        logger.info("[bootstrap]Server shutdown complete.")


def run_service(config: ServerConfig) -> None:
    """Run the service until it is stopped by a signal."""
    asyncio.run(EchoService(config).run())
