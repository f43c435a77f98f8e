# server.py
"""WebSocket echo server.

Every inbound frame is answered on the same connection with
``[<server tag>] server received: <message>``. Connections are tracked in a
``ConnectionRegistry`` owned by the server instance.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .errors import LogSinkError, ServerBindError

DEFAULT_SERVER_TAG = "echoguard"


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class Connection:
    """One client session. Lives only as long as the socket does."""

    id: str
    remote_address: str
    opened_at: float = field(default_factory=time.monotonic)
    state: ConnectionState = ConnectionState.CONNECTED
    messages: int = 0
    closed_at: float | None = None

    def close(self) -> None:
        self.state = ConnectionState.CLOSED
        self.closed_at = time.monotonic()


class ConnectionRegistry:
    """Open connections of one server, keyed by connection id."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def add(self, connection: Connection) -> None:
        self._connections[connection.id] = connection

    def remove(self, connection_id: str) -> Connection | None:
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def snapshot(self) -> list[Connection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.snapshot())

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections


def format_echo(message: str | bytes, server_tag: str = DEFAULT_SERVER_TAG) -> str | bytes:
    """Build the reply for ``message``, keeping its frame type."""
    prefix = f"[{server_tag}] server received: "
    if isinstance(message, bytes):
        return prefix.encode("utf-8") + message
    return prefix + message


def _format_address(address: Any) -> str:
    if not address:
        return "unknown"
    if isinstance(address, tuple):
        host, port = address[0], address[1]
        return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"
    return str(address)


def _preview(message: str | bytes) -> str:
    if isinstance(message, bytes):
        return f"<{len(message)} bytes>"
    return message


class EchoServer:
    """
    Echo server bound to one port for the life of the process.

    Args:
        host: Interface to listen on.
        server_tag: Tag placed in front of every reply.
    """

    def __init__(self, host: str = "0.0.0.0", server_tag: str = DEFAULT_SERVER_TAG):
        self.host = host
        self.server_tag = server_tag
        self.registry = ConnectionRegistry()
        self._server: Server | None = None
        self._port: int | None = None
        self.message_count = 0

    @property
    def port(self) -> int | None:
        """Port actually bound (resolves port 0 to the kernel's choice)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(
        self, port: int, on_ready: Callable[[EchoServer], object] | None = None
    ) -> EchoServer:
        """Bind ``port`` and start accepting connections.

        Raises:
            ServerBindError: The port could not be bound. Not retried.
        """
        if self._server is not None:
            raise RuntimeError("server already started")

        self._port = port
        try:
            self._server = await serve(self._handle_connection, self.host, port)
        except LogSinkError:
            raise
        except OSError as exc:
            logger.error(f"[server]Failed to bind {self.host}:{port}: {exc}")
            raise ServerBindError(self.host, port, exc) from exc

        logger.info(f"[server]Server started, listening on ws://{self.host}:{self.port}")
        if on_ready is not None:
            on_ready(self)
        return self

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        connection = Connection(
            id=str(websocket.id),
            remote_address=_format_address(websocket.remote_address),
        )
        try:
            self.registry.add(connection)
            logger.info(
                f"[server]Client connected: {connection.remote_address} "
                f"({len(self.registry)} open)"
            )
            async for message in websocket:
                connection.messages += 1
                self.message_count += 1
                logger.info(
                    f"[server]Received message from {connection.remote_address}: "
                    f"{_preview(message)}"
                )
                await websocket.send(format_echo(message, self.server_tag))
        except ConnectionClosed as exc:
            logger.warning(
                f"[server]Connection {connection.remote_address} closed "
                f"while exchanging messages: {exc}"
            )
        except Exception as exc:
            # Only this connection goes down
            logger.error(
                f"[server]Error on connection {connection.remote_address}: {exc}"
            )
            await websocket.close(code=1011, reason="internal error")
        finally:
            connection.close()
            self.registry.remove(connection.id)
            logger.info(
                f"[server]Client disconnected: {connection.remote_address} "
                f"(code={websocket.close_code}, messages={connection.messages}, "
                f"{len(self.registry)} open)"
            )

    async def wait_closed(self) -> None:
        if self._server is not None:
            await self._server.wait_closed()

    async def stop(self) -> None:
        """Close the listener and every open connection. Idempotent."""
        server, self._server = self._server, None
        if server is None:
            return
        logger.info(f"[server]Stopping server ({len(self.registry)} open connections)...")
        server.close()
        await server.wait_closed()
        logger.info(
            f"[server]Server stopped. Total messages processed: {self.message_count}"
        )


async def start_server(
    port: int,
    on_ready: Callable[[EchoServer], object] | None = None,
    host: str = "0.0.0.0",
    server_tag: str = DEFAULT_SERVER_TAG,
) -> EchoServer:
    """Create an ``EchoServer`` and start it on ``port``; returns the handle."""
    server = EchoServer(host=host, server_tag=server_tag)
    return await server.start(port, on_ready)