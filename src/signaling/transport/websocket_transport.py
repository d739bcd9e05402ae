"""WebSocket transport for the signaling coordinator.

Each client holds one bidirectional WebSocket. Messages from a connection are
decoded and handed to the coordinator one at a time, which preserves per-sender
ordering through the relay.
"""

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

import websockets
from websockets.asyncio.server import ServerConnection, serve
from websockets.protocol import State

from src.signaling.errors import SignalingError
from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.protocol import (
    ErrorMessage,
    ProtocolError,
    ServerMessage,
    parse_client_message,
)
from src.signaling.transport.base import ConnectionHandle

if TYPE_CHECKING:
    from src.signaling.coordinator import SignalingCoordinator

logger = logging.getLogger(__name__)

# Close code sent when max_connections is reached ("try again later")
CLOSE_CODE_AT_CAPACITY = 1013


class WebSocketConnection(ConnectionHandle):
    """WebSocket-backed connection handle.

    Sends are serialized through a lock so concurrent relays to the same
    client are written in call order.
    """

    def __init__(self, websocket: ServerConnection, handle_id: str) -> None:
        """Initialize connection handle.

        Args:
            websocket: WebSocket connection
            handle_id: Unique connection identifier
        """
        self._websocket = websocket
        self._handle_id = handle_id
        self._connected = True
        self._send_lock = asyncio.Lock()

        logger.info(
            "WebSocket connection initialized",
            extra={"handle": handle_id, "remote": websocket.remote_address},
        )

    @property
    def handle_id(self) -> str:
        return self._handle_id

    @property
    def is_connected(self) -> bool:
        return self._connected and self._websocket.state == State.OPEN

    async def send(self, message: ServerMessage) -> None:
        """Send a message to the client.

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        if not self.is_connected:
            raise ConnectionError("WebSocket connection is closed")

        try:
            async with self._send_lock:
                await self._websocket.send(message.model_dump_json())
        except websockets.exceptions.ConnectionClosed as e:
            self._connected = False
            raise ConnectionError(f"WebSocket connection closed: {e}") from e

    async def send_error(self, code: str, message: str) -> None:
        """Report an error to the client without raising."""
        try:
            await self.send(ErrorMessage(code=code, message=message))
        except ConnectionError:
            logger.debug(
                "Could not deliver error to closed connection",
                extra={"handle": self._handle_id, "code": code},
            )

    def mark_closed(self) -> None:
        self._connected = False

    async def close(self) -> None:
        if not self._connected:
            return

        self._connected = False
        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"handle": self._handle_id, "error": str(e)},
            )


class WebSocketTransport:
    """WebSocket signaling server.

    Accepts client connections, feeds their messages to the coordinator, and
    guarantees the coordinator's leave runs for every closed connection.
    """

    def __init__(
        self,
        coordinator: "SignalingCoordinator",
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 1000,
        max_message_bytes: int = 2**20,
        ping_interval_s: float | None = 20.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            coordinator: Coordinator that owns rooms and relays
            host: Bind host address
            port: Bind port
            max_connections: Maximum concurrent connections
            max_message_bytes: Maximum inbound message size
            ping_interval_s: Keepalive ping interval (None disables)
            metrics: Metrics collector (defaults to the global collector)
        """
        self._coordinator = coordinator
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._max_message_bytes = max_message_bytes
        self._ping_interval_s = ping_interval_s
        self._metrics = metrics or get_metrics_collector()
        self._server: Any = None  # websockets Server
        self._running = False
        self._connections: dict[str, WebSocketConnection] = {}

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def bound_port(self) -> int:
        """Port actually bound (differs from the configured one when it is 0)."""
        if self._server is None:
            return self._port
        port: int = self._server.sockets[0].getsockname()[1]
        return port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport is already running or fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
                ping_interval=self._ping_interval_s,
            )
            self._running = True
            logger.info("WebSocket server started", extra={"port": self.bound_port})

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the server and close every open connection."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one client connection until it closes."""
        if len(self._connections) >= self._max_connections:
            logger.warning(
                "Rejecting connection, server at capacity",
                extra={"remote": websocket.remote_address},
            )
            await websocket.close(code=CLOSE_CODE_AT_CAPACITY, reason="Server at capacity")
            return

        handle = WebSocketConnection(websocket, f"conn-{uuid.uuid4().hex[:12]}")
        self._connections[handle.handle_id] = handle
        self._metrics.record_connection_open()

        try:
            async for raw_message in websocket:
                await self._process_message(handle, raw_message)
        except websockets.exceptions.ConnectionClosed:
            logger.info("WebSocket connection dropped", extra={"handle": handle.handle_id})
        finally:
            handle.mark_closed()
            self._connections.pop(handle.handle_id, None)
            self._metrics.record_connection_closed()
            await self._coordinator.leave(handle)
            logger.info("WebSocket connection closed", extra={"handle": handle.handle_id})

    async def _process_message(self, handle: WebSocketConnection, raw: str | bytes) -> None:
        try:
            message = parse_client_message(raw)
        except ProtocolError as e:
            logger.warning(
                "Invalid client message",
                extra={"handle": handle.handle_id, "error": str(e)},
            )
            await handle.send_error("INVALID_MESSAGE", str(e))
            return

        try:
            await self._coordinator.handle_message(handle, message)
        except SignalingError as e:
            await handle.send_error(e.code, str(e))
        except Exception as e:
            logger.exception(
                "Error processing message",
                extra={"handle": handle.handle_id, "type": message.type},
            )
            await handle.send_error("INTERNAL_ERROR", f"Message processing error: {e}")
