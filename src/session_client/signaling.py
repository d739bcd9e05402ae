"""Client side of the signaling connection.

One bidirectional channel per session carries join, negotiation envelopes and
chat. The client never reconnects on its own: a dropped channel ends the
``messages()`` iteration and the session decides what that means.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.protocol import State

from src.session_client.errors import SignalingConnectionError
from src.signaling.protocol import (
    ClientMessage,
    ProtocolError,
    ServerMessage,
    parse_server_message,
)

logger = logging.getLogger(__name__)


class SignalingChannel(ABC):
    """Connection from a session client to the signaling coordinator."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel.

        Raises:
            SignalingConnectionError: If the coordinator cannot be reached
        """
        pass

    @abstractmethod
    async def send(self, message: ClientMessage) -> None:
        """Send a message to the coordinator.

        Raises:
            SignalingConnectionError: If the channel is closed
        """
        pass

    @abstractmethod
    def messages(self) -> AsyncIterator[ServerMessage]:
        """Iterate over coordinator messages until the channel closes."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Idempotent."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass


class WebSocketSignalingChannel(SignalingChannel):
    """Signaling channel over a WebSocket."""

    def __init__(self, url: str, connect_timeout_s: float = 10.0) -> None:
        """Initialize channel.

        Args:
            url: Coordinator WebSocket URL (ws:// or wss://)
            connect_timeout_s: Open handshake timeout
        """
        self._url = url
        self._connect_timeout_s = connect_timeout_s
        self._websocket: ClientConnection | None = None

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and self._websocket.state == State.OPEN

    async def connect(self) -> None:
        if self._websocket is not None:
            raise RuntimeError("Signaling channel already connected")

        logger.info("Connecting to signaling coordinator", extra={"url": self._url})

        try:
            self._websocket = await asyncio.wait_for(
                connect(self._url), timeout=self._connect_timeout_s
            )
        except TimeoutError as e:
            raise SignalingConnectionError(
                f"Timed out connecting to {self._url} after {self._connect_timeout_s}s"
            ) from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise SignalingConnectionError(f"Cannot reach coordinator at {self._url}: {e}") from e

        logger.info("Signaling connection open", extra={"url": self._url})

    async def send(self, message: ClientMessage) -> None:
        if self._websocket is None or not self.is_connected:
            raise SignalingConnectionError("Signaling connection is closed")

        try:
            await self._websocket.send(message.model_dump_json())
        except websockets.exceptions.ConnectionClosed as e:
            raise SignalingConnectionError(f"Signaling connection closed: {e}") from e

    async def messages(self) -> AsyncIterator[ServerMessage]:
        if self._websocket is None:
            raise SignalingConnectionError("Signaling channel is not connected")

        try:
            async for raw_message in self._websocket:
                try:
                    yield parse_server_message(raw_message)
                except ProtocolError as e:
                    logger.warning("Ignoring invalid coordinator message", extra={"error": str(e)})
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning("Signaling connection dropped", extra={"error": str(e)})

    async def close(self) -> None:
        if self._websocket is None:
            return

        try:
            await self._websocket.close()
        finally:
            logger.info("Signaling connection closed", extra={"url": self._url})
