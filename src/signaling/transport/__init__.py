"""Transport layer for coordinator client connections."""

from src.signaling.transport.base import ConnectionHandle
from src.signaling.transport.websocket_transport import (
    WebSocketConnection,
    WebSocketTransport,
)

__all__ = [
    "ConnectionHandle",
    "WebSocketConnection",
    "WebSocketTransport",
]
