"""Integration test fixtures and utilities.

Provides shared fixtures for:
- Free port allocation
- A running WebSocket signaling coordinator on localhost
"""

import logging
import socket
from collections.abc import AsyncIterator
from dataclasses import dataclass

import pytest_asyncio

from src.signaling.coordinator import SignalingCoordinator
from src.signaling.metrics import MetricsCollector
from src.signaling.transport.websocket_transport import WebSocketTransport

logger = logging.getLogger(__name__)


# ============================================================================
# Utility Functions for Port Allocation
# ============================================================================


def get_free_port() -> int:
    """Get a free TCP port for binding.

    Returns:
        Available port number

    Notes:
        The port is freed immediately after discovery, so there's a small
        race window before the server binds it again.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        port: int = s.getsockname()[1]
    return port


# ============================================================================
# Coordinator Fixtures
# ============================================================================


@dataclass
class RunningCoordinator:
    """Handles on a coordinator served over WebSocket."""

    url: str
    coordinator: SignalingCoordinator
    transport: WebSocketTransport
    metrics: MetricsCollector


@pytest_asyncio.fixture
async def signaling_server() -> AsyncIterator[RunningCoordinator]:
    """Start a coordinator on a free localhost port and stop it afterwards."""
    metrics = MetricsCollector()
    coordinator = SignalingCoordinator(max_chat_chars=500, metrics=metrics)
    transport = WebSocketTransport(
        coordinator,
        host="127.0.0.1",
        port=get_free_port(),
        max_connections=4,
        ping_interval_s=None,
        metrics=metrics,
    )
    await transport.start()
    logger.info("Test coordinator listening", extra={"port": transport.bound_port})

    try:
        yield RunningCoordinator(
            url=f"ws://127.0.0.1:{transport.bound_port}",
            coordinator=coordinator,
            transport=transport,
            metrics=metrics,
        )
    finally:
        await transport.stop()
