"""Base abstraction for client connections held by the coordinator.

The coordinator only needs to address occupants and push messages to them;
each transport (WebSocket, in-process test doubles) provides a concrete handle.
"""

from abc import ABC, abstractmethod

from src.signaling.protocol import ServerMessage


class ConnectionHandle(ABC):
    """One participant's connection to the coordinator."""

    @property
    @abstractmethod
    def handle_id(self) -> str:
        """Unique connection identifier for logging and peer announcements."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is still open."""
        pass

    @abstractmethod
    async def send(self, message: ServerMessage) -> None:
        """Deliver a message to the client.

        Messages sent through one handle must arrive in call order.

        Args:
            message: Message to deliver

        Raises:
            ConnectionError: If the connection is closed or broken
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass
