"""Peer connection abstraction.

A peer connection negotiates a direct media path with the remote participant.
Negotiation is trickle-free: each side gathers all of its connectivity data
before emitting a single envelope through ``on_signal``.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from src.session_client.media import MediaStream, MediaTrack


class PeerConnectionListener(ABC):
    """Receives peer connection events.

    Events may arrive in any order relative to each other; the listener is
    responsible for ignoring events that no longer apply.
    """

    @abstractmethod
    async def on_signal(self, payload: dict[str, Any]) -> None:
        """A negotiation envelope must be sent to the remote peer."""
        pass

    @abstractmethod
    async def on_connect(self) -> None:
        """The direct channel to the remote peer is established."""
        pass

    @abstractmethod
    async def on_stream(self, stream: MediaStream) -> None:
        """Remote media arrived."""
        pass

    @abstractmethod
    async def on_error(self, error: Exception) -> None:
        """Negotiation or the established connection failed."""
        pass

    @abstractmethod
    async def on_close(self) -> None:
        """The peer connection closed."""
        pass


class PeerConnection(ABC):
    """One peer connection per call."""

    @property
    @abstractmethod
    def initiator(self) -> bool:
        """Whether this side produces the offer."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Begin negotiation.

        The initiator emits its offer through ``on_signal``; the responder
        waits for the offer to arrive via ``signal``.
        """
        pass

    @abstractmethod
    async def signal(self, payload: dict[str, Any]) -> None:
        """Apply a negotiation envelope received from the remote peer.

        Raises:
            NegotiationError: If the payload cannot be applied
        """
        pass

    @abstractmethod
    async def replace_track(self, old_track: MediaTrack, new_track: MediaTrack) -> None:
        """Substitute an outgoing track without renegotiating.

        Raises:
            ValueError: If ``old_track`` is not being sent
        """
        pass

    @abstractmethod
    async def destroy(self) -> None:
        """Close the connection and release its resources."""
        pass


# (initiator, local_stream, listener) -> PeerConnection
PeerConnectionFactory = Callable[[bool, MediaStream, PeerConnectionListener], PeerConnection]
