"""Signaling coordinator: room membership and message relay.

The coordinator pairs two participants per room and relays negotiation
envelopes and chat messages between them. It has no knowledge of the
negotiation protocol; payloads are forwarded verbatim.

Concurrency:
- Each room has its own lock. Membership changes (check-count-then-add) and
  relays for one room are serialized; rooms never block each other.
- Per-sender order is preserved because each transport connection feeds its
  messages to the coordinator sequentially and relays are awaited in order.
"""

import logging
import time
from dataclasses import dataclass

from src.signaling.errors import (
    AlreadyJoinedError,
    ChatTooLongError,
    NotInRoomError,
    RoomFullError,
)
from src.signaling.metrics import MetricsCollector, get_metrics_collector
from src.signaling.protocol import (
    ChatMessage,
    ClientMessage,
    JoinedMessage,
    JoinMessage,
    LeaveMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    RoomReadyMessage,
    ServerMessage,
    SignalMessage,
)
from src.signaling.rooms import MAX_OCCUPANTS, Room, RoomRegistry
from src.signaling.transport.base import ConnectionHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinResult:
    """Outcome of an accepted join."""

    room_id: str
    initiator: bool
    occupants: int


class SignalingCoordinator:
    """Brokers connection setup between the two participants of a room.

    Thread-safety: Not thread-safe. Use from a single event loop.
    """

    def __init__(
        self,
        max_chat_chars: int = 500,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            max_chat_chars: Longest chat message accepted for relay
            metrics: Metrics collector (defaults to the global collector)
        """
        self._registry = RoomRegistry()
        self._max_chat_chars = max_chat_chars
        self._metrics = metrics or get_metrics_collector()

    @property
    def registry(self) -> RoomRegistry:
        return self._registry

    async def handle_message(self, handle: ConnectionHandle, message: ClientMessage) -> None:
        """Dispatch one decoded client message.

        Raises:
            SignalingError: If the message is rejected; the transport reports
                it to the sender
        """
        if isinstance(message, JoinMessage):
            await self.join(message.room_id, handle)
        elif isinstance(message, SignalMessage):
            await self.relay(message.room_id, message, handle)
        elif isinstance(message, ChatMessage):
            await self.relay_chat(message.room_id, message, handle)
        elif isinstance(message, LeaveMessage):
            await self.leave(handle)

    async def join(self, room_id: str, handle: ConnectionHandle) -> JoinResult:
        """Add a connection to a room.

        The first occupant is recorded and acknowledged as initiator. The
        second occupant makes the room ready: it is acknowledged as responder
        and receives room-ready, then the first occupant receives peer-joined
        and room-ready. The newcomer is notified first so that the initiator's
        offer can never reach it ahead of its own room-ready.

        Args:
            room_id: Opaque room identifier
            handle: Joining connection

        Returns:
            JoinResult with the coordinator-assigned initiator flag

        Raises:
            AlreadyJoinedError: If the connection already occupies a room
            RoomFullError: If the room already has two occupants; the
                occupant set is left untouched
        """
        current = self._registry.room_of(handle.handle_id)
        if current is not None:
            self._metrics.record_join(accepted=False)
            raise AlreadyJoinedError(f"Connection already joined room {current.room_id}")

        while True:
            room, created = self._registry.get_or_create(room_id)
            if created:
                self._metrics.record_room_created()
                logger.info("Room created", extra={"room_id": room_id})

            async with room.lock:
                if room.closed:
                    # Destroyed while we waited for the lock; retry on a fresh room
                    continue

                if room.is_full:
                    self._metrics.record_join(accepted=False)
                    logger.warning(
                        "Join rejected, room full",
                        extra={"room_id": room_id, "handle": handle.handle_id},
                    )
                    raise RoomFullError(
                        f"Room {room_id} already has {MAX_OCCUPANTS} participants"
                    )

                existing = room.others(handle.handle_id)
                self._registry.add_member(room, handle)
                self._metrics.record_join()

                result = JoinResult(
                    room_id=room_id,
                    initiator=not existing,
                    occupants=len(room.occupants),
                )

                logger.info(
                    "Participant joined",
                    extra={
                        "room_id": room_id,
                        "handle": handle.handle_id,
                        "occupants": result.occupants,
                        "initiator": result.initiator,
                    },
                )

                await self._deliver(
                    handle,
                    JoinedMessage(
                        room_id=room_id,
                        handle=handle.handle_id,
                        initiator=result.initiator,
                        occupants=result.occupants,
                    ),
                )

                if room.ready:
                    await self._deliver(handle, RoomReadyMessage(room_id=room_id))
                    for other in existing:
                        await self._deliver(other, PeerJoinedMessage(handle=handle.handle_id))
                        await self._deliver(other, RoomReadyMessage(room_id=room_id))
                    logger.info("Room ready", extra={"room_id": room_id})

                return result

    async def relay(
        self, room_id: str, envelope: SignalMessage, sender: ConnectionHandle
    ) -> int:
        """Forward a negotiation envelope to every other occupant.

        Returns:
            Number of occupants the envelope was delivered to

        Raises:
            NotInRoomError: If the sender does not occupy ``room_id``
        """
        delivered = await self._relay(room_id, envelope, sender)
        self._metrics.record_relay("signal", delivered)
        return delivered

    async def relay_chat(
        self, room_id: str, message: ChatMessage, sender: ConnectionHandle
    ) -> int:
        """Forward a chat message to every other occupant.

        Returns:
            Number of occupants the message was delivered to

        Raises:
            NotInRoomError: If the sender does not occupy ``room_id``
            ChatTooLongError: If the text exceeds the configured limit
        """
        if len(message.message) > self._max_chat_chars:
            raise ChatTooLongError(
                f"Chat message exceeds {self._max_chat_chars} characters"
            )

        delivered = await self._relay(room_id, message, sender)
        self._metrics.record_relay("chat", delivered)
        return delivered

    async def leave(self, handle: ConnectionHandle) -> bool:
        """Remove a connection from whatever room it occupies.

        Remaining occupants receive peer-left; an emptied room is destroyed.
        Safe to call for connections that never joined or already left.

        Returns:
            True if the connection was removed from a room
        """
        room = self._registry.room_of(handle.handle_id)
        if room is None:
            return False

        async with room.lock:
            if handle.handle_id not in room.occupants:
                return False

            self._registry.remove_member(room, handle.handle_id)
            remaining = list(room.occupants.values())

            logger.info(
                "Participant left",
                extra={
                    "room_id": room.room_id,
                    "handle": handle.handle_id,
                    "remaining": len(remaining),
                },
            )

            for other in remaining:
                await self._deliver(other, PeerLeftMessage(handle=handle.handle_id))

            if room.is_empty:
                self._destroy_room(room)

        return True

    def get_room_summary(self) -> dict[str, object]:
        """Snapshot of active rooms for health endpoints."""
        rooms = self._registry.rooms()
        return {
            "active_rooms": len(rooms),
            "connections_in_rooms": self._registry.connection_count,
            "rooms": [room.summary() for room in rooms],
        }

    async def _relay(
        self, room_id: str, message: ServerMessage, sender: ConnectionHandle
    ) -> int:
        room = self._registry.room_of(sender.handle_id)
        if room is None or room.room_id != room_id:
            raise NotInRoomError(f"Connection is not a member of room {room_id}")

        delivered = 0
        async with room.lock:
            for recipient in room.others(sender.handle_id):
                if await self._deliver(recipient, message):
                    delivered += 1

        logger.debug(
            "Message relayed",
            extra={
                "room_id": room_id,
                "type": message.type,
                "sender": sender.handle_id,
                "delivered": delivered,
            },
        )
        return delivered

    async def _deliver(self, handle: ConnectionHandle, message: ServerMessage) -> bool:
        """Best-effort send; a vanished recipient is logged, never retried."""
        try:
            await handle.send(message)
            return True
        except ConnectionError as e:
            self._metrics.record_relay_failure()
            logger.warning(
                "Dropped message for closed connection",
                extra={"handle": handle.handle_id, "type": message.type, "error": str(e)},
            )
            return False

    def _destroy_room(self, room: Room) -> None:
        self._registry.discard(room)
        self._metrics.record_room_destroyed(time.monotonic() - room.created_at)
        logger.info("Room destroyed", extra={"room_id": room.room_id})
