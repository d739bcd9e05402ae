"""In-memory room bookkeeping for the signaling coordinator.

Rooms pair exactly two participants for one call. They are created on the
first join, destroyed when the last occupant leaves, and never persisted: a
coordinator restart drops every room.
"""

import asyncio
import time
from dataclasses import dataclass, field

from src.signaling.transport.base import ConnectionHandle

# Strictly two-party calls
MAX_OCCUPANTS = 2


@dataclass
class Room:
    """A call room and its occupants.

    Occupants are kept in join order. ``lock`` serializes membership changes
    and relays for this room only; other rooms are never blocked by it.
    """

    room_id: str
    occupants: dict[str, ConnectionHandle] = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)
    closed: bool = False  # Set once the room has been removed from the registry
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def ready(self) -> bool:
        """True once both participants are present."""
        return len(self.occupants) == MAX_OCCUPANTS

    @property
    def is_full(self) -> bool:
        return len(self.occupants) >= MAX_OCCUPANTS

    @property
    def is_empty(self) -> bool:
        return not self.occupants

    def others(self, handle_id: str) -> list[ConnectionHandle]:
        """Return every occupant except ``handle_id``, in join order."""
        return [h for hid, h in self.occupants.items() if hid != handle_id]

    def summary(self) -> dict[str, str | int | bool | float]:
        return {
            "room_id": self.room_id,
            "occupants": len(self.occupants),
            "ready": self.ready,
            "age_seconds": time.monotonic() - self.created_at,
        }


class RoomRegistry:
    """Authoritative set of active rooms and handle memberships.

    Dictionary operations here never await, so they are atomic with respect
    to other coroutines on the event loop.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, Room] = {}
        self._memberships: dict[str, str] = {}  # handle_id -> room_id

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> tuple[Room, bool]:
        """Return the live room for ``room_id``, creating it if needed.

        Returns:
            Tuple of (room, created)
        """
        room = self._rooms.get(room_id)
        if room is not None:
            return room, False

        room = Room(room_id=room_id)
        self._rooms[room_id] = room
        return room, True

    def room_of(self, handle_id: str) -> Room | None:
        """Return the room a handle currently occupies, if any."""
        room_id = self._memberships.get(handle_id)
        if room_id is None:
            return None
        return self._rooms.get(room_id)

    def add_member(self, room: Room, handle: ConnectionHandle) -> None:
        room.occupants[handle.handle_id] = handle
        self._memberships[handle.handle_id] = room.room_id

    def remove_member(self, room: Room, handle_id: str) -> None:
        room.occupants.pop(handle_id, None)
        if self._memberships.get(handle_id) == room.room_id:
            del self._memberships[handle_id]

    def discard(self, room: Room) -> None:
        """Remove an empty room from the registry and mark it closed."""
        room.closed = True
        if self._rooms.get(room.room_id) is room:
            del self._rooms[room.room_id]

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    @property
    def connection_count(self) -> int:
        return len(self._memberships)
