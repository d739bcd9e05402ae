"""Unit tests for room bookkeeping."""

from src.signaling.protocol import ServerMessage
from src.signaling.rooms import MAX_OCCUPANTS, RoomRegistry
from src.signaling.transport.base import ConnectionHandle


class StubHandle(ConnectionHandle):
    """Connection handle that only carries an id."""

    def __init__(self, handle_id: str) -> None:
        self._handle_id = handle_id

    @property
    def handle_id(self) -> str:
        return self._handle_id

    @property
    def is_connected(self) -> bool:
        return True

    async def send(self, message: ServerMessage) -> None:
        pass

    async def close(self) -> None:
        pass


class TestRoom:
    """Test room occupancy properties."""

    def test_room_ready_only_with_two_occupants(self) -> None:
        registry = RoomRegistry()
        room, _ = registry.get_or_create("apt-1")

        assert room.is_empty
        assert not room.ready

        registry.add_member(room, StubHandle("a"))
        assert not room.ready
        assert not room.is_full

        registry.add_member(room, StubHandle("b"))
        assert room.ready
        assert room.is_full
        assert len(room.occupants) == MAX_OCCUPANTS

    def test_others_excludes_sender_in_join_order(self) -> None:
        registry = RoomRegistry()
        room, _ = registry.get_or_create("apt-1")
        a, b = StubHandle("a"), StubHandle("b")
        registry.add_member(room, a)
        registry.add_member(room, b)

        assert room.others("a") == [b]
        assert room.others("b") == [a]
        assert room.others("c") == [a, b]

    def test_summary_has_no_handles(self) -> None:
        registry = RoomRegistry()
        room, _ = registry.get_or_create("apt-1")
        registry.add_member(room, StubHandle("secret-handle"))

        summary = room.summary()

        assert summary["room_id"] == "apt-1"
        assert summary["occupants"] == 1
        assert summary["ready"] is False
        assert "secret-handle" not in str(summary)


class TestRoomRegistry:
    """Test registry membership tracking."""

    def test_get_or_create_reuses_room(self) -> None:
        registry = RoomRegistry()
        first, created_first = registry.get_or_create("apt-1")
        second, created_second = registry.get_or_create("apt-1")

        assert created_first is True
        assert created_second is False
        assert first is second
        assert len(registry) == 1
        assert "apt-1" in registry

    def test_room_of_tracks_membership(self) -> None:
        registry = RoomRegistry()
        room, _ = registry.get_or_create("apt-1")
        handle = StubHandle("a")

        assert registry.room_of("a") is None
        registry.add_member(room, handle)
        assert registry.room_of("a") is room
        assert registry.connection_count == 1

        registry.remove_member(room, "a")
        assert registry.room_of("a") is None
        assert registry.connection_count == 0

    def test_discard_closes_room(self) -> None:
        registry = RoomRegistry()
        room, _ = registry.get_or_create("apt-1")

        registry.discard(room)

        assert room.closed
        assert "apt-1" not in registry
        assert registry.get("apt-1") is None

    def test_discard_stale_room_keeps_replacement(self) -> None:
        registry = RoomRegistry()
        old, _ = registry.get_or_create("apt-1")
        registry.discard(old)
        new, created = registry.get_or_create("apt-1")

        registry.discard(old)

        assert created
        assert registry.get("apt-1") is new
