"""Signaling coordinator for two-party video consultations.

Pairs a patient and a doctor in a room keyed by the appointment's session id
and relays negotiation envelopes and chat messages between them.
"""

from src.signaling.coordinator import JoinResult, SignalingCoordinator
from src.signaling.errors import (
    AlreadyJoinedError,
    ChatTooLongError,
    NotInRoomError,
    RoomFullError,
    SignalingError,
)
from src.signaling.rooms import MAX_OCCUPANTS, Room, RoomRegistry

__all__ = [
    "AlreadyJoinedError",
    "ChatTooLongError",
    "JoinResult",
    "MAX_OCCUPANTS",
    "NotInRoomError",
    "Room",
    "RoomFullError",
    "RoomRegistry",
    "SignalingCoordinator",
    "SignalingError",
]
