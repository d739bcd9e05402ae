"""Coordinator error hierarchy.

Each error carries the wire code reported to the offending client in an
``error`` message.
"""


class SignalingError(Exception):
    """Base class for coordinator errors reported back to a client."""

    code = "INTERNAL_ERROR"


class RoomFullError(SignalingError):
    """A third participant tried to join a two-party room."""

    code = "ROOM_FULL"


class AlreadyJoinedError(SignalingError):
    """The connection already occupies a room."""

    code = "ALREADY_JOINED"


class NotInRoomError(SignalingError):
    """The connection sent room traffic for a room it does not occupy."""

    code = "NOT_IN_ROOM"


class ChatTooLongError(SignalingError):
    """Chat text exceeds the configured maximum length."""

    code = "CHAT_TOO_LONG"
