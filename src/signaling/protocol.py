"""Signaling wire protocol definitions.

Defines Pydantic models for the JSON messages exchanged between session
clients and the signaling coordinator. Negotiation payloads are opaque to the
coordinator and relayed without inspection.
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError


class ProtocolError(ValueError):
    """Raised when a wire message cannot be decoded."""


class JoinMessage(BaseModel):
    """Client → Coordinator: Join a room.

    The room id is supplied by the appointment collaborator and treated as an
    opaque string.
    """

    type: Literal["join"] = "join"
    room_id: str = Field(..., min_length=1, max_length=200, description="Room identifier")


class LeaveMessage(BaseModel):
    """Client → Coordinator: Explicit leave (equivalent to disconnect)."""

    type: Literal["leave"] = "leave"


class SignalMessage(BaseModel):
    """Bidirectional: Negotiation envelope.

    The payload carries a complete session description (trickle-free), so one
    envelope is sent per negotiation direction.
    """

    type: Literal["signal"] = "signal"
    room_id: str = Field(..., min_length=1, description="Room identifier")
    payload: dict[str, Any] = Field(..., description="Opaque negotiation data")


class ChatMessage(BaseModel):
    """Bidirectional: Chat text relayed over the signaling connection."""

    type: Literal["chat-message"] = "chat-message"
    room_id: str = Field(..., min_length=1, description="Room identifier")
    sender: str = Field(..., min_length=1, description="Display name of the author")
    message: str = Field(..., min_length=1, description="Message text")
    timestamp: str = Field(..., description="ISO-8601 send time")


class JoinedMessage(BaseModel):
    """Coordinator → Client: Join acknowledgement.

    Carries the coordinator-assigned initiator flag. The first occupant of a
    room is the initiator; the second is the responder.
    """

    type: Literal["joined"] = "joined"
    room_id: str = Field(..., description="Room identifier")
    handle: str = Field(..., description="Connection handle assigned to the client")
    initiator: bool = Field(..., description="Whether this client sends the offer")
    occupants: int = Field(..., ge=1, le=2, description="Occupant count after the join")


class PeerJoinedMessage(BaseModel):
    """Coordinator → Client: The other participant joined the room."""

    type: Literal["peer-joined"] = "peer-joined"
    handle: str = Field(..., description="Handle of the participant that joined")


class RoomReadyMessage(BaseModel):
    """Coordinator → Client: Both participants are present."""

    type: Literal["room-ready"] = "room-ready"
    room_id: str = Field(..., description="Room identifier")


class PeerLeftMessage(BaseModel):
    """Coordinator → Client: The other participant left or disconnected."""

    type: Literal["peer-left"] = "peer-left"
    handle: str = Field(..., description="Handle of the participant that left")


class ErrorMessage(BaseModel):
    """Coordinator → Client: Error notification."""

    type: Literal["error"] = "error"
    code: str = Field(default="INTERNAL_ERROR", description="Error code")
    message: str = Field(..., description="Error description")


# Union type for all client → coordinator messages
ClientMessage = JoinMessage | LeaveMessage | SignalMessage | ChatMessage

# Union type for all coordinator → client messages
ServerMessage = (
    JoinedMessage
    | PeerJoinedMessage
    | RoomReadyMessage
    | PeerLeftMessage
    | SignalMessage
    | ChatMessage
    | ErrorMessage
)

_CLIENT_MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    "join": JoinMessage,
    "leave": LeaveMessage,
    "signal": SignalMessage,
    "chat-message": ChatMessage,
}

_SERVER_MESSAGE_TYPES: dict[str, type[BaseModel]] = {
    "joined": JoinedMessage,
    "peer-joined": PeerJoinedMessage,
    "room-ready": RoomReadyMessage,
    "peer-left": PeerLeftMessage,
    "signal": SignalMessage,
    "chat-message": ChatMessage,
    "error": ErrorMessage,
}


def _parse(raw: str | bytes, registry: dict[str, type[BaseModel]]) -> Any:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    message_type = data.get("type")
    model = registry.get(message_type) if isinstance(message_type, str) else None
    if model is None:
        raise ProtocolError(f"Unknown message type: {message_type!r}")

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Invalid {message_type} message: {e}") from e


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode a client → coordinator message.

    Args:
        raw: JSON text received from the client

    Returns:
        Validated message model

    Raises:
        ProtocolError: If the JSON is malformed, the type is unknown, or
            validation fails
    """
    message: ClientMessage = _parse(raw, _CLIENT_MESSAGE_TYPES)
    return message


def parse_server_message(raw: str | bytes) -> ServerMessage:
    """Decode a coordinator → client message.

    Raises:
        ProtocolError: If the JSON is malformed, the type is unknown, or
            validation fails
    """
    message: ServerMessage = _parse(raw, _SERVER_MESSAGE_TYPES)
    return message
