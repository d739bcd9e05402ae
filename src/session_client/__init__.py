"""Participant-side call session client."""

from src.session_client.chat import ChatEntry, ChatLog
from src.session_client.config import ClientConfig
from src.session_client.errors import (
    MediaAcquisitionError,
    NegotiationError,
    NegotiationTimeoutError,
    PeerLeftError,
    RecordingHandoffError,
    RoomFullError,
    ScreenShareError,
    SessionError,
    SignalingConnectionError,
    SignalingRejectedError,
)
from src.session_client.media import MediaDevices, MediaStream, MediaTrack
from src.session_client.peer import (
    PeerConnection,
    PeerConnectionFactory,
    PeerConnectionListener,
)
from src.session_client.session import CallSession
from src.session_client.signaling import SignalingChannel, WebSocketSignalingChannel
from src.session_client.state import VALID_TRANSITIONS, CallState

__all__ = [
    "CallSession",
    "CallState",
    "ChatEntry",
    "ChatLog",
    "ClientConfig",
    "MediaAcquisitionError",
    "MediaDevices",
    "MediaStream",
    "MediaTrack",
    "NegotiationError",
    "NegotiationTimeoutError",
    "PeerConnection",
    "PeerConnectionFactory",
    "PeerConnectionListener",
    "PeerLeftError",
    "RecordingHandoffError",
    "RoomFullError",
    "ScreenShareError",
    "SessionError",
    "SignalingChannel",
    "SignalingConnectionError",
    "SignalingRejectedError",
    "VALID_TRANSITIONS",
    "WebSocketSignalingChannel",
]
