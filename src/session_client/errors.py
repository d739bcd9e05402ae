"""Session client error hierarchy.

Call failures are recorded on the session (``CallSession.error``) rather than
raised across suspension points; only caller-invoked local operations such as
screen sharing raise them directly.
"""


class SessionError(Exception):
    """Base class for call session failures."""


class MediaAcquisitionError(SessionError):
    """Camera/microphone capture failed (permission denied, device busy or absent)."""


class ScreenShareError(SessionError):
    """Display capture or track substitution failed; the call is unaffected."""


class SignalingConnectionError(SessionError):
    """The signaling connection could not be opened or was lost."""


class RoomFullError(SessionError):
    """The coordinator rejected the join because the room already has two participants."""


class SignalingRejectedError(SessionError):
    """The coordinator reported any other error for this client."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code


class NegotiationError(SessionError):
    """The peer connection handshake failed."""


class NegotiationTimeoutError(NegotiationError):
    """Negotiation did not complete within the configured bound."""


class PeerLeftError(SessionError):
    """The remote participant left before the connection was established."""


class RecordingHandoffError(SessionError):
    """The consultation API rejected or could not receive a recording/end-of-call request."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status
