"""Call session state machine states.

State Transitions:
- IDLE → ACQUIRING_MEDIA (call start)
- ACQUIRING_MEDIA → SOCKET_CONNECTING (local media available)
- SOCKET_CONNECTING → JOINED_WAITING (coordinator acknowledged the join)
- JOINED_WAITING → NEGOTIATING (room ready, peer connection created)
- NEGOTIATING → CONNECTED (direct channel established or remote stream arrived)
- CONNECTED → PEER_DISCONNECTED (remote party left or peer connection closed)
- * → ERROR (unrecoverable failure)
- * → DISCONNECTED (explicit end call)

ERROR and PEER_DISCONNECTED only lead to DISCONNECTED; DISCONNECTED is terminal.
A new call attempt requires a new session instance.
"""

from enum import Enum


class CallState(Enum):
    """Observable call states."""

    IDLE = "idle"
    ACQUIRING_MEDIA = "acquiring-media"
    SOCKET_CONNECTING = "socket-connecting"
    JOINED_WAITING = "joined-waiting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    PEER_DISCONNECTED = "peer-disconnected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


# Valid state transitions
VALID_TRANSITIONS: dict[CallState, set[CallState]] = {
    CallState.IDLE: {CallState.ACQUIRING_MEDIA, CallState.ERROR, CallState.DISCONNECTED},
    CallState.ACQUIRING_MEDIA: {
        CallState.SOCKET_CONNECTING,
        CallState.ERROR,
        CallState.DISCONNECTED,
    },
    CallState.SOCKET_CONNECTING: {
        CallState.JOINED_WAITING,
        CallState.ERROR,
        CallState.DISCONNECTED,
    },
    CallState.JOINED_WAITING: {CallState.NEGOTIATING, CallState.ERROR, CallState.DISCONNECTED},
    CallState.NEGOTIATING: {CallState.CONNECTED, CallState.ERROR, CallState.DISCONNECTED},
    CallState.CONNECTED: {
        CallState.PEER_DISCONNECTED,
        CallState.ERROR,
        CallState.DISCONNECTED,
    },
    CallState.PEER_DISCONNECTED: {CallState.DISCONNECTED},
    CallState.ERROR: {CallState.DISCONNECTED},
    CallState.DISCONNECTED: set(),  # Terminal state
}

# States in which the call attempt is over and only teardown remains
FINISHED_STATES = frozenset(
    {CallState.PEER_DISCONNECTED, CallState.ERROR, CallState.DISCONNECTED}
)
