"""Call session management.

A ``CallSession`` drives one call attempt for one participant: it acquires
local media, joins the consultation room through the signaling coordinator,
negotiates a direct peer connection and keeps the per-call chat log.

Failures never escape the session's background tasks; they move the session
to ``CallState.ERROR`` and are recorded on ``CallSession.error``. Operations
the caller invokes directly (screen sharing, chat) raise to the caller.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from src.session_client.chat import ChatEntry, ChatLog, utc_timestamp
from src.session_client.config import ClientConfig
from src.session_client.errors import (
    MediaAcquisitionError,
    NegotiationError,
    NegotiationTimeoutError,
    PeerLeftError,
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
from src.session_client.signaling import SignalingChannel, WebSocketSignalingChannel
from src.session_client.state import FINISHED_STATES, VALID_TRANSITIONS, CallState
from src.signaling.protocol import (
    ChatMessage,
    ErrorMessage,
    JoinedMessage,
    JoinMessage,
    PeerJoinedMessage,
    PeerLeftMessage,
    RoomReadyMessage,
    ServerMessage,
    SignalMessage,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[CallState, CallState], None]
ChatListener = Callable[[ChatEntry], None]


class _PeerEvents(PeerConnectionListener):
    """Routes peer connection events back into the owning session."""

    def __init__(self, session: "CallSession") -> None:
        self._session = session

    async def on_signal(self, payload: dict[str, Any]) -> None:
        await self._session._send_signal(payload)

    async def on_connect(self) -> None:
        self._session._mark_connected("direct channel open")

    async def on_stream(self, stream: MediaStream) -> None:
        self._session.remote_stream = stream
        self._session._mark_connected("remote stream received")

    async def on_error(self, error: Exception) -> None:
        if isinstance(error, SessionError):
            self._session._fail(error)
        else:
            self._session._fail(NegotiationError(f"Connection error: {error}"))

    async def on_close(self) -> None:
        self._session._handle_peer_gone("peer connection closed")


class CallSession:
    """One participant's side of one call attempt.

    Sessions are single-use: after ``end_call()`` (or a failure) a new call
    attempt needs a new ``CallSession``.
    """

    def __init__(
        self,
        room_id: str,
        media_devices: MediaDevices,
        peer_factory: PeerConnectionFactory,
        signaling: SignalingChannel | None = None,
        config: ClientConfig | None = None,
    ):
        """Initialize call session.

        Args:
            room_id: Consultation room (appointment) identifier
            media_devices: Source of camera/microphone and display capture
            peer_factory: Builds the peer connection once the room is ready
            signaling: Coordinator channel (WebSocket to config URL if omitted)
            config: Client configuration (defaults if omitted)
        """
        if not room_id:
            raise ValueError("room_id must be a non-empty string")

        self.room_id = room_id
        self.config = config or ClientConfig()
        self._devices = media_devices
        self._peer_factory = peer_factory
        self._signaling = signaling or WebSocketSignalingChannel(
            self.config.signaling_url, connect_timeout_s=self.config.connect_timeout_s
        )

        self.state: CallState = CallState.IDLE
        self.error: SessionError | None = None
        self.initiator: bool | None = None
        self.handle: str | None = None
        self.remote_handle: str | None = None
        self.signaling_connected = False

        self.local_stream: MediaStream | None = None
        self.screen_stream: MediaStream | None = None
        self.remote_stream: MediaStream | None = None
        self.peer: PeerConnection | None = None
        self.chat_log = ChatLog()

        # Tracks currently handed to the peer connection
        self._outgoing_audio: MediaTrack | None = None
        self._outgoing_video: MediaTrack | None = None
        self._audio_enabled = True
        self._video_enabled = True

        self._started = False
        self._ending = False
        self._connected_at: float | None = None
        self._ended_at: float | None = None
        self._pending_signals: list[dict[str, Any]] = []
        self._receive_task: asyncio.Task[None] | None = None
        self._negotiation_timer: asyncio.Task[None] | None = None

        self._state_listeners: list[StateListener] = []
        self._chat_listeners: list[ChatListener] = []
        self._state_waiters: list[tuple[frozenset[CallState], asyncio.Future[CallState]]] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None

    @property
    def outgoing_video_track(self) -> MediaTrack | None:
        """Video track currently sent to the remote peer (camera or screen)."""
        return self._outgoing_video

    @property
    def outgoing_audio_track(self) -> MediaTrack | None:
        return self._outgoing_audio

    @property
    def is_audio_enabled(self) -> bool:
        return self._audio_enabled

    @property
    def is_video_enabled(self) -> bool:
        return self._video_enabled

    @property
    def is_screen_sharing(self) -> bool:
        return self.screen_stream is not None

    @property
    def call_duration_s(self) -> float | None:
        """Seconds since the call connected, or None if it never did."""
        if self._connected_at is None:
            return None
        return (self._ended_at or time.monotonic()) - self._connected_at

    def add_state_listener(self, listener: StateListener) -> None:
        """Register ``listener(old_state, new_state)`` for every transition."""
        self._state_listeners.append(listener)

    def add_chat_listener(self, listener: ChatListener) -> None:
        """Register ``listener(entry)`` for every chat entry, local or remote."""
        self._chat_listeners.append(listener)

    async def wait_for_state(self, *states: CallState, timeout: float | None = None) -> CallState:
        """Wait until the session is in one of ``states``.

        Args:
            states: Acceptable states
            timeout: Seconds to wait (None waits forever)

        Returns:
            The state that satisfied the wait

        Raises:
            TimeoutError: If none of the states is reached in time
        """
        if not states:
            raise ValueError("At least one state is required")
        if self.state in states:
            return self.state

        future: asyncio.Future[CallState] = asyncio.get_running_loop().create_future()
        entry = (frozenset(states), future)
        self._state_waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            if entry in self._state_waiters:
                self._state_waiters.remove(entry)

    def transition_state(self, new_state: CallState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ValueError(f"Invalid state transition: {self.state.value} → {new_state.value}")

        old_state = self.state
        self.state = new_state

        logger.info(
            "Call state transition",
            extra={
                "room_id": self.room_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

        for listener in list(self._state_listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("State listener failed", extra={"room_id": self.room_id})

        for states, future in self._state_waiters:
            if new_state in states and not future.done():
                future.set_result(new_state)

    def get_summary(self) -> dict[str, str | float | int | bool | None]:
        """Get call summary for logging/monitoring."""
        return {
            "room_id": self.room_id,
            "state": self.state.value,
            "initiator": self.initiator,
            "signaling_connected": self.signaling_connected,
            "screen_sharing": self.is_screen_sharing,
            "chat_messages": len(self.chat_log),
            "call_duration_s": self.call_duration_s,
            "error": self.error_message,
        }

    # ------------------------------------------------------------------
    # Call flow
    # ------------------------------------------------------------------

    async def start(self, audio: bool = True, video: bool = True) -> None:
        """Start the call: acquire media, connect and join the room.

        Returns once the join request is sent; progress is observable through
        ``state`` and the state listeners.

        Raises:
            RuntimeError: If the session was already started
        """
        if self._started:
            raise RuntimeError("CallSession is single-use; create a new session to call again")
        self._started = True

        self.transition_state(CallState.ACQUIRING_MEDIA)
        try:
            stream = await self._devices.get_user_media(audio=audio, video=video)
        except MediaAcquisitionError as e:
            self._fail(e)
            return
        except Exception as e:
            self._fail(MediaAcquisitionError(f"Failed to access camera/microphone: {e}"))
            return

        if self.state != CallState.ACQUIRING_MEDIA:
            # Ended while waiting for the devices
            stream.stop()
            return

        self.local_stream = stream
        self._audio_enabled = audio
        self._video_enabled = video
        self._outgoing_audio = next(iter(stream.get_audio_tracks()), None)
        self._outgoing_video = next(iter(stream.get_video_tracks()), None)

        self.transition_state(CallState.SOCKET_CONNECTING)
        try:
            await self._signaling.connect()
        except SignalingConnectionError as e:
            self._fail(e)
            return

        if self.state != CallState.SOCKET_CONNECTING:
            await self._signaling.close()
            return

        self.signaling_connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())

        try:
            await self._signaling.send(JoinMessage(room_id=self.room_id))
        except SignalingConnectionError as e:
            self._fail(e)

    async def _receive_loop(self) -> None:
        """Dispatch coordinator messages until the channel closes."""
        try:
            async for message in self._signaling.messages():
                await self._handle_server_message(message)
        except SignalingConnectionError as e:
            logger.warning(
                "Signaling receive failed", extra={"room_id": self.room_id, "error": str(e)}
            )
        except asyncio.CancelledError:
            return

        self.signaling_connected = False
        if self._ending:
            return

        if self.state in (
            CallState.SOCKET_CONNECTING,
            CallState.JOINED_WAITING,
            CallState.NEGOTIATING,
        ):
            self._fail(
                SignalingConnectionError("Signaling connection lost before the call connected")
            )
        elif self.state == CallState.CONNECTED:
            logger.warning(
                "Signaling connection lost; media continues, chat unavailable",
                extra={"room_id": self.room_id},
            )

    async def _handle_server_message(self, message: ServerMessage) -> None:
        if isinstance(message, JoinedMessage):
            self._handle_joined(message)
        elif isinstance(message, PeerJoinedMessage):
            self.remote_handle = message.handle
            logger.info("Peer joined", extra={"room_id": self.room_id, "peer": message.handle})
        elif isinstance(message, RoomReadyMessage):
            if self.state == CallState.JOINED_WAITING:
                await self._begin_negotiation()
        elif isinstance(message, SignalMessage):
            await self._handle_signal(message.payload)
        elif isinstance(message, ChatMessage):
            self._record_chat(
                ChatEntry(
                    sender=message.sender,
                    text=message.message,
                    timestamp=message.timestamp,
                    is_self=False,
                )
            )
        elif isinstance(message, PeerLeftMessage):
            self._handle_peer_gone("peer left the room")
        elif isinstance(message, ErrorMessage):
            self._handle_error_message(message)

    def _handle_joined(self, message: JoinedMessage) -> None:
        if self.state != CallState.SOCKET_CONNECTING:
            logger.warning("Unexpected join acknowledgement", extra={"state": self.state.value})
            return

        self.handle = message.handle
        self.initiator = message.initiator
        logger.info(
            "Joined room",
            extra={
                "room_id": self.room_id,
                "handle": message.handle,
                "initiator": message.initiator,
                "occupants": message.occupants,
            },
        )
        self.transition_state(CallState.JOINED_WAITING)

    def _handle_error_message(self, message: ErrorMessage) -> None:
        if self.state == CallState.SOCKET_CONNECTING:
            if message.code == "ROOM_FULL":
                self._fail(RoomFullError(message.message))
            else:
                self._fail(SignalingRejectedError(message.code, message.message))
            return

        logger.warning(
            "Coordinator reported an error",
            extra={"room_id": self.room_id, "code": message.code, "error": message.message},
        )

    async def _begin_negotiation(self) -> None:
        assert self.local_stream is not None
        self.transition_state(CallState.NEGOTIATING)
        self._start_negotiation_timer()

        try:
            self.peer = self._peer_factory(
                bool(self.initiator), self.local_stream, _PeerEvents(self)
            )
            await self.peer.start()
        except SessionError as e:
            self._fail(e)
            return
        except Exception as e:
            self._fail(NegotiationError(f"Failed to start peer connection: {e}"))
            return

        pending, self._pending_signals = self._pending_signals, []
        for payload in pending:
            await self._apply_signal(payload)

    async def _handle_signal(self, payload: dict[str, Any]) -> None:
        if self.state in FINISHED_STATES:
            return
        if self.peer is None:
            self._pending_signals.append(payload)
            return
        await self._apply_signal(payload)

    async def _apply_signal(self, payload: dict[str, Any]) -> None:
        if self.peer is None or self.state in FINISHED_STATES:
            return
        try:
            await self.peer.signal(payload)
        except SessionError as e:
            self._fail(e)
        except Exception as e:
            self._fail(NegotiationError(f"Connection error: {e}"))

    async def _send_signal(self, payload: dict[str, Any]) -> None:
        if self._ending or self.state in FINISHED_STATES:
            return
        try:
            await self._signaling.send(SignalMessage(room_id=self.room_id, payload=payload))
        except SignalingConnectionError as e:
            if self.state == CallState.NEGOTIATING:
                self._fail(e)
            else:
                logger.warning(
                    "Could not relay signal", extra={"room_id": self.room_id, "error": str(e)}
                )

    def _mark_connected(self, reason: str) -> None:
        if self.state != CallState.NEGOTIATING:
            return
        self._cancel_negotiation_timer()
        self._connected_at = time.monotonic()
        logger.info("Call connected", extra={"room_id": self.room_id, "reason": reason})
        self.transition_state(CallState.CONNECTED)

    def _handle_peer_gone(self, reason: str) -> None:
        if self._ending:
            return

        if self.state == CallState.CONNECTED:
            self.remote_stream = None
            self._ended_at = time.monotonic()
            logger.info(
                "Remote participant gone", extra={"room_id": self.room_id, "reason": reason}
            )
            self.transition_state(CallState.PEER_DISCONNECTED)
        elif self.state == CallState.NEGOTIATING:
            self._fail(PeerLeftError(f"Call failed during negotiation: {reason}"))
        else:
            self.remote_handle = None
            logger.debug(
                "Peer gone event ignored", extra={"state": self.state.value, "reason": reason}
            )

    def _start_negotiation_timer(self) -> None:
        timeout = self.config.negotiation_timeout_s
        if timeout is None:
            return
        self._negotiation_timer = asyncio.create_task(self._negotiation_deadline(timeout))

    async def _negotiation_deadline(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self.state == CallState.NEGOTIATING:
            self._fail(NegotiationTimeoutError(f"Negotiation did not complete within {timeout:g}s"))

    def _cancel_negotiation_timer(self) -> None:
        if self._negotiation_timer is not None and not self._negotiation_timer.done():
            if self._negotiation_timer is not asyncio.current_task():
                self._negotiation_timer.cancel()
        self._negotiation_timer = None

    def _fail(self, error: SessionError) -> None:
        """Record ``error`` and move to ERROR if the call is still in progress."""
        if self.state in FINISHED_STATES:
            logger.debug(
                "Failure after call finished",
                extra={"state": self.state.value, "error": str(error)},
            )
            return

        self.error = error
        self._cancel_negotiation_timer()
        logger.error(
            "Call failed",
            extra={
                "room_id": self.room_id,
                "state": self.state.value,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        self.transition_state(CallState.ERROR)

    # ------------------------------------------------------------------
    # Local media controls
    # ------------------------------------------------------------------

    def toggle_audio(self, enabled: bool) -> None:
        """Enable or disable outgoing audio without renegotiating."""
        self._audio_enabled = enabled
        for stream in (self.local_stream, self.screen_stream):
            if stream is not None:
                for track in stream.get_audio_tracks():
                    track.enabled = enabled

    def toggle_video(self, enabled: bool) -> None:
        """Enable or disable outgoing video without renegotiating."""
        self._video_enabled = enabled
        for stream in (self.local_stream, self.screen_stream):
            if stream is not None:
                for track in stream.get_video_tracks():
                    track.enabled = enabled

    async def start_screen_share(self) -> MediaStream:
        """Send the display instead of the camera.

        Returns:
            The display capture stream

        Raises:
            ScreenShareError: If capture or track substitution fails; the
                call itself is unaffected
        """
        if self.peer is None or self.state in FINISHED_STATES:
            raise ScreenShareError("Screen sharing requires an active peer connection")
        if self.screen_stream is not None:
            return self.screen_stream

        try:
            screen = await self._devices.get_display_media()
        except ScreenShareError:
            raise
        except Exception as e:
            raise ScreenShareError(f"Failed to start screen share: {e}") from e
        self._discard_if_ended(screen)

        screen_video = next(iter(screen.get_video_tracks()), None)
        if screen_video is None:
            screen.stop()
            raise ScreenShareError("Display capture produced no video track")

        camera_video = self._outgoing_video
        if camera_video is None or self.peer is None:
            screen.stop()
            raise ScreenShareError("No outgoing video track to substitute")

        screen_video.enabled = self._video_enabled
        try:
            await self.peer.replace_track(camera_video, screen_video)
        except Exception as e:
            screen.stop()
            raise ScreenShareError(f"Failed to switch to screen: {e}") from e
        camera_video.stop()
        self._discard_if_ended(screen)

        self.screen_stream = screen
        self._outgoing_video = screen_video
        logger.info("Screen share started", extra={"room_id": self.room_id})
        return screen

    async def stop_screen_share(self) -> MediaStream | None:
        """Return to camera and microphone.

        Local media is acquired again; the new tracks take over the outgoing
        audio and video, keeping the current mute state.

        Returns:
            The new local stream (unchanged stream if not sharing)

        Raises:
            ScreenShareError: If the camera cannot be restored
        """
        if self.screen_stream is None:
            return self.local_stream

        want_audio = self._outgoing_audio is not None
        try:
            stream = await self._devices.get_user_media(audio=want_audio, video=True)
        except Exception as e:
            raise ScreenShareError(f"Failed to restore camera: {e}") from e
        self._discard_if_ended(stream)

        new_audio = next(iter(stream.get_audio_tracks()), None)
        new_video = next(iter(stream.get_video_tracks()), None)
        if new_audio is not None:
            new_audio.enabled = self._audio_enabled
        if new_video is not None:
            new_video.enabled = self._video_enabled

        if self.peer is not None:
            try:
                for old_track, new_track in (
                    (self._outgoing_video, new_video),
                    (self._outgoing_audio, new_audio),
                ):
                    if old_track is not None and new_track is not None:
                        await self.peer.replace_track(old_track, new_track)
            except Exception as e:
                stream.stop()
                raise ScreenShareError(f"Failed to switch back to camera: {e}") from e
        self._discard_if_ended(stream)

        old_screen, old_local = self.screen_stream, self.local_stream
        self.screen_stream = None
        self.local_stream = stream
        self._outgoing_audio = new_audio
        self._outgoing_video = new_video

        old_screen.stop()
        if old_local is not None:
            old_local.stop()

        logger.info("Screen share stopped", extra={"room_id": self.room_id})
        return stream

    def _discard_if_ended(self, stream: MediaStream) -> None:
        """Stop ``stream`` and abort if the call ended while it was being set up."""
        if self._ending:
            stream.stop()
            raise ScreenShareError("Call ended during screen share switch")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_chat_message(self, text: str, sender: str) -> ChatEntry:
        """Send a chat message to the other participant.

        The entry is appended to the local log before it is sent; there is
        no delivery confirmation.

        Raises:
            ValueError: If ``text`` is blank or longer than ``max_chat_chars``
            SignalingConnectionError: If the signaling connection is closed
        """
        if not text.strip():
            raise ValueError("Chat message must not be empty")
        if len(text) > self.config.max_chat_chars:
            raise ValueError(
                f"Chat message exceeds {self.config.max_chat_chars} characters ({len(text)})"
            )

        entry = ChatEntry(sender=sender, text=text, timestamp=utc_timestamp(), is_self=True)
        self._record_chat(entry)

        if not self.signaling_connected:
            raise SignalingConnectionError("Signaling connection is closed; message not delivered")

        await self._signaling.send(
            ChatMessage(
                room_id=self.room_id,
                sender=sender,
                message=text,
                timestamp=entry.timestamp,
            )
        )
        return entry

    def _record_chat(self, entry: ChatEntry) -> None:
        self.chat_log.append(entry)
        for listener in list(self._chat_listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Chat listener failed", extra={"room_id": self.room_id})

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def end_call(self) -> None:
        """End the call and release every resource.

        Destroys the peer connection, stops all local and screen tracks, then
        closes the signaling connection. Each step runs even if an earlier
        one fails. Safe to call more than once and from any state.
        """
        if self.state == CallState.DISCONNECTED:
            return
        if self._ending:
            await self.wait_for_state(CallState.DISCONNECTED)
            return

        self._ending = True
        self._cancel_negotiation_timer()
        if self._connected_at is not None and self._ended_at is None:
            self._ended_at = time.monotonic()

        try:
            await self._destroy_peer()
        finally:
            try:
                self._release_media()
            finally:
                await self._close_signaling()
                self.remote_stream = None
                self._pending_signals.clear()
                self.chat_log.clear()
                self.transition_state(CallState.DISCONNECTED)

    async def _destroy_peer(self) -> None:
        peer, self.peer = self.peer, None
        if peer is None:
            return
        try:
            await peer.destroy()
        except Exception as e:
            logger.warning(
                "Peer connection teardown failed",
                extra={"room_id": self.room_id, "error": str(e)},
            )

    def _release_media(self) -> None:
        for stream in (self.screen_stream, self.local_stream):
            if stream is None:
                continue
            for error in stream.stop():
                logger.warning(
                    "Track stop failed", extra={"room_id": self.room_id, "error": str(error)}
                )
        self.screen_stream = None

    async def _close_signaling(self) -> None:
        try:
            await self._signaling.close()
        except Exception as e:
            logger.warning(
                "Signaling close failed", extra={"room_id": self.room_id, "error": str(e)}
            )
        finally:
            self.signaling_connected = False

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
