"""aiortc implementation of the peer connection and media devices.

Negotiation is trickle-free: aiortc finishes ICE gathering inside
``setLocalDescription``, so each offer/answer already carries every candidate
and a single envelope per side completes the handshake.
"""

import asyncio
import logging
from typing import Any

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame, VideoFrame

from src.session_client.errors import (
    MediaAcquisitionError,
    NegotiationError,
    ScreenShareError,
)
from src.session_client.media import MediaDevices, MediaStream, MediaTrack, TrackKind
from src.session_client.peer import (
    PeerConnection,
    PeerConnectionFactory,
    PeerConnectionListener,
)

logger = logging.getLogger(__name__)

# Label of the data channel whose opening marks the direct channel as established
DATA_CHANNEL_LABEL = "session"


def _silence(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    silent.time_base = frame.time_base
    return silent


def _black(frame: VideoFrame) -> VideoFrame:
    black = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    for index, plane in enumerate(black.planes):
        # Y plane at video black, chroma planes neutral
        plane.update(bytes([16 if index == 0 else 128]) * plane.buffer_size)
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black


class GatedTrack(MediaStreamTrack):
    """Forwards frames from a capture track, blanking them while disabled.

    A disabled track keeps its timing so the remote decoder sees silence or
    black video instead of a stalled stream.
    """

    def __init__(self, source: MediaStreamTrack) -> None:
        super().__init__()
        self.kind = source.kind
        self.enabled = True
        self._source = source

    async def recv(self) -> Any:
        frame = await self._source.recv()
        if self.enabled:
            return frame
        if isinstance(frame, AudioFrame):
            return _silence(frame)
        return _black(frame)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


class AiortcMediaTrack(MediaTrack):
    """Local capture track backed by a ``GatedTrack``."""

    def __init__(self, kind: TrackKind, label: str, source: GatedTrack) -> None:
        super().__init__(kind, label=label, source=source)

    def _on_enabled_changed(self, enabled: bool) -> None:
        self.source.enabled = enabled

    def _on_stop(self) -> None:
        self.source.stop()


class AiortcMediaDevices(MediaDevices):
    """Capture devices opened through FFmpeg via ``MediaPlayer``.

    Defaults target Linux (v4l2 camera, PulseAudio microphone, X11 display).
    """

    def __init__(
        self,
        camera: str = "/dev/video0",
        camera_format: str = "v4l2",
        microphone: str = "default",
        microphone_format: str = "pulse",
        display: str = ":0.0",
        display_format: str = "x11grab",
        video_width: int = 1280,
        video_height: int = 720,
        display_framerate: int = 15,
    ) -> None:
        self._camera = camera
        self._camera_format = camera_format
        self._microphone = microphone
        self._microphone_format = microphone_format
        self._display = display
        self._display_format = display_format
        self._video_size = f"{video_width}x{video_height}"
        self._display_framerate = display_framerate

    async def _open(self, device: str, device_format: str, options: dict[str, str]) -> MediaPlayer:
        # Opening a capture device blocks while FFmpeg inspects it
        return await asyncio.to_thread(MediaPlayer, device, format=device_format, options=options)

    async def get_user_media(self, audio: bool = True, video: bool = True) -> MediaStream:
        if not audio and not video:
            raise MediaAcquisitionError("At least one of audio or video must be requested")

        stream = MediaStream()
        try:
            if video:
                player = await self._open(
                    self._camera, self._camera_format, {"video_size": self._video_size}
                )
                if player.video is None:
                    raise MediaAcquisitionError(f"No video track on {self._camera}")
                stream.add_track(AiortcMediaTrack("video", self._camera, GatedTrack(player.video)))

            if audio:
                player = await self._open(self._microphone, self._microphone_format, {})
                if player.audio is None:
                    raise MediaAcquisitionError(f"No audio track on {self._microphone}")
                stream.add_track(
                    AiortcMediaTrack("audio", self._microphone, GatedTrack(player.audio))
                )
        except MediaAcquisitionError:
            stream.stop()
            raise
        except Exception as e:
            stream.stop()
            raise MediaAcquisitionError(f"Failed to access camera/microphone: {e}") from e

        logger.info(
            "Local media acquired",
            extra={"tracks": [t.kind for t in stream.get_tracks()]},
        )
        return stream

    async def get_display_media(self) -> MediaStream:
        try:
            player = await self._open(
                self._display,
                self._display_format,
                {"video_size": self._video_size, "framerate": str(self._display_framerate)},
            )
        except Exception as e:
            raise ScreenShareError(f"Failed to capture display {self._display}: {e}") from e

        if player.video is None:
            raise ScreenShareError(f"No video on display {self._display}")

        screen = AiortcMediaTrack("video", f"screen {self._display}", GatedTrack(player.video))
        return MediaStream([screen])


class AiortcPeerConnection(PeerConnection):
    """Peer connection over aiortc's ``RTCPeerConnection``."""

    def __init__(
        self,
        initiator: bool,
        stream: MediaStream,
        listener: PeerConnectionListener,
        ice_servers: list[str] | None = None,
    ) -> None:
        """Initialize peer connection.

        Args:
            initiator: Whether this side creates the offer
            stream: Local media to send
            listener: Receives signals, connect/stream/error/close events
            ice_servers: STUN/TURN URLs
        """
        self._initiator = initiator
        self._listener = listener
        self._pc = RTCPeerConnection(
            configuration=RTCConfiguration(
                iceServers=[RTCIceServer(urls=url) for url in ice_servers or []]
            )
        )
        self._senders: dict[str, Any] = {}
        self._remote_stream: MediaStream | None = None
        self._connected = False
        self._closed = False
        self._channel_open_task: asyncio.Task[None] | None = None

        for track in stream.live_tracks():
            if track.source is not None:
                self._senders[track.track_id] = self._pc.addTrack(track.source)

        self._pc.on("track", self._on_track)
        self._pc.on("connectionstatechange", self._on_connection_state_change)

        # The data channel opening is the "direct channel established" event
        if initiator:
            self._attach_channel(self._pc.createDataChannel(DATA_CHANNEL_LABEL))
        else:
            self._pc.on("datachannel", self._attach_channel)

    @property
    def initiator(self) -> bool:
        return self._initiator

    async def start(self) -> None:
        if not self._initiator:
            return
        try:
            await self._pc.setLocalDescription(await self._pc.createOffer())
        except Exception as e:
            raise NegotiationError(f"Failed to create offer: {e}") from e
        await self._emit_local_description()

    async def signal(self, payload: dict[str, Any]) -> None:
        try:
            description = RTCSessionDescription(sdp=payload["sdp"], type=payload["type"])
        except (KeyError, TypeError, ValueError) as e:
            raise NegotiationError(f"Malformed session description: {e}") from e

        try:
            await self._pc.setRemoteDescription(description)
            if description.type == "offer":
                await self._pc.setLocalDescription(await self._pc.createAnswer())
        except Exception as e:
            raise NegotiationError(f"Failed to apply {description.type}: {e}") from e

        if description.type == "offer":
            await self._emit_local_description()

    async def replace_track(self, old_track: MediaTrack, new_track: MediaTrack) -> None:
        sender = self._senders.get(old_track.track_id)
        if sender is None:
            raise ValueError(f"Track {old_track.track_id} is not being sent")

        sender.replaceTrack(new_track.source)
        del self._senders[old_track.track_id]
        self._senders[new_track.track_id] = sender

    async def destroy(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._channel_open_task is not None and not self._channel_open_task.done():
            self._channel_open_task.cancel()
        await self._pc.close()

    async def _emit_local_description(self) -> None:
        description = self._pc.localDescription
        await self._listener.on_signal({"type": description.type, "sdp": description.sdp})

    def _attach_channel(self, channel: Any) -> None:
        channel.on("open", self._on_channel_open)
        channel.on("close", self._on_channel_close)
        if channel.readyState == "open":
            self._channel_open_task = asyncio.create_task(self._on_channel_open())

    async def _on_channel_open(self) -> None:
        if self._connected or self._closed:
            return
        self._connected = True
        await self._listener.on_connect()

    async def _on_channel_close(self) -> None:
        if not self._closed:
            await self._listener.on_close()

    async def _on_track(self, track: MediaStreamTrack) -> None:
        remote = MediaTrack(track.kind, label=f"remote {track.kind}", source=track)
        if self._remote_stream is None:
            self._remote_stream = MediaStream([remote])
            await self._listener.on_stream(self._remote_stream)
        else:
            self._remote_stream.add_track(remote)

    async def _on_connection_state_change(self) -> None:
        state = self._pc.connectionState
        logger.debug("Peer connection state", extra={"state": state})
        if self._closed:
            return
        if state == "failed":
            await self._listener.on_error(NegotiationError("Peer connection failed"))
        elif state == "closed":
            await self._listener.on_close()


def aiortc_peer_factory(ice_servers: list[str] | None = None) -> PeerConnectionFactory:
    """Build a factory creating ``AiortcPeerConnection`` instances."""

    def factory(
        initiator: bool, stream: MediaStream, listener: PeerConnectionListener
    ) -> PeerConnection:
        return AiortcPeerConnection(initiator, stream, listener, ice_servers=ice_servers)

    return factory
