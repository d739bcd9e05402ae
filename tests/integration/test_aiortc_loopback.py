"""Integration test for AiortcPeerConnection over the loopback interface.

Two peer connections negotiate directly (envelopes handed across in-process)
with synthetic media, no STUN and no devices.
"""

import asyncio
from typing import Any

import pytest
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from src.session_client.errors import NegotiationError
from src.session_client.media import MediaStream
from src.session_client.peer import PeerConnection, PeerConnectionListener
from src.session_client.rtc import AiortcMediaTrack, AiortcPeerConnection, GatedTrack


class LoopbackListener(PeerConnectionListener):
    """Hands envelopes to the remote peer and records events."""

    def __init__(self) -> None:
        self.remote: PeerConnection | None = None
        self.signals: list[dict[str, Any]] = []
        self.connected = asyncio.Event()
        self.stream_received = asyncio.Event()
        self.remote_stream: MediaStream | None = None
        self.errors: list[Exception] = []

    async def on_signal(self, payload: dict[str, Any]) -> None:
        self.signals.append(payload)
        assert self.remote is not None
        await self.remote.signal(payload)

    async def on_connect(self) -> None:
        self.connected.set()

    async def on_stream(self, stream: MediaStream) -> None:
        self.remote_stream = stream
        self.stream_received.set()

    async def on_error(self, error: Exception) -> None:
        self.errors.append(error)

    async def on_close(self) -> None:
        pass


def synthetic_stream() -> MediaStream:
    return MediaStream(
        [
            AiortcMediaTrack("audio", "tone", GatedTrack(AudioStreamTrack())),
            AiortcMediaTrack("video", "pattern", GatedTrack(VideoStreamTrack())),
        ]
    )


@pytest.mark.integration
@pytest.mark.asyncio
async def test_trickle_free_negotiation_connects() -> None:
    """One offer and one answer establish the data channel and media."""
    offerer_events, answerer_events = LoopbackListener(), LoopbackListener()
    offerer_stream, answerer_stream = synthetic_stream(), synthetic_stream()
    offerer = AiortcPeerConnection(True, offerer_stream, offerer_events, ice_servers=[])
    answerer = AiortcPeerConnection(False, answerer_stream, answerer_events, ice_servers=[])
    offerer_events.remote = answerer
    answerer_events.remote = offerer

    try:
        await offerer.start()

        await asyncio.wait_for(offerer_events.connected.wait(), timeout=15.0)
        await asyncio.wait_for(answerer_events.connected.wait(), timeout=15.0)
        await asyncio.wait_for(offerer_events.stream_received.wait(), timeout=15.0)

        assert [s["type"] for s in offerer_events.signals] == ["offer"]
        assert [s["type"] for s in answerer_events.signals] == ["answer"]
        assert "a=candidate" in offerer_events.signals[0]["sdp"]
        assert offerer_events.errors == []

        old_video = offerer_stream.get_video_tracks()[0]
        screen = AiortcMediaTrack("video", "screen", GatedTrack(VideoStreamTrack()))
        await offerer.replace_track(old_video, screen)

        with pytest.raises(ValueError):
            await offerer.replace_track(old_video, screen)

        assert [s["type"] for s in offerer_events.signals] == ["offer"]
        screen.stop()
    finally:
        await offerer.destroy()
        await answerer.destroy()
        offerer_stream.stop()
        answerer_stream.stop()


@pytest.mark.integration
@pytest.mark.asyncio
async def test_malformed_envelope_raises_negotiation_error() -> None:
    """An envelope without a session description is rejected."""
    peer = AiortcPeerConnection(False, MediaStream(), LoopbackListener(), ice_servers=[])
    try:
        with pytest.raises(NegotiationError):
            await peer.signal({"candidate": "a=candidate:1 1 udp 1 127.0.0.1 9 typ host"})
    finally:
        await peer.destroy()
