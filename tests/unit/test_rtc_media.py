"""Unit tests for aiortc-backed media gating."""

import fractions

import pytest
from aiortc import MediaStreamTrack
from aiortc.mediastreams import VideoStreamTrack
from av import AudioFrame

from src.session_client.rtc import AiortcMediaTrack, GatedTrack


class ToneTrack(MediaStreamTrack):
    """Audio source producing non-silent 20ms frames."""

    kind = "audio"

    def __init__(self) -> None:
        super().__init__()
        self._pts = 0

    async def recv(self) -> AudioFrame:
        frame = AudioFrame(format="s16", layout="mono", samples=960)
        for plane in frame.planes:
            plane.update(b"\x01\x02" * (plane.buffer_size // 2))
        frame.sample_rate = 48000
        frame.pts = self._pts
        frame.time_base = fractions.Fraction(1, 48000)
        self._pts += 960
        return frame


class TestGatedTrack:
    """Test frame blanking while a track is disabled."""

    @pytest.mark.asyncio
    async def test_enabled_audio_passes_through(self) -> None:
        gated = GatedTrack(ToneTrack())

        frame = await gated.recv()

        assert gated.kind == "audio"
        assert any(bytes(frame.planes[0]))

    @pytest.mark.asyncio
    async def test_disabled_audio_is_silent(self) -> None:
        gated = GatedTrack(ToneTrack())
        gated.enabled = False

        frame = await gated.recv()

        assert not any(bytes(frame.planes[0]))
        assert frame.samples == 960
        assert frame.sample_rate == 48000

    @pytest.mark.asyncio
    async def test_disabled_video_is_black(self) -> None:
        gated = GatedTrack(VideoStreamTrack())
        gated.enabled = False

        frame = await gated.recv()

        assert gated.kind == "video"
        assert set(bytes(frame.planes[0])) == {16}
        assert set(bytes(frame.planes[1])) == {128}
        assert (frame.width, frame.height) == (640, 480)

    def test_stop_stops_source(self) -> None:
        source = ToneTrack()
        gated = GatedTrack(source)

        gated.stop()

        assert source.readyState == "ended"
        assert gated.readyState == "ended"


class TestAiortcMediaTrack:
    """Test that track state drives the gate."""

    def test_enabled_flag_reaches_gate(self) -> None:
        gated = GatedTrack(ToneTrack())
        track = AiortcMediaTrack("audio", "tone", gated)

        track.enabled = False
        assert gated.enabled is False

        track.enabled = True
        assert gated.enabled is True

    def test_stop_releases_capture(self) -> None:
        source = ToneTrack()
        track = AiortcMediaTrack("audio", "tone", GatedTrack(source))

        track.stop()

        assert track.ready_state == "ended"
        assert source.readyState == "ended"
