"""Unit tests for session client media, chat, state table and configuration."""

import pytest
from pydantic import ValidationError

from src.session_client.chat import ChatEntry, ChatLog, utc_timestamp
from src.session_client.config import ClientConfig
from src.session_client.media import MediaStream, MediaTrack
from src.session_client.state import FINISHED_STATES, VALID_TRANSITIONS, CallState


class ExplodingTrack(MediaTrack):
    def _on_stop(self) -> None:
        raise OSError("device vanished")


class TestMedia:
    """Test track and stream behaviour."""

    def test_stop_is_idempotent(self) -> None:
        track = MediaTrack("audio", "mic")

        track.stop()
        track.stop()

        assert track.ready_state == "ended"
        assert not track.is_live

    def test_enabled_toggles_in_place(self) -> None:
        track = MediaTrack("video", "camera")

        track.enabled = False

        assert track.enabled is False
        assert track.is_live

    def test_stream_filters_by_kind(self) -> None:
        audio, video = MediaTrack("audio"), MediaTrack("video")
        stream = MediaStream([audio, video])

        assert stream.get_audio_tracks() == [audio]
        assert stream.get_video_tracks() == [video]
        assert stream.get_tracks() == [audio, video]

    def test_stream_stop_continues_past_failures(self) -> None:
        broken = ExplodingTrack("audio", "mic")
        camera = MediaTrack("video", "camera")
        stream = MediaStream([broken, camera])

        errors = stream.stop()

        assert len(errors) == 1
        assert isinstance(errors[0], OSError)
        assert not camera.is_live
        assert stream.live_tracks() == []


class TestChatLog:
    """Test chat history ordering."""

    def test_entries_kept_in_order(self) -> None:
        log = ChatLog()
        for text in ("one", "two", "three"):
            log.append(ChatEntry(sender="a", text=text, timestamp=utc_timestamp()))

        assert log.texts() == ["one", "two", "three"]
        assert len(log) == 3

    def test_clear(self) -> None:
        log = ChatLog()
        log.append(ChatEntry(sender="a", text="x", timestamp=utc_timestamp(), is_self=True))

        log.clear()

        assert log.entries == []

    def test_timestamp_is_utc_iso(self) -> None:
        stamp = utc_timestamp()
        assert stamp.endswith("Z")
        assert "T" in stamp


class TestStateTable:
    """Test the call state transition table."""

    def test_every_state_can_end(self) -> None:
        for state in CallState:
            if state != CallState.DISCONNECTED:
                assert CallState.DISCONNECTED in VALID_TRANSITIONS[state]

    def test_disconnected_is_terminal(self) -> None:
        assert VALID_TRANSITIONS[CallState.DISCONNECTED] == set()

    def test_no_recovery_from_error(self) -> None:
        assert VALID_TRANSITIONS[CallState.ERROR] == {CallState.DISCONNECTED}
        assert VALID_TRANSITIONS[CallState.PEER_DISCONNECTED] == {CallState.DISCONNECTED}

    def test_connected_only_after_negotiating(self) -> None:
        sources = {s for s, targets in VALID_TRANSITIONS.items() if CallState.CONNECTED in targets}
        assert sources == {CallState.NEGOTIATING}

    def test_finished_states(self) -> None:
        assert CallState.CONNECTED not in FINISHED_STATES
        assert CallState.ERROR in FINISHED_STATES


class TestClientConfig:
    """Test client configuration."""

    def test_defaults(self) -> None:
        config = ClientConfig()

        assert config.negotiation_timeout_s == 30.0
        assert (config.video_width, config.video_height) == (1280, 720)

    def test_rejects_http_signaling_url(self) -> None:
        with pytest.raises(ValidationError, match="ws://"):
            ClientConfig(signaling_url="http://localhost:8080")

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIGNALING_URL", "wss://signal.example.com")
        monkeypatch.setenv("NEGOTIATION_TIMEOUT_S", "none")
        monkeypatch.setenv("CONSULTATION_API_URL", "https://api.example.com/api/video-consultancy")

        config = ClientConfig.from_env()

        assert config.signaling_url == "wss://signal.example.com"
        assert config.negotiation_timeout_s is None
        assert config.api_base_url.startswith("https://api.example.com")

    def test_from_env_numeric_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SIGNALING_URL", raising=False)
        monkeypatch.delenv("CONSULTATION_API_URL", raising=False)
        monkeypatch.setenv("NEGOTIATION_TIMEOUT_S", "12.5")

        assert ClientConfig.from_env().negotiation_timeout_s == 12.5
