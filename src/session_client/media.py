"""Local and remote media model.

Tracks and streams mirror what a capture device hands out: each track has a
kind, an ``enabled`` flag that mutes it in place, and a ready state that
becomes ``ended`` once stopped. Device access goes through ``MediaDevices``
so the session can run against real capture (see ``rtc.py``) or test doubles.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Literal

TrackKind = Literal["audio", "video"]


class MediaTrack:
    """A single audio or video track.

    Subclasses bound to real capture override ``_on_enabled_changed`` and
    ``_on_stop`` to gate or release the underlying source.
    """

    def __init__(self, kind: TrackKind, label: str = "", source: Any = None) -> None:
        self.track_id = uuid.uuid4().hex
        self.kind: TrackKind = kind
        self.label = label
        self.source = source
        self._enabled = True
        self._ready_state: Literal["live", "ended"] = "live"

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        if value == self._enabled:
            return
        self._enabled = value
        self._on_enabled_changed(value)

    @property
    def ready_state(self) -> str:
        return self._ready_state

    @property
    def is_live(self) -> bool:
        return self._ready_state == "live"

    def stop(self) -> None:
        """Stop the track and release its device. Idempotent."""
        if self._ready_state == "ended":
            return
        self._ready_state = "ended"
        self._on_stop()

    def _on_enabled_changed(self, enabled: bool) -> None:
        pass

    def _on_stop(self) -> None:
        pass

    def __repr__(self) -> str:
        return (
            f"MediaTrack(kind={self.kind!r}, label={self.label!r}, "
            f"enabled={self._enabled}, ready_state={self._ready_state!r})"
        )


class MediaStream:
    """An ordered set of tracks captured or received together."""

    def __init__(self, tracks: list[MediaTrack] | None = None) -> None:
        self.stream_id = uuid.uuid4().hex
        self._tracks: list[MediaTrack] = list(tracks or [])

    def add_track(self, track: MediaTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: MediaTrack) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def get_tracks(self) -> list[MediaTrack]:
        return list(self._tracks)

    def get_audio_tracks(self) -> list[MediaTrack]:
        return [t for t in self._tracks if t.kind == "audio"]

    def get_video_tracks(self) -> list[MediaTrack]:
        return [t for t in self._tracks if t.kind == "video"]

    def live_tracks(self) -> list[MediaTrack]:
        return [t for t in self._tracks if t.is_live]

    def stop(self) -> list[Exception]:
        """Stop every track, continuing past failures.

        Returns:
            Exceptions raised by individual tracks (empty on success)
        """
        errors: list[Exception] = []
        for track in self._tracks:
            try:
                track.stop()
            except Exception as e:
                errors.append(e)
        return errors


class MediaDevices(ABC):
    """Access to local capture devices."""

    @abstractmethod
    async def get_user_media(self, audio: bool = True, video: bool = True) -> MediaStream:
        """Capture camera and/or microphone.

        Raises:
            MediaAcquisitionError: If permission is denied or no device is available
        """
        pass

    @abstractmethod
    async def get_display_media(self) -> MediaStream:
        """Capture the screen.

        Raises:
            ScreenShareError: If display capture is unavailable or refused
        """
        pass
