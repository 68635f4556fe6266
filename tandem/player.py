"""Local media player interface and a headless clock-driven implementation."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)


class PlayerError(RuntimeError):
    """Raised by a media player when the local engine cannot load or play."""


class MediaPlayer(Protocol):
    """Local playback engine driven by the reconciler and local controls."""

    @property
    def track_id(self) -> str | None:
        """Id of the loaded track, None when nothing is loaded."""

    @property
    def position(self) -> float:
        """Current playback position in seconds."""

    @property
    def is_playing(self) -> bool:
        """Whether the engine is currently playing."""

    def load(self, track_id: str) -> None:
        """Load a new source, paused at position 0."""

    def unload(self) -> None:
        """Stop and drop the current source."""

    def seek(self, position: float) -> None:
        """Jump to position in seconds."""

    def play(self) -> None:
        """Start or resume playback."""

    def pause(self) -> None:
        """Pause playback."""


class ClockPlayer:
    """Player without audio output whose position advances with the wall clock.

    Used by the headless listener to follow a coordinator, and as the local
    engine in tests. Durations come from a lookup so the player can report
    them back and detect when a track has run out.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        durations: Callable[[str], float | None] | None = None,
    ) -> None:
        """Initialize the player.

        Args:
            clock: Wall-clock source returning seconds.
            durations: Optional lookup returning the duration of a track id.
        """
        self._clock = clock
        self._durations = durations
        self._track_id: str | None = None
        self.duration: float | None = None
        self._anchor_position = 0.0
        self._anchor_time = clock()
        self._playing = False
        self._end_reported = False

    @property
    def track_id(self) -> str | None:
        return self._track_id

    @property
    def position(self) -> float:
        if not self._playing:
            return self._anchor_position
        position = self._anchor_position + (self._clock() - self._anchor_time)
        if self.duration is not None:
            position = min(position, self.duration)
        return position

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _rebase(self, position: float) -> None:
        self._anchor_position = max(0.0, position)
        self._anchor_time = self._clock()

    def load(self, track_id: str) -> None:
        self._track_id = track_id
        self.duration = self._durations(track_id) if self._durations is not None else None
        self._playing = False
        self._end_reported = False
        self._rebase(0.0)
        logger.info("Loaded %s", track_id)

    def unload(self) -> None:
        self._track_id = None
        self.duration = None
        self._playing = False
        self._rebase(0.0)
        logger.info("Unloaded track")

    def seek(self, position: float) -> None:
        if self._track_id is None:
            raise PlayerError("Cannot seek without a loaded track")
        if self.duration is not None:
            position = min(position, self.duration)
        self._rebase(position)
        self._end_reported = False

    def play(self) -> None:
        if self._track_id is None:
            raise PlayerError("Cannot play without a loaded track")
        if not self._playing:
            self._rebase(self._anchor_position)
            self._playing = True

    def pause(self) -> None:
        if self._playing:
            self._rebase(self.position)
            self._playing = False

    def check_ended(self) -> bool:
        """Return True once when a playing track reaches its duration."""
        if (
            self._playing
            and not self._end_reported
            and self.duration is not None
            and self.position >= self.duration
        ):
            self._end_reported = True
            return True
        return False
