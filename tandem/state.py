"""Playback state model and position extrapolation.

A PlaybackState is an immutable snapshot: the coordinator replaces it on
every mutation and clients keep read-only copies of whatever they last
received. Position is never stored on its own; it is always derived from
the (anchor_position, anchor_timestamp) pair with position_at().
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any


def clamp_position(position: float, duration: float | None) -> float:
    """Clamp a position to [0, duration], treating an unknown duration as unbounded."""
    upper = math.inf if duration is None else duration
    return max(0.0, min(upper, position))


@dataclass(frozen=True, slots=True)
class PlaybackState:
    """Authoritative playback snapshot.

    Attributes:
        track_id: Currently selected track, or None if nothing is selected.
        anchor_position: Playback offset in seconds at anchor_timestamp.
        anchor_timestamp: Coordinator wall-clock time (epoch seconds) at which
            anchor_position was true.
        is_playing: Whether playback is running.
        revision: Incremented on every mutation, used to drop stale deliveries.
        duration: Track length in seconds, None when not yet known.
    """

    track_id: str | None = None
    anchor_position: float = 0.0
    anchor_timestamp: float = 0.0
    is_playing: bool = False
    revision: int = 0
    duration: float | None = None

    def evaluated(self, now: float) -> PlaybackState:
        """Return the same state re-anchored at now, with the revision unchanged."""
        return replace(self, anchor_position=position_at(self, now), anchor_timestamp=now)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase payload carried on the wire."""
        return {
            "trackId": self.track_id,
            "anchorPosition": self.anchor_position,
            "anchorTimestamp": self.anchor_timestamp,
            "isPlaying": self.is_playing,
            "revision": self.revision,
            "duration": self.duration,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PlaybackState:
        """Build a snapshot from a wire payload.

        Raises:
            KeyError: If revision or the anchor pair is missing.
            TypeError, ValueError: If a field has the wrong type.
        """
        duration = payload.get("duration")
        track_id = payload.get("trackId")
        return cls(
            track_id=None if track_id is None else str(track_id),
            anchor_position=float(payload["anchorPosition"]),
            anchor_timestamp=float(payload["anchorTimestamp"]),
            is_playing=bool(payload.get("isPlaying", False)),
            revision=int(payload["revision"]),
            duration=None if duration is None else float(duration),
        )


def position_at(state: PlaybackState, now: float) -> float:
    """Return where playback of state is at wall-clock time now (seconds)."""
    if not state.is_playing:
        return state.anchor_position
    return clamp_position(state.anchor_position + (now - state.anchor_timestamp), state.duration)
