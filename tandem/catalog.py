"""Track catalog collaborators used by the coordinator."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from mutagen import File as MutagenFile
from mutagen import MutagenError

logger = logging.getLogger(__name__)


def read_duration(path: Path) -> float | None:
    """Return the playing time of an audio file in seconds, None if unreadable."""
    try:
        audio = MutagenFile(path)
    except (MutagenError, OSError, ValueError) as e:
        logger.debug("Cannot read %s: %s", path, e)
        return None
    length = getattr(getattr(audio, "info", None), "length", None)
    if not length or length <= 0:
        return None
    return float(length)


@dataclass(frozen=True, slots=True)
class Track:
    """A playable catalog entry.

    Attributes:
        id: Stable identifier used in intents and snapshots.
        name: Human-readable name.
        url: Location a client loads the media from.
        duration: Length in seconds, None when the catalog does not know it.
    """

    id: str
    name: str
    url: str
    duration: float | None = None

    def to_dict(self) -> dict[str, str | float | None]:
        return {"id": self.id, "name": self.name, "url": self.url, "duration": self.duration}


class TrackCatalog(Protocol):
    """Lookup interface the coordinator validates and resolves tracks against."""

    def list_tracks(self) -> Sequence[Track]:
        """Return all known tracks in queue order."""

    def get(self, track_id: str) -> Track | None:
        """Return the track with the given id, or None if unknown."""

    def resolve_next(self, track_id: str | None) -> str | None:
        """Return the id following track_id, or None when there is none."""

    def resolve_previous(self, track_id: str | None) -> str | None:
        """Return the id preceding track_id, or None when there is none."""


class StaticCatalog:
    """Catalog over a fixed, ordered sequence of tracks."""

    def __init__(self, tracks: Sequence[Track], *, repeat: bool = False) -> None:
        """Initialize the catalog.

        Args:
            tracks: Tracks in queue order.
            repeat: Wrap around at either end of the queue.
        """
        self._tracks: list[Track] = list(tracks)
        self._repeat = repeat

    def list_tracks(self) -> Sequence[Track]:
        return list(self._tracks)

    def get(self, track_id: str) -> Track | None:
        for track in self._tracks:
            if track.id == track_id:
                return track
        return None

    def _index_of(self, track_id: str | None) -> int | None:
        if track_id is None:
            return None
        for index, track in enumerate(self._tracks):
            if track.id == track_id:
                return index
        return None

    def resolve_next(self, track_id: str | None) -> str | None:
        tracks = self._tracks
        if not tracks:
            return None
        index = self._index_of(track_id)
        if index is None:
            return tracks[0].id
        if index + 1 < len(tracks):
            return tracks[index + 1].id
        return tracks[0].id if self._repeat else None

    def resolve_previous(self, track_id: str | None) -> str | None:
        tracks = self._tracks
        if not tracks:
            return None
        index = self._index_of(track_id)
        if index is None:
            return tracks[-1].id
        if index > 0:
            return tracks[index - 1].id
        return tracks[-1].id if self._repeat else None


class DirectoryCatalog(StaticCatalog):
    """Catalog listing the files of a music directory, sorted by name.

    The directory is rescanned on every lookup so files dropped into it
    become playable without restarting the coordinator. Durations are read
    with mutagen and cached per file until its size or mtime changes.
    """

    def __init__(
        self, music_dir: Path, *, url_prefix: str = "/music", repeat: bool = False
    ) -> None:
        """Initialize the catalog.

        Args:
            music_dir: Directory containing media files.
            url_prefix: URL path the files are served under.
            repeat: Wrap around at either end of the queue.
        """
        super().__init__([], repeat=repeat)
        self.music_dir = music_dir
        self._url_prefix = url_prefix.rstrip("/")
        self._durations: dict[str, tuple[tuple[int, int], float | None]] = {}

    def _scan(self) -> list[Track]:
        try:
            entries = sorted(p for p in self.music_dir.iterdir() if p.is_file())
        except OSError as e:
            logger.warning("Failed to list music directory %s: %s", self.music_dir, e)
            return []
        tracks = [
            Track(
                id=p.name,
                name=p.stem,
                url=f"{self._url_prefix}/{quote(p.name)}",
                duration=self._duration_of(p),
            )
            for p in entries
            if not p.name.startswith(".")
        ]
        known = {t.id for t in tracks}
        for name in list(self._durations):
            if name not in known:
                del self._durations[name]
        return tracks

    def _duration_of(self, path: Path) -> float | None:
        try:
            stat = path.stat()
        except OSError:
            return None
        key = (stat.st_size, stat.st_mtime_ns)
        cached = self._durations.get(path.name)
        if cached is not None and cached[0] == key:
            return cached[1]
        duration = read_duration(path)
        self._durations[path.name] = (key, duration)
        return duration

    def list_tracks(self) -> Sequence[Track]:
        self._tracks = self._scan()
        return list(self._tracks)

    def get(self, track_id: str) -> Track | None:
        self._tracks = self._scan()
        return super().get(track_id)

    def resolve_next(self, track_id: str | None) -> str | None:
        self._tracks = self._scan()
        return super().resolve_next(track_id)

    def resolve_previous(self, track_id: str | None) -> str | None:
        self._tracks = self._scan()
        return super().resolve_previous(track_id)
