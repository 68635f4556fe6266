"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from tandem.catalog import StaticCatalog, Track
from tandem.coordinator import Coordinator
from tandem.player import PlayerError

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingPlayer:
    """MediaPlayer double that records every call made to it."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.track_id: str | None = None
        self.position = 0.0
        self.is_playing = False
        self.fail_on: set[str] = set()

    def _record(self, *call) -> None:
        if call[0] in self.fail_on:
            raise PlayerError(f"{call[0]} failed")
        self.calls.append(call)

    def load(self, track_id: str) -> None:
        self._record("load", track_id)
        self.track_id = track_id
        self.position = 0.0
        self.is_playing = False

    def unload(self) -> None:
        self._record("unload")
        self.track_id = None
        self.is_playing = False

    def seek(self, position: float) -> None:
        self._record("seek", position)
        self.position = position

    def play(self) -> None:
        self._record("play")
        self.is_playing = True

    def pause(self) -> None:
        self._record("pause")
        self.is_playing = False


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def player() -> RecordingPlayer:
    return RecordingPlayer()


@pytest.fixture
def tracks() -> list[Track]:
    return [
        Track(id="A", name="Alpha", url="/music/A"),
        Track(id="B", name="Bravo", url="/music/B", duration=180.0),
        Track(id="C", name="Charlie", url="/music/C"),
    ]


@pytest.fixture
def catalog(tracks: list[Track]) -> StaticCatalog:
    return StaticCatalog(tracks)


@pytest.fixture
def coordinator(catalog: StaticCatalog, clock: FakeClock) -> Coordinator:
    return Coordinator(catalog, clock=clock)


@pytest.fixture
def broadcasts(coordinator: Coordinator) -> list:
    """Messages broadcast by the coordinator fixture."""
    sent: list = []
    coordinator.add_broadcast_listener(sent.append)
    return sent
