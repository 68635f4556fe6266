"""Tests for client-side reconciliation."""

import pytest

from tandem.protocol import MessageType, StateMessage
from tandem.reconciler import Reconciler, SyncState
from tandem.state import PlaybackState
from tandem.suppressor import LoopbackSuppressor

from .conftest import T0


def _message(kind=MessageType.HEARTBEAT, origin=None, **fields):
    fields.setdefault("anchor_timestamp", T0)
    return StateMessage(kind, PlaybackState(**fields), origin)


@pytest.fixture
def reconciler(player):
    return Reconciler(player, suppressor=LoopbackSuppressor())


def test_starts_initializing(reconciler):
    assert reconciler.state is SyncState.INITIALIZING
    assert not reconciler.ready


def test_bootstrap_converges_to_elapsed_position(reconciler, player, coordinator, clock):
    coordinator.play("A")
    clock.advance(2.0)

    reconciler.apply(coordinator.snapshot(), received_at=clock())

    assert reconciler.state is SyncState.SYNCED
    assert player.track_id == "A"
    assert player.position == pytest.approx(2.0, abs=0.3)
    assert player.is_playing


def test_identical_snapshot_applied_twice_is_idempotent(reconciler, player):
    message = _message(track_id="A", anchor_position=5.0, is_playing=False, revision=3)
    reconciler.apply(message, received_at=T0)
    calls = list(player.calls)

    reconciler.apply(message, received_at=T0)

    assert player.calls == calls
    assert reconciler.revision == 3


def test_stale_revision_is_dropped(reconciler, player):
    reconciler.apply(_message(track_id="A", is_playing=True, revision=5), received_at=T0)
    calls = list(player.calls)

    applied = reconciler.apply(
        _message(MessageType.PAUSE, track_id="A", anchor_position=50.0, revision=4),
        received_at=T0,
    )

    assert applied is False
    assert player.calls == calls
    assert player.is_playing
    assert reconciler.revision == 5


def test_revision_never_decreases_under_reordering(reconciler):
    seen = []
    for revision in [3, 1, 4, 2, 4, 6, 5]:
        reconciler.apply(_message(track_id="A", revision=revision), received_at=T0)
        seen.append(reconciler.revision)
    assert seen == sorted(seen)
    assert reconciler.revision == 6


def test_track_change_hard_loads_and_seeks(reconciler, player):
    reconciler.apply(
        _message(track_id="A", anchor_position=40.0, is_playing=True, revision=1), received_at=T0
    )
    player.calls.clear()

    reconciler.apply(
        _message(MessageType.PLAY, track_id="B", anchor_position=0.0, is_playing=True, revision=2),
        received_at=T0,
    )

    assert player.calls == [("load", "B"), ("seek", 0.0), ("play",)]
    assert player.position == 0.0


def test_snapshot_without_track_unloads(reconciler, player):
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    reconciler.apply(_message(MessageType.PAUSE, track_id=None, revision=2), received_at=T0)
    assert player.calls[-1] == ("unload",)
    assert player.track_id is None


def test_drift_within_epsilon_is_left_alone(reconciler, player):
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    player.calls.clear()
    player.position = 10.1

    reconciler.apply(
        _message(track_id="A", anchor_position=10.0, is_playing=True, revision=1), received_at=T0
    )

    assert player.calls == []
    assert reconciler.state is SyncState.SYNCED


def test_drift_beyond_epsilon_is_corrected(reconciler, player):
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    player.calls.clear()
    player.position = 9.0

    reconciler.apply(
        _message(track_id="A", anchor_position=10.0, is_playing=True, revision=1),
        received_at=T0 + 0.5,
    )

    assert player.calls == [("seek", pytest.approx(10.5))]
    assert reconciler.state is SyncState.SYNCED


def test_play_state_follows_snapshot(reconciler, player):
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    player.calls.clear()

    reconciler.apply(
        _message(MessageType.PAUSE, track_id="A", anchor_position=0.0, revision=2), received_at=T0
    )

    assert player.calls == [("pause",)]


def test_player_failure_falls_back_to_paused(reconciler, player):
    player.fail_on.add("load")
    events = []
    reconciler.add_listener(lambda event, snapshot: events.append(event))

    applied = reconciler.apply(
        _message(MessageType.PLAY, track_id="A", is_playing=True, revision=1), received_at=T0
    )

    assert applied is True
    assert reconciler.revision == 1
    assert reconciler.state is SyncState.SYNCED
    assert not player.is_playing
    assert events == ["pause"]

    # The failing track is not retried on every heartbeat
    player.calls.clear()
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0 + 1)
    assert player.calls == []


def test_failed_track_is_forgotten_on_next_track(reconciler, player):
    player.fail_on.add("load")
    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    player.fail_on.clear()

    reconciler.apply(_message(track_id="B", is_playing=True, revision=2), received_at=T0)

    assert player.track_id == "B"
    assert player.is_playing


def test_listeners_see_applied_changes(reconciler):
    events = []
    reconciler.add_listener(lambda event, snapshot: events.append((event, snapshot.track_id)))

    reconciler.apply(_message(track_id="A", is_playing=True, revision=1), received_at=T0)
    reconciler.apply(_message(MessageType.PAUSE, track_id="A", revision=2), received_at=T0)

    assert events == [("track", "A"), ("play", "A"), ("pause", "A")]


def test_reconciler_cannot_emit_intents():
    # Applying state has no path to the coordinator
    assert not any("send" in name or "intent" in name for name in dir(Reconciler))
