"""Tests for the authoritative coordinator."""

import pytest

from tandem.coordinator import Coordinator
from tandem.protocol import Intent, IntentType, MessageType
from tandem.state import position_at

from .conftest import T0


def test_initial_state(coordinator):
    state = coordinator.state
    assert state.track_id is None
    assert state.is_playing is False
    assert state.revision == 0


def test_play_sets_anchor_and_broadcasts(coordinator, broadcasts, clock):
    assert coordinator.play("A", 5.0, origin="tok")

    state = coordinator.state
    assert (state.track_id, state.anchor_position, state.anchor_timestamp) == ("A", 5.0, T0)
    assert state.is_playing is True
    assert state.revision == 1
    assert len(broadcasts) == 1
    assert broadcasts[0].type is MessageType.PLAY
    assert broadcasts[0].origin == "tok"
    assert broadcasts[0].state == state


def test_play_unknown_track_is_rejected(coordinator, broadcasts):
    before = coordinator.state
    assert coordinator.play("nope") is False
    assert coordinator.state == before
    assert broadcasts == []


def test_play_uses_catalog_duration(coordinator):
    coordinator.play("B")
    assert coordinator.state.duration == 180.0


def test_resume_continues_from_paused_position(coordinator, clock):
    coordinator.play("A")
    clock.advance(4.0)
    coordinator.pause()
    clock.advance(10.0)

    assert coordinator.play()
    state = coordinator.state
    assert state.track_id == "A"
    assert state.anchor_position == pytest.approx(4.0)
    assert state.is_playing


def test_resume_without_track_is_rejected(coordinator, broadcasts):
    assert coordinator.play() is False
    assert broadcasts == []


def test_pause_freezes_evaluated_position(coordinator, broadcasts, clock):
    coordinator.play("A")
    clock.advance(3.0)
    coordinator.pause(origin="p1")

    state = coordinator.state
    assert state.anchor_position == pytest.approx(3.0)
    assert state.anchor_timestamp == clock()
    assert state.is_playing is False
    assert state.revision == 2
    assert broadcasts[-1].type is MessageType.PAUSE
    assert broadcasts[-1].origin == "p1"


def test_pause_when_paused_bumps_revision_only(coordinator, broadcasts, clock):
    coordinator.play("A")
    clock.advance(3.0)
    coordinator.pause()
    first = coordinator.state
    clock.advance(5.0)
    coordinator.pause()
    second = coordinator.state

    assert second.revision == first.revision + 1
    assert second.anchor_position == first.anchor_position
    assert second.is_playing is False
    assert len(broadcasts) == 3


@pytest.mark.parametrize(("target", "expected"), [(-5.0, 0.0), (500.0, 200.0), (60.0, 60.0)])
def test_seek_clamps_to_duration(coordinator, target, expected):
    coordinator.play("A")
    coordinator.report_duration("A", 200.0)
    coordinator.seek(target)
    assert coordinator.state.anchor_position == expected
    assert coordinator.state.is_playing is True


def test_seek_keeps_play_state(coordinator):
    coordinator.play("A")
    coordinator.pause()
    coordinator.seek(30.0)
    assert coordinator.state.is_playing is False
    assert coordinator.state.revision == 3


def test_report_duration_is_metadata_only(coordinator, broadcasts):
    coordinator.play("A")
    assert coordinator.report_duration("A", 240.0)
    assert coordinator.state.duration == 240.0
    assert coordinator.state.revision == 1
    assert len(broadcasts) == 1


def test_report_duration_for_other_track_is_ignored(coordinator):
    coordinator.play("A")
    assert coordinator.report_duration("B", 240.0) is False
    assert coordinator.state.duration is None


def test_duration_kept_when_replaying_same_track(coordinator):
    coordinator.play("A")
    coordinator.report_duration("A", 240.0)
    coordinator.play("A", 0.0)
    assert coordinator.state.duration == 240.0


def test_next_and_previous(coordinator):
    coordinator.play("A")
    assert coordinator.next_track()
    assert coordinator.state.track_id == "B"
    assert coordinator.state.anchor_position == 0.0
    assert coordinator.previous_track()
    assert coordinator.state.track_id == "A"


def test_next_at_end_is_noop(coordinator, broadcasts):
    coordinator.play("C")
    assert coordinator.next_track() is False
    assert coordinator.state.track_id == "C"
    assert len(broadcasts) == 1


def test_track_ended_advances_once(coordinator, broadcasts, clock):
    coordinator.play("A")
    clock.advance(120.0)

    assert coordinator.track_ended("A")
    assert coordinator.state.track_id == "B"
    # Every other client reports the same end afterwards
    assert coordinator.track_ended("A") is False
    assert coordinator.track_ended("A") is False
    assert coordinator.state.track_id == "B"
    assert [m.type for m in broadcasts] == [MessageType.PLAY, MessageType.PLAY]


def test_track_ended_early_report_is_ignored(coordinator, clock):
    coordinator.play("B")
    clock.advance(10.0)
    assert coordinator.track_ended("B") is False
    assert coordinator.state.track_id == "B"


def test_track_ended_at_end_of_queue_pauses(coordinator, clock):
    coordinator.play("C")
    clock.advance(30.0)
    assert coordinator.track_ended("C")
    state = coordinator.state
    assert state.track_id == "C"
    assert state.is_playing is False
    assert state.anchor_position == pytest.approx(30.0)


def test_handle_intent_dispatch(coordinator, broadcasts):
    coordinator.handle_intent(Intent(IntentType.PLAY, track_id="B", position=3.0, token="t"))
    coordinator.handle_intent(Intent(IntentType.SEEK, position=20.0))
    coordinator.handle_intent(Intent(IntentType.PAUSE, token="p"))
    coordinator.handle_intent(Intent(IntentType.REPORT_DURATION, track_id="B", duration=150.0))
    coordinator.handle_intent(Intent(IntentType.NEXT))

    assert [m.type for m in broadcasts] == [
        MessageType.PLAY,
        MessageType.SEEK,
        MessageType.PAUSE,
        MessageType.PLAY,
    ]
    assert broadcasts[0].origin == "t"
    assert broadcasts[2].origin == "p"
    assert coordinator.state.track_id == "C"


def test_heartbeat_carries_evaluated_snapshot(coordinator, broadcasts, clock):
    coordinator.play("A")
    clock.advance(2.5)
    message = coordinator.heartbeat()

    assert message.type is MessageType.HEARTBEAT
    assert message.state.anchor_position == pytest.approx(2.5)
    assert message.state.anchor_timestamp == clock()
    assert message.state.revision == coordinator.state.revision
    assert broadcasts[-1] is message


def test_snapshot_is_not_broadcast(coordinator, broadcasts, clock):
    coordinator.play("A")
    clock.advance(2.0)
    message = coordinator.snapshot()

    assert message.type is MessageType.SNAPSHOT
    assert position_at(message.state, clock()) == pytest.approx(2.0)
    assert len(broadcasts) == 1


def test_failing_listener_does_not_block_others(catalog, clock):
    coordinator = Coordinator(catalog, clock=clock)
    received = []

    def broken(message):
        raise RuntimeError("boom")

    coordinator.add_broadcast_listener(broken)
    coordinator.add_broadcast_listener(received.append)
    coordinator.play("A")
    assert len(received) == 1


def test_removed_listener_gets_nothing(coordinator):
    received = []
    remove = coordinator.add_broadcast_listener(received.append)
    remove()
    coordinator.play("A")
    assert received == []


def test_seek_without_track_is_rejected(coordinator, broadcasts):
    assert coordinator.seek(10.0) is False
    assert coordinator.state.revision == 0
    assert broadcasts == []


@pytest.mark.parametrize(
    "intent",
    [
        Intent(IntentType.SEEK),
        Intent(IntentType.REPORT_DURATION, track_id="A"),
        Intent(IntentType.REPORT_DURATION, duration=10.0),
    ],
)
def test_incomplete_intent_is_rejected(coordinator, broadcasts, intent):
    coordinator.play("A")
    assert coordinator.handle_intent(intent) is False
    assert coordinator.state.revision == 1
    assert coordinator.state.duration is None
    assert len(broadcasts) == 1
