"""Tests for the clock-driven player."""

import pytest

from tandem.player import ClockPlayer, PlayerError


@pytest.fixture
def clock_player(clock):
    return ClockPlayer(clock=clock, durations={"A": 10.0}.get)


def test_position_advances_only_while_playing(clock_player, clock):
    clock_player.load("A")
    clock.advance(3.0)
    assert clock_player.position == 0.0

    clock_player.play()
    clock.advance(2.0)
    assert clock_player.position == pytest.approx(2.0)

    clock_player.pause()
    clock.advance(5.0)
    assert clock_player.position == pytest.approx(2.0)


def test_load_resets_and_looks_up_duration(clock_player):
    clock_player.load("A")
    assert clock_player.track_id == "A"
    assert clock_player.duration == 10.0

    clock_player.load("B")
    assert clock_player.duration is None
    assert not clock_player.is_playing


def test_seek_is_clamped(clock_player):
    clock_player.load("A")
    clock_player.seek(50.0)
    assert clock_player.position == 10.0
    clock_player.seek(-1.0)
    assert clock_player.position == 0.0


def test_actions_without_track_raise(clock_player):
    with pytest.raises(PlayerError):
        clock_player.play()
    with pytest.raises(PlayerError):
        clock_player.seek(1.0)
    clock_player.pause()


def test_check_ended_reports_once(clock_player, clock):
    clock_player.load("A")
    clock_player.play()
    clock.advance(9.0)
    assert clock_player.check_ended() is False

    clock.advance(2.0)
    assert clock_player.position == 10.0
    assert clock_player.check_ended() is True
    assert clock_player.check_ended() is False


def test_seek_back_rearms_end_detection(clock_player, clock):
    clock_player.load("A")
    clock_player.play()
    clock.advance(11.0)
    assert clock_player.check_ended()

    clock_player.seek(5.0)
    clock.advance(6.0)
    assert clock_player.check_ended()


def test_unload(clock_player):
    clock_player.load("A")
    clock_player.play()
    clock_player.unload()
    assert clock_player.track_id is None
    assert not clock_player.is_playing
