"""User and player driven actions of a client.

Every action here flows one way: it is applied to the local player first,
then sent to the coordinator as an intent. Nothing in this module reacts
to broadcasts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from tandem.player import MediaPlayer, PlayerError
from tandem.protocol import Intent, IntentType, MessageType
from tandem.state import PlaybackState, clamp_position
from tandem.suppressor import LoopbackSuppressor

logger = logging.getLogger(__name__)

IntentSender = Callable[[Intent], None]


class LocalControls:
    """Optimistic local actions that are forwarded to the coordinator."""

    def __init__(
        self,
        player: MediaPlayer,
        suppressor: LoopbackSuppressor,
        send: IntentSender,
        *,
        shadow: Callable[[], PlaybackState | None],
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the controls.

        Args:
            player: Local playback engine.
            suppressor: Where pending local actions are recorded.
            send: Fire-and-forget intent sender.
            shadow: Returns the last adopted snapshot, None before the first one.
            clock: Wall-clock source returning epoch seconds.
        """
        self._player = player
        self._suppressor = suppressor
        self._send = send
        self._shadow = shadow
        self._clock = clock

    def _current(self, action: str) -> PlaybackState | None:
        shadow = self._shadow()
        if shadow is None:
            logger.info("Ignoring %s before the first snapshot", action)
        return shadow

    def _predict(
        self, shadow: PlaybackState, *, track_id: str | None, position: float, playing: bool
    ) -> PlaybackState:
        return PlaybackState(
            track_id=track_id,
            anchor_position=position,
            anchor_timestamp=self._clock(),
            is_playing=playing,
            revision=shadow.revision,
            duration=shadow.duration if track_id == shadow.track_id else None,
        )

    def play(self, track_id: str | None = None, position: float | None = None) -> bool:
        """Play track_id from position, or resume the current track."""
        shadow = self._current("play")
        if shadow is None:
            return False
        player = self._player

        if track_id is None or track_id == player.track_id:
            if player.track_id is None:
                logger.info("Ignoring play with nothing loaded")
                return False
            try:
                if position is not None:
                    player.seek(clamp_position(position, shadow.duration))
                player.play()
            except PlayerError as err:
                logger.warning("Local play failed: %s", err)
            target = player.track_id
            predicted_position = player.position
            if position is None:
                # Resume rather than restart the loaded track
                track_id = None
        else:
            target = track_id
            predicted_position = position or 0.0
            try:
                player.load(track_id)
                player.seek(predicted_position)
                player.play()
            except PlayerError as err:
                logger.warning("Local load of %s failed: %s", track_id, err)

        predicted = self._predict(
            shadow, track_id=target, position=predicted_position, playing=True
        )
        token = self._suppressor.open(MessageType.PLAY, predicted, self._clock())
        self._send(
            Intent(IntentType.PLAY, track_id=track_id, position=position, token=token)
        )
        return True

    def pause(self) -> bool:
        """Pause locally and ask the coordinator to pause everyone."""
        shadow = self._current("pause")
        if shadow is None:
            return False
        try:
            self._player.pause()
        except PlayerError as err:
            logger.warning("Local pause failed: %s", err)
        predicted = self._predict(
            shadow, track_id=self._player.track_id, position=self._player.position, playing=False
        )
        token = self._suppressor.open(MessageType.PAUSE, predicted, self._clock())
        self._send(Intent(IntentType.PAUSE, token=token))
        return True

    def seek(self, position: float) -> bool:
        """Jump to position locally and ask the coordinator to follow."""
        shadow = self._current("seek")
        if shadow is None:
            return False
        target = clamp_position(position, shadow.duration)
        try:
            self._player.seek(target)
        except PlayerError as err:
            logger.warning("Local seek failed: %s", err)
        predicted = self._predict(
            shadow,
            track_id=self._player.track_id,
            position=target,
            playing=self._player.is_playing,
        )
        token = self._suppressor.open(MessageType.SEEK, predicted, self._clock())
        self._send(Intent(IntentType.SEEK, position=target, token=token))
        return True

    def next_track(self) -> bool:
        if self._current("next") is None:
            return False
        self._send(Intent(IntentType.NEXT))
        return True

    def previous_track(self) -> bool:
        if self._current("previous") is None:
            return False
        self._send(Intent(IntentType.PREVIOUS))
        return True

    def track_ended(self, track_id: str) -> None:
        """Report that the local player ran out of track_id."""
        self._send(Intent(IntentType.TRACK_ENDED, track_id=track_id))

    def report_duration(self, track_id: str, duration: float) -> None:
        """Report the duration learned by the local player."""
        self._send(Intent(IntentType.REPORT_DURATION, track_id=track_id, duration=duration))
