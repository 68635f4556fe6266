"""Authoritative playback coordinator.

The coordinator owns the single PlaybackState of the process. Intents are
applied one at a time on the event loop, in arrival order, and every
successful mutation is broadcast to all listeners without regard to which
client asked for it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import replace

from tandem.catalog import TrackCatalog
from tandem.protocol import Intent, IntentType, MessageType, StateMessage
from tandem.state import PlaybackState, clamp_position, position_at

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 1.0

# A trackEnded report further than this from the known end is stale
TRACK_END_TOLERANCE = 2.0

BroadcastListener = Callable[[StateMessage], None]


class Coordinator:
    """Single writer of the playback state."""

    def __init__(
        self,
        catalog: TrackCatalog,
        *,
        clock: Callable[[], float] = time.time,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        """Initialize the coordinator.

        Args:
            catalog: Track catalog used to validate and resolve tracks.
            clock: Wall-clock source returning epoch seconds.
            heartbeat_interval: Seconds between heartbeat broadcasts.
        """
        self._catalog = catalog
        self._clock = clock
        self.heartbeat_interval = heartbeat_interval
        self._state = PlaybackState(anchor_timestamp=clock())
        self._listeners: list[BroadcastListener] = []

    @property
    def state(self) -> PlaybackState:
        """Current raw state (anchor as last recorded)."""
        return self._state

    @property
    def catalog(self) -> TrackCatalog:
        return self._catalog

    def snapshot(self) -> StateMessage:
        """Build the evaluated snapshot sent to a newly connected client."""
        return StateMessage(MessageType.SNAPSHOT, self._state.evaluated(self._clock()))

    def add_broadcast_listener(self, listener: BroadcastListener) -> Callable[[], None]:
        """Register a listener for every broadcast.

        Returns:
            Function removing the listener again.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _broadcast(self, message: StateMessage) -> None:
        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception:
                logger.exception("Broadcast listener failed")

    def _commit(self, msg_type: MessageType, state: PlaybackState, origin: str | None) -> None:
        self._state = state
        logger.debug(
            "%s -> track=%s pos=%.3f playing=%s rev=%d",
            msg_type.value,
            state.track_id,
            state.anchor_position,
            state.is_playing,
            state.revision,
        )
        self._broadcast(StateMessage(msg_type, state, origin))

    def handle_intent(self, intent: Intent) -> bool:
        """Apply a decoded client intent.

        Returns:
            True if the state changed (or the duration was recorded).
        """
        kind = intent.type
        if kind is IntentType.PLAY:
            return self.play(intent.track_id, intent.position, origin=intent.token)
        if kind is IntentType.PAUSE:
            return self.pause(origin=intent.token)
        if kind is IntentType.SEEK:
            if intent.position is None:
                logger.warning("Rejected seek without a position")
                return False
            return self.seek(intent.position, origin=intent.token)
        if kind is IntentType.NEXT:
            return self.next_track(origin=intent.token)
        if kind is IntentType.PREVIOUS:
            return self.previous_track(origin=intent.token)
        if kind is IntentType.TRACK_ENDED:
            return self.track_ended(intent.track_id, origin=intent.token)
        if kind is IntentType.REPORT_DURATION:
            if intent.track_id is None or intent.duration is None:
                logger.warning("Rejected duration report without track or duration")
                return False
            return self.report_duration(intent.track_id, intent.duration)
        logger.warning("Unhandled intent type: %s", kind)
        return False

    def play(
        self,
        track_id: str | None = None,
        at_position: float | None = None,
        *,
        origin: str | None = None,
    ) -> bool:
        """Start playback of track_id at at_position.

        Without a track_id the current track is resumed, from its evaluated
        position unless at_position is given.
        """
        now = self._clock()
        current = self._state

        if track_id is None:
            if current.track_id is None:
                logger.warning("Rejected play: no track selected")
                return False
            track_id = current.track_id
            if at_position is None:
                at_position = position_at(current, now)

        track = self._catalog.get(track_id)
        if track is None:
            logger.warning("Rejected play: unknown track %r", track_id)
            return False

        if track_id == current.track_id:
            duration = current.duration if current.duration is not None else track.duration
        else:
            duration = track.duration

        self._commit(
            MessageType.PLAY,
            replace(
                current,
                track_id=track_id,
                anchor_position=clamp_position(at_position or 0.0, duration),
                anchor_timestamp=now,
                is_playing=True,
                revision=current.revision + 1,
                duration=duration,
            ),
            origin,
        )
        return True

    def pause(self, *, origin: str | None = None) -> bool:
        """Halt playback at the evaluated position."""
        now = self._clock()
        current = self._state
        self._commit(
            MessageType.PAUSE,
            replace(
                current,
                anchor_position=position_at(current, now),
                anchor_timestamp=now,
                is_playing=False,
                revision=current.revision + 1,
            ),
            origin,
        )
        return True

    def seek(self, target_position: float, *, origin: str | None = None) -> bool:
        """Jump to target_position, clamped to the known duration."""
        current = self._state
        if current.track_id is None:
            logger.warning("Rejected seek: no track selected")
            return False
        self._commit(
            MessageType.SEEK,
            replace(
                current,
                anchor_position=clamp_position(target_position, current.duration),
                anchor_timestamp=self._clock(),
                revision=current.revision + 1,
            ),
            origin,
        )
        return True

    def report_duration(self, track_id: str, duration: float) -> bool:
        """Record the duration of the loaded track; metadata only, no broadcast."""
        current = self._state
        if track_id != current.track_id:
            logger.debug(
                "Ignoring duration for %r, current track is %r", track_id, current.track_id
            )
            return False
        if duration <= 0:
            logger.warning("Ignoring non-positive duration %.3f for %r", duration, track_id)
            return False
        if current.duration != duration:
            self._state = replace(current, duration=duration)
            logger.debug("Duration of %r is %.3fs", track_id, duration)
        return True

    def next_track(self, *, origin: str | None = None) -> bool:
        """Play the track after the current one."""
        next_id = self._catalog.resolve_next(self._state.track_id)
        if next_id is None:
            logger.info("No next track after %r", self._state.track_id)
            return False
        return self.play(next_id, 0.0, origin=origin)

    def previous_track(self, *, origin: str | None = None) -> bool:
        """Play the track before the current one."""
        previous_id = self._catalog.resolve_previous(self._state.track_id)
        if previous_id is None:
            logger.info("No previous track before %r", self._state.track_id)
            return False
        return self.play(previous_id, 0.0, origin=origin)

    def track_ended(self, track_id: str | None = None, *, origin: str | None = None) -> bool:
        """Advance after the current track finished playing.

        Every client reports the end of the same track, so reports naming a
        different track, or arriving well before the known end, are ignored.
        When the queue has no next track, playback pauses where it ended.
        """
        current = self._state
        if current.track_id is None:
            return False
        if track_id is not None and track_id != current.track_id:
            logger.debug("Ignoring end of %r, current track is %r", track_id, current.track_id)
            return False

        now = self._clock()
        if (
            current.duration is not None
            and position_at(current, now) < current.duration - TRACK_END_TOLERANCE
        ):
            logger.debug("Ignoring early end report for %r", current.track_id)
            return False

        next_id = self._catalog.resolve_next(current.track_id)
        if next_id is not None:
            return self.play(next_id, 0.0, origin=origin)

        logger.info("Reached end of queue after %r", current.track_id)
        if not current.is_playing:
            return False
        return self.pause(origin=origin)

    def heartbeat(self) -> StateMessage:
        """Broadcast the evaluated snapshot to every listener."""
        message = StateMessage(MessageType.HEARTBEAT, self._state.evaluated(self._clock()))
        self._broadcast(message)
        return message

    async def run_heartbeat(self) -> None:
        """Emit heartbeats forever at the configured interval."""
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            self.heartbeat()
