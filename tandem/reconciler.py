"""Client-side reconciliation of coordinator snapshots against the local player.

The reconciler only ever applies state. It has no way to send intents,
which is what keeps a broadcast from turning into another request.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from enum import Enum, auto

from tandem.player import MediaPlayer, PlayerError
from tandem.protocol import StateMessage
from tandem.state import PlaybackState, position_at
from tandem.suppressor import DEFAULT_EPSILON, LoopbackSuppressor

logger = logging.getLogger(__name__)

# Listener receives the applied event ("track", "play" or "pause") and the snapshot
ReconcilerListener = Callable[[str, PlaybackState], None]


class SyncState(Enum):
    """Reconciler state machine."""

    INITIALIZING = auto()
    """No snapshot received yet, local controls are disabled."""

    SYNCED = auto()
    """Local player agrees with the last adopted snapshot."""

    CORRECTING = auto()
    """A hard seek towards the coordinator position is in progress."""


class Reconciler:
    """Per-connection shadow of the coordinator state."""

    def __init__(
        self,
        player: MediaPlayer,
        *,
        suppressor: LoopbackSuppressor | None = None,
        epsilon: float = DEFAULT_EPSILON,
    ) -> None:
        """Initialize the reconciler.

        Args:
            player: Local playback engine to drive.
            suppressor: Pending local actions, consulted before correcting.
            epsilon: Drift in seconds tolerated before a hard seek.
        """
        self._player = player
        self._suppressor = suppressor
        self._epsilon = epsilon
        self._listeners: list[ReconcilerListener] = []
        self._failed_track_id: str | None = None
        self.state = SyncState.INITIALIZING
        self.revision = -1
        self.snapshot: PlaybackState | None = None

    @property
    def ready(self) -> bool:
        return self.state is not SyncState.INITIALIZING

    @property
    def local_track_id(self) -> str | None:
        return self._player.track_id

    def add_listener(self, listener: ReconcilerListener) -> Callable[[], None]:
        """Register a listener for applied changes and return its remover."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, event: str, snapshot: PlaybackState) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                logger.exception("Reconciler listener failed for %s", event)

    def apply(self, message: StateMessage, received_at: float) -> bool:
        """Reconcile the local player against a received snapshot.

        Args:
            message: Snapshot message from the coordinator.
            received_at: Local wall-clock time the message was received.

        Returns:
            False if the snapshot was stale and dropped, True otherwise.
        """
        snapshot = message.state
        if snapshot.revision < self.revision:
            logger.debug(
                "Dropping stale %s (revision %d < %d)",
                message.type.value,
                snapshot.revision,
                self.revision,
            )
            return False

        self.revision = snapshot.revision
        self.snapshot = snapshot
        if self.state is SyncState.INITIALIZING:
            logger.info("Synchronized at revision %d", snapshot.revision)
            self.state = SyncState.SYNCED

        if self._suppressor is not None and self._suppressor.is_loopback(message, received_at):
            logger.debug("Adopted echo of local %s", message.type.value)
            return True

        try:
            if snapshot.track_id != self._player.track_id:
                self._apply_track_change(snapshot, received_at)
            else:
                self._apply_same_track(snapshot, received_at)
        except PlayerError as err:
            self._handle_player_failure(snapshot, err)
        return True

    def _apply_track_change(self, snapshot: PlaybackState, received_at: float) -> None:
        player = self._player
        if snapshot.track_id is None:
            player.unload()
            self._notify("track", snapshot)
            return
        if snapshot.track_id == self._failed_track_id:
            # Already failed locally, wait for a different track
            return

        player.load(snapshot.track_id)
        self._failed_track_id = None
        player.seek(position_at(snapshot, received_at))
        if snapshot.is_playing:
            player.play()
        else:
            player.pause()
        self._notify("track", snapshot)
        self._notify("play" if snapshot.is_playing else "pause", snapshot)

    def _apply_same_track(self, snapshot: PlaybackState, received_at: float) -> None:
        player = self._player
        if snapshot.track_id is None or snapshot.track_id == self._failed_track_id:
            return

        server_pos = position_at(snapshot, received_at)
        drift = server_pos - player.position
        if abs(drift) > self._epsilon:
            logger.debug("Correcting drift of %.3fs", drift)
            self.state = SyncState.CORRECTING
            player.seek(server_pos)
            self.state = SyncState.SYNCED

        if snapshot.is_playing != player.is_playing:
            if snapshot.is_playing:
                player.play()
            else:
                player.pause()
            self._notify("play" if snapshot.is_playing else "pause", snapshot)

    def _handle_player_failure(self, snapshot: PlaybackState, err: PlayerError) -> None:
        logger.warning("Local playback failed for %s: %s", snapshot.track_id, err)
        self._failed_track_id = snapshot.track_id
        with contextlib.suppress(PlayerError):
            self._player.pause()
        self.state = SyncState.SYNCED
        self._notify("pause", snapshot)
