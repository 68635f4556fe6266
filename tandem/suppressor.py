"""Loopback suppression for locally issued intents.

When a client acts locally it applies the action to its own player right
away and records what the coordinator's answer should look like. The
answer comes back as a broadcast like any other; if it carries this
client's token (or, untagged, arrives within the window) and agrees with
the prediction, it is adopted without touching the player again.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from tandem.protocol import MessageType, StateMessage
from tandem.state import PlaybackState, position_at

logger = logging.getLogger(__name__)

DEFAULT_SUPPRESS_WINDOW = 0.5
DEFAULT_EPSILON = 0.3


@dataclass(slots=True)
class SuppressionWindow:
    """Pending local action awaiting its echo."""

    kind: MessageType
    token: str
    expires_at: float
    predicted: PlaybackState


class LoopbackSuppressor:
    """Tracks the latest pending local action per intent kind."""

    def __init__(
        self,
        *,
        window: float = DEFAULT_SUPPRESS_WINDOW,
        epsilon: float = DEFAULT_EPSILON,
    ) -> None:
        """Initialize the suppressor.

        Args:
            window: Seconds an untagged echo is still attributed to a local action.
            epsilon: Position tolerance in seconds when comparing to the prediction.
        """
        self._window = window
        self._epsilon = epsilon
        self._windows: dict[MessageType, SuppressionWindow] = {}

    def open(self, kind: MessageType, predicted: PlaybackState, now: float) -> str:
        """Open a window for kind, superseding any earlier one of the same kind.

        Returns:
            Token to attach to the outgoing intent.
        """
        token = uuid.uuid4().hex
        self._windows[kind] = SuppressionWindow(kind, token, now + self._window, predicted)
        return token

    def pending(self, kind: MessageType) -> SuppressionWindow | None:
        return self._windows.get(kind)

    def is_loopback(self, message: StateMessage, received_at: float) -> bool:
        """Return True if message is the consistent echo of a pending local action."""
        window = self._windows.get(message.type)
        if window is None:
            return False

        if message.origin is not None:
            if message.origin != window.token:
                return False
            # Tagged echo, the window is spent either way
            del self._windows[message.type]
        elif received_at > window.expires_at:
            del self._windows[message.type]
            return False

        consistent = self._consistent(window.predicted, message.state, received_at)
        if not consistent:
            logger.debug("Echo of local %s diverges from prediction", message.type.value)
        return consistent

    def _consistent(self, predicted: PlaybackState, state: PlaybackState, now: float) -> bool:
        if predicted.track_id != state.track_id or predicted.is_playing != state.is_playing:
            return False
        drift = abs(position_at(state, now) - position_at(predicted, now))
        return drift <= self._epsilon
