"""Message vocabulary exchanged between the coordinator and its clients.

Every frame is a JSON text message of the form
``{"type": <kind>, "payload": {...}}``. Broadcasts always carry the full
playback state so any of them can be applied as a snapshot.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from tandem.state import PlaybackState


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded or carries an invalid intent."""


class MessageType(str, Enum):
    """Coordinator to client message kinds."""

    SNAPSHOT = "snapshot"
    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    HEARTBEAT = "heartbeat"


class IntentType(str, Enum):
    """Client to coordinator request kinds."""

    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    NEXT = "next"
    PREVIOUS = "previous"
    TRACK_ENDED = "trackEnded"
    REPORT_DURATION = "reportDuration"


@dataclass(slots=True)
class StateMessage:
    """A snapshot broadcast (or unicast) by the coordinator.

    Attributes:
        type: Message kind.
        state: Playback state carried by the message.
        origin: Token of the intent that caused this broadcast, if any.
    """

    type: MessageType
    state: PlaybackState
    origin: str | None = None

    def encode(self) -> str:
        payload = self.state.to_payload()
        if self.origin is not None:
            payload["origin"] = self.origin
        return json.dumps({"type": self.type.value, "payload": payload})


@dataclass(slots=True)
class Intent:
    """A client-originated request to change playback state.

    Attributes:
        type: Intent kind.
        track_id: Target track for play, ending track for trackEnded,
            reported track for reportDuration.
        position: Target position in seconds for play and seek.
        duration: Reported duration in seconds for reportDuration.
        token: Locally generated tag echoed back as the broadcast origin.
    """

    type: IntentType
    track_id: str | None = None
    position: float | None = None
    duration: float | None = None
    token: str | None = None

    def encode(self) -> str:
        payload: dict[str, Any] = {}
        if self.track_id is not None:
            payload["trackId"] = self.track_id
        if self.position is not None:
            payload["position"] = self.position
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.token is not None:
            payload["token"] = self.token
        return json.dumps({"type": self.type.value, "payload": payload})


def _load_envelope(raw: str) -> tuple[str, dict[str, Any]]:
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as err:
        raise ProtocolError(f"Invalid JSON frame: {err}") from err
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        raise ProtocolError("Frame is missing a message type")
    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError("Frame payload must be an object")
    return data["type"], payload


def _optional_float(payload: dict[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ProtocolError(f"{key} must be a number")
    if not math.isfinite(value):
        raise ProtocolError(f"{key} must be finite")
    return float(value)


def _optional_str(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"{key} must be a string")
    return value


def decode_state_message(raw: str) -> StateMessage:
    """Decode a coordinator frame into a StateMessage."""
    kind, payload = _load_envelope(raw)
    try:
        msg_type = MessageType(kind)
    except ValueError as err:
        raise ProtocolError(f"Unknown message type: {kind}") from err
    try:
        state = PlaybackState.from_payload(payload)
    except (KeyError, TypeError, ValueError) as err:
        raise ProtocolError(f"Invalid {kind} payload: {err}") from err
    return StateMessage(type=msg_type, state=state, origin=_optional_str(payload, "origin"))


def decode_intent(raw: str) -> Intent:
    """Decode a client frame into an Intent, validating required fields."""
    kind, payload = _load_envelope(raw)
    try:
        intent_type = IntentType(kind)
    except ValueError as err:
        raise ProtocolError(f"Unknown intent type: {kind}") from err

    intent = Intent(
        type=intent_type,
        track_id=_optional_str(payload, "trackId"),
        position=_optional_float(payload, "position"),
        duration=_optional_float(payload, "duration"),
        token=_optional_str(payload, "token"),
    )

    if intent_type is IntentType.SEEK and intent.position is None:
        raise ProtocolError("seek requires a position")
    if intent_type is IntentType.REPORT_DURATION:
        if intent.track_id is None or intent.duration is None:
            raise ProtocolError("reportDuration requires trackId and duration")
        if intent.duration <= 0:
            raise ProtocolError("duration must be positive")
    return intent
