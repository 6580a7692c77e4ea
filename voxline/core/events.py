"""Event model for Voxline.

Two families live here:

- Inbound messages: tagged variants a transport hands to the core
  (``audio_chunk``, ``config_update``, ``interrupt``, ``clear_history``,
  ``session_end``). They are validated by ``parse_inbound`` before any
  session sees them.
- Outbound events: what a session emits back, in order, through its
  event stream (``transcript``, ``partial``, ``response``, ``audio``,
  ``complete``, ``error``, ``interrupted``).
"""

from __future__ import annotations

import base64
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_serializer, field_validator

from voxline.errors import ErrorKind


# ---------------------------------------------------------------------------
# Inbound (transport -> core)
# ---------------------------------------------------------------------------

class InboundType(str, Enum):
    AUDIO_CHUNK = "audio_chunk"
    CONFIG_UPDATE = "config_update"
    INTERRUPT = "interrupt"
    CLEAR_HISTORY = "clear_history"
    SESSION_END = "session_end"


class InboundMessage(BaseModel):
    """Base class for messages entering the core."""

    type: InboundType
    session_id: str = Field(min_length=1)


class AudioChunk(InboundMessage):
    """Binary audio: an encoded container or raw PCM16 mono."""

    type: InboundType = InboundType.AUDIO_CHUNK
    data: bytes = b""
    timestamp: float = Field(default_factory=time.time)

    @field_validator("data", mode="before")
    @classmethod
    def _decode_base64(cls, value: Any) -> Any:
        # JSON transports carry audio as base64 text
        if isinstance(value, str):
            return base64.b64decode(value, validate=True)
        return value


class ConfigUpdate(InboundMessage):
    """A partial ProviderConfig. Unknown fields are dropped later, not here."""

    type: InboundType = InboundType.CONFIG_UPDATE
    fields: dict[str, Any] = Field(default_factory=dict)


class Interrupt(InboundMessage):
    type: InboundType = InboundType.INTERRUPT


class ClearHistory(InboundMessage):
    type: InboundType = InboundType.CLEAR_HISTORY


class SessionEnd(InboundMessage):
    type: InboundType = InboundType.SESSION_END


INBOUND_TYPE_MAP: dict[InboundType, type[InboundMessage]] = {
    InboundType.AUDIO_CHUNK: AudioChunk,
    InboundType.CONFIG_UPDATE: ConfigUpdate,
    InboundType.INTERRUPT: Interrupt,
    InboundType.CLEAR_HISTORY: ClearHistory,
    InboundType.SESSION_END: SessionEnd,
}


def parse_inbound(data: dict[str, Any]) -> InboundMessage:
    """Validate a raw transport payload into its tagged variant.

    Raises:
        ValueError: If the ``type`` tag is missing or unknown.
        pydantic.ValidationError: If the payload does not fit its variant.
    """
    raw_type = data.get("type")
    try:
        message_type = InboundType(raw_type)
    except ValueError:
        raise ValueError(f"Unknown inbound message type: {raw_type!r}") from None
    return INBOUND_TYPE_MAP[message_type].model_validate(data)


# ---------------------------------------------------------------------------
# Outbound (core -> transport)
# ---------------------------------------------------------------------------

class EventType(str, Enum):
    TRANSCRIPT = "transcript"
    PARTIAL = "partial"
    RESPONSE = "response"
    AUDIO = "audio"
    COMPLETE = "complete"
    ERROR = "error"
    INTERRUPTED = "interrupted"


class Event(BaseModel):
    """Base event that every outbound event inherits from."""

    event_type: EventType
    session_id: str = ""
    timestamp: float = Field(default_factory=time.time)

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe dict; bytes are base64-encoded."""
        return self.model_dump(mode="json")


class Transcript(Event):
    """The user's utterance as text."""

    event_type: EventType = EventType.TRANSCRIPT
    text: str = ""
    elapsed_ms: float = 0.0


class Partial(Event):
    """An incremental text fragment of the reply (streaming mode only)."""

    event_type: EventType = EventType.PARTIAL
    text: str = ""


class Response(Event):
    """The full assistant reply text."""

    event_type: EventType = EventType.RESPONSE
    text: str = ""
    elapsed_ms: float = 0.0


class Audio(Event):
    """Synthesized speech for one sentence of the reply."""

    event_type: EventType = EventType.AUDIO
    audio: bytes = b""
    source_text: str = ""
    sequence: int = 0

    @field_serializer("audio")
    def _encode_base64(self, value: bytes) -> str:
        return base64.b64encode(value).decode("ascii")


class StageTimings(BaseModel):
    """Per-stage wall-clock durations of one run, in milliseconds."""

    transcription_ms: float = 0.0
    generation_ms: float = 0.0
    synthesis_ms: float = 0.0
    first_audio_ms: float | None = None
    total_ms: float = 0.0


class Complete(Event):
    """The run finished and the reply is in history."""

    event_type: EventType = EventType.COMPLETE
    timings: StageTimings = Field(default_factory=StageTimings)


class ErrorEvent(Event):
    """A run-level failure or notice (including "no speech detected")."""

    event_type: EventType = EventType.ERROR
    kind: ErrorKind = ErrorKind.TRANSCRIPTION
    message: str = ""


class Interrupted(Event):
    """The active run was cancelled on request."""

    event_type: EventType = EventType.INTERRUPTED


AnyEvent = Transcript | Partial | Response | Audio | Complete | ErrorEvent | Interrupted

EVENT_TYPE_MAP: dict[EventType, type[Event]] = {
    EventType.TRANSCRIPT: Transcript,
    EventType.PARTIAL: Partial,
    EventType.RESPONSE: Response,
    EventType.AUDIO: Audio,
    EventType.COMPLETE: Complete,
    EventType.ERROR: ErrorEvent,
    EventType.INTERRUPTED: Interrupted,
}
