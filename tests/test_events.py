"""Tests for inbound messages and outbound events."""

import base64
import json

import pytest
from pydantic import ValidationError

from voxline.core.events import (
    EVENT_TYPE_MAP,
    INBOUND_TYPE_MAP,
    Audio,
    AudioChunk,
    Complete,
    ConfigUpdate,
    ErrorEvent,
    EventType,
    InboundType,
    Interrupt,
    SessionEnd,
    StageTimings,
    Transcript,
    parse_inbound,
)
from voxline.errors import ErrorKind


# =========================================================================
# Inbound
# =========================================================================


class TestParseInbound:
    """Transport payloads are validated into tagged variants."""

    def test_audio_chunk_base64(self):
        raw = b"\x00\x01\x02\x03"
        msg = parse_inbound(
            {"type": "audio_chunk", "session_id": "s1", "data": base64.b64encode(raw).decode()}
        )
        assert isinstance(msg, AudioChunk)
        assert msg.data == raw
        assert msg.timestamp > 0

    def test_audio_chunk_bytes(self):
        msg = AudioChunk(session_id="s1", data=b"\x01\x02")
        assert msg.data == b"\x01\x02"

    def test_config_update(self):
        msg = parse_inbound(
            {"type": "config_update", "session_id": "s1", "fields": {"ttsVoice": "echo"}}
        )
        assert isinstance(msg, ConfigUpdate)
        assert msg.fields == {"ttsVoice": "echo"}

    @pytest.mark.parametrize(
        "type_, cls",
        [("interrupt", Interrupt), ("session_end", SessionEnd)],
    )
    def test_control_messages(self, type_, cls):
        assert isinstance(parse_inbound({"type": type_, "session_id": "s1"}), cls)

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown inbound message type"):
            parse_inbound({"type": "dance", "session_id": "s1"})

    def test_missing_type(self):
        with pytest.raises(ValueError):
            parse_inbound({"session_id": "s1"})

    def test_empty_session_id(self):
        with pytest.raises(ValidationError):
            parse_inbound({"type": "interrupt", "session_id": ""})

    def test_invalid_base64(self):
        with pytest.raises(ValidationError):
            parse_inbound({"type": "audio_chunk", "session_id": "s1", "data": "not base64!"})

    def test_map_complete(self):
        assert set(INBOUND_TYPE_MAP) == set(InboundType)


# =========================================================================
# Outbound
# =========================================================================


class TestEvents:
    """Outbound events serialize to JSON-safe dicts."""

    def test_transcript_wire(self):
        wire = Transcript(session_id="s1", text="Hi", elapsed_ms=12.5).to_wire()
        assert wire["event_type"] == "transcript"
        assert wire["session_id"] == "s1"
        assert wire["text"] == "Hi"
        json.dumps(wire)

    def test_audio_is_base64(self):
        wire = Audio(audio=b"\xff\xfb\x90", source_text="Hi.", sequence=1).to_wire()
        assert base64.b64decode(wire["audio"]) == b"\xff\xfb\x90"
        assert wire["sequence"] == 1

    def test_audio_uses_standard_alphabet(self):
        wire = Audio(audio=b"\xfb\xff\xbf").to_wire()
        assert wire["audio"] == "+/+/"
        # what goes out can come back in as an audio chunk
        chunk = parse_inbound({"type": "audio_chunk", "session_id": "s1", "data": wire["audio"]})
        assert chunk.data == b"\xfb\xff\xbf"

    def test_error_kind_serialized_as_string(self):
        wire = ErrorEvent(kind=ErrorKind.NO_SPEECH, message="No speech").to_wire()
        assert wire["kind"] == "no_speech"

    def test_complete_timings(self):
        wire = Complete(timings=StageTimings(transcription_ms=100, total_ms=900)).to_wire()
        assert wire["timings"]["transcription_ms"] == 100
        assert wire["timings"]["first_audio_ms"] is None

    def test_map_complete(self):
        assert set(EVENT_TYPE_MAP) == set(EventType)
        for event_type, cls in EVENT_TYPE_MAP.items():
            assert cls().event_type is event_type
