"""Tests for the voicegate event model."""

import pytest

from voicegate.core.events import (
    AudioEncoding,
    CallStatus,
    ChannelClosed,
    EventType,
    MediaChunk,
    StatusUpdate,
    StreamStarted,
    StreamStopped,
    TERMINAL_STATUSES,
    TranscriptUpdate,
)


class TestInboundEvents:

    def test_stream_started_defaults(self):
        event = StreamStarted(call_id="CA1", stream_id="MZ1")
        assert event.event_type == EventType.STREAM_STARTED
        assert event.encoding == AudioEncoding.MULAW
        assert event.sample_rate == 8000
        assert event.agent_id is None
        assert event.timestamp > 0

    def test_media_chunk_carries_bytes(self):
        event = MediaChunk(call_id="CA1", data=b"\xff\x7f")
        assert event.event_type == EventType.MEDIA
        assert event.data == b"\xff\x7f"

    def test_stream_stopped(self):
        assert StreamStopped(call_id="CA1").reason == "normal"


class TestCallStatus:

    @pytest.mark.parametrize("raw,expected", [
        ("initiated", CallStatus.INITIATED),
        ("queued", CallStatus.INITIATED),
        ("ringing", CallStatus.RINGING),
        ("in-progress", CallStatus.IN_PROGRESS),
        ("in_progress", CallStatus.IN_PROGRESS),
        ("answered", CallStatus.IN_PROGRESS),
        ("Completed", CallStatus.COMPLETED),
        ("busy", CallStatus.BUSY),
        ("no-answer", CallStatus.NO_ANSWER),
        ("canceled", CallStatus.FAILED),
        ("teleported", CallStatus.UNKNOWN),
        ("", CallStatus.UNKNOWN),
        (None, CallStatus.UNKNOWN),
    ])
    def test_parse(self, raw, expected):
        assert CallStatus.parse(raw) == expected

    def test_parse_passes_enum_through(self):
        assert CallStatus.parse(CallStatus.RINGING) is CallStatus.RINGING

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {
            CallStatus.COMPLETED,
            CallStatus.FAILED,
            CallStatus.BUSY,
            CallStatus.NO_ANSWER,
        }
        assert not CallStatus.IN_PROGRESS.is_terminal
        assert CallStatus.BUSY.is_terminal

    def test_rank_orders_lifecycle(self):
        assert (
            CallStatus.UNKNOWN.rank
            < CallStatus.INITIATED.rank
            < CallStatus.RINGING.rank
            < CallStatus.IN_PROGRESS.rank
            < CallStatus.COMPLETED.rank
        )

    def test_string_value(self):
        assert CallStatus.IN_PROGRESS.value == "in-progress"
        assert CallStatus.IN_PROGRESS == "in-progress"


class TestTranscriptEvents:

    def test_transcript_update_serializes(self):
        event = TranscriptUpdate(role="assistant", text="Hello there")
        assert event.model_dump() == {
            "type": "transcript",
            "role": "assistant",
            "text": "Hello there",
            "final": True,
        }

    def test_status_and_close(self):
        assert StatusUpdate(status="ringing").model_dump() == {"type": "status", "status": "ringing"}
        assert ChannelClosed().model_dump() == {"type": "close"}
