"""Unified event model for voicegate.

Both audio sources (telephony media streams and direct browser sockets)
are translated by their serializers into these canonical inbound events.
The second half of the module holds the lifecycle vocabulary shared by
the stores: call status values and the transcript events fanned out to
live observers.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


class AudioSource(str, Enum):
    """Where a bridged leg's audio comes from."""

    TELEPHONY = "telephony"
    BROWSER = "browser"


class AudioEncoding(str, Enum):
    MULAW = "mulaw"
    PCM16 = "pcm16"


class EventType(str, Enum):
    STREAM_STARTED = "stream_started"
    MEDIA = "media"
    STREAM_STOPPED = "stream_stopped"
    CUSTOM = "custom"


# ---------------------------------------------------------------------------
# Inbound bridge events
# ---------------------------------------------------------------------------

class Event(BaseModel):
    """Base event that all inbound bridge events inherit from."""

    event_type: EventType
    call_id: str = ""
    timestamp: float = Field(default_factory=time.time)


class StreamStarted(Event):
    """The start-of-stream control message: identifiers are now bound."""

    event_type: EventType = EventType.STREAM_STARTED
    stream_id: str = ""
    agent_id: str | None = None
    encoding: AudioEncoding = AudioEncoding.MULAW
    sample_rate: int = 8000
    custom_parameters: dict[str, Any] = Field(default_factory=dict)


class MediaChunk(Event):
    """A chunk of caller audio, already base64-decoded."""

    event_type: EventType = EventType.MEDIA
    encoding: AudioEncoding = AudioEncoding.MULAW
    sample_rate: int = 8000
    data: bytes = b""


class StreamStopped(Event):
    """The source ended the media stream."""

    event_type: EventType = EventType.STREAM_STOPPED
    reason: str = "normal"


class CustomEvent(Event):
    """Source messages with no canonical mapping (marks, keepalives, ...)."""

    event_type: EventType = EventType.CUSTOM
    custom_type: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)


AnyEvent = StreamStarted | MediaChunk | StreamStopped | CustomEvent


# ---------------------------------------------------------------------------
# Call lifecycle
# ---------------------------------------------------------------------------

class CallStatus(str, Enum):
    """Closed set of call lifecycle states.

    Provider-reported values outside the set map to ``UNKNOWN`` rather than
    being rejected, so a new status string never breaks the webhook path.
    """

    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | CallStatus | None) -> CallStatus:
        """Normalize a provider status string into a CallStatus."""
        if isinstance(value, CallStatus):
            return value
        if not value:
            return cls.UNKNOWN
        normalized = str(value).strip().lower().replace("_", "-")
        normalized = _STATUS_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position in the lifecycle; statuses only ever move forward."""
        return _STATUS_RANK[self]


_STATUS_ALIASES = {
    "answered": "in-progress",
    "inprogress": "in-progress",
    "queued": "initiated",
    "canceled": "failed",
    "cancelled": "failed",
    "noanswer": "no-answer",
}

TERMINAL_STATUSES = frozenset({
    CallStatus.COMPLETED,
    CallStatus.FAILED,
    CallStatus.BUSY,
    CallStatus.NO_ANSWER,
})

_STATUS_RANK = {
    CallStatus.UNKNOWN: 0,
    CallStatus.INITIATED: 1,
    CallStatus.RINGING: 2,
    CallStatus.IN_PROGRESS: 3,
    CallStatus.COMPLETED: 4,
    CallStatus.FAILED: 4,
    CallStatus.BUSY: 4,
    CallStatus.NO_ANSWER: 4,
}


# ---------------------------------------------------------------------------
# Transcript bus events
# ---------------------------------------------------------------------------

class TranscriptUpdate(BaseModel):
    """A line of conversation, spoken by the caller or the agent."""

    type: Literal["transcript"] = "transcript"
    role: Literal["user", "assistant"]
    text: str
    final: bool = True


class StatusUpdate(BaseModel):
    """The call's lifecycle status changed."""

    type: Literal["status"] = "status"
    status: str


class ChannelClosed(BaseModel):
    """No further events will be published for this call's stream."""

    type: Literal["close"] = "close"


TranscriptEvent = Union[TranscriptUpdate, StatusUpdate, ChannelClosed]
