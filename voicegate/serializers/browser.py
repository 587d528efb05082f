"""Browser WebSocket serializer.

A minimal protocol for talking to an agent straight from a web page:

    Binary messages                          -> MediaChunk (raw PCM16)
    {"type": "start", "agentId", "sampleRate"} -> StreamStarted
    {"type": "audio", "encoding": "pcm16",
     "sampleRate": 16000, "data": "<b64>"}   -> MediaChunk
    {"type": "stop"}                          -> StreamStopped

The first audio message implies a start when none was sent. Browser legs
have no telephony call id, so one is minted per socket (``web-<uuid>``).
Outgoing messages (transcripts, reply audio, reply text) are JSON.
"""

from __future__ import annotations

import base64
import binascii
import json
import uuid
from typing import Any

from voicegate.core.events import (
    AnyEvent,
    AudioEncoding,
    AudioSource,
    MediaChunk,
    StreamStarted,
    StreamStopped,
)
from voicegate.serializers.base import BaseSerializer

DEFAULT_BROWSER_RATE = 16000


class BrowserSerializer(BaseSerializer):
    """Serializer for direct browser audio sockets."""

    def __init__(self, agent_id: str | None = None, sample_rate: int = DEFAULT_BROWSER_RATE) -> None:
        self.call_id = f"web-{uuid.uuid4()}"
        self._agent_id = agent_id
        self._rate = sample_rate
        self._started = False

    @property
    def name(self) -> str:
        return "browser"

    @property
    def source(self) -> AudioSource:
        return AudioSource.BROWSER

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        if isinstance(raw, bytes):
            return self._implicit_start() + [self._chunk(raw)]

        msg = self._parse_message(raw)
        msg_type = msg.get("type", "")

        if msg_type == "start":
            if self._started:
                return []
            self._agent_id = msg.get("agentId") or self._agent_id
            self._rate = int(msg.get("sampleRate") or self._rate)
            return self._implicit_start()

        if msg_type == "audio":
            encoding = msg.get("encoding", "pcm16")
            if encoding != AudioEncoding.PCM16.value:
                raise ValueError(f"Unsupported browser audio encoding: {encoding}")
            if not self._started and msg.get("sampleRate"):
                self._rate = int(msg["sampleRate"])
            try:
                data = base64.b64decode(msg.get("data", ""), validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"Invalid browser audio payload: {e}") from e
            return self._implicit_start() + [self._chunk(data)]

        if msg_type == "stop":
            return [StreamStopped(call_id=self.call_id)]

        return []

    def serialize(self, message: dict[str, Any]) -> str | bytes | None:
        return json.dumps(message)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _implicit_start(self) -> list[AnyEvent]:
        if self._started:
            return []
        self._started = True
        return [
            StreamStarted(
                call_id=self.call_id,
                stream_id=self.call_id,
                agent_id=self._agent_id,
                encoding=AudioEncoding.PCM16,
                sample_rate=self._rate,
            )
        ]

    def _chunk(self, data: bytes) -> MediaChunk:
        return MediaChunk(
            call_id=self.call_id,
            encoding=AudioEncoding.PCM16,
            sample_rate=self._rate,
            data=data,
        )
