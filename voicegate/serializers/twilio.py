"""Twilio Media Streams WebSocket serializer.

Twilio streams caller audio as base64-encoded mu-law at 8kHz inside JSON
messages. Replies are not sent in-band; they go through the REST API.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from voicegate.core.events import (
    AnyEvent,
    AudioEncoding,
    AudioSource,
    CustomEvent,
    MediaChunk,
    StreamStarted,
    StreamStopped,
)
from voicegate.serializers.base import BaseSerializer


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams WebSocket protocol.

    State kept across the lifetime of a single stream:
        stream_sid: The unique identifier for the media stream.
        call_sid:   The Twilio Call SID associated with this stream.
    """

    def __init__(self) -> None:
        self.stream_sid: str = ""
        self.call_sid: str = ""

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def source(self) -> AudioSource:
        return AudioSource.TELEPHONY

    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse a Twilio Media Streams message.

        Message types handled:
            * ``connected`` -- handshake acknowledgement (ignored).
            * ``start``     -- stream metadata; produces :class:`StreamStarted`.
            * ``media``     -- inbound audio; produces :class:`MediaChunk`.
            * ``stop``      -- stream ended; produces :class:`StreamStopped`.

        Anything else is surfaced as a :class:`CustomEvent`.
        """
        msg = self._parse_message(raw)
        event_type = msg.get("event", "")

        if event_type == "connected":
            return []
        if event_type == "start":
            return self._handle_start(msg)
        if event_type == "media":
            return self._handle_media(msg)
        if event_type == "stop":
            return self._handle_stop(msg)

        return [
            CustomEvent(
                call_id=self.call_sid,
                custom_type=f"twilio.{event_type}",
                payload=msg,
            )
        ]

    def serialize(self, message: dict[str, Any]) -> str | bytes | None:
        return None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle_start(self, msg: dict) -> list[AnyEvent]:
        start_data = msg.get("start", {})
        self.stream_sid = start_data.get("streamSid") or msg.get("streamSid", "")
        self.call_sid = start_data.get("callSid", "")
        if not self.call_sid:
            raise ValueError("Twilio start message has no callSid")

        custom_params = start_data.get("customParameters", {}) or {}
        media_format = start_data.get("mediaFormat", {}) or {}

        return [
            StreamStarted(
                call_id=self.call_sid,
                stream_id=self.stream_sid,
                agent_id=custom_params.get("agentId") or custom_params.get("agent_id"),
                encoding=AudioEncoding.MULAW,
                sample_rate=int(media_format.get("sampleRate", 8000)),
                custom_parameters=custom_params,
            )
        ]

    def _handle_media(self, msg: dict) -> list[AnyEvent]:
        media_data = msg.get("media", {})
        if media_data.get("track", "inbound") != "inbound":
            return []

        try:
            audio_bytes = base64.b64decode(media_data.get("payload", ""), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid Twilio media payload: {e}") from e

        if "streamSid" in msg:
            self.stream_sid = msg["streamSid"]

        return [
            MediaChunk(
                call_id=self.call_sid,
                encoding=AudioEncoding.MULAW,
                sample_rate=8000,
                data=audio_bytes,
            )
        ]

    def _handle_stop(self, msg: dict) -> list[AnyEvent]:
        if "streamSid" in msg:
            self.stream_sid = msg["streamSid"]
        stop_data = msg.get("stop", {}) or {}
        return [StreamStopped(call_id=stop_data.get("callSid") or self.call_sid)]
