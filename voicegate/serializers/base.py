"""Base serializer interface for voicegate.

Every audio source implements this interface. Serializers are pure
message translators with no I/O - they convert between a source's wire
format and voicegate's inbound event model.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any

from voicegate.core.events import AnyEvent, AudioSource


class BaseSerializer(ABC):
    """Abstract base class for bridge source serializers.

    Key principles:
    - Serializers do NO I/O (no network calls, no file access)
    - Per-stream state is limited to the identifiers the source assigns
    - Malformed input raises; the connection logs and skips the message
    """

    @abstractmethod
    async def deserialize(self, raw: bytes | str | dict) -> list[AnyEvent]:
        """Parse one raw socket message into inbound events.

        Args:
            raw: bytes (binary frame), str (JSON text) or an already-parsed dict.

        Returns:
            List of events. Empty list if the message should be ignored.

        Raises:
            ValueError: If the message cannot be parsed.
        """
        ...

    @abstractmethod
    def serialize(self, message: dict[str, Any]) -> str | bytes | None:
        """Encode an outbound message for this source's socket.

        Returns None when the source takes no in-band messages.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def source(self) -> AudioSource:
        ...

    @staticmethod
    def _parse_message(raw: bytes | str | dict) -> dict[str, Any]:
        """Normalise a JSON frame into a dict."""
        if isinstance(raw, dict):
            return raw
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        msg = json.loads(raw)
        if not isinstance(msg, dict):
            raise ValueError(f"Expected a JSON object, got {type(msg).__name__}")
        return msg
