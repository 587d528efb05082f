"""Ephemeral store for synthesized audio served to the telephony provider.

Telephony playback instructions reference audio by URL, so each reply is
parked here under an opaque id until the provider fetches it. Blobs are
write-once and read a handful of times; the only removal path is the
store's own eviction (capacity first, then age).
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field

from loguru import logger


@dataclass
class AudioBlob:
    payload: bytes
    content_type: str = "audio/mpeg"
    created_at: float = field(default_factory=time.time)


class AudioBlobStore:
    """Bounded, insertion-ordered blob store.

    When an insert pushes the store above ``max_entries``, the oldest
    inserted blobs are evicted until ``low_watermark`` entries remain.
    Reads never refresh a blob's position.

    Args:
        max_entries: Size ceiling that triggers eviction.
        low_watermark: Size to evict down to (defaults to ``max_entries``).
        max_age_seconds: Blobs older than this are dropped; None disables.
    """

    def __init__(
        self,
        max_entries: int = 120,
        low_watermark: int | None = None,
        max_age_seconds: float | None = 600.0,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if low_watermark is None:
            low_watermark = max_entries
        if not 1 <= low_watermark <= max_entries:
            raise ValueError("low_watermark must be between 1 and max_entries")

        self._max_entries = max_entries
        self._low_watermark = low_watermark
        self._max_age_seconds = max_age_seconds
        self._blobs: OrderedDict[str, AudioBlob] = OrderedDict()
        self._lock = threading.Lock()

    def store(self, payload: bytes, content_type: str = "audio/mpeg") -> str:
        """Insert a blob and return its freshly generated id."""
        blob_id = f"aud_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._blobs[blob_id] = AudioBlob(payload=payload, content_type=content_type)
            self._evict_locked()
        logger.debug(f"Stored audio blob {blob_id} ({len(payload)} bytes)")
        return blob_id

    def get(self, blob_id: str) -> AudioBlob | None:
        with self._lock:
            blob = self._blobs.get(blob_id)
            if blob is not None and self._is_expired(blob, time.time()):
                del self._blobs[blob_id]
                return None
            return blob

    def clear(self) -> None:
        with self._lock:
            self._blobs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

    def __contains__(self, blob_id: object) -> bool:
        with self._lock:
            return blob_id in self._blobs

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _is_expired(self, blob: AudioBlob, now: float) -> bool:
        if self._max_age_seconds is None:
            return False
        return now - blob.created_at > self._max_age_seconds

    def _evict_locked(self) -> None:
        now = time.time()
        evicted = 0

        # Insertion order is creation order, so expired blobs sit at the front.
        while self._blobs:
            oldest = next(iter(self._blobs.values()))
            if not self._is_expired(oldest, now):
                break
            self._blobs.popitem(last=False)
            evicted += 1

        if len(self._blobs) > self._max_entries:
            while len(self._blobs) > self._low_watermark:
                self._blobs.popitem(last=False)
                evicted += 1

        if evicted:
            logger.debug(f"Evicted {evicted} audio blob(s); {len(self._blobs)} remain")
