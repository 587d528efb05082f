"""Utterance aggregation for a bridged leg.

Decides when the caller has finished a block of speech. Speech-recognition
fragments arrive marked interim or final:

- Any non-empty fragment replaces the pending text.
- A final fragment finalizes immediately and cancels the debounce timer.
- An interim fragment (re)starts the debounce timer; if nothing else
  arrives before it fires, the pending text is finalized.

Finalized text identical to the previous finalized text is dropped, which
absorbs a provider's late "final" for speech the timer already handled.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from loguru import logger

from voicegate.providers.base import STTResult

UtteranceCallback = Callable[[str], None]


class UtteranceAggregator:
    """Debounced interim/final transcript aggregator, one per connection.

    The aggregator never waits for the utterance callback's downstream
    work; the callback is expected to hand the text off and return.

    Args:
        on_utterance: Called with each finalized utterance.
        debounce_ms: Quiet period after an interim fragment (default: 400ms).
    """

    def __init__(self, on_utterance: UtteranceCallback, debounce_ms: float = 400.0) -> None:
        self._on_utterance = on_utterance
        self._debounce_seconds = debounce_ms / 1000.0
        self._pending = ""
        self._last_finalized = ""
        self._timer: asyncio.Task | None = None
        self._closed = False

    async def on_stt_result(self, result: STTResult) -> None:
        """Process one fragment from the STT session."""
        if self._closed:
            return

        text = (result.text or "").strip()

        if result.is_final:
            self._cancel_timer()
            if not text:
                self._pending = ""
                return
            self._pending = ""
            self._finalize(text)
            return

        if not text:
            return

        self._pending = text
        self._restart_timer()

    def close(self) -> None:
        """Stop accepting fragments and drop any pending timer."""
        self._closed = True
        self._cancel_timer()
        self._pending = ""

    @property
    def pending_text(self) -> str:
        return self._pending

    @property
    def last_finalized(self) -> str:
        return self._last_finalized

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _restart_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._debounce())

    def _cancel_timer(self) -> None:
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _debounce(self) -> None:
        try:
            await asyncio.sleep(self._debounce_seconds)
        except asyncio.CancelledError:
            return
        self._timer = None
        if self._closed:
            return
        text = self._pending
        self._pending = ""
        self._finalize(text)

    def _finalize(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        if text == self._last_finalized:
            logger.debug(f"Duplicate utterance suppressed: '{text[:80]}'")
            return

        self._last_finalized = text
        logger.info(f"Utterance finalized: '{text[:80]}{'...' if len(text) > 80 else ''}'")
        try:
            self._on_utterance(text)
        except Exception as e:
            logger.error(f"Utterance handler error: {e}")
