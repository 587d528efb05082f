"""Deepgram streaming Speech-to-Text provider.

One live session is opened per bridged leg, configured for that leg's audio:
mu-law at 8 kHz for telephony media streams, linear16 (16 kHz by default)
for browser sockets. Audio is forwarded untouched; Deepgram decodes both.

Browser legs can go quiet for long stretches (the user is listening to a
reply), so a KeepAlive message is sent while no audio flows. Deepgram drops
idle sessions after roughly ten seconds otherwise.

API key: https://console.deepgram.com/
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator
from urllib.parse import urlencode

import websockets
from loguru import logger

from voicegate.providers.base import BaseSTT, STTResult

_ENCODING_ALIASES = {"pcm16": "linear16", "ulaw": "mulaw", "mu-law": "mulaw"}


class DeepgramSTT(BaseSTT):
    """Deepgram live transcription session.

    Args:
        api_key: Deepgram API key.
        model: Deepgram model (default: "nova-2").
        language: Language code (default: "en-US").
        sample_rate_hz: Input audio sample rate (default: 16000).
        encoding: "linear16"/"pcm16" or "mulaw".
        interim_results: Ask for partial results (default: True).
        smart_format: Enable smart formatting (default: False).
        punctuate: Enable punctuation (default: False).
        keepalive_seconds: Idle interval before a KeepAlive is sent; 0 disables.
        extra_params: Additional Deepgram query parameters.
    """

    LISTEN_URL = "wss://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str = "",
        model: str = "nova-2",
        language: str = "en-US",
        sample_rate_hz: int = 16000,
        encoding: str = "linear16",
        interim_results: bool = True,
        smart_format: bool = False,
        punctuate: bool = False,
        keepalive_seconds: float = 5.0,
        extra_params: dict[str, Any] | None = None,
    ):
        if not api_key:
            raise ValueError("DeepgramSTT requires an api_key (DEEPGRAM_API_KEY)")

        self._api_key = api_key
        self._options: dict[str, str] = {
            "model": model,
            "language": language,
            "sample_rate": str(sample_rate_hz),
            "encoding": _ENCODING_ALIASES.get(encoding, encoding),
            "channels": "1",
            "interim_results": str(interim_results).lower(),
            "smart_format": str(smart_format).lower(),
            "punctuate": str(punctuate).lower(),
        }
        self._options.update({k: str(v) for k, v in (extra_params or {}).items()})
        self._keepalive_seconds = keepalive_seconds

        self._ws: Any | None = None
        self._queue: asyncio.Queue[STTResult | None] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []
        self._open = False
        self._finished = False
        self._last_audio = 0.0
        self._bytes_sent = 0

    @property
    def sample_rate(self) -> int:
        return int(self._options["sample_rate"])

    @property
    def encoding(self) -> str:
        return self._options["encoding"]

    @property
    def listen_url(self) -> str:
        return f"{self.LISTEN_URL}?{urlencode(self._options)}"

    async def connect(self) -> None:
        logger.info(
            f"Opening Deepgram session (model={self._options['model']}, "
            f"encoding={self.encoding}, rate={self.sample_rate})"
        )
        self._ws = await websockets.connect(
            self.listen_url,
            additional_headers={"Authorization": f"Token {self._api_key}"},
            ping_interval=5,
            ping_timeout=20,
        )
        self._open = True
        self._last_audio = time.monotonic()
        self._tasks.append(asyncio.create_task(self._read_messages()))
        if self._keepalive_seconds > 0:
            self._tasks.append(asyncio.create_task(self._keepalive()))

    async def send_audio(self, audio: bytes) -> None:
        if not self._open or self._ws is None:
            return
        try:
            await self._ws.send(audio)
        except Exception as e:
            logger.error(f"Deepgram send failed after {self._bytes_sent} bytes: {e}")
            self._open = False
            return
        self._bytes_sent += len(audio)
        self._last_audio = time.monotonic()

    async def results(self) -> AsyncIterator[STTResult]:
        while True:
            result = await self._queue.get()
            if result is None:
                return
            yield result

    async def close(self) -> None:
        """Flush and close the session; ``results()`` ends afterwards."""
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                if self._open:
                    await ws.send(json.dumps({"type": "CloseStream"}))
                await ws.close()
            except Exception as e:
                logger.debug(f"Deepgram close: {e}")
        self._open = False

        for task in self._tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        self._finish()
        logger.info(f"Deepgram session closed ({self._bytes_sent} bytes sent)")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(None)

    async def _read_messages(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, str):
                    self._on_message(json.loads(message))
        except asyncio.CancelledError:
            pass
        except Exception as e:
            if self._open:
                logger.error(f"Deepgram receive error: {e}")
        finally:
            self._open = False
            self._finish()

    def _on_message(self, data: dict) -> None:
        kind = data.get("type", "")
        if kind == "Results":
            result = self._parse_result(data)
            if result is not None:
                self._queue.put_nowait(result)
        elif kind == "Error":
            logger.error(f"Deepgram error: {data}")
        else:
            logger.debug(f"Deepgram {kind or 'message'}: {data}")

    async def _keepalive(self) -> None:
        message = json.dumps({"type": "KeepAlive"})
        while self._open:
            await asyncio.sleep(self._keepalive_seconds)
            if not self._open or self._ws is None:
                return
            if time.monotonic() - self._last_audio < self._keepalive_seconds:
                continue
            try:
                await self._ws.send(message)
            except Exception as e:
                logger.debug(f"Deepgram keepalive failed: {e}")
                return

    @staticmethod
    def _parse_result(data: dict) -> STTResult | None:
        """Convert a Results message into an STTResult; blank transcripts are skipped."""
        alternatives = data.get("channel", {}).get("alternatives") or []
        if not alternatives:
            return None
        best = alternatives[0]
        text = (best.get("transcript") or "").strip()
        if not text:
            return None
        return STTResult(
            text=text,
            is_final=bool(data.get("is_final", False)),
            confidence=best.get("confidence", 0.0),
        )
