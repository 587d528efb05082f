"""ElevenLabs Text-to-Speech provider.

Synthesizes a whole reply over the REST API and returns MP3 bytes, which
the gateway parks in the audio blob store for the telephony provider to
fetch (or sends straight down a browser socket).

API key: https://elevenlabs.io/
"""

from __future__ import annotations

import time

import httpx
from loguru import logger

from voicegate.agents import VoiceSettings
from voicegate.providers.base import BaseTTS

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"  # Rachel

VOICE_ALIASES = {
    "default": DEFAULT_VOICE_ID,
    "rachel": DEFAULT_VOICE_ID,
    "adam": "pNInz6obpgDQGcFmaJgB",
    "emily": "LcfcDJNUP1GQjkzn1xUU",
    "daniel": "onwK4e9ZLuTAKqWW03F9",
    "bella": "EXAVITQu4vr4xnSDxMaL",
}


def resolve_voice_id(voice: str | None) -> str:
    """Map a friendly alias to an ElevenLabs voice id; ids pass through."""
    if not voice:
        return DEFAULT_VOICE_ID
    return VOICE_ALIASES.get(voice.strip().lower(), voice.strip())


class ElevenLabsTTS(BaseTTS):
    """ElevenLabs REST TTS.

    Args:
        api_key: ElevenLabs API key. Without one, synthesis returns b"".
        model_id: TTS model (default: "eleven_turbo_v2_5").
        timeout: HTTP timeout in seconds (default: 6.0).
        base_url: API base URL.
    """

    BASE_URL = "https://api.elevenlabs.io/v1"

    def __init__(
        self,
        api_key: str = "",
        model_id: str = "eleven_turbo_v2_5",
        timeout: float = 6.0,
        base_url: str = BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._model_id = model_id
        self._timeout = timeout
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def synthesize(self, text: str, voice: VoiceSettings | None = None) -> bytes:
        """Return MP3 bytes for ``text``, or b"" on any failure."""
        if not text.strip():
            return b""
        if not self._api_key:
            logger.warning("ElevenLabs API key not configured, skipping synthesis")
            return b""

        voice = voice or VoiceSettings()
        voice_id = resolve_voice_id(voice.voice_id)
        payload = {
            "text": text,
            "model_id": self._model_id,
            "voice_settings": {
                "stability": voice.stability,
                "similarity_boost": voice.similarity_boost,
                "style": 0.0,
                "use_speaker_boost": True,
            },
        }
        headers = {
            "xi-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        start = time.time()
        try:
            client = self._get_client()
            resp = await client.post(
                f"{self._base_url}/text-to-speech/{voice_id}",
                json=payload,
                headers=headers,
            )
            resp.raise_for_status()
            audio_data = resp.content
        except Exception as e:
            logger.error(f"TTS ElevenLabs error: {e}")
            return b""

        latency_ms = int((time.time() - start) * 1000)
        logger.info(
            f"TTS ElevenLabs: {len(text)} chars → {len(audio_data)} bytes, "
            f"voice={voice_id[:8]}..., latency={latency_ms}ms"
        )
        return audio_data

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client
