"""Reply playback into a live call.

Telephony legs hear replies through the provider's call-control API: the
reply is synthesized, parked in the audio blob store, and the call is
redirected to play its URL and then reconnect the media stream. When any
step of that path is unavailable the provider's own speech synthesis
speaks the text instead. Browser legs get the audio and text pushed down
their socket.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from loguru import logger

from voicegate.agents import AgentProfile
from voicegate.core.events import AudioSource
from voicegate.providers.base import BaseTelephony, BaseTTS
from voicegate.stores.audio_blobs import AudioBlobStore
from voicegate.stores.call_registry import CallRegistry

SendJSON = Callable[[dict[str, Any]], Awaitable[None]]


class PlaybackResult(str, Enum):
    SKIPPED = "skipped"  # call not active
    AUDIO = "audio"  # synthesized audio played
    SPEECH = "speech"  # telephony-native speech fallback
    TEXT = "text"  # browser leg, text only
    FAILED = "failed"


@dataclass
class PlaybackTarget:
    """Where a reply should be played.

    Attributes:
        call_id: Registry key; playback only happens while it is in progress.
        agent: The agent whose voice settings and credentials apply.
        source: Telephony or browser leg.
        resume_url: Media bridge URL the telephony call reconnects to.
        send: Browser legs only: pushes a JSON message down the socket.
    """

    call_id: str
    agent: AgentProfile | None = None
    source: AudioSource = AudioSource.TELEPHONY
    resume_url: str = ""
    send: SendJSON | None = None


class PlaybackDispatcher:
    """Turns reply text into audio the caller hears.

    Args:
        registry: Liveness is checked here before any playback.
        blobs: Where synthesized audio is parked for fetching.
        tts: Speech synthesis collaborator.
        telephony: Call-control collaborator.
        public_url: HTTP base that makes blobs fetchable; empty disables
            the audio path for telephony legs.
        tts_timeout: Seconds before synthesis is abandoned.
    """

    def __init__(
        self,
        registry: CallRegistry,
        blobs: AudioBlobStore,
        tts: BaseTTS | None,
        telephony: BaseTelephony | None,
        public_url: str = "",
        tts_timeout: float = 6.0,
    ) -> None:
        self._registry = registry
        self._blobs = blobs
        self._tts = tts
        self._telephony = telephony
        self._public_url = public_url.rstrip("/")
        self._tts_timeout = tts_timeout

    async def dispatch(self, text: str, target: PlaybackTarget) -> PlaybackResult:
        """Play ``text`` into the call described by ``target``."""
        if not self._registry.is_active(target.call_id):
            logger.info(f"Call {target.call_id} is not active, skipping playback")
            return PlaybackResult.SKIPPED

        if target.source == AudioSource.BROWSER:
            return await self._dispatch_browser(text, target)
        return await self._dispatch_telephony(text, target)

    async def play_terminal(self, call_id: str, message: str, target: PlaybackTarget | None = None) -> None:
        """Speak a final message and hang up (used when no agent resolves)."""
        target = target or PlaybackTarget(call_id=call_id)
        try:
            if target.source == AudioSource.BROWSER:
                if target.send:
                    await target.send({"type": "text", "data": message})
                return
            if self._telephony is None:
                logger.error(f"No telephony provider; cannot end call {call_id}")
                return
            await self._telephony.say_and_hangup(call_id, message, agent=target.agent)
        except Exception as e:
            logger.error(f"Terminal message failed for {call_id}: {e}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _dispatch_telephony(self, text: str, target: PlaybackTarget) -> PlaybackResult:
        if self._telephony is None:
            logger.error(f"No telephony provider; reply for {target.call_id} dropped")
            return PlaybackResult.FAILED

        audio_url = ""
        if self._public_url:
            audio = await self._synthesize(text, target)
            if audio:
                content_type = self._tts.content_type if self._tts else "audio/mpeg"
                blob_id = self._blobs.store(audio, content_type)
                audio_url = f"{self._public_url}/audio/{blob_id}"
        else:
            logger.warning("No public URL configured; using telephony speech fallback")

        # The call may have ended while synthesizing.
        if not self._registry.is_active(target.call_id):
            logger.info(f"Call {target.call_id} ended before playback")
            return PlaybackResult.SKIPPED

        try:
            if audio_url:
                await self._telephony.play_audio(
                    target.call_id, audio_url, target.resume_url, agent=target.agent
                )
                return PlaybackResult.AUDIO
            await self._telephony.say(target.call_id, text, target.resume_url, agent=target.agent)
            return PlaybackResult.SPEECH
        except Exception as e:
            logger.error(f"Playback failed for {target.call_id}: {e!r}")
            return PlaybackResult.FAILED

    async def _dispatch_browser(self, text: str, target: PlaybackTarget) -> PlaybackResult:
        if target.send is None:
            return PlaybackResult.FAILED

        audio = await self._synthesize(text, target)
        try:
            if audio:
                await target.send({
                    "type": "audio",
                    "format": self._tts.content_type if self._tts else "audio/mpeg",
                    "data": base64.b64encode(audio).decode("ascii"),
                })
            await target.send({"type": "text", "data": text})
        except Exception as e:
            logger.error(f"Browser playback failed for {target.call_id}: {e}")
            return PlaybackResult.FAILED
        return PlaybackResult.AUDIO if audio else PlaybackResult.TEXT

    async def _synthesize(self, text: str, target: PlaybackTarget) -> bytes:
        if self._tts is None:
            return b""
        voice = target.agent.voice if target.agent else None
        try:
            return await asyncio.wait_for(
                self._tts.synthesize(text, voice), timeout=self._tts_timeout
            ) or b""
        except asyncio.TimeoutError:
            logger.warning(f"TTS timed out after {self._tts_timeout}s for {target.call_id}")
        except Exception as e:
            logger.warning(f"TTS failed for {target.call_id}: {e}")
        return b""
