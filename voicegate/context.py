"""Process-scoped gateway context.

Built once at startup and handed to every listener, connection and HTTP
route: it owns the shared stores (call registry, audio blobs, transcript
bus), the agent directory and the collaborator providers, and tears them
all down in :meth:`GatewayContext.shutdown`.
"""

from __future__ import annotations

import asyncio
from typing import Callable
from urllib.parse import urlencode

from loguru import logger

from voicegate.agents import AgentDirectory, InMemoryAgentDirectory
from voicegate.config import Credentials, GatewayConfig, load_config
from voicegate.core.events import AudioEncoding, AudioSource
from voicegate.pipeline.orchestrator import ResponseOrchestrator
from voicegate.pipeline.playback import PlaybackDispatcher
from voicegate.providers.base import (
    BaseFunctionExecutor,
    BaseLLM,
    BaseSTT,
    BaseTelephony,
    BaseTTS,
)
from voicegate.providers.registry import ProviderRegistry, provider_registry
from voicegate.stores.audio_blobs import AudioBlobStore
from voicegate.stores.call_registry import CallRegistry
from voicegate.stores.transcript_bus import TranscriptBus

STTFactory = Callable[[AudioSource, AudioEncoding, int], BaseSTT]


class GatewayContext:
    """Owner of everything shared between calls.

    Collaborators may be injected (tests pass fakes); anything omitted is
    left as None, see :meth:`from_config` for the fully wired version.
    """

    def __init__(
        self,
        config: GatewayConfig | None = None,
        registry: CallRegistry | None = None,
        blobs: AudioBlobStore | None = None,
        bus: TranscriptBus | None = None,
        agents: AgentDirectory | None = None,
        llm: BaseLLM | None = None,
        tts: BaseTTS | None = None,
        telephony: BaseTelephony | None = None,
        function_executor: BaseFunctionExecutor | None = None,
        stt_factory: STTFactory | None = None,
    ) -> None:
        self.config = config or GatewayConfig()
        cfg = self.config

        self.registry = registry or CallRegistry(max_turns=cfg.registry.max_turns)
        self.blobs = blobs or AudioBlobStore(
            max_entries=cfg.audio_store.max_entries,
            low_watermark=min(cfg.audio_store.low_watermark, cfg.audio_store.max_entries),
            max_age_seconds=cfg.audio_store.max_age_seconds,
        )
        self.bus = bus or TranscriptBus(close_grace_seconds=cfg.transcript_bus.close_grace_seconds)
        self.agents = agents or InMemoryAgentDirectory(cfg.agents)

        self.llm = llm
        self.tts = tts
        self.telephony = telephony
        self.function_executor = function_executor
        self._stt_factory = stt_factory

        self.playback = PlaybackDispatcher(
            registry=self.registry,
            blobs=self.blobs,
            tts=tts,
            telephony=telephony,
            public_url=cfg.public_url,
            tts_timeout=cfg.timeouts.tts_seconds,
        )
        self.orchestrator = ResponseOrchestrator(
            registry=self.registry,
            bus=self.bus,
            llm=llm,
            playback=self.playback,
            function_executor=function_executor,
            generation=cfg.generation,
            generation_timeout=cfg.timeouts.generation_seconds,
        )

        self._reaper: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig | dict | str | None = None,
        credentials: Credentials | None = None,
        providers: ProviderRegistry = provider_registry,
    ) -> GatewayContext:
        """Build a context with providers created from configuration.

        Blank API keys and URLs are filled from the environment first.
        """
        cfg = load_config(config).with_credentials(credentials or Credentials())
        timeouts = cfg.timeouts

        llm = providers.create_llm(
            cfg.llm.provider, **{"model": cfg.generation.model, **cfg.llm.config}
        )
        tts = providers.create_tts(
            cfg.tts.provider, **{"timeout": timeouts.tts_seconds, **cfg.tts.config}
        )
        telephony = providers.create_telephony(
            cfg.telephony.provider,
            **{"timeout": timeouts.telephony_seconds, **cfg.telephony.config},
        )
        function_executor = providers.create_function_executor(
            cfg.functions.provider,
            **{"timeout": timeouts.function_seconds, **cfg.functions.config},
        )

        def stt_factory(source: AudioSource, encoding: AudioEncoding, sample_rate: int) -> BaseSTT:
            return providers.create_stt(
                cfg.stt.provider,
                **{
                    **cfg.stt.config,
                    "encoding": "mulaw" if encoding == AudioEncoding.MULAW else "linear16",
                    "sample_rate_hz": sample_rate,
                },
            )

        logger.info(
            f"Gateway providers: stt={cfg.stt.provider}, llm={cfg.llm.provider}, "
            f"tts={cfg.tts.provider}, telephony={cfg.telephony.provider}"
        )
        return cls(
            config=cfg,
            llm=llm,
            tts=tts,
            telephony=telephony,
            function_executor=function_executor,
            stt_factory=stt_factory,
        )

    # ------------------------------------------------------------------
    # Per-connection helpers
    # ------------------------------------------------------------------

    def create_stt(self, source: AudioSource, encoding: AudioEncoding, sample_rate: int) -> BaseSTT:
        """Open-ready STT session for one leg.

        Raises:
            RuntimeError: If no STT provider is configured.
        """
        if self._stt_factory is None:
            raise RuntimeError("No STT provider configured")
        return self._stt_factory(source, encoding, sample_rate)

    def resume_url(self, agent_id: str | None = None) -> str:
        """Media bridge URL a telephony call reconnects to after playback."""
        base = self.config.stream_url
        if not base:
            return ""
        params = {"source": "twilio"}
        if agent_id:
            params["agentId"] = agent_id
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode(params)}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_background_tasks(self) -> None:
        """Start the periodic registry reaper on the running loop."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_loop())

    async def _reap_loop(self) -> None:
        interval = self.config.registry.reap_interval_seconds
        ttl = self.config.registry.reap_after_seconds
        idle_ttl = self.config.registry.idle_reap_after_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                self.registry.reap(ttl, idle_after_seconds=idle_ttl)
            except Exception as e:
                logger.error(f"Registry reaper error: {e}")

    async def shutdown(self) -> None:
        """Stop background work and release every provider and store."""
        if self._reaper and not self._reaper.done():
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
        self._reaper = None

        for provider in (self.llm, self.tts, self.telephony, self.function_executor):
            if provider is None:
                continue
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Error closing {type(provider).__name__}: {e}")

        self.bus.shutdown()
        self.blobs.clear()
        self.registry.clear()
        logger.info("Gateway context shut down")
