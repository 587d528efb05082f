"""Per-leg bridge controller.

A VoiceGatewayConnection owns one accepted bridge socket. It wires the
socket's audio into a fresh STT session, feeds transcripts to an
UtteranceAggregator, and starts a detached response pipeline for every
finalized utterance, so intake never waits on generation or playback.

State machine (driven by inbound control messages only):

    CREATED → STREAM_STARTED → ACTIVE → STOPPED
    CREATED → STOPPED  (transport closed before any start)

Errors are contained per message: a bad frame or a failing collaborator
is logged and skipped, and only a stop message or transport closure ends
the connection.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from loguru import logger

from voicegate.agents import AgentProfile
from voicegate.context import GatewayContext
from voicegate.core.events import (
    AnyEvent,
    AudioSource,
    CallStatus,
    MediaChunk,
    StatusUpdate,
    StreamStarted,
    StreamStopped,
)
from voicegate.pipeline.aggregator import UtteranceAggregator
from voicegate.pipeline.playback import PlaybackTarget
from voicegate.providers.base import BaseSTT, STTResult
from voicegate.serializers.base import BaseSerializer
from voicegate.transports.base import BaseTransport, TransportClosed


class ConnectionState(str, Enum):
    CREATED = "created"
    STREAM_STARTED = "stream_started"
    ACTIVE = "active"
    STOPPED = "stopped"


class VoiceGatewayConnection:
    """Controller for one bridged call leg.

    Args:
        context: Shared stores and collaborators.
        transport: The accepted socket.
        serializer: Wire translator for this leg's source.
        agent_id: Agent known at connect time (query string), if any.
    """

    def __init__(
        self,
        context: GatewayContext,
        transport: BaseTransport,
        serializer: BaseSerializer,
        agent_id: str | None = None,
    ) -> None:
        self._ctx = context
        self._transport = transport
        self._serializer = serializer
        self.source: AudioSource = serializer.source

        self.state = ConnectionState.CREATED
        self.call_id: str = ""
        self.stream_id: str = ""
        self.agent_id: str | None = agent_id
        self.agent: AgentProfile | None = None

        self._aggregator = UtteranceAggregator(
            on_utterance=self._on_utterance,
            debounce_ms=context.config.aggregator.debounce_ms,
        )
        self._stt: BaseSTT | None = None
        self._stt_task: asyncio.Task | None = None
        self._response_tasks: set[asyncio.Task] = set()
        self._utterance_count = 0
        self._frames_in = 0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_stopped(self) -> bool:
        return self.state == ConnectionState.STOPPED

    @property
    def pending_responses(self) -> int:
        return len(self._response_tasks)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Process inbound frames in arrival order until stop or closure."""
        logger.info(f"Bridge connection opened ({self.source.value})")
        try:
            while not self.is_stopped and self._transport.is_connected():
                try:
                    raw = await self._transport.recv()
                except TransportClosed:
                    break
                await self.handle_message(raw)
        finally:
            await self.stop("transport closed")

    async def handle_message(self, raw: bytes | str | dict) -> None:
        """Handle one raw frame; errors are logged and the frame skipped."""
        if self.is_stopped:
            return
        try:
            events = await self._serializer.deserialize(raw)
        except Exception as e:
            preview = raw[:100] if isinstance(raw, (str, bytes)) else raw
            logger.warning(f"Discarding malformed {self._serializer.name} message: {e} ({preview!r})")
            return

        for event in events:
            if self.is_stopped:
                return
            try:
                await self._handle_event(event)
            except Exception as e:
                logger.error(
                    f"Error handling {event.event_type.value} on call {self.call_id or '?'}: {e}"
                )

    async def stop(self, reason: str = "stop") -> None:
        """Transition to STOPPED and release per-leg resources. Idempotent."""
        if self.is_stopped:
            return
        previous = self.state
        self.state = ConnectionState.STOPPED
        self._aggregator.close()

        if self._stt is not None:
            try:
                await self._stt.close()
            except Exception as e:
                logger.warning(f"STT close error on call {self.call_id}: {e}")
            self._stt = None
        if self._stt_task and not self._stt_task.done():
            self._stt_task.cancel()
            try:
                await self._stt_task
            except asyncio.CancelledError:
                pass

        if self.call_id:
            if self.source == AudioSource.BROWSER:
                self._ctx.registry.update_status(self.call_id, CallStatus.COMPLETED)
            self._ctx.bus.publish_close(self.call_id)

        await self._transport.disconnect()
        logger.info(
            f"Bridge connection stopped: call={self.call_id or '-'} "
            f"from={previous.value} reason={reason} frames={self._frames_in} "
            f"in_flight={len(self._response_tasks)}"
        )

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _handle_event(self, event: AnyEvent) -> None:
        if isinstance(event, StreamStarted):
            await self._on_start(event)
        elif isinstance(event, MediaChunk):
            await self._on_media(event)
        elif isinstance(event, StreamStopped):
            await self.stop("stream stopped")
        else:
            logger.debug(f"Ignoring {event.event_type.value} event on call {self.call_id}")

    async def _on_start(self, event: StreamStarted) -> None:
        if self.state != ConnectionState.CREATED:
            logger.warning(f"Duplicate start on call {self.call_id}, ignoring")
            return

        self.call_id = event.call_id
        self.stream_id = event.stream_id
        self.state = ConnectionState.STREAM_STARTED

        registry = self._ctx.registry
        self.agent_id = (
            self.agent_id
            or event.agent_id
            or registry.lookup_agent_id(self.call_id)
        )
        registry.record_call_start(self.call_id, self.agent_id)
        registry.record_stream_id(self.call_id, self.stream_id)

        # A media stream only exists on an answered call.
        status = registry.update_status(self.call_id, CallStatus.IN_PROGRESS)
        if status == CallStatus.IN_PROGRESS:
            self._ctx.bus.publish(self.call_id, StatusUpdate(status=status.value))

        logger.info(
            f"Stream started: call={self.call_id} stream={self.stream_id} "
            f"agent={self.agent_id or '-'} status={status.value if status else '-'}"
        )

        self.agent = await self._ctx.agents.get(self.agent_id) if self.agent_id else None
        if self.agent is None:
            logger.error(f"No agent resolved for call {self.call_id} (agent_id={self.agent_id})")
            await self._ctx.playback.play_terminal(
                self.call_id,
                self._ctx.config.generation.unknown_agent_message,
                self._playback_target(),
            )
            return

        await self._open_stt(event)

    async def _on_media(self, event: MediaChunk) -> None:
        if self.state == ConnectionState.CREATED:
            logger.debug("Media before start, dropping frame")
            return
        if self._stt is None:
            return
        if self.state == ConnectionState.STREAM_STARTED:
            self.state = ConnectionState.ACTIVE
            logger.debug(f"First audio forwarded for call {self.call_id}")

        self._frames_in += 1
        await self._stt.send_audio(event.data)

    # ------------------------------------------------------------------
    # STT and utterances
    # ------------------------------------------------------------------

    async def _open_stt(self, event: StreamStarted) -> None:
        try:
            stt = self._ctx.create_stt(self.source, event.encoding, event.sample_rate)
            await stt.connect()
        except Exception as e:
            logger.error(f"STT session failed to open for call {self.call_id}: {e}")
            return
        self._stt = stt
        self._stt_task = asyncio.create_task(self._consume_stt(stt))

    async def _consume_stt(self, stt: BaseSTT) -> None:
        try:
            async for result in stt.results():
                if self.is_stopped:
                    break
                await self._on_transcript(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"STT results error on call {self.call_id}: {e}")

    async def _on_transcript(self, result: STTResult) -> None:
        if self.source == AudioSource.BROWSER and result.text:
            await self._send_json({"type": "transcript", "data": result.text, "final": result.is_final})
        await self._aggregator.on_stt_result(result)

    def _on_utterance(self, text: str) -> None:
        if self.is_stopped or self.agent is None:
            return
        self._utterance_count += 1
        if self._response_tasks:
            logger.info(
                f"Utterance #{self._utterance_count} on call {self.call_id} while "
                f"{len(self._response_tasks)} reply(ies) still in flight"
            )
        task = asyncio.create_task(self._respond(self.agent, text))
        self._response_tasks.add(task)
        task.add_done_callback(self._response_tasks.discard)

    async def _respond(self, agent: AgentProfile, text: str) -> None:
        try:
            await self._ctx.orchestrator.respond(agent, self.call_id, text, self._playback_target())
        except Exception as e:
            logger.error(f"Response pipeline failed on call {self.call_id}: {e}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _playback_target(self) -> PlaybackTarget:
        return PlaybackTarget(
            call_id=self.call_id,
            agent=self.agent,
            source=self.source,
            resume_url=self._ctx.resume_url(self.agent_id),
            send=self._send_json if self.source == AudioSource.BROWSER else None,
        )

    async def _send_json(self, message: dict[str, Any]) -> None:
        if self.is_stopped:
            return
        wire = self._serializer.serialize(message)
        if wire is None:
            return
        try:
            await self._transport.send(wire)
        except Exception as e:
            logger.warning(f"Send failed on call {self.call_id}: {e}")
