"""HTTP/WebSocket server for voicegate.

A FastAPI application exposing:

- the media bridge WebSocket (``server.stream_path``)
- ``GET /audio/{audio_id}``: synthesized reply audio for the telephony provider
- ``POST /twilio/voice`` and ``POST /twilio/status``: provider webhooks
- ``POST /agents/{agent_id}/call`` and ``POST /calls/{call_id}/end``
- ``GET /calls/{call_id}/events``: live transcript feed (Server-Sent Events)
- ``GET /health``
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Form, HTTPException, Response, WebSocket
from fastapi.responses import JSONResponse, StreamingResponse
from loguru import logger
from pydantic import BaseModel

from voicegate.config import GatewayConfig
from voicegate.context import GatewayContext
from voicegate.core.events import CallStatus, ChannelClosed, StatusUpdate, TranscriptEvent
from voicegate.gateway.listener import GatewayListener
from voicegate.providers.telephony import TelephonyError, twiml
from voicegate.transports.websocket import FastAPIWebSocketTransport

SSE_KEEPALIVE_SECONDS = 15.0
SSE_RETRY_MS = 1000


class OutboundCallRequest(BaseModel):
    to: str


def _xml(document: str) -> Response:
    return Response(content=document, media_type="application/xml")


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(config: GatewayContext | GatewayConfig | dict | str | None = None) -> FastAPI:
    """Create the gateway FastAPI application.

    Args:
        config: A ready GatewayContext (tests inject fakes this way), or
            any configuration source accepted by ``load_config``.

    Returns:
        A FastAPI application instance.
    """
    if isinstance(config, GatewayContext):
        context = config
    else:
        context = GatewayContext.from_config(config)
    listener = GatewayListener(context)
    cfg = context.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        context.start_background_tasks()
        logger.info(f"voicegate ready: bridge={cfg.server.stream_path} public_url={cfg.public_url or '-'}")
        try:
            yield
        finally:
            await listener.shutdown()
            await context.shutdown()

    app = FastAPI(
        title="voicegate",
        description="Real-time voice call gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context
    app.state.listener = listener

    # ------------------------------------------------------------------
    # Media bridge
    # ------------------------------------------------------------------

    @app.websocket(cfg.server.stream_path)
    async def voice_stream(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"Bridge WebSocket connected: {websocket.client}")
        transport = FastAPIWebSocketTransport(websocket)
        try:
            await listener.handle(transport, dict(websocket.query_params), dict(websocket.headers))
        except Exception as e:
            logger.error(f"Bridge handler error: {e}")

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    @app.get("/audio/{audio_id}")
    async def get_audio(audio_id: str):
        blob = context.blobs.get(audio_id)
        if blob is None:
            raise HTTPException(status_code=404, detail="Audio not found")
        return Response(
            content=blob.payload,
            media_type=blob.content_type,
            headers={"Cache-Control": "no-store"},
        )

    # ------------------------------------------------------------------
    # Twilio webhooks
    # ------------------------------------------------------------------

    @app.post("/twilio/voice")
    async def twilio_voice(agentId: str = "", CallSid: str = Form("")):
        """Answer an inbound call by connecting it to the media bridge."""
        agent_id = agentId or None
        if CallSid:
            context.registry.record_call_start(CallSid, agent_id)
        stream_url = context.resume_url(agent_id)
        if not stream_url:
            logger.error("Inbound call received but no stream URL is configured")
            return _xml(twiml.say_then_hangup(cfg.generation.unknown_agent_message))
        logger.info(f"Inbound call {CallSid or '?'} for agent {agent_id or '-'}")
        parameters = {"agentId": agent_id} if agent_id else None
        return _xml(twiml.connect_stream(stream_url, parameters))

    @app.post("/twilio/status")
    async def twilio_status(CallSid: str = Form(""), CallStatus_: str = Form("", alias="CallStatus")):
        """Record a call status transition and forward it to live viewers."""
        if not CallSid:
            return JSONResponse({"status": "ignored"})
        reported = CallStatus.parse(CallStatus_)
        held = context.registry.update_status(CallSid, reported)
        logger.info(f"Call {CallSid} status: {CallStatus_} (now {held.value if held else '-'})")

        if held is not None:
            context.bus.publish(CallSid, StatusUpdate(status=held.value))
            if held.is_terminal:
                context.bus.publish_close(CallSid)
        return JSONResponse({"status": "received"})

    # ------------------------------------------------------------------
    # Call control
    # ------------------------------------------------------------------

    @app.post("/agents/{agent_id}/call")
    async def start_call(agent_id: str, body: OutboundCallRequest):
        agent = await context.agents.get(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="Agent not found")
        if context.telephony is None:
            raise HTTPException(status_code=503, detail="Telephony is not configured")
        stream_url = context.resume_url(agent_id)
        if not stream_url or not cfg.public_url:
            raise HTTPException(status_code=503, detail="Public URL is not configured")

        try:
            call_id = await context.telephony.initiate_call(
                to=body.to,
                stream_url=stream_url,
                status_callback_url=f"{cfg.public_url}/twilio/status",
                agent=agent,
                parameters={"agentId": agent_id},
            )
        except (TelephonyError, asyncio.TimeoutError) as e:
            logger.error(f"Outbound call to {body.to} failed: {e}")
            raise HTTPException(status_code=502, detail=str(e) or "Telephony request failed")

        context.registry.record_call_start(call_id, agent_id)
        context.registry.update_status(call_id, CallStatus.INITIATED)
        return {"success": True, "callSid": call_id}

    @app.post("/calls/{call_id}/end")
    async def end_call(call_id: str):
        if context.telephony is None:
            raise HTTPException(status_code=503, detail="Telephony is not configured")
        agent_id = context.registry.lookup_agent_id(call_id)
        agent = await context.agents.get(agent_id) if agent_id else None
        try:
            await context.telephony.end_call(call_id, agent)
        except (TelephonyError, asyncio.TimeoutError) as e:
            logger.error(f"Ending call {call_id} failed: {e}")
            raise HTTPException(status_code=502, detail=str(e) or "Telephony request failed")
        return {"success": True}

    # ------------------------------------------------------------------
    # Live transcript feed
    # ------------------------------------------------------------------

    @app.get("/calls/{call_id}/events")
    async def call_events(call_id: str):
        """Live transcript and status feed for one call.

        The feed ends with a ``close`` event whenever the bridge stream for
        the call stops. On telephony calls every reply redirects the call,
        which stops the stream, so a feed normally ends after each reply
        while the call itself goes on. Clients are expected to reconnect
        (EventSource does so on its own, using the ``retry`` hint sent
        first); a reconnect gets a fresh channel and the current status.
        """
        queue: asyncio.Queue[TranscriptEvent] = asyncio.Queue()
        unsubscribe = context.bus.subscribe(call_id, queue.put_nowait)

        async def stream() -> AsyncIterator[str]:
            try:
                yield f"retry: {SSE_RETRY_MS}\n\n"
                status = context.registry.lookup_status(call_id)
                if status is not None:
                    yield _sse(StatusUpdate(status=status.value).model_dump())
                while True:
                    try:
                        event = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                    except asyncio.TimeoutError:
                        yield ": keepalive\n\n"
                        continue
                    yield _sse(event.model_dump())
                    if isinstance(event, ChannelClosed):
                        break
            finally:
                unsubscribe()

        return StreamingResponse(
            stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/health")
    async def health():
        return JSONResponse({
            "status": "ok",
            "active_calls": context.registry.active_count,
            "connections": listener.active_connections,
            "audio_blobs": len(context.blobs),
        })

    return app


def run_server(
    config: GatewayConfig | dict | str | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the gateway with uvicorn.

    Args:
        config: Gateway configuration.
        host: Override the listen host.
        port: Override the listen port.
    """
    import uvicorn

    context = GatewayContext.from_config(config)
    app = create_app(context)
    uvicorn.run(
        app,
        host=host or context.config.server.host,
        port=port or context.config.server.port,
        log_level=context.config.logging.level.lower(),
    )
