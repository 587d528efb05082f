"""Tests for the FastAPI server: webhooks, audio fetch, call control, live feed."""

import asyncio
import base64
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from voicegate.core.events import CallStatus, ChannelClosed, StatusUpdate, TranscriptUpdate
from voicegate.providers.telephony import TelephonyError
from voicegate.server import create_app


@pytest.fixture
def app(context):
    return create_app(context)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


# =========================================================================
# Health and audio
# =========================================================================


class TestHealthAndAudio:

    def test_health(self, client, context):
        context.registry.update_status("CA1", CallStatus.IN_PROGRESS)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "active_calls": 1, "connections": 0, "audio_blobs": 0}

    def test_audio_fetch(self, client, context):
        blob_id = context.blobs.store(b"ID3mp3", "audio/mpeg")
        resp = client.get(f"/audio/{blob_id}")
        assert resp.status_code == 200
        assert resp.content == b"ID3mp3"
        assert resp.headers["content-type"] == "audio/mpeg"

    def test_audio_not_found(self, client):
        assert client.get("/audio/aud_missing").status_code == 404


# =========================================================================
# Twilio webhooks
# =========================================================================


class TestWebhooks:

    def test_status_updates_registry_and_feed(self, client, context):
        events = []
        context.bus.subscribe("CA1", events.append)

        resp = client.post("/twilio/status", data={"CallSid": "CA1", "CallStatus": "ringing"})
        assert resp.json() == {"status": "received"}
        assert context.registry.lookup_status("CA1") == CallStatus.RINGING
        assert events == [StatusUpdate(status="ringing")]

    def test_terminal_status_closes_feed(self, client, context):
        events = []
        context.bus.subscribe("CA1", events.append)
        context.registry.update_status("CA1", CallStatus.IN_PROGRESS)

        client.post("/twilio/status", data={"CallSid": "CA1", "CallStatus": "completed"})

        assert context.registry.lookup_status("CA1") == CallStatus.COMPLETED
        assert events == [StatusUpdate(status="completed"), ChannelClosed()]

    def test_late_status_does_not_demote(self, client, context):
        context.registry.update_status("CA1", CallStatus.IN_PROGRESS)
        client.post("/twilio/status", data={"CallSid": "CA1", "CallStatus": "ringing"})
        assert context.registry.is_active("CA1")

    def test_status_without_call_sid(self, client):
        assert client.post("/twilio/status", data={}).json() == {"status": "ignored"}

    def test_inbound_voice_returns_stream_twiml(self, client, context):
        resp = client.post("/twilio/voice?agentId=support", data={"CallSid": "CA7"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert "<Connect><Stream url=" in resp.text
        assert "wss://gw.example.com/voice-stream?source=twilio&amp;agentId=support" in resp.text
        assert '<Parameter name="agentId" value="support" />' in resp.text
        assert context.registry.lookup_agent_id("CA7") == "support"


# =========================================================================
# Call control
# =========================================================================


class TestCallControl:

    def test_outbound_call(self, client, context, telephony):
        telephony.initiate_call.return_value = "CA900"

        resp = client.post("/agents/support/call", json={"to": "+15559999"})

        assert resp.json() == {"success": True, "callSid": "CA900"}
        kwargs = telephony.initiate_call.await_args.kwargs
        assert kwargs["to"] == "+15559999"
        assert kwargs["status_callback_url"] == "https://gw.example.com/twilio/status"
        assert kwargs["stream_url"].endswith("agentId=support")
        assert kwargs["agent"].id == "support"
        assert context.registry.lookup_status("CA900") == CallStatus.INITIATED
        assert context.registry.lookup_agent_id("CA900") == "support"

    def test_outbound_call_unknown_agent(self, client, telephony):
        resp = client.post("/agents/ghost/call", json={"to": "+15559999"})
        assert resp.status_code == 404
        telephony.initiate_call.assert_not_awaited()

    def test_outbound_call_provider_error(self, client, telephony):
        telephony.initiate_call.side_effect = TelephonyError("invalid number")
        resp = client.post("/agents/support/call", json={"to": "bad"})
        assert resp.status_code == 502

    def test_end_call(self, client, context, telephony):
        context.registry.record_call_start("CA1", "support")
        resp = client.post("/calls/CA1/end")
        assert resp.json() == {"success": True}
        call_id, agent = telephony.end_call.await_args.args
        assert call_id == "CA1"
        assert agent.id == "support"


# =========================================================================
# Media bridge
# =========================================================================


class TestMediaBridge:

    def test_twilio_stream(self, client, context, stt_sessions):
        start = {
            "event": "start",
            "start": {"streamSid": "MZ1", "callSid": "CA55", "customParameters": {"agentId": "support"}},
        }
        media = {"event": "media", "media": {"payload": base64.b64encode(b"\x7f\x7f").decode()}}

        with client.websocket_connect("/voice-stream?source=twilio") as ws:
            ws.send_text(json.dumps({"event": "connected"}))
            ws.send_text(json.dumps(start))
            ws.send_text(json.dumps(media))
            ws.send_text(json.dumps({"event": "stop"}))

        assert stt_sessions[0].audio == [b"\x7f\x7f"]
        assert context.registry.lookup_agent_id("CA55") == "support"


# =========================================================================
# Live transcript feed
# =========================================================================


class TestEventFeed:

    @pytest.mark.asyncio
    async def test_sse_stream(self, app, context):
        context.registry.update_status("CA1", CallStatus.IN_PROGRESS)
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            request = asyncio.create_task(http.get("/calls/CA1/events"))
            for _ in range(100):
                if context.bus.subscriber_count("CA1"):
                    break
                await asyncio.sleep(0.01)

            context.bus.publish("CA1", TranscriptUpdate(role="user", text="hello"))
            context.bus.publish_close("CA1")
            resp = await asyncio.wait_for(request, timeout=2)

        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.startswith("retry: 1000")
        events = [
            json.loads(line[len("data: "):])
            for line in resp.text.splitlines()
            if line.startswith("data: ")
        ]
        assert events == [
            {"type": "status", "status": "in-progress"},
            {"type": "transcript", "role": "user", "text": "hello", "final": True},
            {"type": "close"},
        ]
        assert context.bus.subscriber_count("CA1") == 0
