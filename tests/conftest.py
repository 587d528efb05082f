"""Shared fakes for gateway tests."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voicegate.agents import AgentProfile
from voicegate.config import GatewayConfig
from voicegate.context import GatewayContext
from voicegate.providers.base import BaseSTT, LLMReply, STTResult
from voicegate.transports.base import BaseTransport, TransportClosed


class FakeTransport(BaseTransport):
    """In-memory socket: feed() queues inbound frames, sent collects outbound."""

    def __init__(self, frames=None):
        self._inbound: asyncio.Queue = asyncio.Queue()
        self.sent: list = []
        self.connected = True
        for frame in frames or []:
            self.feed(frame)

    def feed(self, frame) -> None:
        self._inbound.put_nowait(frame)

    def close_inbound(self) -> None:
        self._inbound.put_nowait(None)

    async def send(self, data) -> None:
        self.sent.append(data)

    async def recv(self):
        frame = await self._inbound.get()
        if frame is None:
            raise TransportClosed("closed")
        return frame

    async def disconnect(self) -> None:
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected


class FakeSTT(BaseSTT):
    """STT session whose results are pushed by the test."""

    def __init__(self):
        self.audio: list[bytes] = []
        self.connected = False
        self.closed = False
        self._results: asyncio.Queue = asyncio.Queue()

    async def connect(self) -> None:
        self.connected = True

    async def send_audio(self, chunk: bytes) -> None:
        self.audio.append(chunk)

    async def results(self):
        while True:
            result = await self._results.get()
            if result is None:
                return
            yield result

    def push(self, text: str, is_final: bool = False) -> None:
        self._results.put_nowait(STTResult(text=text, is_final=is_final))

    async def close(self) -> None:
        self.closed = True
        self._results.put_nowait(None)

    @property
    def sample_rate(self) -> int:
        return 8000

    @property
    def encoding(self) -> str:
        return "mulaw"

    @property
    def name(self) -> str:
        return "fake"


@pytest.fixture
def agent():
    return AgentProfile(id="support", name="Support", system_prompt="You help customers.")


@pytest.fixture
def llm():
    mock = AsyncMock()
    mock.complete.return_value = LLMReply(text="Sure, I can help.")
    return mock


@pytest.fixture
def tts():
    mock = AsyncMock()
    mock.synthesize.return_value = b"mp3-bytes"
    mock.content_type = "audio/mpeg"
    return mock


@pytest.fixture
def telephony():
    return AsyncMock()


@pytest.fixture
def stt_sessions():
    return []


@pytest.fixture
def context(agent, llm, tts, telephony, stt_sessions):
    config = GatewayConfig.from_dict({
        "public_url": "https://gw.example.com",
        "debounce_ms": 20,
        "agents": [agent.model_dump()],
    })

    def stt_factory(source, encoding, sample_rate):
        stt = FakeSTT()
        stt_sessions.append(stt)
        return stt

    return GatewayContext(
        config=config,
        llm=llm,
        tts=tts,
        telephony=telephony,
        stt_factory=stt_factory,
    )


@pytest.fixture
def transport():
    return FakeTransport()
