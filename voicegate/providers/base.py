"""Base interfaces for the gateway's external collaborators.

Speech-to-text, text generation, text-to-speech, telephony call control
and function execution are all remote services. Each is reached through
one of the abstract classes below so the call pipeline never depends on
a particular vendor, and tests can substitute fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from voicegate.agents import AgentFunction, AgentProfile, VoiceSettings


# ---------------------------------------------------------------------------
# Data classes for provider communication
# ---------------------------------------------------------------------------

@dataclass
class STTResult:
    """A speech-to-text transcription fragment."""

    text: str
    is_final: bool = False
    confidence: float = 0.0


@dataclass
class LLMToolCall:
    """A completed function/tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class LLMReply:
    """A complete (non-streamed) model response."""

    text: str = ""
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class Message:
    """A conversation message for the model."""

    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    tool_call_id: str = ""
    tool_calls: list[LLMToolCall] = field(default_factory=list)
    name: str = ""  # For tool results


# ---------------------------------------------------------------------------
# Abstract Base Classes
# ---------------------------------------------------------------------------

class BaseSTT(ABC):
    """Abstract base class for streaming Speech-to-Text sessions.

    One instance is opened per bridged leg.

    Lifecycle:
        1. __init__(api_key, **config): configure encoding and rate
        2. connect(): open the streaming session
        3. send_audio(chunk): feed audio in arrival order
        4. results(): async iterator of STTResult objects
        5. close(): end the session; results() then terminates
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open a streaming connection to the STT service."""
        ...

    @abstractmethod
    async def send_audio(self, audio: bytes) -> None:
        """Send an audio chunk to the STT stream."""
        ...

    @abstractmethod
    async def results(self) -> AsyncIterator[STTResult]:
        """Yield interim (is_final=False) and final results as they arrive."""
        ...
        yield  # pragma: no cover

    @abstractmethod
    async def close(self) -> None:
        """Close the STT connection and release resources."""
        ...

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        ...

    @property
    @abstractmethod
    def encoding(self) -> str:
        ...

    @property
    def name(self) -> str:
        """Provider name for logging."""
        return self.__class__.__name__


class BaseLLM(ABC):
    """Abstract base class for text generation.

    Generation is request/response: a phone turn needs the whole reply
    before it can be synthesized and played.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 120,
    ) -> LLMReply:
        """Generate one reply.

        Args:
            messages: System prompt, history and the new user message.
            tools: Optional tool definitions in OpenAI-compatible format.
            model: Override the provider's default model.
            temperature: Sampling temperature (0.0 - 2.0).
            max_tokens: Maximum tokens to generate.

        Returns:
            The reply text and any tool calls the model requested.
        """
        ...

    async def close(self) -> None:
        """Clean up any persistent connections. Override if needed."""
        pass

    @property
    @abstractmethod
    def model(self) -> str:
        ...

    @property
    def name(self) -> str:
        return self.__class__.__name__


class BaseTTS(ABC):
    """Abstract base class for Text-to-Speech.

    ``synthesize`` returns the complete encoded clip, or ``b""`` when the
    service is unavailable; callers treat empty output as a failure.
    """

    @abstractmethod
    async def synthesize(self, text: str, voice: VoiceSettings | None = None) -> bytes:
        ...

    async def close(self) -> None:
        pass

    @property
    def content_type(self) -> str:
        """MIME type of the bytes returned by :meth:`synthesize`."""
        return "audio/mpeg"

    @property
    def name(self) -> str:
        return self.__class__.__name__


class BaseTelephony(ABC):
    """Abstract base class for telephony call control.

    Call control travels over the provider's REST API, not the media
    stream: each method replaces the live call's instructions.
    """

    @abstractmethod
    async def play_audio(
        self,
        call_id: str,
        audio_url: str,
        resume_url: str,
        agent: AgentProfile | None = None,
    ) -> None:
        """Play a fetchable audio URL, then resume streaming to ``resume_url``."""
        ...

    @abstractmethod
    async def say(
        self,
        call_id: str,
        text: str,
        resume_url: str,
        agent: AgentProfile | None = None,
    ) -> None:
        """Speak ``text`` with the provider's own voice, then resume streaming."""
        ...

    @abstractmethod
    async def say_and_hangup(
        self,
        call_id: str,
        text: str,
        agent: AgentProfile | None = None,
    ) -> None:
        ...

    @abstractmethod
    async def initiate_call(
        self,
        to: str,
        stream_url: str,
        status_callback_url: str,
        agent: AgentProfile | None = None,
        parameters: dict[str, str] | None = None,
    ) -> str:
        """Place an outbound call whose audio is streamed to ``stream_url``.

        Returns:
            The provider's call id.
        """
        ...

    @abstractmethod
    async def end_call(self, call_id: str, agent: AgentProfile | None = None) -> None:
        ...

    async def close(self) -> None:
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__


class BaseFunctionExecutor(ABC):
    """Runs an agent function the model asked for."""

    @abstractmethod
    async def execute(
        self, function: AgentFunction, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Execute ``function`` and return ``{"success": bool, ...}``.

        Failures are reported in the result rather than raised, so the
        model can explain them to the caller.
        """
        ...

    async def close(self) -> None:
        pass
