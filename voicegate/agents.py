"""Agent profiles: the per-agent configuration a call is answered with.

Agents are authored elsewhere (dashboard, database); the gateway only
needs to look one up by id once a call's agent is resolved. The
in-memory directory is populated from the ``agents`` section of the
gateway config.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field


class AgentNotFoundError(LookupError):
    """Raised when an agent id cannot be resolved to a profile."""


class VoiceSettings(BaseModel):
    """How an agent sounds on the phone."""

    voice_id: str = "rachel"  # ElevenLabs voice id or alias
    stability: float = 0.5
    similarity_boost: float = 0.75
    say_voice: str = "alice"  # telephony-native fallback voice
    language: str = "en-US"


class FunctionParameter(BaseModel):
    name: str
    type: str = "string"
    required: bool = False
    description: str = ""


class HeaderEntry(BaseModel):
    key: str
    value: str


class AgentFunction(BaseModel):
    """A side-effecting action the model may ask to run mid-call.

    Only ``custom`` functions (an HTTP request with ``{param}``
    placeholders in url, headers and body) are executed by the gateway.
    """

    name: str
    description: str = ""
    type: Literal["custom", "cal_com"] = "custom"
    parameters: list[FunctionParameter] = Field(default_factory=list)
    method: str = "POST"
    url: str = ""
    headers: list[HeaderEntry] = Field(default_factory=list)
    body_template: str | dict[str, Any] | None = None


class TwilioCredentials(BaseModel):
    """Per-agent Twilio account; falls back to the gateway's own when empty."""

    account_sid: str = ""
    auth_token: str = ""
    phone_number: str = ""


class AgentProfile(BaseModel):
    id: str
    name: str = ""
    system_prompt: str = "You are a helpful AI assistant."
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    voice: VoiceSettings = Field(default_factory=VoiceSettings)
    functions: list[AgentFunction] = Field(default_factory=list)
    twilio: TwilioCredentials = Field(default_factory=TwilioCredentials)

    def find_function(self, name: str) -> AgentFunction | None:
        wanted = (name or "").strip()
        for function in self.functions:
            if function.name.strip() == wanted:
                return function
        return None


class AgentDirectory(ABC):
    """Read access to agent profiles."""

    @abstractmethod
    async def get(self, agent_id: str) -> AgentProfile | None:
        """Return the profile for ``agent_id``, or None if unknown."""
        ...

    async def require(self, agent_id: str | None) -> AgentProfile:
        """Like :meth:`get`, but raise :class:`AgentNotFoundError` when missing."""
        if not agent_id:
            raise AgentNotFoundError("No agent id was supplied")
        agent = await self.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Unknown agent: {agent_id}")
        return agent


class InMemoryAgentDirectory(AgentDirectory):
    """Agent directory backed by a dict, seeded from config."""

    def __init__(self, agents: list[AgentProfile] | None = None) -> None:
        self._agents: dict[str, AgentProfile] = {}
        self._lock = threading.Lock()
        for agent in agents or []:
            self.add(agent)

    def add(self, agent: AgentProfile) -> None:
        with self._lock:
            self._agents[agent.id] = agent
        logger.debug(f"Agent registered: {agent.id} ({agent.name or 'unnamed'})")

    async def get(self, agent_id: str) -> AgentProfile | None:
        with self._lock:
            return self._agents.get(agent_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)
