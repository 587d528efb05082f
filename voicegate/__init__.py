"""voicegate - Real-time voice call gateway.

Bridges live call audio (telephony media streams or browser sockets) to
streaming speech-to-text, turns finished utterances into agent replies
with an LLM, and plays them back as synthesized audio.

Quick start (config-driven):
    $ pip install voicegate
    $ voicegate init          # generates voicegate.yaml
    $ voicegate run --config voicegate.yaml

Quick start (programmatic):
    from voicegate import create_app

    app = create_app({
        "port": 3000,
        "public_url": "https://gw.example.com",
        "agents": [{"id": "support", "system_prompt": "You are helpful."}],
    })
"""

__version__ = "0.1.0"

# Core
from voicegate.config import Credentials, GatewayConfig, load_config
from voicegate.context import GatewayContext
from voicegate.server import create_app, run_server

# Agents
from voicegate.agents import AgentDirectory, AgentProfile, InMemoryAgentDirectory

# Events
from voicegate.core.events import (
    AudioEncoding,
    AudioSource,
    CallStatus,
    MediaChunk,
    StatusUpdate,
    StreamStarted,
    StreamStopped,
    TranscriptUpdate,
)

# Stores
from voicegate.stores import AudioBlobStore, CallRegistry, TranscriptBus

# Gateway
from voicegate.gateway import GatewayListener, VoiceGatewayConnection

# Pipeline
from voicegate.pipeline.aggregator import UtteranceAggregator
from voicegate.pipeline.orchestrator import ResponseOrchestrator
from voicegate.pipeline.playback import PlaybackDispatcher, PlaybackResult, PlaybackTarget

# Providers
from voicegate.providers.base import BaseLLM, BaseSTT, BaseTelephony, BaseTTS
from voicegate.providers.registry import provider_registry

__all__ = [
    # Core
    "GatewayConfig",
    "GatewayContext",
    "Credentials",
    "load_config",
    "create_app",
    "run_server",
    # Agents
    "AgentDirectory",
    "AgentProfile",
    "InMemoryAgentDirectory",
    # Events
    "AudioEncoding",
    "AudioSource",
    "CallStatus",
    "MediaChunk",
    "StatusUpdate",
    "StreamStarted",
    "StreamStopped",
    "TranscriptUpdate",
    # Stores
    "AudioBlobStore",
    "CallRegistry",
    "TranscriptBus",
    # Gateway
    "GatewayListener",
    "VoiceGatewayConnection",
    # Pipeline
    "UtteranceAggregator",
    "ResponseOrchestrator",
    "PlaybackDispatcher",
    "PlaybackResult",
    "PlaybackTarget",
    # Providers
    "BaseSTT",
    "BaseLLM",
    "BaseTTS",
    "BaseTelephony",
    "provider_registry",
]
