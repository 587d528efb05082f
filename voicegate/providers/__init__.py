"""Collaborator providers: STT, LLM, TTS, telephony and function execution."""

from voicegate.providers.base import (
    BaseFunctionExecutor,
    BaseLLM,
    BaseSTT,
    BaseTelephony,
    BaseTTS,
    LLMReply,
    LLMToolCall,
    Message,
    STTResult,
)
from voicegate.providers.registry import ProviderRegistry, provider_registry

__all__ = [
    "BaseFunctionExecutor",
    "BaseLLM",
    "BaseSTT",
    "BaseTelephony",
    "BaseTTS",
    "LLMReply",
    "LLMToolCall",
    "Message",
    "STTResult",
    "ProviderRegistry",
    "provider_registry",
]
