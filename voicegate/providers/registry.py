"""Provider registry: factory for the gateway's collaborator instances.

Supports registration of provider classes by name, with lazy imports so
a vendor SDK is only imported when its provider is actually selected.
"""

from __future__ import annotations

import importlib
from typing import Any, Type

from loguru import logger

from voicegate.providers.base import (
    BaseFunctionExecutor,
    BaseLLM,
    BaseSTT,
    BaseTelephony,
    BaseTTS,
)

_KINDS = ("stt", "llm", "tts", "telephony", "functions")


class ProviderRegistry:
    """Factory for creating provider instances.

    Example:
        stt = provider_registry.create_stt("deepgram", api_key="...", encoding="mulaw")
        llm = provider_registry.create_llm("openai", api_key="...", model="gpt-4o-mini")
        tts = provider_registry.create_tts("elevenlabs", api_key="...")
        telephony = provider_registry.create_telephony("twilio", account_sid="...")
    """

    def __init__(self) -> None:
        self._providers: dict[str, dict[str, Type | str]] = {kind: {} for kind in _KINDS}
        self._register_builtins()

    def _register_builtins(self) -> None:
        """Register built-in providers with lazy import paths."""
        self._providers["stt"]["deepgram"] = "voicegate.providers.stt.deepgram:DeepgramSTT"
        self._providers["llm"]["openai"] = "voicegate.providers.llm.openai:OpenAILLM"
        self._providers["tts"]["elevenlabs"] = "voicegate.providers.tts.elevenlabs:ElevenLabsTTS"
        self._providers["telephony"]["twilio"] = (
            "voicegate.providers.telephony.twilio:TwilioTelephony"
        )
        self._providers["functions"]["http"] = (
            "voicegate.providers.functions.http:HttpFunctionExecutor"
        )

    @staticmethod
    def _resolve_class(ref: Type | str) -> Type:
        """Resolve a class reference, importing lazily if needed."""
        if isinstance(ref, str):
            module_path, class_name = ref.rsplit(":", 1)
            module = importlib.import_module(module_path)
            return getattr(module, class_name)
        return ref

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, kind: str, name: str, cls: Type | str) -> None:
        """Register a custom provider class (or "module:Class" path)."""
        if kind not in self._providers:
            raise ValueError(f"Unknown provider kind '{kind}'. Available: {', '.join(_KINDS)}")
        self._providers[kind][name] = cls
        logger.debug(f"Registered {kind} provider: {name}")

    # ------------------------------------------------------------------
    # Factory methods
    # ------------------------------------------------------------------

    def create(self, kind: str, name: str, **kwargs: Any) -> Any:
        """Create a provider instance.

        Args:
            kind: One of "stt", "llm", "tts", "telephony", "functions".
            name: Provider name (e.g., "deepgram").
            **kwargs: Provider-specific configuration (api_key, model, etc.).

        Raises:
            ValueError: If the kind or provider name is not registered.
        """
        providers = self._providers.get(kind)
        if providers is None:
            raise ValueError(f"Unknown provider kind '{kind}'. Available: {', '.join(_KINDS)}")
        if name not in providers:
            available = ", ".join(providers.keys())
            raise ValueError(f"Unknown {kind} provider '{name}'. Available: {available}")
        cls = self._resolve_class(providers[name])
        logger.debug(f"Creating {kind} provider: {name}")
        return cls(**kwargs)

    def create_stt(self, name: str, **kwargs: Any) -> BaseSTT:
        return self.create("stt", name, **kwargs)

    def create_llm(self, name: str, **kwargs: Any) -> BaseLLM:
        return self.create("llm", name, **kwargs)

    def create_tts(self, name: str, **kwargs: Any) -> BaseTTS:
        return self.create("tts", name, **kwargs)

    def create_telephony(self, name: str, **kwargs: Any) -> BaseTelephony:
        return self.create("telephony", name, **kwargs)

    def create_function_executor(self, name: str, **kwargs: Any) -> BaseFunctionExecutor:
        return self.create("functions", name, **kwargs)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def available(self, kind: str) -> list[str]:
        """List provider names registered for ``kind``."""
        return list(self._providers.get(kind, {}).keys())

    def is_registered(self, kind: str, name: str) -> bool:
        return name in self._providers.get(kind, {})


# Global singleton
provider_registry = ProviderRegistry()
