"""Configuration system for voicegate.

Settings load from YAML files, dicts, or programmatic construction via
Pydantic models and drive listener settings, store bounds, timeouts and
provider selection. Secrets come from the environment (or a ``.env``
file) through :class:`Credentials` and fill whatever the file leaves
blank.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from voicegate.agents import AgentProfile


class ServerConfig(BaseModel):
    """Where the gateway listens and how the outside world reaches it."""

    host: str = "0.0.0.0"
    port: int = 3000
    stream_path: str = "/voice-stream"
    # Externally reachable HTTP base, e.g. https://gw.example.com
    public_url: str = ""
    # Explicit ws(s):// URL of the media bridge; derived from public_url if empty
    stream_url: str = ""


class AggregatorConfig(BaseModel):
    debounce_ms: float = 400.0


class RegistryConfig(BaseModel):
    max_turns: int = 20
    reap_after_seconds: float = 3600.0
    idle_reap_after_seconds: float = 14400.0
    reap_interval_seconds: float = 300.0


class AudioStoreConfig(BaseModel):
    max_entries: int = 120
    low_watermark: int = 100
    max_age_seconds: float | None = 600.0


class TranscriptBusConfig(BaseModel):
    close_grace_seconds: float = 5.0


class TimeoutConfig(BaseModel):
    """Upper bounds on collaborator calls, in seconds."""

    generation_seconds: float = 8.0
    tts_seconds: float = 6.0
    telephony_seconds: float = 5.0
    function_seconds: float = 10.0


class ProviderConfig(BaseModel):
    """A collaborator selection: registry name plus constructor kwargs."""

    provider: str = ""
    config: dict[str, Any] = Field(default_factory=dict)


class GenerationConfig(BaseModel):
    """Defaults for reply generation; agents may override model settings."""

    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 120
    fallback_reply: str = "I'm sorry, I had a brief issue. Could you repeat that?"
    unknown_agent_message: str = (
        "Sorry, this line is not configured right now. Goodbye."
    )


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Credentials(BaseSettings):
    """Secrets and deployment URLs read from the environment."""

    openai_api_key: str = ""
    deepgram_api_key: str = ""
    elevenlabs_api_key: str = ""
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_phone_number: str = ""
    server_url: str = ""
    voice_gateway_ws_url: str = ""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class GatewayConfig(BaseModel):
    """Top-level voicegate configuration.

    Examples:
        # Programmatic
        config = GatewayConfig(
            server=ServerConfig(port=3000, public_url="https://gw.example.com"),
            agents=[AgentProfile(id="support", system_prompt="...")],
        )

        # From YAML
        config = GatewayConfig.from_yaml("voicegate.yaml")

        # Shorthand
        config = GatewayConfig.from_dict({
            "port": 3000,
            "public_url": "https://gw.example.com",
            "debounce_ms": 400,
        })
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    aggregator: AggregatorConfig = Field(default_factory=AggregatorConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    audio_store: AudioStoreConfig = Field(default_factory=AudioStoreConfig)
    transcript_bus: TranscriptBusConfig = Field(default_factory=TranscriptBusConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    stt: ProviderConfig = Field(default_factory=lambda: ProviderConfig(provider="deepgram"))
    llm: ProviderConfig = Field(default_factory=lambda: ProviderConfig(provider="openai"))
    tts: ProviderConfig = Field(default_factory=lambda: ProviderConfig(provider="elevenlabs"))
    telephony: ProviderConfig = Field(default_factory=lambda: ProviderConfig(provider="twilio"))
    functions: ProviderConfig = Field(default_factory=lambda: ProviderConfig(provider="http"))

    agents: list[AgentProfile] = Field(default_factory=list)

    @property
    def public_url(self) -> str:
        """HTTP base used to build fetchable audio URLs ('' if unset)."""
        return self.server.public_url.rstrip("/")

    @property
    def stream_url(self) -> str:
        """The ws(s) URL the telephony provider should stream audio to."""
        if self.server.stream_url:
            return self.server.stream_url
        if not self.public_url:
            return ""
        base = self.public_url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{base}{self.server.stream_path}"

    def with_credentials(self, creds: Credentials) -> GatewayConfig:
        """Return a copy with blank URLs and API keys filled from ``creds``."""
        data = self.model_copy(deep=True)
        if not data.server.public_url and creds.server_url:
            data.server.public_url = creds.server_url
        if not data.server.stream_url and creds.voice_gateway_ws_url:
            data.server.stream_url = creds.voice_gateway_ws_url

        env_keys = {
            ("stt", "deepgram"): {"api_key": creds.deepgram_api_key},
            ("llm", "openai"): {"api_key": creds.openai_api_key},
            ("tts", "elevenlabs"): {"api_key": creds.elevenlabs_api_key},
            ("telephony", "twilio"): {
                "account_sid": creds.twilio_account_sid,
                "auth_token": creds.twilio_auth_token,
                "from_number": creds.twilio_phone_number,
            },
        }
        for (section, provider), values in env_keys.items():
            selected: ProviderConfig = getattr(data, section)
            if selected.provider != provider:
                continue
            for key, value in values.items():
                if value and not selected.config.get(key):
                    selected.config[key] = value
        return data

    @classmethod
    def from_yaml(cls, path: str | Path) -> GatewayConfig:
        """Load configuration from a YAML file."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls._from_raw(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GatewayConfig:
        """Load configuration from a dictionary.

        Supports both the full nested format and a flat shorthand format:

        Full format:
            {"server": {"port": 3000}, "aggregator": {"debounce_ms": 400}}

        Shorthand format:
            {"port": 3000, "debounce_ms": 400, "log_level": "DEBUG"}
        """
        return cls._from_raw(dict(data))

    @classmethod
    def _from_raw(cls, data: dict[str, Any]) -> GatewayConfig:
        """Normalize and construct config from a raw dict."""
        # Provider sections may be given as a bare name
        for section in ("stt", "llm", "tts", "telephony", "functions"):
            if isinstance(data.get(section), str):
                data[section] = {"provider": data[section]}

        flat_mappings = {
            "host": ("server", "host"),
            "port": ("server", "port"),
            "stream_path": ("server", "stream_path"),
            "public_url": ("server", "public_url"),
            "stream_url": ("server", "stream_url"),
            "debounce_ms": ("aggregator", "debounce_ms"),
            "max_turns": ("registry", "max_turns"),
            "log_level": ("logging", "level"),
        }

        for flat_key, (section, nested_key) in flat_mappings.items():
            if flat_key in data:
                if section not in data:
                    data[section] = {}
                data[section][nested_key] = data.pop(flat_key)

        return cls(**data)


def load_config(source: str | Path | dict[str, Any] | GatewayConfig | None = None) -> GatewayConfig:
    """Load a GatewayConfig from any supported source.

    Args:
        source: A YAML file path (str/Path), a dict, an existing
            GatewayConfig, or None for defaults.

    Returns:
        A GatewayConfig instance.
    """
    if source is None:
        return GatewayConfig()
    if isinstance(source, GatewayConfig):
        return source
    if isinstance(source, dict):
        return GatewayConfig.from_dict(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        return GatewayConfig.from_yaml(path)
    raise TypeError(f"Cannot load config from {type(source)}")


# Default YAML template for `voicegate init`
DEFAULT_CONFIG_YAML = """\
# voicegate configuration
# API keys and Twilio credentials are read from the environment (or .env):
#   OPENAI_API_KEY, DEEPGRAM_API_KEY, ELEVENLABS_API_KEY,
#   TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER,
#   SERVER_URL, VOICE_GATEWAY_WS_URL

server:
  host: 0.0.0.0
  port: 3000
  stream_path: /voice-stream
  public_url: ""        # e.g. https://gw.example.com (required for audio playback)

aggregator:
  debounce_ms: 400      # silence after an interim transcript before it counts as finished

registry:
  max_turns: 20
  reap_after_seconds: 3600          # finished calls are dropped after this long
  idle_reap_after_seconds: 14400    # calls that never report an end status

audio_store:
  max_entries: 120
  low_watermark: 100
  max_age_seconds: 600

timeouts:
  generation_seconds: 8
  tts_seconds: 6
  telephony_seconds: 5

stt:
  provider: deepgram
  config:
    model: nova-2
llm:
  provider: openai
tts:
  provider: elevenlabs
telephony:
  provider: twilio

generation:
  model: gpt-4o-mini
  temperature: 0.7
  max_tokens: 120

logging:
  level: INFO

agents:
  - id: support
    name: Support line
    system_prompt: "You are a friendly support agent for Example Corp."
    voice:
      voice_id: rachel
"""
