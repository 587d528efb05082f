"""TwiML documents used to steer a live call.

Every playback instruction ends by reconnecting the media stream, so the
caller's next utterance flows back into the gateway.
"""

from __future__ import annotations

from xml.sax.saxutils import escape, quoteattr

MAX_SAY_CHARS = 500

_XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def _stream(stream_url: str, parameters: dict[str, str] | None = None) -> str:
    if not parameters:
        return f"<Connect><Stream url={quoteattr(stream_url)} /></Connect>"
    params = "".join(
        f"<Parameter name={quoteattr(k)} value={quoteattr(str(v))} />"
        for k, v in parameters.items()
        if v is not None
    )
    return f"<Connect><Stream url={quoteattr(stream_url)}>{params}</Stream></Connect>"


def _say(text: str, voice: str, language: str) -> str:
    return (
        f"<Say voice={quoteattr(voice)} language={quoteattr(language)}>"
        f"{escape(text[:MAX_SAY_CHARS])}</Say>"
    )


def connect_stream(stream_url: str, parameters: dict[str, str] | None = None) -> str:
    """Bridge the call's audio to ``stream_url``."""
    return f"{_XML_HEADER}<Response>{_stream(stream_url, parameters)}</Response>"


def play_then_stream(audio_url: str, stream_url: str) -> str:
    return (
        f"{_XML_HEADER}<Response><Play>{escape(audio_url)}</Play>"
        f"{_stream(stream_url)}</Response>"
    )


def say_then_stream(
    text: str, stream_url: str, voice: str = "alice", language: str = "en-US"
) -> str:
    """Speak with the provider's built-in voice (text capped at 500 chars)."""
    return (
        f"{_XML_HEADER}<Response>{_say(text, voice, language)}"
        f"{_stream(stream_url)}</Response>"
    )


def say_then_hangup(text: str, voice: str = "alice", language: str = "en-US") -> str:
    return f"{_XML_HEADER}<Response>{_say(text, voice, language)}<Hangup /></Response>"
