"""Wire protocol translation for the gateway's audio sources."""

from voicegate.core.events import AudioSource
from voicegate.serializers.base import BaseSerializer
from voicegate.serializers.browser import BrowserSerializer
from voicegate.serializers.twilio import TwilioSerializer


def create_serializer(source: AudioSource, agent_id: str | None = None) -> BaseSerializer:
    """Build a fresh serializer for one bridged leg."""
    if source == AudioSource.TELEPHONY:
        return TwilioSerializer()
    return BrowserSerializer(agent_id=agent_id)


__all__ = ["BaseSerializer", "BrowserSerializer", "TwilioSerializer", "create_serializer"]
