"""Process-scoped in-memory stores shared by every bridged call."""

from voicegate.stores.audio_blobs import AudioBlob, AudioBlobStore
from voicegate.stores.call_registry import CallRegistry, CallSession, ConversationTurn
from voicegate.stores.transcript_bus import TranscriptBus

__all__ = [
    "AudioBlob",
    "AudioBlobStore",
    "CallRegistry",
    "CallSession",
    "ConversationTurn",
    "TranscriptBus",
]
