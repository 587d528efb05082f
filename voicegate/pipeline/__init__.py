"""Response pipeline: utterance aggregation, reply generation and playback.

Usage:
    from voicegate.pipeline import UtteranceAggregator, ResponseOrchestrator

    aggregator = UtteranceAggregator(on_utterance=handle_text, debounce_ms=400)
    await aggregator.on_stt_result(result)
"""

from voicegate.pipeline.aggregator import UtteranceAggregator
from voicegate.pipeline.orchestrator import ResponseOrchestrator
from voicegate.pipeline.playback import PlaybackDispatcher, PlaybackResult, PlaybackTarget

__all__ = [
    "UtteranceAggregator",
    "ResponseOrchestrator",
    "PlaybackDispatcher",
    "PlaybackResult",
    "PlaybackTarget",
]
