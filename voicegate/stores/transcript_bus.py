"""Per-call publish/subscribe for live transcript and lifecycle events.

Delivery is synchronous and best-effort: an event published while nobody
is subscribed is dropped, and late subscribers get nothing retroactively.
Closing a call's channel notifies its subscribers and then frees the
channel after a short grace period, so a subscriber that races the close
still finds the closed channel rather than a fresh one.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from voicegate.core.events import ChannelClosed, TranscriptEvent

EventCallback = Callable[[TranscriptEvent], None]
CloseCallback = Callable[[], None]


@dataclass(eq=False)
class _Subscriber:
    on_event: EventCallback
    on_close: CloseCallback | None = None


@dataclass(eq=False)
class _Channel:
    call_id: str
    subscribers: list[_Subscriber] = field(default_factory=list)
    closed: bool = False
    reap_handle: asyncio.TimerHandle | None = None


class TranscriptBus:
    """Fan-out of :class:`TranscriptEvent` objects keyed by call id.

    Args:
        close_grace_seconds: Delay between ``publish_close`` and releasing
            the channel's resources.
    """

    def __init__(self, close_grace_seconds: float = 5.0) -> None:
        self._close_grace_seconds = close_grace_seconds
        self._channels: dict[str, _Channel] = {}

    def subscribe(
        self,
        call_id: str,
        on_event: EventCallback,
        on_close: CloseCallback | None = None,
    ) -> Callable[[], None]:
        """Register a listener for one call.

        Subscribing after a close starts a fresh channel, since a call may
        open a new media stream after the previous one stopped.

        Returns:
            A function that removes this listener only. Calling it more
            than once is harmless.
        """
        channel = self._channels.get(call_id)
        if channel is None or channel.closed:
            if channel is not None and channel.reap_handle is not None:
                channel.reap_handle.cancel()
            channel = _Channel(call_id=call_id)
            self._channels[call_id] = channel

        subscriber = _Subscriber(on_event=on_event, on_close=on_close)
        channel.subscribers.append(subscriber)
        logger.debug(
            f"Transcript subscriber added for {call_id} "
            f"({len(channel.subscribers)} total)"
        )

        def unsubscribe() -> None:
            if subscriber in channel.subscribers:
                channel.subscribers.remove(subscriber)
                logger.debug(f"Transcript subscriber removed for {call_id}")

        return unsubscribe

    def publish(self, call_id: str, event: TranscriptEvent) -> int:
        """Deliver ``event`` to the call's current subscribers.

        Returns:
            The number of subscribers the event was handed to.
        """
        channel = self._channels.get(call_id)
        if channel is None or channel.closed or not channel.subscribers:
            return 0

        delivered = 0
        for subscriber in list(channel.subscribers):
            try:
                subscriber.on_event(event)
                delivered += 1
            except Exception as e:
                logger.error(f"Transcript subscriber error for {call_id}: {e}")
        return delivered

    def publish_close(self, call_id: str) -> None:
        """Signal close to subscribers, then reap the channel after the grace period."""
        channel = self._channels.get(call_id)
        if channel is None or channel.closed:
            return

        channel.closed = True
        closed = ChannelClosed()
        for subscriber in list(channel.subscribers):
            try:
                subscriber.on_event(closed)
                if subscriber.on_close is not None:
                    subscriber.on_close()
            except Exception as e:
                logger.error(f"Transcript close handler error for {call_id}: {e}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._reap(call_id, channel)
            return
        channel.reap_handle = loop.call_later(
            self._close_grace_seconds, self._reap, call_id, channel
        )

    def subscriber_count(self, call_id: str) -> int:
        channel = self._channels.get(call_id)
        return len(channel.subscribers) if channel else 0

    def has_channel(self, call_id: str) -> bool:
        return call_id in self._channels

    def shutdown(self) -> None:
        """Drop every channel and pending reap timer."""
        for channel in self._channels.values():
            if channel.reap_handle is not None:
                channel.reap_handle.cancel()
            channel.subscribers.clear()
        self._channels.clear()

    def _reap(self, call_id: str, channel: _Channel) -> None:
        # A newer channel may have replaced this one since the close.
        if self._channels.get(call_id) is channel:
            del self._channels[call_id]
        channel.subscribers.clear()
        logger.debug(f"Transcript channel for {call_id} released")
