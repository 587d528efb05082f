"""Base transport interface for voicegate.

Transports wrap an accepted bridge socket: they send and receive raw
frames and report closure, nothing else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class TransportClosed(ConnectionError):
    """The peer closed the socket."""


class BaseTransport(ABC):
    """Abstract base class for an accepted bridge connection."""

    @abstractmethod
    async def send(self, data: bytes | str) -> None:
        """Send a frame to the peer."""
        ...

    @abstractmethod
    async def recv(self) -> bytes | str:
        """Receive the next frame.

        Raises:
            TransportClosed: If the connection is closed.
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection gracefully. Safe to call twice."""
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...
