from voicegate.transports.base import BaseTransport, TransportClosed
from voicegate.transports.websocket import FastAPIWebSocketTransport

__all__ = ["BaseTransport", "FastAPIWebSocketTransport", "TransportClosed"]
