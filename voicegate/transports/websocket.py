"""WebSocket transport over a FastAPI/Starlette accepted socket."""

from __future__ import annotations

from typing import Any

from loguru import logger
from starlette.websockets import WebSocketDisconnect

from voicegate.transports.base import BaseTransport, TransportClosed


class FastAPIWebSocketTransport(BaseTransport):
    """Adapter that makes a FastAPI ``WebSocket`` a :class:`BaseTransport`."""

    def __init__(self, websocket: Any) -> None:
        self._ws = websocket
        self._connected = True

    async def send(self, data: bytes | str) -> None:
        if not self._connected:
            raise TransportClosed("WebSocket is closed")
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_text(data)

    async def recv(self) -> bytes | str:
        if not self._connected:
            raise TransportClosed("WebSocket is closed")
        try:
            msg = await self._ws.receive()
        except (WebSocketDisconnect, RuntimeError) as e:
            self._connected = False
            raise TransportClosed(str(e)) from e

        if msg.get("type") == "websocket.disconnect":
            self._connected = False
            raise TransportClosed(f"WebSocket closed (code={msg.get('code')})")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise TransportClosed("Unexpected WebSocket message type")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close()
        except RuntimeError as e:
            # Already closed by the peer
            logger.debug(f"WebSocket close ignored: {e}")

    def is_connected(self) -> bool:
        return self._connected
