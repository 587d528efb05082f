"""Bridge listener: classifies each accepted socket and runs its controller."""

from __future__ import annotations

import asyncio
from typing import Mapping

from loguru import logger

from voicegate.context import GatewayContext
from voicegate.core.events import AudioSource
from voicegate.gateway.connection import VoiceGatewayConnection
from voicegate.serializers import create_serializer
from voicegate.transports.base import BaseTransport

TELEPHONY_SOURCE_VALUES = frozenset({"twilio", "telephony", "phone"})


def detect_source(query_params: Mapping[str, str], headers: Mapping[str, str] | None = None) -> AudioSource:
    """Classify a connection as a telephony or browser leg.

    An explicit ``source`` query parameter wins; otherwise a Twilio
    user agent marks the leg as telephony. Anything else is a browser.
    """
    source = (query_params.get("source") or "").strip().lower()
    if source in TELEPHONY_SOURCE_VALUES:
        return AudioSource.TELEPHONY
    if source == "browser":
        return AudioSource.BROWSER

    user_agent = ""
    if headers:
        user_agent = headers.get("user-agent") or headers.get("User-Agent") or ""
    if "twilio" in user_agent.lower():
        return AudioSource.TELEPHONY
    return AudioSource.BROWSER


def agent_id_from_query(query_params: Mapping[str, str]) -> str | None:
    agent_id = query_params.get("agentId") or query_params.get("agent_id")
    return agent_id.strip() or None if agent_id else None


class GatewayListener:
    """Accepts bridge sockets and drives one connection per socket."""

    def __init__(self, context: GatewayContext) -> None:
        self._ctx = context
        self._connections: set[VoiceGatewayConnection] = set()

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def handle(
        self,
        transport: BaseTransport,
        query_params: Mapping[str, str],
        headers: Mapping[str, str] | None = None,
    ) -> None:
        """Run the controller for an accepted socket until it stops."""
        source = detect_source(query_params, headers)
        agent_id = agent_id_from_query(query_params)
        serializer = create_serializer(source, agent_id=agent_id)

        connection = VoiceGatewayConnection(self._ctx, transport, serializer, agent_id=agent_id)
        self._connections.add(connection)
        logger.debug(f"Accepted {source.value} leg (agent={agent_id or '-'}), active={len(self._connections)}")
        try:
            await connection.run()
        finally:
            self._connections.discard(connection)

    async def shutdown(self) -> None:
        """Stop every live connection."""
        connections = list(self._connections)
        if connections:
            logger.info(f"Stopping {len(connections)} bridge connection(s)")
        await asyncio.gather(
            *(c.stop("shutdown") for c in connections), return_exceptions=True
        )
