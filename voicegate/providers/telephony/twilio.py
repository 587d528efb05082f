"""Twilio call control over the REST API.

The Twilio SDK is synchronous, so every request runs in a worker thread
under a short timeout; a hung API call must not stall the event loop or
the caller.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable

from loguru import logger
from twilio.rest import Client

from voicegate.agents import AgentProfile
from voicegate.providers.base import BaseTelephony
from voicegate.providers.telephony import TelephonyError, twiml


class TwilioTelephony(BaseTelephony):
    """Twilio implementation of :class:`BaseTelephony`.

    Agents may carry their own Twilio account; otherwise the gateway-wide
    credentials are used.

    Args:
        account_sid: Default Twilio account SID.
        auth_token: Default Twilio auth token.
        from_number: Default caller id for outbound calls.
        timeout: Per-request timeout in seconds (default: 5.0).
        client_factory: Builds a REST client from (sid, token). Tests
            pass a fake here.
    """

    def __init__(
        self,
        account_sid: str = "",
        auth_token: str = "",
        from_number: str = "",
        timeout: float = 5.0,
        client_factory: Callable[[str, str], Any] | None = None,
    ):
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = from_number
        self._timeout = timeout
        self._client_factory = client_factory or Client
        self._clients: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # In-call instructions
    # ------------------------------------------------------------------

    async def play_audio(
        self,
        call_id: str,
        audio_url: str,
        resume_url: str,
        agent: AgentProfile | None = None,
    ) -> None:
        await self._update_call(call_id, twiml.play_then_stream(audio_url, resume_url), agent)
        logger.info(f"Twilio: playing {audio_url} on {call_id}")

    async def say(
        self,
        call_id: str,
        text: str,
        resume_url: str,
        agent: AgentProfile | None = None,
    ) -> None:
        voice, language = self._say_voice(agent)
        document = twiml.say_then_stream(text, resume_url, voice=voice, language=language)
        await self._update_call(call_id, document, agent)
        logger.info(f"Twilio: <Say> reply on {call_id}")

    async def say_and_hangup(
        self,
        call_id: str,
        text: str,
        agent: AgentProfile | None = None,
    ) -> None:
        voice, language = self._say_voice(agent)
        await self._update_call(
            call_id, twiml.say_then_hangup(text, voice=voice, language=language), agent
        )
        logger.info(f"Twilio: terminal message played on {call_id}")

    # ------------------------------------------------------------------
    # Call lifecycle
    # ------------------------------------------------------------------

    async def initiate_call(
        self,
        to: str,
        stream_url: str,
        status_callback_url: str,
        agent: AgentProfile | None = None,
        parameters: dict[str, str] | None = None,
    ) -> str:
        client = self._client_for(agent)
        from_number = (agent.twilio.phone_number if agent else "") or self._from_number
        if not from_number:
            raise TelephonyError("No caller id configured for outbound calls")

        document = twiml.connect_stream(stream_url, parameters)
        call = await self._run(
            lambda: client.calls.create(
                twiml=document,
                to=to,
                from_=from_number,
                status_callback=status_callback_url,
                status_callback_event=["initiated", "ringing", "answered", "completed"],
                status_callback_method="POST",
            )
        )
        logger.info(f"Outbound call initiated: {call.sid} | From: {from_number} → To: {to}")
        return call.sid

    async def end_call(self, call_id: str, agent: AgentProfile | None = None) -> None:
        client = self._client_for(agent)
        await self._run(lambda: client.calls(call_id).update(status="completed"))
        logger.info(f"Twilio: ended call {call_id}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _update_call(
        self, call_id: str, document: str, agent: AgentProfile | None
    ) -> None:
        client = self._client_for(agent)
        await self._run(lambda: client.calls(call_id).update(twiml=document))

    async def _run(self, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            raise TelephonyError(f"Twilio request failed: {e}") from e

    def _client_for(self, agent: AgentProfile | None) -> Any:
        sid, token = self._account_sid, self._auth_token
        if agent and agent.twilio.account_sid and agent.twilio.auth_token:
            sid, token = agent.twilio.account_sid, agent.twilio.auth_token
        if not sid or not token:
            raise TelephonyError("Twilio credentials are not configured")

        with self._lock:
            client = self._clients.get((sid, token))
            if client is None:
                client = self._client_factory(sid, token)
                self._clients[(sid, token)] = client
            return client

    @staticmethod
    def _say_voice(agent: AgentProfile | None) -> tuple[str, str]:
        if agent is None:
            return "alice", "en-US"
        return agent.voice.say_voice, agent.voice.language
