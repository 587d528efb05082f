"""Response orchestration for one finalized utterance.

    utterance → prompt (agent + history) → LLM
        ↳ tool call? → function executor → LLM again with the result
    → registry (user + assistant turns) → transcript bus → playback

Turns for a call that is no longer in progress are dropped before any
generation. A failed or timed-out generation is replaced by a short
apology so the caller never hears silence.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from loguru import logger

from voicegate.agents import AgentProfile
from voicegate.config import GenerationConfig
from voicegate.core.events import TranscriptUpdate
from voicegate.pipeline.playback import PlaybackDispatcher, PlaybackTarget
from voicegate.pipeline.prompt import build_messages, build_tools
from voicegate.providers.base import BaseFunctionExecutor, BaseLLM, LLMReply, Message
from voicegate.stores.call_registry import CallRegistry
from voicegate.stores.transcript_bus import TranscriptBus


class ResponseOrchestrator:
    """Produces, records, publishes and plays the reply to an utterance.

    Args:
        registry: Source of conversation history and sink for new turns.
        bus: Live transcript fan-out.
        llm: Text generation collaborator.
        playback: Plays the reply into the call.
        function_executor: Runs agent functions; None disables tools.
        generation: Model defaults and fallback wording.
        generation_timeout: Seconds allowed for each model call.
    """

    def __init__(
        self,
        registry: CallRegistry,
        bus: TranscriptBus,
        llm: BaseLLM | None,
        playback: PlaybackDispatcher,
        function_executor: BaseFunctionExecutor | None = None,
        generation: GenerationConfig | None = None,
        generation_timeout: float = 8.0,
    ) -> None:
        self._registry = registry
        self._bus = bus
        self._llm = llm
        self._playback = playback
        self._functions = function_executor
        self._generation = generation or GenerationConfig()
        self._generation_timeout = generation_timeout

    async def respond(
        self,
        agent: AgentProfile,
        call_id: str,
        utterance: str,
        target: PlaybackTarget,
    ) -> str:
        """Run one full turn and return the reply that was played.

        Args:
            agent: The call's agent.
            call_id: Registry key of the call.
            utterance: The caller's finalized text.
            target: Where the reply is played.

        Returns an empty string, without generating, when the call is no
        longer in progress.
        """
        if not self._registry.is_active(call_id):
            logger.info(f"Call {call_id} is not active, skipping turn")
            return ""

        history = self._registry.get_conversation(call_id)

        try:
            reply = await self._generate(agent, history, utterance)
        except asyncio.TimeoutError:
            logger.error(f"Generation timed out for call {call_id}")
            reply = ""
        except Exception as e:
            logger.error(f"Generation failed for call {call_id}: {e}")
            reply = ""
        if not reply:
            reply = self._generation.fallback_reply

        self._registry.append_turn(call_id, "user", utterance)
        self._registry.append_turn(call_id, "assistant", reply)

        self._bus.publish(call_id, TranscriptUpdate(role="user", text=utterance))
        self._bus.publish(call_id, TranscriptUpdate(role="assistant", text=reply))

        logger.info(f"Reply for {call_id}: '{reply[:80]}{'...' if len(reply) > 80 else ''}'")
        await self._playback.dispatch(reply, target)
        return reply

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _generate(
        self, agent: AgentProfile, history: list[dict[str, str]], utterance: str
    ) -> str:
        if self._llm is None:
            raise RuntimeError("No LLM provider configured")

        messages = build_messages(agent, history, utterance)
        tools = build_tools(agent) if self._functions else []

        reply = await self._complete(agent, messages, tools)
        if not reply.tool_calls:
            return reply.text

        messages.append(
            Message(role="assistant", content=reply.text, tool_calls=reply.tool_calls)
        )
        for tool_call in reply.tool_calls:
            result = await self._run_function(agent, tool_call.name, tool_call.arguments)
            messages.append(
                Message(
                    role="tool",
                    content=json.dumps(result, default=str),
                    tool_call_id=tool_call.id,
                    name=tool_call.name,
                )
            )

        follow_up = await self._complete(agent, messages, None)
        return follow_up.text

    async def _complete(
        self,
        agent: AgentProfile,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
    ) -> LLMReply:
        return await asyncio.wait_for(
            self._llm.complete(
                messages,
                tools=tools or None,
                model=agent.model or self._generation.model,
                temperature=(
                    agent.temperature
                    if agent.temperature is not None
                    else self._generation.temperature
                ),
                max_tokens=min(
                    agent.max_tokens or self._generation.max_tokens,
                    self._generation.max_tokens,
                ),
            ),
            timeout=self._generation_timeout,
        )

    async def _run_function(
        self, agent: AgentProfile, name: str, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        function = agent.find_function(name)
        if function is None:
            logger.warning(f"Model called unknown function '{name}' for agent {agent.id}")
            return {"success": False, "error": f"Function {name} not found"}

        logger.info(f"Executing function {name} for agent {agent.id}")
        try:
            return await self._functions.execute(function, arguments)
        except Exception as e:
            logger.error(f"Function {name} failed: {e}")
            return {"success": False, "error": str(e)}
