"""Tests for response orchestration: prompting, tools, recording and fallback."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from voicegate.agents import AgentFunction, AgentProfile, FunctionParameter
from voicegate.config import GenerationConfig
from voicegate.core.events import CallStatus, TranscriptUpdate
from voicegate.pipeline.orchestrator import ResponseOrchestrator
from voicegate.pipeline.playback import PlaybackTarget
from voicegate.pipeline.prompt import (
    VOICE_GUIDANCE,
    build_messages,
    build_system_prompt,
    build_tools,
)
from voicegate.providers.base import LLMReply, LLMToolCall
from voicegate.stores import CallRegistry, TranscriptBus

FALLBACK = GenerationConfig().fallback_reply


@pytest.fixture
def registry():
    registry = CallRegistry()
    registry.update_status("CA1", CallStatus.IN_PROGRESS)
    return registry


@pytest.fixture
def bus():
    return TranscriptBus()


@pytest.fixture
def playback():
    return AsyncMock()


@pytest.fixture
def lookup_agent():
    return AgentProfile(
        id="orders",
        system_prompt="You track orders.",
        functions=[
            AgentFunction(
                name="lookup_order",
                description="Find an order by id",
                url="https://api.example.com/orders/{order_id}",
                method="GET",
                parameters=[FunctionParameter(name="order_id", required=True)],
            )
        ],
    )


def make_orchestrator(registry, bus, llm, playback, **kwargs):
    return ResponseOrchestrator(
        registry=registry,
        bus=bus,
        llm=llm,
        playback=playback,
        **kwargs,
    )


# =========================================================================
# Prompt assembly
# =========================================================================


class TestPrompt:

    def test_system_prompt_includes_guidance(self, agent):
        prompt = build_system_prompt(agent)
        assert prompt.startswith("You help customers.")
        assert VOICE_GUIDANCE in prompt

    def test_system_prompt_lists_functions(self, lookup_agent):
        prompt = build_system_prompt(lookup_agent)
        assert "AVAILABLE FUNCTIONS" in prompt
        assert "lookup_order: Find an order by id" in prompt

    def test_messages_order(self, agent):
        history = [
            {"role": "user", "text": "hi"},
            {"role": "assistant", "text": "hello"},
        ]
        messages = build_messages(agent, history, "where is my order")
        assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
        assert messages[-1].content == "where is my order"

    def test_tools_schema(self, lookup_agent):
        (tool,) = build_tools(lookup_agent)
        assert tool["type"] == "function"
        assert tool["function"]["name"] == "lookup_order"
        assert tool["function"]["parameters"]["required"] == ["order_id"]
        assert tool["function"]["parameters"]["properties"]["order_id"]["type"] == "string"

    def test_non_custom_functions_are_not_tools(self):
        agent = AgentProfile(id="a", functions=[AgentFunction(name="book", type="cal_com")])
        assert build_tools(agent) == []


# =========================================================================
# ResponseOrchestrator
# =========================================================================


class TestResponseOrchestrator:

    @pytest.mark.asyncio
    async def test_full_turn(self, agent, registry, bus, llm, playback):
        events = []
        bus.subscribe("CA1", events.append)
        orchestrator = make_orchestrator(registry, bus, llm, playback)
        target = PlaybackTarget(call_id="CA1")

        reply = await orchestrator.respond(agent, "CA1", "I need help", target)

        assert reply == "Sure, I can help."
        assert registry.get_conversation("CA1") == [
            {"role": "user", "text": "I need help"},
            {"role": "assistant", "text": "Sure, I can help."},
        ]
        assert events == [
            TranscriptUpdate(role="user", text="I need help"),
            TranscriptUpdate(role="assistant", text="Sure, I can help."),
        ]
        playback.dispatch.assert_awaited_once_with("Sure, I can help.", target)

    @pytest.mark.asyncio
    async def test_history_is_sent_to_model(self, agent, registry, bus, llm, playback):
        registry.append_turn("CA1", "user", "hello")
        registry.append_turn("CA1", "assistant", "hi there")
        orchestrator = make_orchestrator(registry, bus, llm, playback)

        await orchestrator.respond(agent, "CA1", "what now", PlaybackTarget(call_id="CA1"))

        messages = llm.complete.await_args.args[0]
        assert [m.content for m in messages[1:]] == ["hello", "hi there", "what now"]

    @pytest.mark.asyncio
    async def test_model_settings(self, registry, bus, llm, playback):
        agent = AgentProfile(id="a", model="gpt-4o", temperature=0.2, max_tokens=500)
        orchestrator = make_orchestrator(
            registry, bus, llm, playback, generation=GenerationConfig(max_tokens=120)
        )
        await orchestrator.respond(agent, "CA1", "hi", PlaybackTarget(call_id="CA1"))

        kwargs = llm.complete.await_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.2
        assert kwargs["max_tokens"] == 120
        assert kwargs["tools"] is None

    @pytest.mark.asyncio
    async def test_generation_error_uses_fallback(self, agent, registry, bus, llm, playback):
        llm.complete.side_effect = RuntimeError("rate limited")
        orchestrator = make_orchestrator(registry, bus, llm, playback)

        reply = await orchestrator.respond(agent, "CA1", "hello?", PlaybackTarget(call_id="CA1"))

        assert reply == FALLBACK
        assert registry.get_conversation("CA1")[-1] == {"role": "assistant", "text": FALLBACK}
        playback.dispatch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_generation_timeout_uses_fallback(self, agent, registry, bus, playback):
        llm = AsyncMock()

        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        llm.complete.side_effect = hang
        orchestrator = make_orchestrator(registry, bus, llm, playback, generation_timeout=0.02)

        reply = await orchestrator.respond(agent, "CA1", "hello?", PlaybackTarget(call_id="CA1"))
        assert reply == FALLBACK

    @pytest.mark.asyncio
    async def test_empty_reply_uses_fallback(self, agent, registry, bus, llm, playback):
        llm.complete.return_value = LLMReply(text="")
        orchestrator = make_orchestrator(registry, bus, llm, playback)
        reply = await orchestrator.respond(agent, "CA1", "hm", PlaybackTarget(call_id="CA1"))
        assert reply == FALLBACK

    @pytest.mark.asyncio
    async def test_missing_llm_uses_fallback(self, agent, registry, bus, playback):
        orchestrator = make_orchestrator(registry, bus, None, playback)
        reply = await orchestrator.respond(agent, "CA1", "hm", PlaybackTarget(call_id="CA1"))
        assert reply == FALLBACK

    @pytest.mark.asyncio
    async def test_tool_call_result_feeds_second_generation(self, lookup_agent, registry, bus, playback):
        llm = AsyncMock()
        llm.complete.side_effect = [
            LLMReply(tool_calls=[LLMToolCall(id="tc_1", name="lookup_order", arguments={"order_id": "42"})]),
            LLMReply(text="Order 42 ships tomorrow."),
        ]
        executor = AsyncMock()
        executor.execute.return_value = {"success": True, "status": 200, "data": {"eta": "tomorrow"}}
        orchestrator = make_orchestrator(registry, bus, llm, playback, function_executor=executor)

        reply = await orchestrator.respond(
            lookup_agent, "CA1", "where is order 42", PlaybackTarget(call_id="CA1")
        )

        assert reply == "Order 42 ships tomorrow."
        function, arguments = executor.execute.await_args.args
        assert function.name == "lookup_order"
        assert arguments == {"order_id": "42"}

        first_call, second_call = llm.complete.await_args_list
        assert first_call.kwargs["tools"][0]["function"]["name"] == "lookup_order"
        assert second_call.kwargs["tools"] is None
        tool_message = second_call.args[0][-1]
        assert tool_message.role == "tool"
        assert tool_message.tool_call_id == "tc_1"
        assert '"eta": "tomorrow"' in tool_message.content
        playback.dispatch.assert_awaited_once()
        assert playback.dispatch.await_args.args[0] == "Order 42 ships tomorrow."

    @pytest.mark.asyncio
    async def test_ended_call_skips_generation(self, agent, registry, bus, llm, playback):
        registry.update_status("CA9", CallStatus.COMPLETED)
        events = []
        bus.subscribe("CA9", events.append)
        orchestrator = make_orchestrator(registry, bus, llm, playback)

        reply = await orchestrator.respond(agent, "CA9", "hello", PlaybackTarget(call_id="CA9"))

        assert reply == ""
        llm.complete.assert_not_awaited()
        assert registry.get_conversation("CA9") == []
        assert events == []
        playback.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_call_skips_generation(self, agent, registry, bus, llm, playback):
        orchestrator = make_orchestrator(registry, bus, llm, playback)
        reply = await orchestrator.respond(agent, "CA404", "hello", PlaybackTarget(call_id="CA404"))
        assert reply == ""
        llm.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_function_reports_error_to_model(self, lookup_agent, registry, bus, playback):
        llm = AsyncMock()
        llm.complete.side_effect = [
            LLMReply(tool_calls=[LLMToolCall(id="tc_1", name="delete_everything", arguments={})]),
            LLMReply(text="I can't do that."),
        ]
        executor = AsyncMock()
        orchestrator = make_orchestrator(registry, bus, llm, playback, function_executor=executor)

        reply = await orchestrator.respond(lookup_agent, "CA1", "do it", PlaybackTarget(call_id="CA1"))

        assert reply == "I can't do that."
        executor.execute.assert_not_awaited()
        tool_message = llm.complete.await_args.args[0][-1]
        assert "not found" in tool_message.content

    @pytest.mark.asyncio
    async def test_executor_failure_reported_to_model(self, lookup_agent, registry, bus, playback):
        llm = AsyncMock()
        llm.complete.side_effect = [
            LLMReply(tool_calls=[LLMToolCall(id="tc_1", name="lookup_order", arguments={"order_id": "1"})]),
            LLMReply(text="The order system is down."),
        ]
        executor = AsyncMock()
        executor.execute.side_effect = RuntimeError("connection refused")
        orchestrator = make_orchestrator(registry, bus, llm, playback, function_executor=executor)

        reply = await orchestrator.respond(lookup_agent, "CA1", "order 1", PlaybackTarget(call_id="CA1"))

        assert reply == "The order system is down."
        assert "connection refused" in llm.complete.await_args.args[0][-1].content

    @pytest.mark.asyncio
    async def test_no_tools_without_executor(self, lookup_agent, registry, bus, llm, playback):
        orchestrator = make_orchestrator(registry, bus, llm, playback)
        await orchestrator.respond(lookup_agent, "CA1", "hi", PlaybackTarget(call_id="CA1"))
        assert llm.complete.await_args.kwargs["tools"] is None
