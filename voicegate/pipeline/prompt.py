"""Prompt assembly for a phone turn.

Builds the system prompt from the agent's instructions plus fixed voice
call guidance, and exposes the agent's functions as OpenAI-style tools.
"""

from __future__ import annotations

from typing import Any

from voicegate.agents import AgentFunction, AgentProfile
from voicegate.providers.base import Message

VOICE_GUIDANCE = """\
=== VOICE CALL INSTRUCTIONS ===
This is a live phone conversation. Follow these rules:
- Keep every reply short and conversational (1-3 sentences).
- Speak naturally, the way a person would on the phone.
- Avoid lists, long explanations and marketing pitches.
- If asked to repeat yourself, give a brief summary.
- Ask a follow-up question when it keeps the conversation moving.
- Stay within the topic of your instructions; politely decline anything unrelated."""

_JSON_TYPES = {"string", "number", "integer", "boolean", "array", "object"}


def build_system_prompt(agent: AgentProfile) -> str:
    prompt = (agent.system_prompt or "You are a helpful AI assistant.").strip()
    prompt += "\n\n" + VOICE_GUIDANCE

    callable_functions = [f for f in agent.functions if f.type == "custom"]
    if callable_functions:
        prompt += "\n\n=== AVAILABLE FUNCTIONS ===\n"
        prompt += "Call a function only when you need its result to answer. "
        prompt += "Never invent function results.\n"
        for function in callable_functions:
            prompt += f"- {function.name}: {function.description}\n"
    return prompt


def build_messages(
    agent: AgentProfile,
    history: list[dict[str, str]],
    utterance: str,
) -> list[Message]:
    """System prompt, then prior turns in order, then the new utterance."""
    messages = [Message(role="system", content=build_system_prompt(agent))]
    for turn in history:
        role = turn.get("role", "")
        if role in ("user", "assistant") and turn.get("text"):
            messages.append(Message(role=role, content=turn["text"]))
    messages.append(Message(role="user", content=utterance))
    return messages


def function_to_tool(function: AgentFunction) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for param in function.parameters:
        json_type = param.type if param.type in _JSON_TYPES else "string"
        properties[param.name] = {"type": json_type, "description": param.description}
        if param.required:
            required.append(param.name)

    return {
        "type": "function",
        "function": {
            "name": function.name.strip(),
            "description": function.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        },
    }


def build_tools(agent: AgentProfile) -> list[dict[str, Any]]:
    return [function_to_tool(f) for f in agent.functions if f.type == "custom"]
