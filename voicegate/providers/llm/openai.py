"""OpenAI chat completions provider.

Uses the OpenAI Chat Completions API for one-shot reply generation,
including native tool calling for agent functions.

API key: https://platform.openai.com/
"""

from __future__ import annotations

import json
from typing import Any

from loguru import logger
from openai import AsyncOpenAI

from voicegate.providers.base import BaseLLM, LLMReply, LLMToolCall, Message


class OpenAILLM(BaseLLM):
    """OpenAI GPT provider.

    Args:
        api_key: OpenAI API key.
        model: Default model identifier (default: "gpt-4o-mini").
        base_url: Optional custom API base URL (for Azure, local models, etc.).
        organization: Optional OpenAI organization ID.
        max_retries: Max API retries (default: 1; a caller is waiting).
    """

    def __init__(
        self,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        organization: str | None = None,
        max_retries: int = 1,
    ):
        self._model_name = model
        self._client: AsyncOpenAI | None = None
        if api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                organization=organization,
                max_retries=max_retries,
            )
        else:
            logger.warning("OpenAILLM has no api_key (OPENAI_API_KEY); replies will use the fallback")

    async def complete(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 120,
    ) -> LLMReply:
        if self._client is None:
            raise RuntimeError("OpenAI API key is not configured")

        kwargs: dict[str, Any] = {
            "model": model or self._model_name,
            "messages": self._convert_messages(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        logger.debug(
            f"OpenAI request: model={kwargs['model']}, "
            f"messages={len(messages)}, tools={len(tools or [])}"
        )

        completion = await self._client.chat.completions.create(**kwargs)
        choice = completion.choices[0].message

        tool_calls = []
        for tc in choice.tool_calls or []:
            try:
                arguments = json.loads(tc.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Unparseable tool arguments for {tc.function.name}")
                arguments = {}
            tool_calls.append(
                LLMToolCall(id=tc.id, name=tc.function.name, arguments=arguments)
            )

        usage = completion.usage
        return LLMReply(
            text=(choice.content or "").strip(),
            tool_calls=tool_calls,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    @property
    def model(self) -> str:
        return self._model_name

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _convert_messages(messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Message objects to OpenAI format."""
        oai_messages = []

        for msg in messages:
            oai_msg: dict[str, Any] = {"role": msg.role}

            if msg.role == "tool":
                oai_msg["content"] = msg.content
                oai_msg["tool_call_id"] = msg.tool_call_id
            elif msg.tool_calls:
                oai_msg["content"] = msg.content or None
                oai_msg["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": json.dumps(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
            else:
                oai_msg["content"] = msg.content

            oai_messages.append(oai_msg)

        return oai_messages
