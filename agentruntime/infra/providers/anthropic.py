"""Anthropic provider for agent runs."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import anthropic

from agentruntime.errors import AgentAPIError, AgentErrorKind
from agentruntime.models.provider import LLMConfig, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


def split_system(messages: list[LLMMessage]) -> tuple[str, list[dict]]:
    """Pull system messages out and merge consecutive same-role turns.

    The Messages API takes the system prompt separately and rejects two
    user (or two assistant) turns in a row.
    """
    system_parts: list[str] = []
    turns: list[dict] = []
    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
        elif turns and turns[-1]["role"] == msg.role:
            turns[-1]["content"] += "\n\n" + msg.content
        else:
            turns.append({"role": msg.role, "content": msg.content})
    return "\n\n".join(system_parts), turns


class AnthropicProvider:
    """Completions and streamed replies through ``anthropic.AsyncAnthropic``.

    SDK-level retries are disabled; ``AgentLLMClient`` owns the retry policy.
    """

    def __init__(self, api_key: str = "", model: str = "") -> None:
        if not api_key:
            raise AgentAPIError(
                AgentErrorKind.API_KEY_MISSING, "Anthropic API key is not configured",
            )
        self._client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)
        self._default_model = model or DEFAULT_MODEL

    def _request(self, messages: list[LLMMessage], config: LLMConfig) -> dict:
        system, turns = split_system(messages)
        if not turns:
            raise ValueError("At least one user message is required")
        request: dict = {
            "model": config.model or self._default_model,
            "max_tokens": config.max_tokens,
            "messages": turns,
            "timeout": config.timeout,
        }
        if system:
            request["system"] = system
        if config.temperature is not None:
            request["temperature"] = config.temperature
        if config.stop_sequences:
            request["stop_sequences"] = config.stop_sequences
        return request

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        request = self._request(messages, config or LLMConfig())
        response = await self._client.messages.create(**request)

        text = "".join(block.text for block in response.content if block.type == "text")
        if not text.strip():
            raise AgentAPIError(
                AgentErrorKind.EMPTY_RESPONSE,
                f"Model returned no text (stop_reason={response.stop_reason})",
            )
        return LLMResponse(
            content=text,
            model=response.model,
            stop_reason=response.stop_reason or "",
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> AsyncIterator[str]:
        request = self._request(messages, config or LLMConfig())
        async with self._client.messages.stream(**request) as stream:
            async for text in stream.text_stream:
                yield text

    async def aclose(self) -> None:
        await self._client.close()
