"""llama.cpp provider over its OpenAI-compatible chat endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

import httpx

from agentruntime.errors import AgentAPIError, AgentErrorKind
from agentruntime.models.provider import LLMConfig, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080"
CHAT_PATH = "/v1/chat/completions"


def parse_sse_line(line: str) -> str | None:
    """Text delta carried by one ``data:`` line of a streamed response, if any."""
    if not line.startswith("data:"):
        return None
    body = line[5:].strip()
    if not body or body == "[DONE]":
        return None
    try:
        delta = json.loads(body)["choices"][0].get("delta", {})
    except (json.JSONDecodeError, KeyError, IndexError):
        logger.debug("Skipping malformed stream line: %s", body[:200])
        return None
    return delta.get("content") or None


class LlamaCppProvider:
    """Local model served by ``llama-server``."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._default_model = model
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=300.0)

    def _payload(self, messages: list[LLMMessage], config: LLMConfig, stream: bool) -> dict:
        payload: dict = {
            "messages": [m.to_dict() for m in messages],
            "max_tokens": config.max_tokens,
            "stream": stream,
        }
        if config.temperature is not None:
            payload["temperature"] = config.temperature
        if model := config.model or self._default_model:
            payload["model"] = model
        if config.stop_sequences:
            payload["stop"] = config.stop_sequences
        return payload

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        config = config or LLMConfig()
        response = await self._client.post(
            CHAT_PATH, json=self._payload(messages, config, stream=False), timeout=config.timeout,
        )
        response.raise_for_status()
        data = response.json()

        try:
            choice = data["choices"][0]
            content = choice["message"].get("content") or ""
        except (KeyError, IndexError, TypeError) as e:
            raise AgentAPIError(
                AgentErrorKind.INVALID_RESPONSE, f"Unexpected completion payload: {e}",
            ) from e
        if not content.strip():
            raise AgentAPIError(AgentErrorKind.EMPTY_RESPONSE, "Model returned no text")

        raw_usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            model=data.get("model", ""),
            stop_reason=choice.get("finish_reason") or "",
            usage={
                "input_tokens": raw_usage.get("prompt_tokens"),
                "output_tokens": raw_usage.get("completion_tokens"),
            },
        )

    async def stream(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> AsyncIterator[str]:
        config = config or LLMConfig()
        async with self._client.stream(
            "POST", CHAT_PATH, json=self._payload(messages, config, stream=True),
        ) as response:
            response.raise_for_status()
            async for line in response.aiter_lines():
                if line.strip() == "data: [DONE]":
                    break
                if text := parse_sse_line(line):
                    yield text

    async def aclose(self) -> None:
        await self._client.aclose()
