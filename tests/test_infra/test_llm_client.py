"""Tests for AgentLLMClient retry, cancellation and usage tracking."""

import asyncio

import httpx
import pytest

from agentruntime.errors import AgentAPIError, AgentErrorKind
from agentruntime.infra.llm_client import AgentLLMClient, cancellable_sleep
from agentruntime.models.provider import LLMMessage, LLMResponse


class ScriptedProvider:
    """Returns (or raises) the scripted items in order."""

    def __init__(self, *items) -> None:
        self.items = list(items)
        self.calls = []

    async def complete(self, messages, config=None):
        self.calls.append(messages)
        item = self.items.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream(self, messages, config=None):
        for chunk in ("Hello", " there"):
            yield chunk


def _response(text, prompt=10, completion=2):
    return LLMResponse(content=text, usage={"input_tokens": prompt, "output_tokens": completion})


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    async def instant(delay, cancel_event):
        return bool(cancel_event is not None and cancel_event.is_set())

    monkeypatch.setattr("agentruntime.infra.llm_client.cancellable_sleep", instant)


class TestCompleteOneShot:
    @pytest.mark.asyncio
    async def test_returns_text_and_tracks_usage(self):
        client = AgentLLMClient(ScriptedProvider(_response("ok", 100, 7)))
        result = await client.complete_one_shot("system", "user")
        assert result.text == "ok"
        assert client.prompt_tokens == 100
        assert client.completion_tokens == 7
        assert client.total_tokens == 107
        assert client.peak_prompt_tokens == 100
        assert client.request_count == 1

    @pytest.mark.asyncio
    async def test_system_prompt_first(self):
        provider = ScriptedProvider(_response("ok"))
        await AgentLLMClient(provider).complete_one_shot("sys", "hi")
        assert provider.calls[0] == [
            LLMMessage(role="system", content="sys"),
            LLMMessage(role="user", content="hi"),
        ]

    @pytest.mark.asyncio
    async def test_retries_transient_failure(self):
        provider = ScriptedProvider(httpx.ConnectError("refused"), _response("ok"))
        result = await AgentLLMClient(provider).complete_one_shot("", "hi")
        assert result.text == "ok"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        provider = ScriptedProvider(*[httpx.ReadTimeout("slow") for _ in range(3)])
        with pytest.raises(AgentAPIError) as exc_info:
            await AgentLLMClient(provider).complete_one_shot("", "hi")
        assert exc_info.value.kind == AgentErrorKind.TIMEOUT
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_fatal_error_is_not_retried(self):
        request = httpx.Request("POST", "http://x")
        error = httpx.HTTPStatusError(
            "bad", request=request, response=httpx.Response(401, request=request),
        )
        provider = ScriptedProvider(error, _response("never"))
        with pytest.raises(AgentAPIError) as exc_info:
            await AgentLLMClient(provider).complete_one_shot("", "hi")
        assert exc_info.value.kind == AgentErrorKind.API_KEY_INVALID
        assert exc_info.value.is_fatal
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_cancelled_before_call(self):
        event = asyncio.Event()
        event.set()
        provider = ScriptedProvider(_response("ok"))
        with pytest.raises(AgentAPIError) as exc_info:
            await AgentLLMClient(provider).complete_one_shot("", "hi", event)
        assert exc_info.value.kind == AgentErrorKind.CANCELLED
        assert provider.calls == []

    def test_reset_peak(self):
        client = AgentLLMClient(ScriptedProvider())
        client.peak_prompt_tokens = 500
        client.reset_peak()
        assert client.peak_prompt_tokens == 0


class TestStreamReply:
    @pytest.mark.asyncio
    async def test_streams_chunks(self):
        client = AgentLLMClient(ScriptedProvider())
        chunks = [c async for c in client.stream_reply([LLMMessage("user", "hi")])]
        assert "".join(chunks) == "Hello there"


class TestCancellableSleep:
    @pytest.mark.asyncio
    async def test_returns_true_when_cancelled(self):
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, event.set)
        assert await cancellable_sleep(5, event) is True

    @pytest.mark.asyncio
    async def test_returns_false_after_delay(self):
        assert await cancellable_sleep(0.01, asyncio.Event()) is False
