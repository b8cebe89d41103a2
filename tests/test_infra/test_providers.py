"""Tests for providers, provider selection and fallback."""

import json

import httpx
import pytest

from agentruntime.config import AppConfig, ProviderConfig
from agentruntime.errors import AgentAPIError, AgentErrorKind
from agentruntime.infra.providers.anthropic import AnthropicProvider, split_system
from agentruntime.infra.providers.fallback import FallbackProvider
from agentruntime.infra.providers.llamacpp import LlamaCppProvider, parse_sse_line
from agentruntime.infra.providers.registry import get_provider, get_provider_with_fallback
from agentruntime.models.provider import LLMConfig, LLMMessage, LLMResponse, ProviderType


class _Failing:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def complete(self, messages, config=None):
        raise self.error

    async def stream(self, messages, config=None):
        raise self.error
        yield ""


class _Answering:
    def __init__(self, text: str) -> None:
        self.text = text

    async def complete(self, messages, config=None):
        return LLMResponse(content=self.text)

    async def stream(self, messages, config=None):
        for word in self.text.split():
            yield word


class TestProviderRegistry:
    def _make_config(self) -> AppConfig:
        return AppConfig(
            providers={
                "anthropic": ProviderConfig(api_key="test-key", default_model="test-model"),
                "llamacpp": ProviderConfig(base_url="http://localhost:9999"),
            }
        )

    def test_get_anthropic(self):
        provider = get_provider(ProviderType.ANTHROPIC, self._make_config())
        assert isinstance(provider, AnthropicProvider)

    def test_get_llamacpp(self):
        provider = get_provider(ProviderType.LLAMACPP, self._make_config())
        assert isinstance(provider, LlamaCppProvider)

    def test_get_by_string(self):
        provider = get_provider("anthropic", self._make_config())
        assert isinstance(provider, AnthropicProvider)

    def test_unknown_raises(self):
        with pytest.raises(ValueError):
            get_provider("nonexistent", self._make_config())

    def test_primary_llamacpp_always_included(self, monkeypatch):
        monkeypatch.setattr(
            "agentruntime.infra.providers.registry._check_llamacpp_available", lambda url: False,
        )
        config = AppConfig(provider="llamacpp", providers={"anthropic": ProviderConfig()})
        assert isinstance(get_provider_with_fallback(config), LlamaCppProvider)

    def test_fallback_chain(self, monkeypatch):
        monkeypatch.setattr(
            "agentruntime.infra.providers.registry._check_llamacpp_available", lambda url: True,
        )
        provider = get_provider_with_fallback(self._make_config())
        assert isinstance(provider, FallbackProvider)
        assert provider.names == ["anthropic", "llamacpp"]


class TestFallbackProvider:
    def test_requires_providers(self):
        with pytest.raises(ValueError):
            FallbackProvider([])

    @pytest.mark.asyncio
    async def test_uses_first_success(self):
        provider = FallbackProvider([_Failing(RuntimeError("down")), _Answering("hi")])
        response = await provider.complete([])
        assert response.content == "hi"

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        provider = FallbackProvider([_Failing(RuntimeError("a")), _Failing(KeyError("b"))])
        with pytest.raises(KeyError):
            await provider.complete([])

    @pytest.mark.asyncio
    async def test_stream_falls_through_before_first_chunk(self):
        provider = FallbackProvider([_Failing(RuntimeError("down")), _Answering("a b")])
        chunks = [chunk async for chunk in provider.stream([])]
        assert chunks == ["a", "b"]

    @pytest.mark.asyncio
    async def test_stream_reraises_last_error(self):
        provider = FallbackProvider([_Failing(RuntimeError("a")), _Failing(KeyError("b"))])
        with pytest.raises(KeyError):
            [chunk async for chunk in provider.stream([])]

    @pytest.mark.asyncio
    async def test_single_provider_error_passes_through(self):
        provider = FallbackProvider([_Failing(ConnectionError("refused"))])
        with pytest.raises(ConnectionError, match="refused"):
            await provider.complete([])


class TestProviderSelection:
    def test_primary_without_key_skipped_when_llamacpp_up(self, monkeypatch):
        monkeypatch.setattr(
            "agentruntime.infra.providers.registry._check_llamacpp_available", lambda url: True,
        )
        assert isinstance(get_provider_with_fallback(AppConfig()), LlamaCppProvider)

    def test_nothing_usable_surfaces_primary_error(self, monkeypatch):
        monkeypatch.setattr(
            "agentruntime.infra.providers.registry._check_llamacpp_available", lambda url: False,
        )
        with pytest.raises(AgentAPIError) as exc_info:
            get_provider_with_fallback(AppConfig())
        assert exc_info.value.kind == AgentErrorKind.API_KEY_MISSING


class TestAnthropicProvider:
    def test_split_system_merges_turns(self):
        system, turns = split_system([
            LLMMessage("system", "rules"),
            LLMMessage("user", "a"),
            LLMMessage("user", "b"),
            LLMMessage("assistant", "c"),
        ])
        assert system == "rules"
        assert turns == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c"},
        ]

    def test_requires_key(self):
        with pytest.raises(AgentAPIError):
            AnthropicProvider(api_key="")


def _llamacpp(handler) -> LlamaCppProvider:
    client = httpx.AsyncClient(base_url="http://llama", transport=httpx.MockTransport(handler))
    return LlamaCppProvider(model="qwen", client=client)


class TestLlamaCppProvider:
    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={
                "model": "qwen",
                "choices": [{"message": {"content": "{\"x\": 1}"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 9, "completion_tokens": 4},
            })

        provider = _llamacpp(handler)
        response = await provider.complete([LLMMessage("user", "hi")], LLMConfig(max_tokens=50))
        await provider.aclose()

        assert response.content == "{\"x\": 1}"
        assert response.prompt_tokens == 9
        assert response.completion_tokens == 4
        assert seen["model"] == "qwen"
        assert seen["max_tokens"] == 50
        assert seen["stream"] is False

    @pytest.mark.asyncio
    async def test_empty_content(self):
        provider = _llamacpp(lambda request: httpx.Response(200, json={
            "choices": [{"message": {"content": None}}],
        }))
        with pytest.raises(AgentAPIError) as exc_info:
            await provider.complete([LLMMessage("user", "hi")])
        assert exc_info.value.kind == AgentErrorKind.EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        provider = _llamacpp(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(AgentAPIError) as exc_info:
            await provider.complete([LLMMessage("user", "hi")])
        assert exc_info.value.kind == AgentErrorKind.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_http_error_raises_for_classification(self):
        provider = _llamacpp(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(httpx.HTTPStatusError):
            await provider.complete([LLMMessage("user", "hi")])

    @pytest.mark.asyncio
    async def test_stream(self):
        body = (
            'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
            "data: not json\n\n"
            'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n'
            "data: [DONE]\n\n"
        )
        provider = _llamacpp(lambda request: httpx.Response(200, text=body))
        chunks = [chunk async for chunk in provider.stream([LLMMessage("user", "hi")])]
        assert chunks == ["Hel", "lo"]

    def test_parse_sse_line(self):
        assert parse_sse_line(": keep-alive") is None
        assert parse_sse_line("data: [DONE]") is None
        assert parse_sse_line('data: {"choices": [{"delta": {}}]}') is None
