"""Fallback LLM provider that tries multiple providers in order."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from agentruntime.models.provider import LLMConfig, LLMMessage, LLMResponse

logger = logging.getLogger(__name__)


class FallbackProvider:
    """Wraps multiple LLM providers, trying each in order until one succeeds.

    When every provider fails, the last provider's exception is re-raised
    so callers can classify it.
    """

    def __init__(self, providers: list, names: list[str] | None = None) -> None:
        if not providers:
            raise ValueError("FallbackProvider requires at least one provider")
        self._providers = providers
        self._names = names or [f"provider-{i}" for i in range(len(providers))]

    @property
    def names(self) -> list[str]:
        return list(self._names)

    async def complete(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> LLMResponse:
        """Try each provider in order. Return the first successful response.

        The last provider is called without a handler so its error reaches
        the caller unchanged.
        """
        *earlier, last = self._providers
        for provider, name in zip(earlier, self._names):
            try:
                return await provider.complete(messages, config)
            except Exception as e:
                logger.warning("Provider '%s' failed: %s. Trying next...", name, e)
        return await last.complete(messages, config)

    async def stream(
        self,
        messages: list[LLMMessage],
        config: LLMConfig | None = None,
    ) -> AsyncIterator[str]:
        """Try each provider in order for streaming.

        A provider is only abandoned if it fails before yielding anything.
        """
        *earlier, last = self._providers
        for provider, name in zip(earlier, self._names):
            started = False
            try:
                async for chunk in provider.stream(messages, config):
                    started = True
                    yield chunk
                return
            except Exception as e:
                if started:
                    raise
                logger.warning("Provider '%s' stream failed: %s. Trying next...", name, e)
        async for chunk in last.stream(messages, config):
            yield chunk

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()
