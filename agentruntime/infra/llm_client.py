"""Non-streaming and streaming access to the LLM collaborator for agent runs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from agentruntime.errors import AgentAPIError, AgentErrorKind, RecoveryAction, classify_error
from agentruntime.infra.providers.base import LLMProvider
from agentruntime.models.provider import LLMConfig, LLMMessage, OneShotResult

logger = logging.getLogger(__name__)

# Upper bound for a single provider-suggested backoff (rate limits can ask for minutes)
_MAX_BACKOFF_SECONDS = 60.0


async def cancellable_sleep(delay: float, cancel_event: asyncio.Event | None) -> bool:
    """Sleep for ``delay`` seconds; return True if ``cancel_event`` fired first."""
    if cancel_event is None:
        await asyncio.sleep(delay)
        return False
    if cancel_event.is_set():
        return True
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except TimeoutError:
        return False
    return True


class AgentLLMClient:
    """Wraps an ``LLMProvider`` with the call shapes the orchestrator needs.

    Tracks cumulative token usage for the session and the largest prompt
    seen since the last context summarization.
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str = "",
        temperature: float | None = 0.2,
        max_tokens: int = 4096,
        timeout: float = 120.0,
    ) -> None:
        self._provider = provider
        self.model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.request_count = 0
        self.peak_prompt_tokens = 0

    def _config(self) -> LLMConfig:
        return LLMConfig(
            model=self.model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            timeout=self._timeout,
        )

    async def complete_one_shot(
        self,
        system_prompt: str,
        user_prompt: str,
        cancel_event: asyncio.Event | None = None,
    ) -> OneShotResult:
        """One non-streaming completion, retrying transient failures.

        Raises ``AgentAPIError`` once retries are exhausted or the failure
        is not retryable.
        """
        messages = []
        if system_prompt:
            messages.append(LLMMessage(role="system", content=system_prompt))
        messages.append(LLMMessage(role="user", content=user_prompt))

        attempt = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise AgentAPIError(AgentErrorKind.CANCELLED)
            try:
                response = await self._provider.complete(messages, self._config())
            except Exception as e:
                error = classify_error(e)
                strategy = error.recovery_strategy
                if (
                    strategy.action != RecoveryAction.RETRY_WITH_BACKOFF
                    or attempt >= strategy.max_retries
                ):
                    logger.warning("LLM call failed (%s): %s", error.kind.value, error.message)
                    raise error from e
                attempt += 1
                delay = min(strategy.initial_delay * attempt, _MAX_BACKOFF_SECONDS)
                logger.warning(
                    "LLM call failed (%s), retry %d/%d in %.1fs",
                    error.kind.value, attempt, strategy.max_retries, delay,
                )
                if await cancellable_sleep(delay, cancel_event):
                    raise AgentAPIError(AgentErrorKind.CANCELLED) from e
                continue

            if response.truncated:
                logger.warning("LLM response cut off at max_tokens=%d", self._max_tokens)
            self._record_usage(response.prompt_tokens, response.completion_tokens)
            return OneShotResult(
                text=response.content,
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
            )

    async def stream_reply(self, messages: list[LLMMessage]) -> AsyncIterator[str]:
        """Stream a natural-language reply (the RESPOND path)."""
        try:
            async for chunk in self._provider.stream(messages, self._config()):
                yield chunk
        except Exception as e:
            raise classify_error(e) from e

    def _record_usage(self, prompt: int | None, completion: int | None) -> None:
        self.request_count += 1
        self.prompt_tokens += prompt or 0
        self.completion_tokens += completion or 0
        if prompt:
            self.peak_prompt_tokens = max(self.peak_prompt_tokens, prompt)

    def reset_peak(self) -> None:
        self.peak_prompt_tokens = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens
