"""Stuck detection and retry policy for the agent step loop."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable

from agentruntime.infra.llm_client import cancellable_sleep
from agentruntime.models.agent_response import ParsedAgentResponse

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.7
RECENT_COMMAND_WINDOW = 10


def prefix_similarity(a: str, b: str) -> float:
    """Length of the common prefix relative to the longer string."""
    common = len(os.path.commonprefix([a, b]))
    return common / max(len(a), len(b), 1)


class StuckDetector:
    """Watches recent shell commands for a run repeating itself.

    The last ``threshold`` commands are each compared with the oldest of
    them; if every one is more than 70% prefix-similar the run is
    possibly stuck and the model is asked to confirm.
    """

    def __init__(self, threshold: int = 3, window: int = RECENT_COMMAND_WINDOW) -> None:
        self.threshold = max(threshold, 1)
        self._window = max(window, self.threshold)
        self._recent: list[str] = []

    def record(self, command: str) -> None:
        self._recent.append(command)
        if len(self._recent) > self._window:
            del self._recent[0]

    @property
    def recent(self) -> list[str]:
        return list(self._recent)

    @property
    def ready(self) -> bool:
        return len(self._recent) >= self.threshold

    def last_window(self) -> list[str]:
        return self._recent[-self.threshold:]

    def is_possibly_stuck(self) -> bool:
        if not self.ready:
            return False
        window = self.last_window()
        first = window[0]
        return all(prefix_similarity(cmd, first) > SIMILARITY_THRESHOLD for cmd in window)

    def clear(self) -> None:
        self._recent.clear()


def has_step_content(response: ParsedAgentResponse) -> bool:
    return response.has_step_content and not response.is_error


class RetryController:
    """Retries a structured LLM call whose reply is empty or malformed.

    Waits ``attempt * backoff_seconds`` between attempts and gives up early
    when cancellation is observed. After the last attempt the final reply is
    returned as-is, even if still empty.
    """

    def __init__(self, max_retries: int = 3, backoff_seconds: float = 1.0) -> None:
        self.max_retries = max(max_retries, 1)
        self.backoff_seconds = backoff_seconds
        self.last_attempts = 0

    async def call(
        self,
        request: Callable[[], Awaitable[ParsedAgentResponse]],
        cancel_event: asyncio.Event | None = None,
        accept: Callable[[ParsedAgentResponse], bool] = has_step_content,
    ) -> ParsedAgentResponse:
        response = ParsedAgentResponse()
        self.last_attempts = 0
        for attempt in range(1, self.max_retries + 1):
            self.last_attempts = attempt
            response = await request()
            if accept(response):
                return response

            logger.debug(
                "Empty/error response (attempt %d/%d): %s",
                attempt, self.max_retries, response.raw[:100],
            )
            if attempt >= self.max_retries:
                break
            if cancel_event is not None and cancel_event.is_set():
                logger.debug("Cancelled during retry wait")
                break
            if await cancellable_sleep(attempt * self.backoff_seconds, cancel_event):
                logger.debug("Cancelled during retry wait")
                break

        logger.debug("All %d attempts failed, using last response", self.last_attempts)
        return response
