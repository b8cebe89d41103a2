"""One-way status event fan-out to presentation layers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from agentruntime.models.agent_event import AgentEvent

logger = logging.getLogger(__name__)

EventCallback = Callable[[AgentEvent], Any]


class EventBus:
    """Delivers ``AgentEvent`` notifications to subscribers.

    Emitting never blocks on, or fails because of, a subscriber: coroutine
    callbacks are scheduled as tasks and exceptions are logged.
    """

    def __init__(self) -> None:
        self._subscribers: list[EventCallback] = []
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register ``callback``; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: AgentEvent) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", event.event_type.value)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Async event subscriber failed: %s", task.exception(),
            )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
