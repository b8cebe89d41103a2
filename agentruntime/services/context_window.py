"""Context window manager: keeps the context log under the model's token budget.

Token counts are estimates (characters divided by a per-model ratio); the
provider-reported prompt size feeds the high-water mark when available.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

SUMMARY_HEADER = "[SUMMARIZED HISTORY]"
TRUNCATED_HEADER = "[TRUNCATED HISTORY]"

SUMMARIZATION_THRESHOLD = 0.95

SUMMARIZE_CONTEXT_PROMPT = """\
Summarize the following agent execution context, preserving:
- Key commands that were run and their outcomes
- Important errors or warnings
- Significant progress milestones
- Current state information
Be concise but preserve critical information.

CONTEXT TO SUMMARIZE:
{context}"""

Summarizer = Callable[[str], Awaitable[str]]


def chars_per_token(model: str) -> float:
    name = model.lower()
    if "claude" in name:
        return 3.5
    return 4.0


def estimate_tokens(text: str, model: str = "") -> int:
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token(model))


def _is_o_series(name: str) -> bool:
    return re.match(r"^o\d", name) is not None


def context_limit(model: str, override: int = 0) -> int:
    """Effective context size in tokens for ``model``."""
    if override > 0:
        return override
    name = model.lower().rsplit("/", 1)[-1]
    if "claude" in name:
        # claude-3-5-*, claude-3-7-*, claude-*-4 and newer
        if re.search(r"claude-(3[-.][5-9]|[4-9])|claude-(sonnet|opus|haiku)-[4-9]", name):
            return 200_000
        return 32_000
    if _is_o_series(name):
        return 200_000
    if re.match(r"^gpt-(4o|4\.1|5)", name):
        return 128_000
    return 32_000


class ContextWindowManager:
    """Compacts the context log when it nears the model's context limit.

    Older entries are replaced, in place, by one summary record; the most
    recent entries are always kept verbatim.
    """

    def __init__(
        self,
        model: str = "",
        summarizer: Summarizer | None = None,
        context_limit_override: int = 0,
        threshold: float = SUMMARIZATION_THRESHOLD,
    ) -> None:
        self.model = model
        self._summarizer = summarizer
        self._override = context_limit_override
        self._threshold = threshold
        self.summarization_count = 0
        self.last_summarized_at: datetime | None = None
        self.accumulated_context_tokens = 0

    @property
    def limit(self) -> int:
        return context_limit(self.model, self._override)

    @property
    def keep_recent(self) -> int:
        return 15 if self.limit > 100_000 else 10

    @property
    def max_chars(self) -> int:
        return int(self.limit * self._threshold * chars_per_token(self.model))

    def estimate(self, log: list[str]) -> int:
        return estimate_tokens("\n".join(log), self.model)

    def observe(self, prompt_tokens: int | None) -> None:
        """Record a provider-reported prompt size in the high-water mark."""
        if prompt_tokens:
            self.accumulated_context_tokens = max(self.accumulated_context_tokens, prompt_tokens)

    def usage_ratio(self, log: list[str]) -> float:
        used = max(self.estimate(log), self.accumulated_context_tokens)
        return used / self.limit if self.limit else 0.0

    def needs_summarization(self, log: list[str]) -> bool:
        return self.estimate(log) > self.limit * self._threshold

    async def compact(self, log: list[str], force: bool = False) -> bool:
        """Summarize older entries of ``log`` in place if over budget.

        Returns True if the log was changed.
        """
        self.accumulated_context_tokens = max(self.accumulated_context_tokens, self.estimate(log))
        if not force and not self.needs_summarization(log):
            return False

        keep = min(len(log), self.keep_recent)
        older = log[:len(log) - keep]
        if not older:
            return False

        older_text = "\n".join(older)
        record = None
        if self._summarizer is not None:
            prompt = SUMMARIZE_CONTEXT_PROMPT.format(context=older_text[: self.max_chars // 2])
            try:
                summary = (await self._summarizer(prompt)).strip()
            except Exception as e:
                logger.warning("Context summarization failed: %s", e)
                summary = ""
            if summary:
                record = f"{SUMMARY_HEADER}\n{summary}"

        if record is None:
            budget = max(len(older_text) // 2, 1)
            record = f"{TRUNCATED_HEADER}\n{older_text[-budget:]}"

        # The replacement must never be larger than what it replaces
        if len(record) >= len(older_text):
            record = record[: len(older_text)]

        log[: len(older)] = [record]
        self.summarization_count += 1
        self.last_summarized_at = datetime.now(timezone.utc)
        self.accumulated_context_tokens = 0
        logger.info(
            "Compacted %d context entries into one record (summarization #%d)",
            len(older), self.summarization_count,
        )
        return True

    def render(self, log: list[str]) -> str:
        """Join the log for a prompt, truncating from the front as a last resort."""
        text = "\n".join(log)
        if len(text) > self.max_chars:
            text = text[-self.max_chars:]
        return text


_ERROR_LINE = re.compile(r"error|fail|exception|traceback|warning|fatal", re.IGNORECASE)


def truncate_output(output: str, max_chars: int) -> str:
    """Keep the head, the tail and any error-looking lines in between."""
    if len(output) <= max_chars:
        return output
    head = output[: int(max_chars * 0.4)]
    tail = output[-int(max_chars * 0.4):]
    middle = output[len(head): len(output) - len(tail)]
    budget = max_chars - len(head) - len(tail)
    kept: list[str] = []
    for line in middle.split("\n"):
        if _ERROR_LINE.search(line) and len(line) + 1 <= budget:
            kept.append(line)
            budget -= len(line) + 1
    omitted = len(output) - len(head) - len(tail) - sum(len(line) + 1 for line in kept)
    parts = [head, f"\n... [{omitted} chars truncated] ...\n"]
    if kept:
        parts.append("\n".join(kept) + "\n...\n")
    parts.append(tail)
    return "".join(parts)
