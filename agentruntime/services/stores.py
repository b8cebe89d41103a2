"""Session-scoped ephemeral stores owned by the tool registry.

Both stores are cleared at the start of every run.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchMatch:
    command: str
    line_number: int
    matched_line: str
    context: str


@dataclass(frozen=True)
class _BufferEntry:
    command: str
    output: str


class OutputBuffer:
    """Recent command outputs, searchable by the ``search_output`` tool.

    Bounded by entry count and total characters; the oldest entries are
    evicted first.
    """

    def __init__(self, max_entries: int = 50, max_total_size: int = 100_000) -> None:
        self._max_entries = max_entries
        self._max_total_size = max_total_size
        self._entries: deque[_BufferEntry] = deque()
        self._total_size = 0

    def store(self, output: str, command: str) -> None:
        if not output:
            return
        if len(output) > self._max_total_size:
            output = output[-self._max_total_size:]
        self._entries.append(_BufferEntry(command=command, output=output))
        self._total_size += len(output)
        while self._entries and (
            len(self._entries) > self._max_entries or self._total_size > self._max_total_size
        ):
            evicted = self._entries.popleft()
            self._total_size -= len(evicted.output)

    def search(self, pattern: str, context_lines: int = 3) -> list[SearchMatch]:
        """Case-insensitive substring search across all stored outputs."""
        needle = pattern.lower()
        matches = []
        for entry in self._entries:
            lines = entry.output.split("\n")
            for index, line in enumerate(lines):
                if needle not in line.lower():
                    continue
                start = max(0, index - context_lines)
                end = min(len(lines), index + context_lines + 1)
                matches.append(SearchMatch(
                    command=entry.command,
                    line_number=index + 1,
                    matched_line=line,
                    context="\n".join(lines[start:end]),
                ))
        return matches

    def get_full_output(self, command: str) -> str | None:
        """Most recent output recorded for ``command``."""
        for entry in reversed(self._entries):
            if entry.command == command:
                return entry.output
        return None

    def clear(self) -> None:
        self._entries.clear()
        self._total_size = 0

    @property
    def total_size(self) -> int:
        return self._total_size

    def __len__(self) -> int:
        return len(self._entries)


class MemoryStore:
    """Key/value notes the agent keeps for the duration of a run."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def save(self, key: str, value: str) -> None:
        self._data[key] = value

    def recall(self, key: str) -> str | None:
        return self._data.get(key)

    def list(self) -> list[str]:
        return sorted(self._data)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
