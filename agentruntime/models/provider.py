"""LLM collaborator models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ProviderType(str, Enum):
    ANTHROPIC = "anthropic"
    LLAMACPP = "llamacpp"


@dataclass(frozen=True)
class LLMMessage:
    """A single chat message."""

    role: str  # "system", "user", "assistant"
    content: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class LLMConfig:
    """Per-request model settings."""

    model: str = ""
    max_tokens: int = 4096
    temperature: float | None = 0.2
    stop_sequences: list[str] | None = None
    timeout: float = 60.0


@dataclass(frozen=True)
class LLMResponse:
    """Text the model produced plus whatever usage numbers the provider reported."""

    content: str
    model: str = ""
    stop_reason: str = ""
    usage: dict = field(default_factory=dict)

    @property
    def prompt_tokens(self) -> int | None:
        return self.usage.get("input_tokens")

    @property
    def completion_tokens(self) -> int | None:
        return self.usage.get("output_tokens")

    @property
    def truncated(self) -> bool:
        return self.stop_reason in ("max_tokens", "length")


@dataclass(frozen=True)
class OneShotResult:
    """Text of a non-streaming completion plus the token counts the provider reported."""

    text: str
    prompt_tokens: int | None = None
    completion_tokens: int | None = None

    @property
    def total_tokens(self) -> int:
        return (self.prompt_tokens or 0) + (self.completion_tokens or 0)
