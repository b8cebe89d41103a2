"""Lenient parsing of structured model replies."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def extract_json_object(text: str) -> str:
    """Strip code fences and return the outermost ``{...}`` span (or the cleaned text)."""
    cleaned = text
    if "```" in cleaned:
        for fence in ("```json", "```JSON", "```"):
            cleaned = cleaned.replace(fence, "")
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]
    return cleaned.replace("\n", " ").strip()


def _as_str(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value)


def _as_bool(value) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes"):
            return True
        if lowered in ("false", "no"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _as_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip().lstrip("#"))
        except ValueError:
            return None
    return None


def _as_str_list(value) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [s for s in (_as_str(v) for v in value) if s is not None]


def _as_str_dict(value) -> dict[str, str] | None:
    if not isinstance(value, dict):
        return None
    return {str(k): _as_str(v) or "" for k, v in value.items()}


@dataclass(frozen=True)
class VerificationCheck:
    description: str
    tool: str
    args: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedAgentResponse:
    """Every field a decision, plan, step, assessment, reflection or stuck prompt may return.

    Missing or ill-typed fields are ``None``; ``raw`` always holds the
    cleaned text that was parsed.
    """

    raw: str = ""
    action: str | None = None
    reason: str | None = None
    goal: str | None = None
    plan: list[str] | None = None
    estimated_commands: int | None = None
    step: str | None = None
    command: str | None = None
    tool: str | None = None
    tool_args: dict[str, str] | None = None
    checklist_item: int | None = None
    done: bool | None = None
    decision: str | None = None
    outcome: str | None = None
    next: str | None = None
    fixed_command: str | None = None
    progress_percent: int | None = None
    on_track: bool | None = None
    completed: list[str] | None = None
    remaining: list[str] | None = None
    should_adjust: bool | None = None
    new_approach: str | None = None
    is_stuck: bool | None = None
    should_stop: bool | None = None
    checks: list[VerificationCheck] | None = None
    error: str | None = None

    @classmethod
    def parse(cls, text: str) -> ParsedAgentResponse:
        raw = extract_json_object(text or "")
        try:
            data = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            logger.debug("Unparseable model reply: %s", raw[:200])
            data = None
        if not isinstance(data, dict):
            return cls(raw=raw)

        checks = None
        if isinstance(data.get("checks"), list):
            checks = [
                VerificationCheck(
                    description=_as_str(c.get("description")) or "",
                    tool=_as_str(c.get("tool")) or "",
                    args=_as_str_dict(c.get("args")) or {},
                )
                for c in data["checks"]
                if isinstance(c, dict)
            ]

        return cls(
            raw=raw,
            action=_as_str(data.get("action")),
            reason=_as_str(data.get("reason")),
            goal=_as_str(data.get("goal")),
            plan=_as_str_list(data.get("plan")),
            estimated_commands=_as_int(data.get("estimated_commands")),
            step=_as_str(data.get("step")),
            command=_as_str(data.get("command")),
            tool=_as_str(data.get("tool")),
            tool_args=_as_str_dict(data.get("tool_args")),
            checklist_item=_as_int(data.get("checklist_item")),
            done=_as_bool(data.get("done")),
            decision=_as_str(data.get("decision")),
            outcome=_as_str(data.get("outcome")),
            next=_as_str(data.get("next")),
            fixed_command=_as_str(data.get("fixed_command")),
            progress_percent=_as_int(data.get("progress_percent")),
            on_track=_as_bool(data.get("on_track")),
            completed=_as_str_list(data.get("completed")),
            remaining=_as_str_list(data.get("remaining")),
            should_adjust=_as_bool(data.get("should_adjust")),
            new_approach=_as_str(data.get("new_approach")),
            is_stuck=_as_bool(data.get("is_stuck")),
            should_stop=_as_bool(data.get("should_stop")),
            checks=checks,
            error=_as_str(data.get("error")),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None or not self.raw or self.raw == "{}"

    @property
    def has_content(self) -> bool:
        """Any decision-bearing field is present."""
        return bool(
            self.action
            or self.goal
            or self.plan
            or self.done is not None
            or self.decision
            or self.is_stuck is not None
            or self.progress_percent is not None
            or self.checks
        )

    @property
    def has_step_content(self) -> bool:
        """The reply names a step, a command, or a tool."""
        return bool(
            (self.step or "").strip()
            or (self.command or "").strip()
            or (self.tool or "").strip()
        )
