"""Agent execution phase state machine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class PhaseKind(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    DECIDING = "deciding"
    SETTING_GOAL = "setting_goal"
    PLANNING = "planning"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    VERIFYING = "verifying"
    SUMMARIZING = "summarizing"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    WAITING_FOR_FILE_LOCK = "waiting_for_file_lock"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({PhaseKind.IDLE, PhaseKind.COMPLETED, PhaseKind.FAILED, PhaseKind.CANCELLED})

_ALWAYS_EXITS = (PhaseKind.FAILED, PhaseKind.CANCELLED)

# Documented transition table. Not enforced: callers log violations and
# apply the transition anyway.
_TRANSITIONS: dict[PhaseKind, frozenset[PhaseKind]] = {
    PhaseKind.IDLE: frozenset({PhaseKind.STARTING}),
    PhaseKind.STARTING: frozenset({PhaseKind.DECIDING, *_ALWAYS_EXITS}),
    PhaseKind.DECIDING: frozenset({PhaseKind.SETTING_GOAL, PhaseKind.EXECUTING, *_ALWAYS_EXITS}),
    PhaseKind.SETTING_GOAL: frozenset({PhaseKind.PLANNING, PhaseKind.EXECUTING, *_ALWAYS_EXITS}),
    PhaseKind.PLANNING: frozenset({PhaseKind.EXECUTING, *_ALWAYS_EXITS}),
    PhaseKind.EXECUTING: frozenset({
        PhaseKind.EXECUTING,
        PhaseKind.REFLECTING,
        PhaseKind.VERIFYING,
        PhaseKind.SUMMARIZING,
        PhaseKind.WAITING_FOR_APPROVAL,
        PhaseKind.WAITING_FOR_FILE_LOCK,
        PhaseKind.COMPLETED,
        *_ALWAYS_EXITS,
    }),
    PhaseKind.REFLECTING: frozenset({PhaseKind.EXECUTING, *_ALWAYS_EXITS}),
    PhaseKind.WAITING_FOR_APPROVAL: frozenset({PhaseKind.EXECUTING, PhaseKind.CANCELLED}),
    PhaseKind.WAITING_FOR_FILE_LOCK: frozenset({PhaseKind.EXECUTING, *_ALWAYS_EXITS}),
    PhaseKind.VERIFYING: frozenset({
        PhaseKind.COMPLETED, PhaseKind.SUMMARIZING, PhaseKind.EXECUTING, *_ALWAYS_EXITS,
    }),
    PhaseKind.SUMMARIZING: frozenset({PhaseKind.COMPLETED, *_ALWAYS_EXITS}),
    PhaseKind.COMPLETED: frozenset({PhaseKind.IDLE}),
    PhaseKind.FAILED: frozenset({PhaseKind.IDLE}),
    PhaseKind.CANCELLED: frozenset({PhaseKind.IDLE}),
}


@dataclass(frozen=True)
class AgentExecutionPhase:
    """One phase of an agent run, with the payload some phases carry.

    Build instances through the classmethods (``AgentExecutionPhase.executing(3, 5)``)
    rather than the raw constructor.
    """

    kind: PhaseKind = PhaseKind.IDLE
    step: int = 0
    total: int = 0
    detail: str = ""  # failure reason, awaited command, or locked file path

    @classmethod
    def idle(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.IDLE)

    @classmethod
    def starting(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.STARTING)

    @classmethod
    def deciding(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.DECIDING)

    @classmethod
    def setting_goal(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.SETTING_GOAL)

    @classmethod
    def planning(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.PLANNING)

    @classmethod
    def executing(cls, step: int, total: int = 0) -> AgentExecutionPhase:
        return cls(PhaseKind.EXECUTING, step=step, total=total)

    @classmethod
    def reflecting(cls, iteration: int) -> AgentExecutionPhase:
        return cls(PhaseKind.REFLECTING, step=iteration)

    @classmethod
    def verifying(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.VERIFYING)

    @classmethod
    def summarizing(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.SUMMARIZING)

    @classmethod
    def waiting_for_approval(cls, command: str = "") -> AgentExecutionPhase:
        return cls(PhaseKind.WAITING_FOR_APPROVAL, detail=command)

    @classmethod
    def waiting_for_file_lock(cls, file: str) -> AgentExecutionPhase:
        return cls(PhaseKind.WAITING_FOR_FILE_LOCK, detail=file)

    @classmethod
    def completed(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> AgentExecutionPhase:
        return cls(PhaseKind.FAILED, detail=reason)

    @classmethod
    def cancelled(cls) -> AgentExecutionPhase:
        return cls(PhaseKind.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self.kind not in _TERMINAL

    @property
    def is_terminal(self) -> bool:
        return self.kind in _TERMINAL

    @property
    def requires_user_action(self) -> bool:
        return self.kind == PhaseKind.WAITING_FOR_APPROVAL

    @property
    def current_step(self) -> int:
        return self.step if self.kind == PhaseKind.EXECUTING else 0

    @property
    def estimated_steps(self) -> int:
        return self.total if self.kind == PhaseKind.EXECUTING else 0

    def can_transition(self, new_phase: AgentExecutionPhase) -> bool:
        return new_phase.kind in _TRANSITIONS.get(self.kind, frozenset())

    @property
    def description(self) -> str:
        kind = self.kind
        if kind == PhaseKind.IDLE:
            return ""
        if kind == PhaseKind.EXECUTING:
            if self.total > 0:
                return f"Step {self.step}/{self.total}"
            return f"Step {self.step}"
        if kind == PhaseKind.REFLECTING:
            return f"Reflecting (iter {self.step})"
        if kind == PhaseKind.FAILED:
            return f"Failed: {self.detail}"
        if kind == PhaseKind.WAITING_FOR_APPROVAL:
            return "Awaiting approval"
        if kind == PhaseKind.WAITING_FOR_FILE_LOCK:
            return f"Waiting for {os.path.basename(self.detail)}"
        return _LABELS[kind]

    def __str__(self) -> str:
        return self.description or "Idle"


_LABELS = {
    PhaseKind.STARTING: "Starting",
    PhaseKind.DECIDING: "Deciding",
    PhaseKind.SETTING_GOAL: "Setting goal",
    PhaseKind.PLANNING: "Planning",
    PhaseKind.VERIFYING: "Verifying",
    PhaseKind.SUMMARIZING: "Summarizing",
    PhaseKind.COMPLETED: "Completed",
    PhaseKind.CANCELLED: "Cancelled",
}
