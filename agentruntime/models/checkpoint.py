"""Run checkpoint domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from agentruntime.models.checklist import TaskChecklist


@dataclass
class RunCheckpoint:
    """Resumable snapshot of one agent run.

    Only the pieces the runtime needs to round-trip: goal, checklist,
    counters derived from the execution phase, and the context log.
    """

    session_id: str
    goal: str = ""
    mode: str = "pilot"
    phase: str = ""
    iterations: int = 0
    checklist: TaskChecklist | None = None
    context_log: list[str] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    summarization_count: int = 0
    id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_doc(self) -> dict:
        doc = {
            "session_id": self.session_id,
            "goal": self.goal,
            "mode": self.mode,
            "phase": self.phase,
            "iterations": self.iterations,
            "checklist": self.checklist.to_doc() if self.checklist else None,
            "context_log": list(self.context_log),
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "summarization_count": self.summarization_count,
            "created_at": self.created_at.isoformat(),
        }
        if self.id:
            doc["_id"] = self.id
        return doc

    @classmethod
    def from_doc(cls, doc: dict) -> RunCheckpoint:
        created = doc.get("created_at")
        if isinstance(created, str):
            created = datetime.fromisoformat(created)
        checklist = doc.get("checklist")
        return cls(
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
            session_id=doc.get("session_id", ""),
            goal=doc.get("goal", ""),
            mode=doc.get("mode", "pilot"),
            phase=doc.get("phase", ""),
            iterations=doc.get("iterations", 0),
            checklist=TaskChecklist.from_doc(checklist) if checklist else None,
            context_log=list(doc.get("context_log", [])),
            prompt_tokens=doc.get("prompt_tokens", 0),
            completion_tokens=doc.get("completion_tokens", 0),
            summarization_count=doc.get("summarization_count", 0),
            created_at=created or datetime.now(timezone.utc),
        )
