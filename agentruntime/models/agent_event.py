"""Agent status events published to presentation layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class AgentEventType(str, Enum):
    PHASE_CHANGED = "phase_changed"
    DECISION = "decision"
    GOAL = "goal"
    PLAN = "plan"
    STEP_STARTED = "step_started"
    TOOL_RESULT = "tool_result"
    COMMAND_STARTED = "command_started"
    COMMAND_OUTPUT = "command_output"
    CHECKLIST_CHANGED = "checklist_changed"
    WAITING_FOR_LOCK = "waiting_for_lock"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    REFLECTION = "reflection"
    STUCK = "stuck"
    ASSESSMENT = "assessment"
    VERIFICATION = "verification"
    SUMMARY = "summary"
    STATUS = "status"
    REPLY_CHUNK = "reply_chunk"
    ERROR = "error"


@dataclass(frozen=True)
class AgentEvent:
    """One discrete notification emitted during a run."""

    session_id: str
    event_type: AgentEventType
    title: str = ""
    detail: str = ""
    data: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_doc(self) -> dict:
        return {
            "session_id": self.session_id,
            "event_type": self.event_type.value,
            "title": self.title,
            "detail": self.detail,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_doc(cls, doc: dict) -> AgentEvent:
        created = doc.get("created_at")
        return cls(
            session_id=doc.get("session_id", ""),
            event_type=AgentEventType(doc["event_type"]),
            title=doc.get("title", ""),
            detail=doc.get("detail", ""),
            data=doc.get("data", {}),
            created_at=datetime.fromisoformat(created) if created else datetime.now(timezone.utc),
        )
