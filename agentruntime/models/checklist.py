"""Task checklist domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def mark(self) -> str:
        return _MARKS[self]


_MARKS = {
    TaskStatus.PENDING: "○",
    TaskStatus.IN_PROGRESS: "→",
    TaskStatus.COMPLETED: "✓",
    TaskStatus.FAILED: "✗",
    TaskStatus.SKIPPED: "⊘",
}

_CLOSED = (TaskStatus.COMPLETED, TaskStatus.SKIPPED)


@dataclass
class TaskChecklistItem:
    """One step of a decomposed goal. ``id`` is 1-based and never changes."""

    id: int
    description: str
    status: TaskStatus = TaskStatus.PENDING
    verification_note: str | None = None

    @property
    def display_string(self) -> str:
        text = f"{self.status.mark} {self.id}. {self.description}"
        if self.verification_note:
            text += f" [{self.verification_note}]"
        return text

    def to_doc(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "verification_note": self.verification_note,
        }

    @classmethod
    def from_doc(cls, doc: dict) -> TaskChecklistItem:
        return cls(
            id=int(doc.get("id", 0)),
            description=doc.get("description", ""),
            status=TaskStatus(doc.get("status", TaskStatus.PENDING.value)),
            verification_note=doc.get("verification_note"),
        )


@dataclass
class TaskChecklist:
    """Ordered checklist plus the goal it decomposes.

    Mutated in place by the orchestrator while a run is active. Status
    updates for unknown ids are silently ignored.
    """

    goal_description: str = ""
    items: list[TaskChecklistItem] = field(default_factory=list)

    @classmethod
    def from_plan(cls, steps: list[str], goal: str) -> TaskChecklist:
        return cls(
            goal_description=goal,
            items=[TaskChecklistItem(id=i + 1, description=step) for i, step in enumerate(steps)],
        )

    def get(self, item_id: int) -> TaskChecklistItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def update_status(self, item_id: int, status: TaskStatus, note: str | None = None) -> None:
        item = self.get(item_id)
        if item is None:
            return
        item.status = status
        if note is not None:
            item.verification_note = note

    def mark_in_progress(self, item_id: int) -> None:
        self.update_status(item_id, TaskStatus.IN_PROGRESS)

    def mark_completed(self, item_id: int, note: str | None = None) -> None:
        self.update_status(item_id, TaskStatus.COMPLETED, note)

    def mark_failed(self, item_id: int, note: str | None = None) -> None:
        self.update_status(item_id, TaskStatus.FAILED, note)

    def mark_skipped(self, item_id: int, note: str | None = None) -> None:
        self.update_status(item_id, TaskStatus.SKIPPED, note)

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.items if item.status == TaskStatus.COMPLETED)

    @property
    def progress_percent(self) -> int:
        if not self.items:
            return 0
        return int(self.completed_count / len(self.items) * 100)

    @property
    def current_item(self) -> TaskChecklistItem | None:
        for status in (TaskStatus.IN_PROGRESS, TaskStatus.PENDING):
            for item in self.items:
                if item.status == status:
                    return item
        return None

    @property
    def is_complete(self) -> bool:
        return all(item.status in _CLOSED for item in self.items)

    @property
    def remaining_items(self) -> list[TaskChecklistItem]:
        return [item for item in self.items if item.status not in _CLOSED]

    @property
    def display_string(self) -> str:
        header = (
            f"CHECKLIST ({self.completed_count}/{len(self.items)} completed"
            f" - {self.progress_percent}%):"
        )
        return "\n".join([header, *(item.display_string for item in self.items)])

    def status_lines(self) -> str:
        """Compact "status description" lines used in assessment prompts."""
        return "\n".join(f"{item.status.value} {item.description}" for item in self.items)

    def to_doc(self) -> dict:
        return {
            "goal_description": self.goal_description,
            "items": [item.to_doc() for item in self.items],
        }

    @classmethod
    def from_doc(cls, doc: dict) -> TaskChecklist:
        return cls(
            goal_description=doc.get("goal_description", ""),
            items=[TaskChecklistItem.from_doc(d) for d in doc.get("items", [])],
        )
