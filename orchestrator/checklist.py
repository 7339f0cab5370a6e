"""
Goal and task checklist tracking.
The tracker enforces that at most one item is in progress at a time.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def emoji(self) -> str:
        return _STATUS_EMOJI[self]


_STATUS_EMOJI = {
    TaskStatus.PENDING: "○",
    TaskStatus.IN_PROGRESS: "→",
    TaskStatus.COMPLETED: "✓",
    TaskStatus.FAILED: "✗",
    TaskStatus.SKIPPED: "⊘",
}


@dataclass
class TaskChecklistItem:
    id: int
    description: str
    status: TaskStatus = TaskStatus.PENDING
    verification_note: Optional[str] = None

    @property
    def display_string(self) -> str:
        text = f"{self.status.emoji} {self.id}. {self.description}"
        if self.verification_note:
            text += f" [{self.verification_note}]"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "verification_note": self.verification_note,
        }


@dataclass
class TaskChecklist:
    goal_description: str = ""
    items: List[TaskChecklistItem] = field(default_factory=list)

    @classmethod
    def from_plan(cls, plan: List[str], goal: str) -> "TaskChecklist":
        checklist = cls()
        checklist.set_goal(goal, plan)
        return checklist

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskChecklist":
        items = [
            TaskChecklistItem(
                id=int(d["id"]),
                description=d.get("description", ""),
                status=TaskStatus(d.get("status", "pending")),
                verification_note=d.get("verification_note"),
            )
            for d in data.get("items", [])
        ]
        return cls(goal_description=data.get("goal_description", ""), items=items)

    def to_dict(self) -> Dict[str, Any]:
        return {"goal_description": self.goal_description, "items": [i.to_dict() for i in self.items]}

    def set_goal(self, goal: str, tasks: List[str]) -> None:
        """Replace the goal and items; ids are 1-based ordinals."""
        self.goal_description = goal
        self.items = [
            TaskChecklistItem(id=idx, description=desc.strip())
            for idx, desc in enumerate((t for t in tasks if t and t.strip()), 1)
        ]

    def _find(self, item_id: int) -> Optional[TaskChecklistItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def update_status(self, item_id: int, status: TaskStatus, note: Optional[str] = None) -> bool:
        """Set an item's status. Unknown ids are ignored (returns False)."""
        item = self._find(item_id)
        if item is None:
            logger.debug(f"Checklist update ignored for unknown item {item_id}")
            return False
        if status is TaskStatus.IN_PROGRESS:
            for other in self.items:
                if other is not item and other.status is TaskStatus.IN_PROGRESS:
                    other.status = TaskStatus.PENDING
        item.status = status
        if note is not None:
            item.verification_note = note
        return True

    def mark_in_progress(self, item_id: int) -> bool:
        return self.update_status(item_id, TaskStatus.IN_PROGRESS)

    def mark_completed(self, item_id: int, note: Optional[str] = None) -> bool:
        return self.update_status(item_id, TaskStatus.COMPLETED, note)

    def mark_failed(self, item_id: int, note: Optional[str] = None) -> bool:
        return self.update_status(item_id, TaskStatus.FAILED, note)

    def mark_skipped(self, item_id: int, note: Optional[str] = None) -> bool:
        return self.update_status(item_id, TaskStatus.SKIPPED, note)

    def auto_promote(self) -> Optional[TaskChecklistItem]:
        """Promote the lowest-id pending item when nothing is in progress."""
        if self.in_progress_item is not None:
            return None
        pending = [i for i in self.items if i.status is TaskStatus.PENDING]
        if not pending:
            return None
        item = min(pending, key=lambda i: i.id)
        item.status = TaskStatus.IN_PROGRESS
        return item

    @property
    def in_progress_item(self) -> Optional[TaskChecklistItem]:
        return next((i for i in self.items if i.status is TaskStatus.IN_PROGRESS), None)

    @property
    def completed_count(self) -> int:
        return sum(1 for i in self.items if i.status is TaskStatus.COMPLETED)

    @property
    def progress_percent(self) -> int:
        if not self.items:
            return 0
        return int(self.completed_count / len(self.items) * 100)

    @property
    def current_item(self) -> Optional[TaskChecklistItem]:
        return self.in_progress_item or next(
            (i for i in self.items if i.status is TaskStatus.PENDING), None
        )

    @property
    def is_complete(self) -> bool:
        return all(i.status in (TaskStatus.COMPLETED, TaskStatus.SKIPPED) for i in self.items)

    @property
    def remaining_items(self) -> List[TaskChecklistItem]:
        return [i for i in self.items
                if i.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS, TaskStatus.FAILED)]

    @property
    def display_string(self) -> str:
        header = f"CHECKLIST ({self.completed_count}/{len(self.items)} completed - {self.progress_percent}%):\n"
        return header + "\n".join(i.display_string for i in self.items)

    @property
    def has_items(self) -> bool:
        return bool(self.items)
