"""Task model for engagement workflow steps."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
import uuid


class TaskStatus(Enum):
    """Status of a workflow step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def is_open(self) -> bool:
        return self != TaskStatus.COMPLETED

    def next(self) -> "TaskStatus":
        """Following status in the pending -> in_progress -> completed flow."""
        transitions = {
            TaskStatus.PENDING: TaskStatus.IN_PROGRESS,
            TaskStatus.IN_PROGRESS: TaskStatus.COMPLETED,
            TaskStatus.COMPLETED: TaskStatus.COMPLETED,
        }
        return transitions[self]


@dataclass
class Task:
    """A unit of work for one client/expert pair."""

    id: str = field(default_factory=lambda: f"TASK-{uuid.uuid4().hex[:8].upper()}")
    client_id: str = ""
    expert_id: str = ""

    title: str = ""
    description: Optional[str] = None

    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[date] = None

    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.client_id, self.expert_id)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def is_overdue(self, today: Optional[date] = None) -> bool:
        """Check if an open task is past its due date."""
        if self.due_date is None or self.is_completed:
            return False
        today = today or date.today()
        return self.due_date < today

    def advance(self) -> bool:
        """Move the task one step forward."""
        if self.is_completed:
            return False

        self.status = self.status.next()
        if self.status == TaskStatus.COMPLETED:
            self.completed_at = datetime.now()
        return True

    def to_dict(self) -> dict:
        """Serialize task to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "expert_id": self.expert_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Deserialize task from dictionary."""
        task = cls(
            id=data.get("id", f"TASK-{uuid.uuid4().hex[:8].upper()}"),
            client_id=data.get("client_id", ""),
            expert_id=data.get("expert_id", ""),
            title=data.get("title", ""),
            description=data.get("description"),
            status=TaskStatus(data.get("status", "pending")),
        )

        if data.get("due_date"):
            # Accept both plain dates and full timestamps.
            task.due_date = date.fromisoformat(data["due_date"][:10])
        if data.get("completed_at"):
            task.completed_at = datetime.fromisoformat(data["completed_at"])
        if data.get("created_at"):
            task.created_at = datetime.fromisoformat(data["created_at"])

        return task
