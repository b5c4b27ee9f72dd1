"""Engagement progress derived from task completion."""

import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from ..models.task import Task, TaskStatus


def compute_progress(tasks: Iterable[Task]) -> int:
    """
    Percentage of completed tasks, 0-100.

    An engagement with no tasks yet is 0% complete. In-progress tasks earn
    no partial credit. Rounds half up; any open task caps the result at 99,
    so 100 means every task is completed.
    """
    tasks = list(tasks)
    total = len(tasks)
    if total == 0:
        return 0

    completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
    percent = math.floor(100 * completed / total + 0.5)
    if completed < total:
        percent = min(percent, 99)
    return percent


def progress_by_pair(tasks: Iterable[Task]) -> dict[tuple[str, str], int]:
    """Progress per (client_id, expert_id) engagement."""
    grouped: dict[tuple[str, str], list[Task]] = defaultdict(list)
    for task in tasks:
        grouped[task.pair].append(task)
    return {pair: compute_progress(group) for pair, group in grouped.items()}


def progress_by_client(tasks: Iterable[Task]) -> dict[str, int]:
    """Progress per client across every expert working on it."""
    grouped: dict[str, list[Task]] = defaultdict(list)
    for task in tasks:
        grouped[task.client_id].append(task)
    return {client_id: compute_progress(group) for client_id, group in grouped.items()}


def next_status(status: TaskStatus) -> TaskStatus:
    """Status a task moves to when toggled forward."""
    return status.next()


@dataclass
class UrgentTask:
    """An open task due soon, joined with its client's name."""

    id: str
    title: str
    status: TaskStatus
    due_date: date
    client_name: str
    is_overdue: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "due_date": self.due_date.isoformat(),
            "client_name": self.client_name,
            "is_overdue": self.is_overdue,
        }


def urgent_tasks(
    tasks: Iterable[Task],
    client_names: Optional[dict[str, str]] = None,
    today: Optional[date] = None,
    horizon_days: int = 7,
) -> list[UrgentTask]:
    """Open tasks due within the horizon (overdue ones included), soonest first."""
    today = today or date.today()
    client_names = client_names or {}
    cutoff = today + timedelta(days=horizon_days)

    urgent = [
        UrgentTask(
            id=t.id,
            title=t.title,
            status=t.status,
            due_date=t.due_date,
            client_name=client_names.get(t.client_id) or "Unknown",
            is_overdue=t.is_overdue(today),
        )
        for t in tasks
        if t.status.is_open and t.due_date is not None and t.due_date <= cutoff
    ]
    return sorted(urgent, key=lambda u: (u.due_date, u.id))


def completion_stats(tasks: Iterable[Task]) -> dict:
    """Platform task throughput: completion rate and mean days to complete."""
    tasks = list(tasks)
    completed = [t for t in tasks if t.is_completed]

    stats = {
        "total_tasks": len(tasks),
        "completed_tasks": len(completed),
        "completion_rate": 0.0,
        "avg_completion_days": 0.0,
        "avg_tasks_per_client": 0.0,
    }

    if tasks:
        stats["completion_rate"] = len(completed) / len(tasks) * 100
        clients = {t.client_id for t in tasks if t.client_id}
        if clients:
            stats["avg_tasks_per_client"] = len(tasks) / len(clients)

    timed = [t for t in completed if t.completed_at is not None]
    if timed:
        total_days = sum(
            (t.completed_at - t.created_at).total_seconds() / 86400 for t in timed
        )
        stats["avg_completion_days"] = total_days / len(timed)

    return stats
