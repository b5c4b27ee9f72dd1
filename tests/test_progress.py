"""Tests for task-derived engagement progress."""
from __future__ import annotations

from datetime import date, datetime

import pytest

from engagement_ledger.models import Task, TaskStatus
from engagement_ledger.workflows.progress import (
    completion_stats,
    compute_progress,
    next_status,
    progress_by_client,
    progress_by_pair,
    urgent_tasks,
)

from conftest import make_tasks


class TestComputeProgress:
    def test_three_of_five_completed(self):
        assert compute_progress(make_tasks(5, 3)) == 60

    def test_no_tasks_is_zero(self):
        assert compute_progress([]) == 0

    def test_in_progress_earns_nothing(self):
        tasks = make_tasks(4, 1)
        tasks[1].status = TaskStatus.IN_PROGRESS
        tasks[2].status = TaskStatus.IN_PROGRESS
        assert compute_progress(tasks) == 25

    @pytest.mark.parametrize("total,completed,expected", [
        (3, 1, 33),
        (3, 2, 67),
        (8, 1, 13),  # 12.5 rounds half up
        (2, 1, 50),
        (1, 1, 100),
    ])
    def test_rounding(self, total, completed, expected):
        assert compute_progress(make_tasks(total, completed)) == expected

    def test_open_task_never_shows_complete(self):
        assert compute_progress(make_tasks(200, 199)) == 99

    def test_bounds_and_completion_equivalence(self):
        for total in range(1, 41):
            for completed in range(total + 1):
                result = compute_progress(make_tasks(total, completed))
                assert 0 <= result <= 100
                assert (result == 100) == (completed == total)

    def test_accepts_generator(self):
        assert compute_progress(t for t in make_tasks(2, 2)) == 100


class TestGrouping:
    def test_progress_by_pair(self):
        tasks = make_tasks(4, 2, "c1", "e1") + make_tasks(2, 2, "c1", "e2")
        assert progress_by_pair(tasks) == {("c1", "e1"): 50, ("c1", "e2"): 100}

    def test_progress_by_client_spans_experts(self):
        tasks = make_tasks(4, 2, "c1", "e1") + make_tasks(1, 1, "c1", "e2")
        assert progress_by_client(tasks) == {"c1": 60}

    def test_next_status(self):
        assert next_status(TaskStatus.PENDING) == TaskStatus.IN_PROGRESS
        assert next_status(TaskStatus.IN_PROGRESS) == TaskStatus.COMPLETED
        assert next_status(TaskStatus.COMPLETED) == TaskStatus.COMPLETED


class TestUrgentTasks:
    @pytest.fixture
    def tasks(self):
        return [
            Task(id="late", client_id="c1", title="Late", due_date=date(2026, 5, 10)),
            Task(id="soon", client_id="c2", title="Soon", due_date=date(2026, 5, 20),
                 status=TaskStatus.IN_PROGRESS),
            Task(id="edge", client_id="c1", title="Edge", due_date=date(2026, 5, 22)),
            Task(id="far", client_id="c1", title="Far", due_date=date(2026, 5, 23)),
            Task(id="done", client_id="c1", title="Done", due_date=date(2026, 5, 16),
                 status=TaskStatus.COMPLETED),
            Task(id="undated", client_id="c1", title="Undated"),
        ]

    def test_window_and_order(self, tasks):
        urgent = urgent_tasks(tasks, {"c1": "Carol"}, today=date(2026, 5, 15))
        assert [u.id for u in urgent] == ["late", "soon", "edge"]

    def test_overdue_flag(self, tasks):
        urgent = urgent_tasks(tasks, today=date(2026, 5, 15))
        flags = {u.id: u.is_overdue for u in urgent}
        assert flags == {"late": True, "soon": False, "edge": False}

    def test_missing_client_name(self, tasks):
        urgent = urgent_tasks(tasks, {"c1": "Carol"}, today=date(2026, 5, 15))
        names = {u.id: u.client_name for u in urgent}
        assert names["late"] == "Carol"
        assert names["soon"] == "Unknown"

    def test_custom_horizon(self, tasks):
        urgent = urgent_tasks(tasks, today=date(2026, 5, 15), horizon_days=0)
        assert [u.id for u in urgent] == ["late"]


class TestCompletionStats:
    def test_empty(self):
        stats = completion_stats([])
        assert stats["completion_rate"] == 0.0
        assert stats["avg_completion_days"] == 0.0

    def test_rates_and_days(self):
        tasks = [
            Task(client_id="c1", status=TaskStatus.COMPLETED,
                 created_at=datetime(2026, 5, 1), completed_at=datetime(2026, 5, 3)),
            Task(client_id="c1", status=TaskStatus.COMPLETED,
                 created_at=datetime(2026, 5, 1), completed_at=datetime(2026, 5, 5)),
            Task(client_id="c2"),
            Task(client_id="c2"),
        ]
        stats = completion_stats(tasks)
        assert stats["total_tasks"] == 4
        assert stats["completed_tasks"] == 2
        assert stats["completion_rate"] == pytest.approx(50.0)
        assert stats["avg_completion_days"] == pytest.approx(3.0)
        assert stats["avg_tasks_per_client"] == pytest.approx(2.0)
