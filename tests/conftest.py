"""Shared fixtures: a JSON store in a temp directory, seeded with a small platform."""
from __future__ import annotations

from datetime import date, datetime
from types import SimpleNamespace

import pytest

from engagement_ledger.config import LedgerConfig
from engagement_ledger.models import (
    Assignment,
    AssignmentStatus,
    Client,
    Complexity,
    Expert,
    ExpertStatus,
    Invoice,
    InvoiceStatus,
    Payment,
    PipelineStage,
    Task,
    TaskStatus,
)
from engagement_ledger.store import EntityStore
from engagement_ledger.workflows.views import ViewAssembler

# Mid-May: this month is May, this quarter started 1 April.
NOW = datetime(2026, 5, 15, 12, 0)
TODAY = NOW.date()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store(tmp_path):
    return EntityStore(tmp_path / "data")


@pytest.fixture
def config(tmp_path):
    return LedgerConfig(data_dir=tmp_path / "data", max_fetch_workers=4)


@pytest.fixture
def views(store, config):
    return ViewAssembler(store, config)


@pytest.fixture
def seeded(store):
    """
    Two active experts sharing one client across UK and France, plus a
    second UK-only client and a pending expert with no work.
    """
    alice = Expert(
        id="exp-alice", full_name="Alice Smith", email="alice@example.com",
        jurisdictions=["UK"], rating=4.5, status=ExpertStatus.ACTIVE,
        created_at=datetime(2025, 1, 10),
    )
    bruno = Expert(
        id="exp-bruno", full_name="Bruno Martin", email="bruno@example.com",
        jurisdictions=["France"], rating=4.0, status=ExpertStatus.ACTIVE,
        created_at=datetime(2025, 3, 1),
    )
    chen = Expert(
        id="exp-chen", full_name="Chen Wei", email="chen@example.com",
        jurisdictions=["Germany"], status=ExpertStatus.PENDING,
        created_at=datetime(2026, 4, 1),
    )
    for e in (alice, bruno, chen):
        store.insert("experts", e)

    carol = Client(
        id="cli-carol", full_name="Carol Jones", email="carol@example.com",
        countries=["UK", "France"], asset_types=["crypto", "equities"],
        complexity=Complexity.MULTI_JURISDICTION_COMPLEX, tax_years=["2024", "2025"],
        overall_status="active", pipeline_stage=PipelineStage.PROCESSING,
        created_at=datetime(2026, 2, 3),
    )
    dan = Client(
        id="cli-dan", full_name="Dan Lee", email="dan@example.com",
        countries=["UK"], complexity=Complexity.SIMPLE,
        overall_status="pending review", pipeline_stage=PipelineStage.QUOTE_REQUEST,
        created_at=datetime(2026, 5, 2),
    )
    for c in (carol, dan):
        store.insert("clients", c)

    carol_uk = Assignment(
        id="asg-carol-uk", client_id="cli-carol", expert_id="exp-alice",
        jurisdiction="UK", earnings=1000.0, created_at=datetime(2026, 2, 3),
    )
    carol_fr = Assignment(
        id="asg-carol-fr", client_id="cli-carol", expert_id="exp-bruno",
        jurisdiction="France", earnings=250.0, created_at=datetime(2026, 2, 4),
    )
    dan_uk = Assignment(
        id="asg-dan-uk", client_id="cli-dan", expert_id="exp-alice",
        jurisdiction="UK", created_at=datetime(2026, 5, 2),
    )
    for a in (carol_uk, carol_fr, dan_uk):
        store.insert("assignments", a)

    payments = [
        Payment(id="PAY-MAY", expert_id="exp-alice", client_id="cli-carol",
                amount=400.0, payment_date=datetime(2026, 5, 10, 9, 30)),
        Payment(id="PAY-APR", expert_id="exp-alice", client_id="cli-carol",
                amount=600.0, payment_date=datetime(2026, 4, 20, 14, 0)),
        Payment(id="PAY-MAR", expert_id="exp-bruno", client_id="cli-carol",
                amount=250.0, payment_date=datetime(2026, 3, 3, 11, 0)),
    ]
    for p in payments:
        store.insert("payments", p)

    # Carol/Alice: 5 tasks, 3 completed -> 60%.
    statuses = [
        TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.COMPLETED,
        TaskStatus.IN_PROGRESS, TaskStatus.PENDING,
    ]
    for i, status in enumerate(statuses):
        store.insert("tasks", Task(
            id=f"TASK-A{i}", client_id="cli-carol", expert_id="exp-alice",
            title=f"UK step {i}", status=status,
            due_date=date(2026, 5, 12 + i),
            created_at=datetime(2026, 3, 1),
            completed_at=datetime(2026, 3, 5) if status == TaskStatus.COMPLETED else None,
        ))
    store.insert("tasks", Task(
        id="TASK-B0", client_id="cli-carol", expert_id="exp-bruno",
        title="French return", status=TaskStatus.PENDING,
        due_date=date(2026, 6, 30), created_at=datetime(2026, 3, 1),
    ))

    store.insert("invoices", Invoice(
        id="INV-DAN", client_id="cli-dan", expert_id="exp-alice",
        amount=300.0, status=InvoiceStatus.SENT, due_date=date(2026, 6, 1),
        sent_at=datetime(2026, 5, 3),
    ))

    return SimpleNamespace(
        alice=alice, bruno=bruno, chen=chen,
        carol=carol, dan=dan,
        carol_uk=carol_uk, carol_fr=carol_fr, dan_uk=dan_uk,
        payments=payments,
    )


def make_payment(amount, when, expert_id="exp-1", client_id="cli-1", currency="GBP", **kwargs):
    return Payment(
        expert_id=expert_id, client_id=client_id, amount=amount,
        currency=currency, payment_date=when, **kwargs,
    )


def make_tasks(total, completed, client_id="cli-1", expert_id="exp-1"):
    return [
        Task(
            client_id=client_id, expert_id=expert_id, title=f"Task {i}",
            status=TaskStatus.COMPLETED if i < completed else TaskStatus.PENDING,
        )
        for i in range(total)
    ]


def make_assignment(client_id="cli-1", expert_id="exp-1", jurisdiction="UK", earnings=0.0,
                    status=AssignmentStatus.ACTIVE, **kwargs):
    return Assignment(
        client_id=client_id, expert_id=expert_id, jurisdiction=jurisdiction,
        earnings=earnings, status=status, **kwargs,
    )
