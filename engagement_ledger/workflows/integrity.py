"""Consistency checks run over loaded rows. Findings are reported, never raised."""

import logging
from collections import defaultdict
from typing import Iterable

from ..errors import InvariantViolation
from ..models.assignment import Assignment
from ..models.invoice import Invoice
from ..models.payment import Payment
from ..models.task import Task
from .earnings import reconcile_assignment_earnings

logger = logging.getLogger(__name__)


def _orphans(rows, kind: str, pairs: set) -> list[InvariantViolation]:
    """Rows whose client/expert pair has no assignment, active or not."""
    violations = []
    for row in rows:
        if row.pair in pairs:
            continue
        violations.append(InvariantViolation(
            kind=kind,
            message=(
                f"{row.id} references client {row.client_id} and expert "
                f"{row.expert_id}, which have no assignment"
            ),
            client_id=row.client_id,
            expert_id=row.expert_id,
            entity_ids=[row.id],
        ))
    return violations


def duplicate_assignment_keys(assignments: Iterable[Assignment]) -> list[InvariantViolation]:
    by_key: dict[tuple, list[str]] = defaultdict(list)
    for a in assignments:
        by_key[a.key].append(a.id)

    return [
        InvariantViolation(
            kind="duplicate_assignment",
            message=f"{len(ids)} assignments share client/expert/jurisdiction {key}",
            client_id=key[0],
            expert_id=key[1],
            entity_ids=sorted(ids),
        )
        for key, ids in by_key.items()
        if len(ids) > 1
    ]


def find_invariant_violations(
    assignments: Iterable[Assignment],
    tasks: Iterable[Task] = (),
    invoices: Iterable[Invoice] = (),
    payments: Iterable[Payment] = (),
) -> list[InvariantViolation]:
    """
    Check loaded rows against the engagement invariants.

    Detects tasks, invoices and payments for a client/expert pair with no
    assignment, assignments sharing a key, and assignment earnings that do
    not match their payments. Each finding is logged at WARNING.
    """
    assignments = list(assignments)
    payments = list(payments)
    pairs = {a.pair for a in assignments}

    found = []
    found.extend(_orphans(tasks, "orphan_task", pairs))
    found.extend(_orphans(invoices, "orphan_invoice", pairs))
    found.extend(_orphans(
        (p for p in payments if p.client_id), "orphan_payment", pairs
    ))
    found.extend(duplicate_assignment_keys(assignments))

    for v in found:
        logger.warning("Invariant violation (%s): %s", v.kind, v.message)

    # Logs its own findings.
    found.extend(reconcile_assignment_earnings(assignments, payments))
    return found
