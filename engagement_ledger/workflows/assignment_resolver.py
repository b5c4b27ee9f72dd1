"""
Assignment resolution between experts and clients.

Every view that needs "which experts work this client" or "which clients
does this expert have" goes through here, so the multiplicity and scoping
rules live in one place:

- an expert only ever sees assignments carrying their own ``expert_id``
- inactive assignments are hidden unless explicitly requested
- the viewing expert's own row is flagged ``is_self`` instead of matched
  by name
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from ..errors import PartialAggregationFailure
from ..models.assignment import Assignment, AssignmentStatus
from ..models.expert import Expert
from ..store import EntityStore, Query, fetch_parallel, where
from .earnings import EarningsTotal, EarningsWindow, aggregate_earnings

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"
SELF_LABEL = "You"


@dataclass(frozen=True)
class ExpertRef:
    """One expert working a client, as seen by a viewing expert."""

    name: str
    jurisdiction: str
    is_self: bool
    expert_id: str
    status: AssignmentStatus = AssignmentStatus.ACTIVE

    @property
    def display_name(self) -> str:
        return SELF_LABEL if self.is_self else self.name

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "jurisdiction": self.jurisdiction,
            "is_self": self.is_self,
            "expert_id": self.expert_id,
            "status": self.status.value,
        }


@dataclass
class DashboardStats:
    """Headline numbers on an expert's home page."""

    active_clients: int = 0
    jurisdictions: int = 0
    rating: Optional[float] = None
    quarter_earnings: EarningsTotal = field(default_factory=EarningsTotal)
    failures: list[PartialAggregationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "active_clients": self.active_clients,
            "jurisdictions": self.jurisdictions,
            "rating": self.rating,
            "quarter_earnings": self.quarter_earnings.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
        }


# === Pure joins (shared with the view assembler) ===

def scope_assignments(
    assignments: Iterable[Assignment],
    expert_id: Optional[str] = None,
    include_inactive: bool = False,
) -> list[Assignment]:
    """Filter assignments to one expert and, by default, to active rows."""
    return [
        a for a in assignments
        if (expert_id is None or a.expert_id == expert_id)
        and (include_inactive or a.is_active)
    ]


def build_expert_refs(
    assignments: Iterable[Assignment],
    expert_names: dict[str, str],
    viewer_expert_id: Optional[str] = None,
) -> list[ExpertRef]:
    """
    Turn a client's assignments into display refs.

    A missing or blank expert name resolves to "Unknown" rather than
    failing the whole list.
    """
    refs = []
    for a in assignments:
        name = expert_names.get(a.expert_id) or UNKNOWN_NAME
        refs.append(ExpertRef(
            name=name,
            jurisdiction=a.jurisdiction,
            is_self=viewer_expert_id is not None and a.expert_id == viewer_expert_id,
            expert_id=a.expert_id,
            status=a.status,
        ))
    return refs


def expert_names_by_client(
    assignments: Iterable[Assignment],
    experts: Iterable[Expert],
) -> dict[str, list[str]]:
    """Distinct expert names per client, in first-seen order."""
    names = {e.id: e.full_name for e in experts}
    result: dict[str, list[str]] = defaultdict(list)
    for a in assignments:
        name = names.get(a.expert_id) or UNKNOWN_NAME
        if name not in result[a.client_id]:
            result[a.client_id].append(name)
    return dict(result)


def group_by_client(assignments: Iterable[Assignment]) -> dict[str, list[Assignment]]:
    grouped: dict[str, list[Assignment]] = defaultdict(list)
    for a in assignments:
        grouped[a.client_id].append(a)
    return dict(grouped)


# === Store-backed resolver ===

class AssignmentResolver:
    """Resolves expert/client cross-references against an entity store."""

    def __init__(self, store: EntityStore, max_workers: int = 6):
        self.store = store
        self.max_workers = max_workers

    def resolve_assignments_for_expert(
        self,
        expert_id: str,
        include_inactive: bool = False,
    ) -> list[Assignment]:
        """Assignments owned by one expert; an unknown expert yields []."""
        query = where(expert_id=expert_id)
        if not include_inactive:
            query.eq["status"] = AssignmentStatus.ACTIVE.value
        return self.store.select("assignments", query, order_by="created_at")

    def resolve_experts_for_client(
        self,
        client_id: str,
        viewer_expert_id: Optional[str] = None,
        include_inactive: bool = False,
    ) -> list[ExpertRef]:
        """Every expert working a client, tagged with jurisdiction."""
        assignments = scope_assignments(
            self.store.select("assignments", where(client_id=client_id), order_by="created_at"),
            include_inactive=include_inactive,
        )
        if not assignments:
            return []

        expert_ids = sorted({a.expert_id for a in assignments})
        experts = self.store.select("experts", Query(in_={"id": expert_ids}))
        names = {e.id: e.full_name for e in experts}
        return build_expert_refs(assignments, names, viewer_expert_id)

    def dashboard_stats(self, expert_id: str, now: Optional[datetime] = None) -> DashboardStats:
        """
        Active client count, jurisdiction count, rating and quarter-to-date
        earnings for one expert.

        Jurisdictions are counted over every assignment the expert ever
        held; active clients only over current ones.
        """
        fetched = fetch_parallel(
            {
                "expert": lambda: self.store.find("experts", expert_id),
                "assignments": lambda: self.store.select("assignments", where(expert_id=expert_id)),
                "payments": lambda: self.store.select("payments", where(expert_id=expert_id)),
            },
            defaults={"expert": None},
            max_workers=self.max_workers,
        )

        assignments = fetched["assignments"]
        expert = fetched["expert"]
        stats = DashboardStats(
            active_clients=len({a.client_id for a in assignments if a.is_active}),
            jurisdictions=len({a.jurisdiction for a in assignments if a.jurisdiction}),
            rating=expert.rating if expert else None,
            quarter_earnings=aggregate_earnings(
                fetched["payments"], EarningsWindow.QUARTER_TO_DATE, now=now, strict=False
            ),
            failures=fetched.failures,
        )
        return stats
