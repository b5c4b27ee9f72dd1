"""
View assembly for the expert portal and the admin console.

Each view fetches the rows it needs concurrently, hands them to the shared
resolver, progress, earnings and pipeline functions, then filters, sorts
and paginates. Nothing is cached between calls. A fetch that fails turns
into an empty collection plus a ``PartialAggregationFailure`` on the
result; it never fails the view.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config import LedgerConfig
from ..errors import InvariantViolation, PartialAggregationFailure
from ..models.assignment import Assignment, AssignmentStatus
from ..models.client import Client
from ..models.expert import Expert
from ..models.task import TaskStatus
from ..store import EntityStore, Query, fetch_parallel, where
from .assignment_resolver import (
    AssignmentResolver,
    DashboardStats,
    ExpertRef,
    build_expert_refs,
    expert_names_by_client,
    group_by_client,
    scope_assignments,
)
from .earnings import (
    EarningsTotal,
    EarningsWindow,
    MonthlyBucket,
    aggregate_earnings,
    average_fee_per_client,
    monthly_recurring_revenue,
    monthly_series,
    pending_total,
    totals_by_client,
    totals_by_country,
    totals_by_expert,
)
from .integrity import find_invariant_violations
from .pipeline import (
    StatusCategory,
    bucket_by_stage,
    client_growth,
    conversion_rate,
    country_breakdown,
    retention_rate,
    stage_dropoff,
    status_category,
    unstaged_count,
)
from .progress import UrgentTask, completion_stats, progress_by_pair, urgent_tasks

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 20


# === Filter, sort and pagination specs ===

class SortField(Enum):
    NAME = "name"
    CREATED_AT = "created_at"
    REVENUE = "revenue"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class ClientFilters:
    """
    Admin client table filters. All set filters must match.

    ``status`` matches either the pipeline stage or the overall status;
    ``expert`` matches an assigned expert's name. Text comparisons ignore
    case.
    """

    search: str = ""
    status: Optional[str] = None
    country: Optional[str] = None
    complexity: Optional[str] = None
    expert: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self == ClientFilters()


@dataclass(frozen=True)
class SortSpec:
    field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC

    def toggled(self, field: SortField) -> "SortSpec":
        """Clicking the active column flips direction; a new column sorts ascending."""
        if field == self.field:
            flipped = SortDirection.ASC if self.direction == SortDirection.DESC else SortDirection.DESC
            return SortSpec(field, flipped)
        return SortSpec(field, SortDirection.ASC)


@dataclass
class Page:
    """One fixed-size page of rows."""

    items: list
    page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total_items / self.page_size))

    @property
    def first_index(self) -> int:
        """1-based index of the first row shown, 0 when empty."""
        if self.total_items == 0:
            return 0
        return (self.page - 1) * self.page_size + 1

    @property
    def last_index(self) -> int:
        return min(self.page * self.page_size, self.total_items)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "page": self.page,
            "page_size": self.page_size,
            "total_items": self.total_items,
            "total_pages": self.total_pages,
        }


class ClientListState:
    """
    Filter, sort and page state of the admin client table.

    Any filter change returns to page 1. Sorting keeps the current page.
    """

    def __init__(
        self,
        filters: Optional[ClientFilters] = None,
        sort: Optional[SortSpec] = None,
        page_size: int = 25,
    ):
        self.filters = filters or ClientFilters()
        self.sort = sort or SortSpec()
        self.page_size = page_size
        self.page = 1

    def set_filters(self, filters: ClientFilters) -> None:
        if filters != self.filters:
            self.filters = filters
            self.page = 1

    def update_filters(self, **changes) -> None:
        """Change individual filters, e.g. ``update_filters(country="UK")``."""
        self.set_filters(replace(self.filters, **changes))

    def reset_filters(self) -> None:
        self.set_filters(ClientFilters())

    def sort_by(self, field: SortField) -> None:
        self.sort = self.sort.toggled(field)

    def go_to(self, page: int, total_items: int) -> None:
        total_pages = max(1, math.ceil(total_items / self.page_size))
        self.page = min(max(1, page), total_pages)

    def next_page(self, total_items: int) -> None:
        self.go_to(self.page + 1, total_items)

    def previous_page(self) -> None:
        self.page = max(1, self.page - 1)


def _matches_text(value: Optional[str], wanted: str) -> bool:
    return (value or "").strip().lower() == wanted.strip().lower()


def filter_clients(
    clients: list[Client],
    filters: ClientFilters,
    expert_names: Optional[dict[str, list[str]]] = None,
) -> list[Client]:
    """Apply every set filter. Keeps input order; applying twice changes nothing."""
    expert_names = expert_names or {}
    result = list(clients)

    if filters.search.strip():
        q = filters.search.strip().lower()
        result = [
            c for c in result
            if q in c.full_name.lower() or q in c.email.lower()
        ]

    if filters.status:
        result = [
            c for c in result
            if _matches_text(c.pipeline_stage.value if c.pipeline_stage else "", filters.status)
            or _matches_text(c.overall_status, filters.status)
        ]

    if filters.country:
        result = [
            c for c in result
            if any(_matches_text(country, filters.country) for country in c.countries)
        ]

    if filters.complexity:
        result = [c for c in result if _matches_text(c.complexity.value, filters.complexity)]

    if filters.expert:
        result = [
            c for c in result
            if any(_matches_text(name, filters.expert) for name in expert_names.get(c.id, []))
        ]

    return result


def sort_clients(
    clients: list[Client],
    sort: SortSpec,
    revenue: Optional[dict[str, float]] = None,
) -> list[Client]:
    """
    Sort clients by name, creation time or revenue.

    ``revenue`` is the precomputed per-client total; the sort key only looks
    it up.
    """
    revenue = revenue or {}
    if sort.field == SortField.NAME:
        key = lambda c: c.full_name.lower()  # noqa: E731
    elif sort.field == SortField.CREATED_AT:
        key = lambda c: c.created_at  # noqa: E731
    elif sort.field == SortField.REVENUE:
        key = lambda c: revenue.get(c.id, 0.0)  # noqa: E731
    else:
        raise ValueError(f"Unhandled sort field: {sort.field}")
    return sorted(clients, key=key, reverse=sort.direction == SortDirection.DESC)


def paginate(items: list, page: int = 1, page_size: int = 25) -> Page:
    """Slice out one page, clamping the page number into range."""
    total_pages = max(1, math.ceil(len(items) / page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return Page(
        items=items[start:start + page_size],
        page=page,
        page_size=page_size,
        total_items=len(items),
    )


# === View results ===

@dataclass
class ExpertClientRow:
    """A client as listed in an expert's portal."""

    client: Client
    experts: list[ExpertRef]
    jurisdictions: list[str]
    progress: int
    earnings: float
    category: StatusCategory

    def to_dict(self) -> dict:
        return {
            "id": self.client.id,
            "full_name": self.client.full_name,
            "email": self.client.email,
            "overall_status": self.client.overall_status,
            "complexity": self.client.complexity.value,
            "countries": self.client.countries,
            "asset_types": self.client.asset_types,
            "tax_years": self.client.tax_years,
            "experts": [e.to_dict() for e in self.experts],
            "jurisdictions": self.jurisdictions,
            "progress": self.progress,
            "earnings": self.earnings,
            "category": self.category.value,
        }


@dataclass
class ExpertClientList:
    rows: list[ExpertClientRow] = field(default_factory=list)
    failures: list[PartialAggregationFailure] = field(default_factory=list)
    violations: list[InvariantViolation] = field(default_factory=list)

    def by_category(self, category: StatusCategory) -> list[ExpertClientRow]:
        return [r for r in self.rows if r.category == category]

    def to_dict(self) -> dict:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "failures": [f.to_dict() for f in self.failures],
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class ExpertDashboard:
    """An expert's home page: headline stats, urgent work and earnings."""

    stats: DashboardStats
    urgent: list[UrgentTask] = field(default_factory=list)
    monthly: list[MonthlyBucket] = field(default_factory=list)
    month_to_date: EarningsTotal = field(default_factory=EarningsTotal)
    pending: EarningsTotal = field(default_factory=EarningsTotal)
    failures: list[PartialAggregationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stats": self.stats.to_dict(),
            "urgent": [u.to_dict() for u in self.urgent],
            "monthly": [b.to_dict() for b in self.monthly],
            "month_to_date": self.month_to_date.to_dict(),
            "pending": self.pending.to_dict(),
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class AdminClientRow:
    client: Client
    expert_names: list[str]
    revenue: float

    def to_dict(self) -> dict:
        data = self.client.to_dict()
        data["expert_names"] = self.expert_names
        data["revenue"] = self.revenue
        return data


@dataclass
class AdminClientList:
    page: Page
    filters: ClientFilters
    sort: SortSpec
    country_options: list[str] = field(default_factory=list)
    expert_options: list[str] = field(default_factory=list)
    failures: list[PartialAggregationFailure] = field(default_factory=list)
    violations: list[InvariantViolation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "page": self.page.to_dict(),
            "sort": {"field": self.sort.field.value, "direction": self.sort.direction.value},
            "country_options": self.country_options,
            "expert_options": self.expert_options,
            "failures": [f.to_dict() for f in self.failures],
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass
class AdminExpertRow:
    expert: Expert
    active_clients: int
    total_earned: EarningsTotal
    task_count: int

    def to_dict(self) -> dict:
        data = self.expert.to_dict()
        data["active_clients"] = self.active_clients
        data["total_earned"] = self.total_earned.to_dict()
        data["task_count"] = self.task_count
        return data


@dataclass
class AdminExpertList:
    rows: list[AdminExpertRow] = field(default_factory=list)
    failures: list[PartialAggregationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "rows": [r.to_dict() for r in self.rows],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class ExpertDetail:
    """Drill-down for one expert in the admin console."""

    expert: Expert
    active_assignments: list[Assignment] = field(default_factory=list)
    client_names: dict[str, str] = field(default_factory=dict)
    completed_tasks: int = 0
    monthly: list[MonthlyBucket] = field(default_factory=list)
    failures: list[PartialAggregationFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "expert": self.expert.to_dict(),
            "active_assignments": [
                dict(a.to_dict(), client_name=self.client_names.get(a.client_id, "Unknown"))
                for a in self.active_assignments
            ],
            "completed_tasks": self.completed_tasks,
            "monthly": [b.to_dict() for b in self.monthly],
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class PlatformOverview:
    """Admin overview and analytics figures."""

    totals: dict[str, int] = field(default_factory=dict)
    revenue: dict[str, EarningsTotal] = field(default_factory=dict)
    pending: EarningsTotal = field(default_factory=EarningsTotal)
    client_growth: list = field(default_factory=list)
    revenue_series: list[MonthlyBucket] = field(default_factory=list)
    pipeline: list = field(default_factory=list)
    unstaged: int = 0
    dropoff: list = field(default_factory=list)
    countries: list[dict] = field(default_factory=list)
    revenue_by_country: list[dict] = field(default_factory=list)
    revenue_by_expert: list[dict] = field(default_factory=list)
    metrics: dict[str, float] = field(default_factory=dict)
    recent_activity: list = field(default_factory=list)
    failures: list[PartialAggregationFailure] = field(default_factory=list)
    violations: list[InvariantViolation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totals": self.totals,
            "revenue": {k: v.to_dict() for k, v in self.revenue.items()},
            "pending": self.pending.to_dict(),
            "client_growth": [m.to_dict() for m in self.client_growth],
            "revenue_series": [b.to_dict() for b in self.revenue_series],
            "pipeline": [b.to_dict() for b in self.pipeline],
            "unstaged": self.unstaged,
            "dropoff": [d.to_dict() for d in self.dropoff],
            "countries": self.countries,
            "revenue_by_country": self.revenue_by_country,
            "revenue_by_expert": self.revenue_by_expert,
            "metrics": self.metrics,
            "recent_activity": [a.to_dict() for a in self.recent_activity],
            "failures": [f.to_dict() for f in self.failures],
            "violations": [v.to_dict() for v in self.violations],
        }


# === Assembler ===

class ViewAssembler:
    """Builds every portal and console view from an entity store."""

    def __init__(self, store: EntityStore, config: Optional[LedgerConfig] = None):
        self.store = store
        self.config = config or LedgerConfig(data_dir=store.data_dir)
        self.resolver = AssignmentResolver(store, max_workers=self.config.max_fetch_workers)

    def _fetch(self, fetches: dict, defaults: Optional[dict[str, Any]] = None):
        return fetch_parallel(fetches, defaults=defaults, max_workers=self.config.max_fetch_workers)

    def _in(self, table: str, column: str, values) -> list:
        values = sorted(set(values))
        if not values:
            return []
        return self.store.select(table, Query(in_={column: values}))

    # --- Expert portal ---

    def expert_client_list(
        self,
        expert_id: str,
        include_inactive: bool = False,
    ) -> ExpertClientList:
        """
        One row per client the expert works on.

        Progress counts only this expert's tasks for the client. Earnings
        sum this expert's assignments for the client.
        """
        # Phase 1: relationships, to learn the client ids.
        first = self._fetch({
            "assignments": lambda: self.resolver.resolve_assignments_for_expert(
                expert_id, include_inactive=include_inactive
            ),
        })
        own = first["assignments"]
        client_ids = {a.client_id for a in own}
        if not client_ids:
            return ExpertClientList(failures=first.failures)

        # Phase 2: everything keyed by those clients.
        second = self._fetch({
            "clients": lambda: self._in("clients", "id", client_ids),
            "client_assignments": lambda: self._in("assignments", "client_id", client_ids),
            "experts": lambda: self.store.select("experts"),
            "tasks": lambda: self._in("tasks", "client_id", client_ids),
            "payments": lambda: self._in("payments", "client_id", client_ids),
        })
        failures = first.failures + second.failures

        names = {e.id: e.full_name for e in second["experts"]}
        progress = progress_by_pair(second["tasks"])
        by_client = group_by_client(
            scope_assignments(second["client_assignments"], include_inactive=include_inactive)
        )
        own_by_client = group_by_client(own)

        rows = []
        for client in sorted(second["clients"], key=lambda c: c.full_name.lower()):
            mine = own_by_client.get(client.id, [])
            rows.append(ExpertClientRow(
                client=client,
                experts=build_expert_refs(by_client.get(client.id, mine), names, expert_id),
                jurisdictions=[a.jurisdiction for a in mine],
                progress=progress.get((client.id, expert_id), 0),
                earnings=round(sum(a.earnings for a in mine), 2),
                category=status_category(client.overall_status),
            ))

        violations = []
        if not {"client_assignments", "tasks", "payments"} & {f.aggregate for f in failures}:
            violations = find_invariant_violations(
                second["client_assignments"],
                tasks=second["tasks"],
                payments=second["payments"],
            )

        return ExpertClientList(rows=rows, failures=failures, violations=violations)

    def expert_dashboard(self, expert_id: str, now: Optional[datetime] = None) -> ExpertDashboard:
        """Headline stats, tasks due soon and the monthly earnings series."""
        now = now or datetime.now()
        stats = self.resolver.dashboard_stats(expert_id, now=now)

        fetched = self._fetch({
            "tasks": lambda: self.store.select(
                "tasks",
                Query(
                    eq={"expert_id": expert_id},
                    in_={"status": [TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value]},
                ),
            ),
            "clients": lambda: self.store.select("clients"),
            "payments": lambda: self.store.select("payments", where(expert_id=expert_id)),
            "invoices": lambda: self.store.select("invoices", where(expert_id=expert_id)),
        })
        client_names = {c.id: c.full_name for c in fetched["clients"]}

        return ExpertDashboard(
            stats=stats,
            urgent=urgent_tasks(
                fetched["tasks"],
                client_names,
                today=now.date(),
                horizon_days=self.config.urgent_horizon_days,
            ),
            monthly=monthly_series(
                fetched["payments"], now=now, months=self.config.monthly_window, strict=False
            ),
            month_to_date=aggregate_earnings(
                fetched["payments"], EarningsWindow.MONTH_TO_DATE, now=now, strict=False
            ),
            pending=pending_total(fetched["invoices"], strict=False),
            failures=stats.failures + fetched.failures,
        )

    # --- Admin console ---

    def admin_client_list(
        self,
        filters: Optional[ClientFilters] = None,
        sort: Optional[SortSpec] = None,
        page: int = 1,
    ) -> AdminClientList:
        """The paginated admin client table."""
        filters = filters or ClientFilters()
        sort = sort or SortSpec()

        fetched = self._fetch({
            "clients": lambda: self.store.select("clients"),
            "assignments": lambda: self.store.select("assignments"),
            "experts": lambda: self.store.select("experts"),
            "payments": lambda: self.store.select("payments"),
        })

        # Computed once per view; the sort key only looks these up.
        revenue = {cid: t.amount for cid, t in totals_by_client(fetched["payments"]).items()}
        names = expert_names_by_client(fetched["assignments"], fetched["experts"])

        matched = filter_clients(fetched["clients"], filters, names)
        ordered = sort_clients(matched, sort, revenue)
        rows = [
            AdminClientRow(client=c, expert_names=names.get(c.id, []), revenue=revenue.get(c.id, 0.0))
            for c in ordered
        ]

        violations = []
        if not {"assignments", "payments"} & {f.aggregate for f in fetched.failures}:
            violations = find_invariant_violations(fetched["assignments"], payments=fetched["payments"])

        return AdminClientList(
            page=paginate(rows, page, self.config.page_size),
            filters=filters,
            sort=sort,
            country_options=sorted({c for client in fetched["clients"] for c in client.countries}),
            expert_options=sorted({n for ns in names.values() for n in ns if n != "Unknown"}),
            failures=fetched.failures,
            violations=violations,
        )

    def admin_client_page(self, state: ClientListState) -> AdminClientList:
        """Render the table for a ``ClientListState``, clamping its page."""
        result = self.admin_client_list(state.filters, state.sort, state.page)
        state.page = result.page.page
        return result

    def admin_expert_list(self, search: str = "") -> AdminExpertList:
        """All experts, newest first, with client, earnings and task counts."""
        fetched = self._fetch({
            "experts": lambda: self.store.select("experts", order_by="created_at", descending=True),
            "assignments": lambda: self.store.select(
                "assignments", where(status=AssignmentStatus.ACTIVE.value)
            ),
            "payments": lambda: self.store.select("payments"),
            "tasks": lambda: self.store.select("tasks"),
        })

        experts = fetched["experts"]
        if search.strip():
            q = search.strip().lower()
            experts = [e for e in experts if q in e.full_name.lower() or q in e.email.lower()]

        active_clients: dict[str, set] = {}
        for a in fetched["assignments"]:
            active_clients.setdefault(a.expert_id, set()).add(a.client_id)
        task_counts: dict[str, int] = {}
        for t in fetched["tasks"]:
            task_counts[t.expert_id] = task_counts.get(t.expert_id, 0) + 1
        earned = totals_by_expert(fetched["payments"])

        rows = [
            AdminExpertRow(
                expert=e,
                active_clients=len(active_clients.get(e.id, ())),
                total_earned=earned.get(e.id, EarningsTotal()),
                task_count=task_counts.get(e.id, 0),
            )
            for e in experts
        ]
        return AdminExpertList(rows=rows, failures=fetched.failures)

    def expert_detail(self, expert_id: str, now: Optional[datetime] = None) -> ExpertDetail:
        """
        Drill-down for one expert.

        Raises NotFoundError for an unknown expert; everything else degrades.
        """
        expert = self.store.get("experts", expert_id)

        first = self._fetch({
            "assignments": lambda: self.resolver.resolve_assignments_for_expert(expert_id),
            "completed_tasks": lambda: self.store.count(
                "tasks", where(expert_id=expert_id, status=TaskStatus.COMPLETED.value)
            ),
            "payments": lambda: self.store.select("payments", where(expert_id=expert_id)),
        }, defaults={"completed_tasks": 0})

        assignments = first["assignments"]
        second = self._fetch({
            "clients": lambda: self._in("clients", "id", (a.client_id for a in assignments)),
        })

        return ExpertDetail(
            expert=expert,
            active_assignments=assignments,
            client_names={c.id: c.full_name for c in second["clients"]},
            completed_tasks=first["completed_tasks"],
            monthly=monthly_series(
                first["payments"], now=now, months=self.config.monthly_window, strict=False
            ),
            failures=first.failures + second.failures,
        )

    def platform_overview(self, now: Optional[datetime] = None) -> PlatformOverview:
        """Platform-wide counts, revenue, funnel and operational metrics."""
        now = now or datetime.now()

        fetched = self._fetch({
            "clients": lambda: self.store.select("clients"),
            "experts": lambda: self.store.select("experts"),
            "assignments": lambda: self.store.select("assignments"),
            "payments": lambda: self.store.select("payments"),
            "tasks": lambda: self.store.select("tasks"),
            "invoices": lambda: self.store.select("invoices"),
            "activity": lambda: self.store.select(
                "activity_log", order_by="created_at", descending=True, limit=RECENT_ACTIVITY_LIMIT
            ),
        })
        clients = fetched["clients"]
        payments = fetched["payments"]
        expert_names = {e.id: e.full_name for e in fetched["experts"]}

        buckets = bucket_by_stage(clients)
        tasks = completion_stats(fetched["tasks"])

        by_expert = sorted(
            (
                {"expert_id": eid, "name": expert_names.get(eid, "Unassigned"), "revenue": t.amount}
                for eid, t in totals_by_expert(payments).items()
            ),
            key=lambda r: (-r["revenue"], r["name"]),
        )

        violations = []
        if not {"assignments", "payments", "tasks", "invoices"} & {f.aggregate for f in fetched.failures}:
            violations = find_invariant_violations(
                fetched["assignments"],
                tasks=fetched["tasks"],
                invoices=fetched["invoices"],
                payments=payments,
            )

        return PlatformOverview(
            totals={
                "clients": len(clients),
                "experts": len(fetched["experts"]),
                "active_cases": sum(1 for a in fetched["assignments"] if a.is_active),
            },
            revenue={
                window.value: aggregate_earnings(payments, window, now=now, strict=False)
                for window in EarningsWindow
            },
            pending=pending_total(fetched["invoices"], strict=False),
            client_growth=client_growth(clients, now=now, months=self.config.growth_window),
            revenue_series=monthly_series(
                payments, now=now, months=self.config.growth_window, strict=False
            ),
            pipeline=buckets,
            unstaged=unstaged_count(clients),
            dropoff=stage_dropoff(buckets),
            countries=country_breakdown(clients),
            revenue_by_country=totals_by_country(payments, clients),
            revenue_by_expert=by_expert,
            metrics={
                "mrr": monthly_recurring_revenue(payments, now=now),
                "average_fee_per_client": average_fee_per_client(payments),
                "retention_rate": retention_rate(clients),
                "conversion_rate": conversion_rate(clients),
                "task_completion_rate": tasks["completion_rate"],
                "avg_completion_days": tasks["avg_completion_days"],
                "avg_tasks_per_client": tasks["avg_tasks_per_client"],
            },
            recent_activity=fetched["activity"],
            failures=fetched.failures,
            violations=violations,
        )
