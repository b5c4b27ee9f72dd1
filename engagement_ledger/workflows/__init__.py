"""Resolution, aggregation, write paths and view assembly over the entity store."""

from .assignment_resolver import AssignmentResolver, DashboardStats, ExpertRef
from .progress import compute_progress, progress_by_client, progress_by_pair, urgent_tasks
from .earnings import (
    EarningsTotal,
    EarningsWindow,
    MonthlyBucket,
    aggregate_earnings,
    monthly_series,
    pending_total,
    reconcile_assignment_earnings,
)
from .pipeline import StageBucket, StatusCategory, bucket_by_stage, status_category
from .integrity import find_invariant_violations
from .intake import EngagementService
from .views import (
    ClientFilters,
    ClientListState,
    SortDirection,
    SortField,
    SortSpec,
    ViewAssembler,
)

__all__ = [
    "AssignmentResolver",
    "DashboardStats",
    "ExpertRef",
    "compute_progress",
    "progress_by_client",
    "progress_by_pair",
    "urgent_tasks",
    "EarningsTotal",
    "EarningsWindow",
    "MonthlyBucket",
    "aggregate_earnings",
    "monthly_series",
    "pending_total",
    "reconcile_assignment_earnings",
    "StageBucket",
    "StatusCategory",
    "bucket_by_stage",
    "status_category",
    "find_invariant_violations",
    "EngagementService",
    "ClientFilters",
    "ClientListState",
    "SortDirection",
    "SortField",
    "SortSpec",
    "ViewAssembler",
]
