"""
Pipeline funnel analytics.

Clients are bucketed over the fixed stage order. Clients with no stage, or a
stage outside the fixed set, are counted separately and never fall into the
first bucket.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from ..models.client import Client, PipelineStage
from .earnings import MONTH_NAMES, shift_month

logger = logging.getLogger(__name__)

# Overall statuses that mean the client is no longer being worked on.
CLOSED_STATUSES = {"completed", "complete", "archived", "cancelled"}


class StatusCategory(Enum):
    """Tab an expert's client falls under, derived from its overall status."""

    ACTIVE = "active"
    PENDING_REVIEW = "pending_review"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StageBucket:
    stage: PipelineStage
    count: int
    percentage: int

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "count": self.count,
            "percentage": self.percentage,
        }


@dataclass(frozen=True)
class StageDropoff:
    """Change in client count between two consecutive stages."""

    from_stage: PipelineStage
    to_stage: PipelineStage
    dropoff: int  # negative when the later stage holds more clients
    percentage: int

    def to_dict(self) -> dict:
        return {
            "from_stage": self.from_stage.value,
            "to_stage": self.to_stage.value,
            "dropoff": self.dropoff,
            "percentage": self.percentage,
        }


def _stage_of(client) -> Optional[PipelineStage]:
    # Accepts rows whose stage was never parsed (raw strings from imports).
    return PipelineStage.coerce(client.pipeline_stage)


def _percent(part: int, whole: int) -> int:
    if whole == 0:
        return 0
    return math.floor(100 * part / whole + 0.5)


def bucket_by_stage(clients: Iterable[Client]) -> list[StageBucket]:
    """
    Count clients per pipeline stage, in funnel order.

    Percentages are over bucketed clients only. With nothing bucketed every
    stage reports 0%.
    """
    counts = {stage: 0 for stage in PipelineStage}
    skipped = 0
    for client in clients:
        stage = _stage_of(client)
        if stage is None:
            skipped += 1
            continue
        counts[stage] += 1

    if skipped:
        logger.debug("%d clients without a recognised pipeline stage", skipped)

    total = sum(counts.values())
    return [
        StageBucket(stage=stage, count=counts[stage], percentage=_percent(counts[stage], total))
        for stage in PipelineStage
    ]


def unstaged_count(clients: Iterable[Client]) -> int:
    """Clients shown as "Not Set": no stage, or one outside the funnel."""
    return sum(1 for c in clients if _stage_of(c) is None)


def stage_dropoff(buckets: list[StageBucket]) -> list[StageDropoff]:
    """Drop-off between consecutive stages, skipping empty source stages."""
    rows = []
    for current, following in zip(buckets, buckets[1:]):
        if current.count == 0:
            continue
        dropoff = current.count - following.count
        rows.append(StageDropoff(
            from_stage=current.stage,
            to_stage=following.stage,
            dropoff=dropoff,
            percentage=max(0, _percent(dropoff, current.count)),
        ))
    return rows


def is_closed_status(overall_status: Optional[str]) -> bool:
    return (overall_status or "").strip().lower() in CLOSED_STATUSES


def active_client_count(clients: Iterable[Client]) -> int:
    """Clients whose overall status is not closed."""
    return sum(1 for c in clients if not is_closed_status(c.overall_status))


def retention_rate(clients: Iterable[Client]) -> float:
    """Share of clients still open, as a percentage."""
    clients = list(clients)
    if not clients:
        return 0.0
    return active_client_count(clients) / len(clients) * 100


def conversion_rate(clients: Iterable[Client]) -> float:
    """Share of clients that reached Complete, as a percentage."""
    clients = list(clients)
    if not clients:
        return 0.0
    converted = sum(
        1 for c in clients
        if _stage_of(c) == PipelineStage.COMPLETE
        or (c.overall_status or "").strip().lower() in ("completed", "complete")
    )
    return converted / len(clients) * 100


def status_category(overall_status: Optional[str]) -> StatusCategory:
    """Tab for the expert client list. Closed engagements sit under Completed."""
    status = (overall_status or "").strip().lower()
    if status in CLOSED_STATUSES:
        return StatusCategory.COMPLETED
    if "review" in status or "pending" in status:
        return StatusCategory.PENDING_REVIEW
    return StatusCategory.ACTIVE


@dataclass(frozen=True)
class MonthlyCount:
    year: int
    month: int
    count: int = 0

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "key": f"{self.year}-{self.month:02d}",
            "label": MONTH_NAMES[self.month - 1],
            "count": self.count,
        }


def client_growth(
    clients: Iterable[Client],
    now: Optional[datetime] = None,
    months: int = 12,
) -> list[MonthlyCount]:
    """New clients per calendar month, oldest first, ending this month."""
    now = now or datetime.now()
    keys = [shift_month(now.year, now.month, -i) for i in range(months - 1, -1, -1)]
    counts = {k: 0 for k in keys}
    for client in clients:
        key = (client.created_at.year, client.created_at.month)
        if key in counts:
            counts[key] += 1
    return [MonthlyCount(year=y, month=m, count=counts[(y, m)]) for y, m in keys]


def country_breakdown(clients: Iterable[Client]) -> list[dict]:
    """Clients per listed country; a client counts once for each country."""
    counts: dict[str, int] = {}
    for client in clients:
        for country in dict.fromkeys(client.countries):
            counts[country] = counts.get(country, 0) + 1
    rows = [{"country": c, "count": n} for c, n in counts.items()]
    return sorted(rows, key=lambda r: (-r["count"], r["country"]))
