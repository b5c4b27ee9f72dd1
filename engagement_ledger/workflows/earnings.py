"""
Earnings aggregation over payments.

Payments are the only input to earned figures. Outstanding invoices feed a
separate pending total and never count as earned. Amounts in different
currencies are never added together.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

from ..errors import InvariantViolation, MixedCurrencyError
from ..models.assignment import Assignment
from ..models.client import Client
from ..models.invoice import Invoice
from ..models.payment import Payment

logger = logging.getLogger(__name__)

MONTH_NAMES = [
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]

# Earnings are stored to the penny; anything below is float noise.
DRIFT_TOLERANCE = 0.005


class EarningsWindow(Enum):
    """Time window for an earnings total."""

    MONTH_TO_DATE = "month_to_date"
    QUARTER_TO_DATE = "quarter_to_date"
    ALL_TIME = "all_time"


@dataclass
class EarningsTotal:
    """A summed amount with its currency breakdown."""

    amount: float = 0.0
    currency: Optional[str] = None
    count: int = 0
    by_currency: dict[str, float] = field(default_factory=dict)
    mixed_currency: bool = False

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "currency": self.currency,
            "count": self.count,
            "by_currency": dict(self.by_currency),
            "mixed_currency": self.mixed_currency,
        }


@dataclass(frozen=True)
class MonthlyBucket:
    """Earnings for one calendar month, keyed by (year, month)."""

    year: int
    month: int  # 1-12
    amount: float = 0.0

    @property
    def key(self) -> tuple[int, int]:
        return (self.year, self.month)

    @property
    def label(self) -> str:
        """Short display label, e.g. ``Oct``."""
        return MONTH_NAMES[self.month - 1]

    @property
    def long_label(self) -> str:
        """Display label that keeps the year, e.g. ``Oct 26``."""
        return f"{self.label} {self.year % 100:02d}"

    def to_dict(self) -> dict:
        return {
            "year": self.year,
            "month": self.month,
            "key": f"{self.year}-{self.month:02d}",
            "label": self.label,
            "amount": self.amount,
        }


# === Time helpers ===

def _to_viewer_time(moment: datetime, now: datetime) -> datetime:
    """Express a timestamp in the same clock as ``now``."""
    if now.tzinfo is not None:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=now.tzinfo)
        return moment.astimezone(now.tzinfo)
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def month_start(now: datetime) -> datetime:
    """Midnight on day 1 of the month containing ``now``."""
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def quarter_start(now: datetime) -> datetime:
    """Midnight on day 1 of the quarter (Jan/Apr/Jul/Oct) containing ``now``."""
    first_month = (now.month - 1) // 3 * 3 + 1
    return month_start(now).replace(month=first_month)


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move a (year, month) pair by ``delta`` months."""
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def window_bounds(window: EarningsWindow, now: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive start and exclusive end of a window. ALL_TIME is unbounded."""
    if window == EarningsWindow.ALL_TIME:
        return None, None

    if window == EarningsWindow.MONTH_TO_DATE:
        start = month_start(now)
        span = 1
    elif window == EarningsWindow.QUARTER_TO_DATE:
        start = quarter_start(now)
        span = 3
    else:
        raise ValueError(f"Unhandled earnings window: {window}")

    end_year, end_month = shift_month(start.year, start.month, span)
    return start, start.replace(year=end_year, month=end_month)


def in_window(moment: datetime, window: EarningsWindow, now: datetime) -> bool:
    start, end = window_bounds(window, now)
    if start is None:
        return True
    local = _to_viewer_time(moment, now)
    return start <= local < end


# === Summation ===

def _sum(amounts: Iterable[tuple[str, float]], strict: bool, label: str) -> EarningsTotal:
    """Sum (currency, amount) pairs, refusing to mix currencies."""
    by_currency: dict[str, float] = defaultdict(float)
    count = 0
    for currency, amount in amounts:
        by_currency[currency] += amount
        count += 1

    by_currency = {c: round(a, 2) for c, a in by_currency.items()}
    total = EarningsTotal(count=count, by_currency=by_currency)

    if len(by_currency) > 1:
        if strict:
            raise MixedCurrencyError(by_currency)
        logger.warning(
            "Mixed currencies in %s (%s); reporting 0 with per-currency breakdown",
            label, ", ".join(sorted(by_currency)),
        )
        total.mixed_currency = True
        return total

    if by_currency:
        total.currency, total.amount = next(iter(by_currency.items()))
    return total


def aggregate_earnings(
    payments: Iterable[Payment],
    window: EarningsWindow = EarningsWindow.ALL_TIME,
    now: Optional[datetime] = None,
    strict: bool = True,
) -> EarningsTotal:
    """Sum payments that fall inside a time window."""
    now = now or datetime.now()
    selected = (
        (p.currency, p.amount)
        for p in payments
        if in_window(p.payment_date, window, now)
    )
    return _sum(selected, strict, window.value)


def monthly_series(
    payments: Iterable[Payment],
    now: Optional[datetime] = None,
    months: int = 6,
    strict: bool = True,
) -> list[MonthlyBucket]:
    """
    Earnings for the last ``months`` calendar months, oldest first.

    Always returns exactly ``months`` buckets ending with the current month;
    months without payments are zero.
    """
    now = now or datetime.now()
    keys = [shift_month(now.year, now.month, -i) for i in range(months - 1, -1, -1)]
    sums: dict[tuple[int, int], float] = {k: 0.0 for k in keys}

    considered = []
    for p in payments:
        local = _to_viewer_time(p.payment_date, now)
        key = (local.year, local.month)
        if key in sums:
            considered.append((key, p))

    currencies = {p.currency for _, p in considered}
    if len(currencies) > 1:
        if strict:
            raise MixedCurrencyError(currencies)
        logger.warning("Mixed currencies in monthly series (%s); reporting zeros", ", ".join(sorted(currencies)))
        return [MonthlyBucket(year=y, month=m) for y, m in keys]

    for key, p in considered:
        sums[key] += p.amount

    return [MonthlyBucket(year=y, month=m, amount=round(sums[(y, m)], 2)) for y, m in keys]


def pending_total(invoices: Iterable[Invoice], strict: bool = True) -> EarningsTotal:
    """
    Money billed but not yet received.

    Sums the remaining balance of sent and overdue invoices. Paid and draft
    invoices never contribute, and nothing here is ever added to earned
    figures.
    """
    selected = (
        (inv.currency, inv.remaining_balance)
        for inv in invoices
        if inv.status.is_outstanding
    )
    return _sum(selected, strict, "pending invoices")


# === Roll-ups ===

def totals_by_client(payments: Iterable[Payment], strict: bool = False) -> dict[str, EarningsTotal]:
    """All-time earnings per client. Payments with no client are skipped."""
    grouped: dict[str, list[Payment]] = defaultdict(list)
    for p in payments:
        if p.client_id:
            grouped[p.client_id].append(p)
    return {cid: aggregate_earnings(ps, strict=strict) for cid, ps in grouped.items()}


def totals_by_expert(payments: Iterable[Payment], strict: bool = False) -> dict[str, EarningsTotal]:
    """All-time earnings per expert."""
    grouped: dict[str, list[Payment]] = defaultdict(list)
    for p in payments:
        grouped[p.expert_id].append(p)
    return {eid: aggregate_earnings(ps, strict=strict) for eid, ps in grouped.items()}


def totals_by_country(payments: Iterable[Payment], clients: Iterable[Client]) -> list[dict]:
    """Revenue per client's primary country, largest first."""
    countries = {c.id: c.primary_country for c in clients}
    grouped: dict[str, list[Payment]] = defaultdict(list)
    for p in payments:
        country = countries.get(p.client_id) if p.client_id else None
        grouped[country or "Unknown"].append(p)

    rows = [
        {"country": country, "revenue": aggregate_earnings(ps, strict=False).amount}
        for country, ps in grouped.items()
    ]
    return sorted(rows, key=lambda r: (-r["revenue"], r["country"]))


def average_fee_per_client(payments: Iterable[Payment]) -> float:
    """Mean revenue across clients that have paid at least once."""
    payments = [p for p in payments if p.client_id]
    clients = {p.client_id for p in payments}
    if not clients:
        return 0.0
    total = aggregate_earnings(payments, strict=False).amount
    return round(total / len(clients), 2)


def monthly_recurring_revenue(payments: Iterable[Payment], now: Optional[datetime] = None) -> float:
    """Average monthly revenue over the last three months that had revenue."""
    buckets = monthly_series(payments, now=now, months=3, strict=False)
    earning = [b.amount for b in buckets if b.amount > 0]
    if not earning:
        return 0.0
    return round(sum(earning) / len(earning), 2)


# === Reconciliation ===

def attribute_payment(payment: Payment, assignments: Iterable[Assignment]) -> Optional[Assignment]:
    """
    Find the assignment a payment's earnings belong to.

    Candidates share the payment's client/expert pair. A payment that names
    a jurisdiction goes to that assignment; otherwise it needs the pair to
    have exactly one assignment. Returns None when unattributable.
    """
    if not payment.client_id:
        return None

    candidates = [
        a for a in assignments
        if a.pair == payment.pair
    ]
    if payment.jurisdiction:
        wanted = payment.jurisdiction.lower()
        matches = [a for a in candidates if a.jurisdiction.lower() == wanted]
        return matches[0] if len(matches) == 1 else None
    if len(candidates) == 1:
        return candidates[0]
    return None


def reconcile_assignment_earnings(
    assignments: Iterable[Assignment],
    payments: Iterable[Payment],
) -> list[InvariantViolation]:
    """
    Recompute each assignment's earnings from payments and report drift.

    Inactive assignments are included: their historical earnings stand.
    Payments for a pair with no assignment at all are left to the orphan
    checks in ``integrity``.
    """
    assignments = list(assignments)
    pairs = {a.pair for a in assignments}
    expected: dict[str, float] = {a.id: 0.0 for a in assignments}
    violations = []

    for payment in payments:
        if payment.pair not in pairs:
            continue
        target = attribute_payment(payment, assignments)
        if target is None:
            violations.append(InvariantViolation(
                kind="unattributed_payment",
                message=f"Payment {payment.id} matches no single assignment",
                client_id=payment.client_id,
                expert_id=payment.expert_id,
                entity_ids=[payment.id],
            ))
            continue
        expected[target.id] += payment.amount

    for a in assignments:
        if abs(expected[a.id] - a.earnings) > DRIFT_TOLERANCE:
            violations.append(InvariantViolation(
                kind="earnings_drift",
                message=(
                    f"Assignment {a.id} records {a.earnings:.2f} "
                    f"but payments total {expected[a.id]:.2f}"
                ),
                client_id=a.client_id,
                expert_id=a.expert_id,
                entity_ids=[a.id],
            ))

    for v in violations:
        logger.warning("Invariant violation (%s): %s", v.kind, v.message)
    return violations
