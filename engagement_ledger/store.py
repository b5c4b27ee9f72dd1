"""
JSON-file entity store.

Each table is one JSON file under the data directory, holding a list of
serialized rows. The store is constructed explicitly and passed to every
service that needs it; nothing in the package holds a module-level
instance.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

from .errors import NotFoundError, PartialAggregationFailure
from .models import (
    ActivityLogEntry,
    Assignment,
    Client,
    Expert,
    Invoice,
    Payment,
    Task,
)

logger = logging.getLogger(__name__)


TABLES = {
    "clients": Client,
    "experts": Expert,
    "assignments": Assignment,
    "tasks": Task,
    "invoices": Invoice,
    "payments": Payment,
    "activity_log": ActivityLogEntry,
}


def _field_value(entity, name: str):
    value = getattr(entity, name)
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass
class Query:
    """
    Row filter supporting equality, membership, range and null checks.

    All conditions must hold. Enum fields compare by their stored value,
    so ``Query(eq={"status": "active"})`` works for any status enum.
    """

    eq: dict = field(default_factory=dict)
    in_: dict = field(default_factory=dict)
    gte: dict = field(default_factory=dict)
    lt: dict = field(default_factory=dict)
    lte: dict = field(default_factory=dict)
    not_null: list[str] = field(default_factory=list)

    def matches(self, entity) -> bool:
        for name, expected in self.eq.items():
            if _field_value(entity, name) != expected:
                return False

        for name, allowed in self.in_.items():
            if _field_value(entity, name) not in allowed:
                return False

        for name in self.not_null:
            if getattr(entity, name) is None:
                return False

        for bounds, check in (
            (self.gte, lambda v, b: v >= b),
            (self.lt, lambda v, b: v < b),
            (self.lte, lambda v, b: v <= b),
        ):
            for name, bound in bounds.items():
                value = _field_value(entity, name)
                if value is None or not check(value, bound):
                    return False

        return True


def where(**eq) -> Query:
    """Shorthand for an equality-only query."""
    return Query(eq=eq)


class EntityStore:
    """Row-level CRUD over the JSON tables in ``data_dir``."""

    def __init__(self, data_dir: Path):
        """Initialize store with data directory."""
        self.data_dir = Path(data_dir)
        self._write_lock = threading.Lock()
        self._ensure_data_files()

    def _ensure_data_files(self) -> None:
        """Ensure data directory and table files exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        for table in TABLES:
            if not self._table_file(table).exists():
                self._save_rows(table, [])

    def _table_file(self, table: str) -> Path:
        if table not in TABLES:
            raise KeyError(f"Unknown table: {table}")
        return self.data_dir / f"{table}.json"

    def _load_rows(self, table: str) -> list[dict]:
        """Load raw rows for a table."""
        with open(self._table_file(table), "r") as f:
            return json.load(f)

    def _save_rows(self, table: str, rows: list[dict]) -> None:
        """Save raw rows for a table."""
        with open(self._table_file(table), "w") as f:
            json.dump(rows, f, indent=2)

    def _load(self, table: str) -> list:
        model = TABLES[table]
        return [model.from_dict(row) for row in self._load_rows(table)]

    # === Reads ===

    def find(self, table: str, entity_id: str):
        """Get a row by ID, or None."""
        for entity in self._load(table):
            if entity.id == entity_id:
                return entity
        return None

    def get(self, table: str, entity_id: str):
        """Get a row by ID, raising NotFoundError when absent."""
        entity = self.find(table, entity_id)
        if entity is None:
            raise NotFoundError(table, entity_id)
        return entity

    def select(
        self,
        table: str,
        query: Optional[Query] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list:
        """List rows matching a query."""
        rows = self._load(table)
        if query is not None:
            rows = [r for r in rows if query.matches(r)]

        if order_by:
            rows = sorted(
                rows,
                key=lambda r: (_field_value(r, order_by) is None, _field_value(r, order_by)),
                reverse=descending,
            )

        if limit is not None:
            rows = rows[:limit]
        return rows

    def count(self, table: str, query: Optional[Query] = None) -> int:
        """Count rows matching a query."""
        return len(self.select(table, query))

    # === Writes ===

    def insert(self, table: str, entity):
        """Append a new row."""
        with self._write_lock:
            rows = self._load_rows(table)
            if any(r.get("id") == entity.id for r in rows):
                raise ValueError(f"Duplicate id in {table}: {entity.id}")
            rows.append(entity.to_dict())
            self._save_rows(table, rows)
        logger.debug("Inserted %s row %s", table, entity.id)
        return entity

    def update(self, table: str, entity):
        """Replace an existing row, matched by ID."""
        if table in ("payments", "activity_log"):
            raise ValueError(f"Rows in {table} are immutable")

        with self._write_lock:
            rows = self._load_rows(table)
            for i, row in enumerate(rows):
                if row.get("id") == entity.id:
                    rows[i] = entity.to_dict()
                    break
            else:
                raise NotFoundError(table, entity.id)
            self._save_rows(table, rows)
        logger.debug("Updated %s row %s", table, entity.id)
        return entity


@dataclass
class FetchResult:
    """Joined outcome of several independent fetches."""

    results: dict[str, Any] = field(default_factory=dict)
    failures: list[PartialAggregationFailure] = field(default_factory=list)

    def __getitem__(self, name: str):
        return self.results[name]

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


def fetch_parallel(
    fetches: dict[str, Callable[[], Any]],
    defaults: Optional[dict[str, Any]] = None,
    max_workers: int = 6,
) -> FetchResult:
    """
    Run independent fetches concurrently and join the results.

    A fetch that raises is replaced by its default (an empty list unless
    ``defaults`` says otherwise) and recorded as a failure, so one broken
    aggregate never takes the whole view down.
    """
    defaults = defaults or {}
    outcome = FetchResult()
    if not fetches:
        return outcome

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(fetches)))) as executor:
        futures = {executor.submit(fn): name for name, fn in fetches.items()}

        for future in as_completed(futures):
            name = futures[future]
            try:
                outcome.results[name] = future.result()
            except Exception as e:
                logger.warning("Fetch %r failed, using default: %s", name, e)
                outcome.results[name] = defaults.get(name, [])
                outcome.failures.append(PartialAggregationFailure(aggregate=name, error=str(e)))

    outcome.failures.sort(key=lambda f: f.aggregate)
    return outcome
