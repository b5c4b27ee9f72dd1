"""Error types and error records shared by the engagement core.

Read paths recover locally and attach records (``PartialAggregationFailure``,
``InvariantViolation``) to their results. Write paths raise.
"""

from dataclasses import dataclass, field
from typing import Optional


class EngagementError(Exception):
    """Base class for errors raised by the engagement core."""


class NotFoundError(EngagementError):
    """A single-entity read referenced a row that does not exist."""

    def __init__(self, table: str, entity_id: str):
        self.table = table
        self.entity_id = entity_id
        super().__init__(f"{table} row not found: {entity_id}")


class ValidationError(EngagementError):
    """A write was rejected before reaching the store."""

    def __init__(self, field_name: str, message: str):
        self.field = field_name
        self.message = message
        super().__init__(f"{field_name}: {message}")


class MixedCurrencyError(EngagementError):
    """Payments in different currencies were summed in strict mode."""

    def __init__(self, currencies):
        self.currencies = sorted(currencies)
        super().__init__(
            "Cannot sum payments in different currencies: " + ", ".join(self.currencies)
        )


@dataclass
class PartialAggregationFailure:
    """One aggregate of a view could not be computed and was defaulted."""

    aggregate: str
    error: str

    def to_dict(self) -> dict:
        return {"aggregate": self.aggregate, "error": self.error}


@dataclass
class InvariantViolation:
    """A data inconsistency found while reading. Reported, never fatal."""

    kind: str
    message: str
    client_id: Optional[str] = None
    expert_id: Optional[str] = None
    entity_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "client_id": self.client_id,
            "expert_id": self.expert_id,
            "entity_ids": self.entity_ids,
        }
