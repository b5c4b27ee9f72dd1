"""Engagement and earnings ledger for multi-expert tax-compliance work."""

from .config import LedgerConfig, load_config
from .errors import (
    EngagementError,
    InvariantViolation,
    MixedCurrencyError,
    NotFoundError,
    PartialAggregationFailure,
    ValidationError,
)
from .store import EntityStore, Query

__version__ = "0.1.0"

__all__ = [
    "LedgerConfig",
    "load_config",
    "EngagementError",
    "InvariantViolation",
    "MixedCurrencyError",
    "NotFoundError",
    "PartialAggregationFailure",
    "ValidationError",
    "EntityStore",
    "Query",
]
