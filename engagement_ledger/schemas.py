"""Pydantic schemas for write-path payloads.

Every mutation in ``workflows.intake`` validates its input against one of
these before anything touches the store. Enum-typed fields accept the
stored string values (``"Moderate"``, ``"in_progress"`` ...).
"""
from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from .models import Complexity, PipelineStage


def _require_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# -------------------------------------------------------------------
# Roots
# -------------------------------------------------------------------

class ClientCreate(BaseModel):
    """Client added by an expert from their portal."""

    full_name: str
    email: str
    countries: list[str] = Field(min_length=1)
    phone: str | None = None
    asset_types: list[str] = Field(default_factory=list)
    complexity: Complexity = Complexity.MODERATE
    tax_years: list[str] = Field(default_factory=list)
    pipeline_stage: PipelineStage | None = None

    @field_validator("full_name")
    @classmethod
    def _name_present(cls, v: str) -> str:
        return _require_text(v)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = _require_text(v)
        if "@" not in v:
            raise ValueError("must be an email address")
        return v.lower()

    @field_validator("countries")
    @classmethod
    def _countries_present(cls, v: list[str]) -> list[str]:
        cleaned = [c.strip() for c in v if c and c.strip()]
        if not cleaned:
            raise ValueError("at least one country is required")
        return cleaned

    @field_validator("asset_types")
    @classmethod
    def _dedupe_assets(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @field_validator("complexity", mode="before")
    @classmethod
    def _parse_complexity(cls, v):
        if v is None or v == "":
            return Complexity.MODERATE
        if isinstance(v, str):
            return Complexity.parse(v)
        return v


# -------------------------------------------------------------------
# Relationship and work
# -------------------------------------------------------------------

class AssignmentCreate(BaseModel):
    client_id: str
    expert_id: str
    jurisdiction: str

    @field_validator("client_id", "expert_id", "jurisdiction")
    @classmethod
    def _present(cls, v: str) -> str:
        return _require_text(v)


class TaskCreate(BaseModel):
    client_id: str
    expert_id: str
    title: str
    description: str | None = None
    due_date: date | None = None

    @field_validator("client_id", "expert_id", "title")
    @classmethod
    def _present(cls, v: str) -> str:
        return _require_text(v)


# -------------------------------------------------------------------
# Billing
# -------------------------------------------------------------------

class InvoiceCreate(BaseModel):
    client_id: str
    expert_id: str
    amount: float = Field(gt=0)
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    due_date: date | None = None

    @field_validator("client_id", "expert_id")
    @classmethod
    def _present(cls, v: str) -> str:
        return _require_text(v)

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class PaymentCreate(BaseModel):
    """Money received. ``jurisdiction`` picks the assignment when a pair has several."""

    expert_id: str
    amount: float = Field(gt=0)
    client_id: str | None = None
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    payment_date: datetime | None = None
    jurisdiction: str | None = None
    invoice_id: str | None = None
    description: str = ""

    @field_validator("expert_id")
    @classmethod
    def _present(cls, v: str) -> str:
        return _require_text(v)

    @field_validator("currency")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()
