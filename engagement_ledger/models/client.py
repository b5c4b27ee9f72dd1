"""Client model for tax-compliance engagements."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import logging
import uuid

logger = logging.getLogger(__name__)


class Complexity(Enum):
    """Engagement complexity assessed at intake."""

    SIMPLE = "Simple"
    MODERATE = "Moderate"
    COMPLEX = "Complex"
    MULTI_JURISDICTION_COMPLEX = "Multi-Jurisdiction Complex"

    @classmethod
    def parse(cls, value: str) -> "Complexity":
        """Parse a complexity label, ignoring case."""
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Unknown complexity: {value!r}")


class PipelineStage(Enum):
    """Position of a client in the intake-to-completion funnel.

    Declaration order is the funnel order.
    """

    QUOTE_REQUEST = "Quote Request"
    DATA_COLLECTION = "Data Collection"
    ASSESSMENT = "Assessment"
    PROCESSING = "Processing"
    DELIVERY = "Delivery"
    COMPLETE = "Complete"

    @property
    def position(self) -> int:
        """Zero-based index of this stage in the funnel."""
        return list(PipelineStage).index(self)

    @classmethod
    def coerce(cls, value) -> Optional["PipelineStage"]:
        """Return the matching stage, or None for null and unrecognised values."""
        if isinstance(value, PipelineStage):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass
class Client:
    """A taxpayer being served by one or more experts."""

    # Identity
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    full_name: str = ""
    email: str = ""
    phone: Optional[str] = None

    # Tax profile
    countries: list[str] = field(default_factory=list)  # ordered, first is primary
    asset_types: list[str] = field(default_factory=list)
    complexity: Complexity = Complexity.MODERATE
    tax_years: list[str] = field(default_factory=list)

    # Status
    overall_status: str = "active"
    pipeline_stage: Optional[PipelineStage] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def primary_country(self) -> Optional[str]:
        """First listed jurisdiction, used for country roll-ups."""
        return self.countries[0] if self.countries else None

    def move_to_stage(self, stage: Optional[PipelineStage]) -> None:
        """Set the pipeline stage. Last write wins."""
        self.pipeline_stage = stage
        self.updated_at = datetime.now()

    def to_dict(self) -> dict:
        """Serialize client to dictionary."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "countries": self.countries,
            "asset_types": self.asset_types,
            "complexity": self.complexity.value,
            "tax_years": self.tax_years,
            "overall_status": self.overall_status,
            "pipeline_stage": self.pipeline_stage.value if self.pipeline_stage else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Client":
        """Deserialize client from dictionary."""
        client = cls(
            id=data.get("id", str(uuid.uuid4())),
            full_name=data.get("full_name", ""),
            email=data.get("email", ""),
            phone=data.get("phone"),
            countries=list(data.get("countries") or []),
            asset_types=list(data.get("asset_types") or []),
            complexity=_stored_complexity(data),
            tax_years=list(data.get("tax_years") or []),
            overall_status=data.get("overall_status") or "active",
            pipeline_stage=_stored_stage(data),
        )

        if data.get("created_at"):
            client.created_at = datetime.fromisoformat(data["created_at"])
        if data.get("updated_at"):
            client.updated_at = datetime.fromisoformat(data["updated_at"])

        return client


def _stored_complexity(data: dict) -> Complexity:
    raw = data.get("complexity") or Complexity.MODERATE.value
    try:
        return Complexity.parse(raw)
    except (ValueError, AttributeError):
        logger.warning("Client %s has unknown complexity %r; using Moderate", data.get("id"), raw)
        return Complexity.MODERATE


def _stored_stage(data: dict) -> Optional[PipelineStage]:
    raw = data.get("pipeline_stage")
    stage = PipelineStage.coerce(raw)
    if raw and stage is None:
        logger.warning("Client %s has unknown pipeline stage %r; treating as not set", data.get("id"), raw)
    return stage
