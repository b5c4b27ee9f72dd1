"""Expert model for tax professionals serving clients."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
import uuid


class ExpertStatus(Enum):
    """Account status managed by the platform admin."""

    ACTIVE = "active"        # Approved, can take clients
    PENDING = "pending"      # Application under review
    SUSPENDED = "suspended"  # Blocked; assignments are deactivated


@dataclass
class Expert:
    """A tax expert licensed for one or more jurisdictions."""

    # Identity
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    full_name: str = ""
    email: str = ""
    phone: Optional[str] = None

    # Professional profile
    jurisdictions: list[str] = field(default_factory=list)
    specializations: list[str] = field(default_factory=list)
    rating: Optional[float] = None  # 0.0 - 5.0

    # Status
    status: ExpertStatus = ExpertStatus.PENDING

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if self.rating is not None and not 0.0 <= self.rating <= 5.0:
            raise ValueError(f"Rating must be between 0.0 and 5.0, got {self.rating}")

    @property
    def is_active(self) -> bool:
        return self.status == ExpertStatus.ACTIVE

    def covers(self, jurisdiction: str) -> bool:
        """Check whether the expert is registered for a jurisdiction."""
        return jurisdiction.lower() in (j.lower() for j in self.jurisdictions)

    def to_dict(self) -> dict:
        """Serialize expert to dictionary."""
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "jurisdictions": self.jurisdictions,
            "specializations": self.specializations,
            "rating": self.rating,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Expert":
        """Deserialize expert from dictionary."""
        expert = cls(
            id=data.get("id", str(uuid.uuid4())),
            full_name=data.get("full_name", ""),
            email=data.get("email", ""),
            phone=data.get("phone"),
            jurisdictions=list(data.get("jurisdictions") or []),
            specializations=list(data.get("specializations") or []),
            rating=data.get("rating"),
            status=ExpertStatus(data.get("status", "pending")),
        )

        if data.get("created_at"):
            expert.created_at = datetime.fromisoformat(data["created_at"])
        if data.get("updated_at"):
            expert.updated_at = datetime.fromisoformat(data["updated_at"])

        return expert
