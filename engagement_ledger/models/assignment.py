"""Assignment model linking a client, an expert and a jurisdiction."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import uuid

from .payment import Payment


class AssignmentStatus(Enum):
    """Lifecycle of a client/expert/jurisdiction link."""

    ACTIVE = "active"        # Expert is currently working the engagement
    INACTIVE = "inactive"    # Terminated or handed off; earnings are kept


@dataclass
class Assignment:
    """
    The scoped relationship between one client, one expert and one jurisdiction.

    State machine: (created) -> active -> inactive -> active.
    Earnings accrue only from payments made for the same client/expert pair
    and are never reset when the assignment goes inactive.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    client_id: str = ""
    expert_id: str = ""
    jurisdiction: str = ""

    status: AssignmentStatus = AssignmentStatus.ACTIVE
    earnings: float = 0.0

    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, str, str]:
        """Uniqueness key of the assignment."""
        return (self.client_id, self.expert_id, self.jurisdiction)

    @property
    def pair(self) -> tuple[str, str]:
        """The (client, expert) pair that owns tasks, invoices and payments."""
        return (self.client_id, self.expert_id)

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def deactivate(self) -> bool:
        """End the assignment (termination or handoff)."""
        if self.status != AssignmentStatus.ACTIVE:
            return False

        self.status = AssignmentStatus.INACTIVE
        self.updated_at = datetime.now()
        return True

    def reactivate(self) -> bool:
        """Re-engage a previously ended assignment."""
        if self.status != AssignmentStatus.INACTIVE:
            return False

        self.status = AssignmentStatus.ACTIVE
        self.updated_at = datetime.now()
        return True

    def apply_payment(self, payment: Payment) -> None:
        """Credit a reconciled payment to this assignment's earnings."""
        if (payment.client_id, payment.expert_id) != self.pair:
            raise ValueError(
                f"Payment {payment.id} belongs to a different client/expert pair"
            )
        self.earnings = round(self.earnings + payment.amount, 2)
        self.updated_at = datetime.now()

    def to_dict(self) -> dict:
        """Serialize assignment to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "expert_id": self.expert_id,
            "jurisdiction": self.jurisdiction,
            "status": self.status.value,
            "earnings": self.earnings,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Assignment":
        """Deserialize assignment from dictionary."""
        assignment = cls(
            id=data.get("id", str(uuid.uuid4())),
            client_id=data.get("client_id", ""),
            expert_id=data.get("expert_id", ""),
            jurisdiction=data.get("jurisdiction", ""),
            status=AssignmentStatus(data.get("status", "active")),
            earnings=float(data.get("earnings") or 0.0),
        )

        if data.get("created_at"):
            assignment.created_at = datetime.fromisoformat(data["created_at"])
        if data.get("updated_at"):
            assignment.updated_at = datetime.fromisoformat(data["updated_at"])

        return assignment
