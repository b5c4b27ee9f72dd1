"""Payment model: immutable record of money received."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid


@dataclass(frozen=True)
class Payment:
    """
    Money received for work done by an expert.

    Payments are the only source for earned revenue. An invoice's cached
    paid amount never feeds an earnings figure.
    """

    id: str = field(default_factory=lambda: f"PAY-{uuid.uuid4().hex[:8].upper()}")
    expert_id: str = ""
    client_id: Optional[str] = None

    amount: float = 0.0
    currency: str = "GBP"
    payment_date: datetime = field(default_factory=datetime.now)

    # Attribution
    jurisdiction: Optional[str] = None  # disambiguates multi-jurisdiction pairs
    invoice_id: Optional[str] = None
    description: str = ""

    created_at: datetime = field(default_factory=datetime.now)

    @property
    def pair(self) -> tuple[Optional[str], str]:
        return (self.client_id, self.expert_id)

    def to_dict(self) -> dict:
        """Serialize payment to dictionary."""
        return {
            "id": self.id,
            "expert_id": self.expert_id,
            "client_id": self.client_id,
            "amount": self.amount,
            "currency": self.currency,
            "payment_date": self.payment_date.isoformat(),
            "jurisdiction": self.jurisdiction,
            "invoice_id": self.invoice_id,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        """Deserialize payment from dictionary."""
        kwargs = {
            "id": data.get("id", f"PAY-{uuid.uuid4().hex[:8].upper()}"),
            "expert_id": data.get("expert_id", ""),
            "client_id": data.get("client_id"),
            "amount": float(data.get("amount") or 0.0),
            "currency": (data.get("currency") or "GBP").upper(),
            "jurisdiction": data.get("jurisdiction"),
            "invoice_id": data.get("invoice_id"),
            "description": data.get("description") or "",
        }
        # Older rows carry the portal's ``paid_at`` column name.
        paid = data.get("payment_date") or data.get("paid_at")
        if paid:
            kwargs["payment_date"] = datetime.fromisoformat(paid)
        if data.get("created_at"):
            kwargs["created_at"] = datetime.fromisoformat(data["created_at"])

        return cls(**kwargs)
