"""Invoice model for billing a client."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional
import uuid


class InvoiceStatus(Enum):
    """Status of an invoice."""

    DRAFT = "draft"        # Not yet sent to the client
    SENT = "sent"          # Awaiting payment
    OVERDUE = "overdue"    # Sent and past due date without payment
    PAID = "paid"          # Terminal

    @property
    def is_outstanding(self) -> bool:
        """Whether the invoice counts towards the pending total."""
        return self in (InvoiceStatus.SENT, InvoiceStatus.OVERDUE)


@dataclass
class Invoice:
    """
    A bill issued by an expert to a client.

    ``paid_amount`` and ``paid_at`` are a cached copy of the reconciled
    payment. Revenue figures are always computed from payments.
    """

    id: str = field(default_factory=lambda: f"INV-{uuid.uuid4().hex[:8].upper()}")
    client_id: str = ""
    expert_id: str = ""

    amount: float = 0.0
    currency: str = "GBP"
    status: InvoiceStatus = InvoiceStatus.DRAFT

    due_date: Optional[date] = None
    sent_at: Optional[datetime] = None
    paid_amount: Optional[float] = None
    paid_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=datetime.now)

    @property
    def pair(self) -> tuple[str, str]:
        return (self.client_id, self.expert_id)

    @property
    def remaining_balance(self) -> float:
        """Amount still owed, never negative."""
        if self.status == InvoiceStatus.PAID:
            return 0.0
        return max(0.0, round(self.amount - (self.paid_amount or 0.0), 2))

    def send(self, due_date: Optional[date] = None) -> bool:
        """Send a draft invoice to the client."""
        if self.status != InvoiceStatus.DRAFT:
            return False

        self.status = InvoiceStatus.SENT
        self.sent_at = datetime.now()
        if due_date is not None:
            self.due_date = due_date
        return True

    def refresh_overdue(self, today: Optional[date] = None) -> bool:
        """Apply the time-based sent -> overdue transition."""
        if self.status != InvoiceStatus.SENT or self.due_date is None:
            return False

        today = today or date.today()
        if self.due_date >= today:
            return False

        self.status = InvoiceStatus.OVERDUE
        return True

    def apply_payment(self, amount: float, paid_at: datetime) -> bool:
        """
        Cache a reconciled payment on the invoice.

        Partial payments accumulate in ``paid_amount`` and leave the invoice
        outstanding; it becomes paid once the full amount is covered.
        """
        if not self.status.is_outstanding:
            return False

        self.paid_amount = round((self.paid_amount or 0.0) + amount, 2)
        self.paid_at = paid_at
        if self.paid_amount >= self.amount - 0.005:
            self.status = InvoiceStatus.PAID
        return True

    def to_dict(self) -> dict:
        """Serialize invoice to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "expert_id": self.expert_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status.value,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "paid_amount": self.paid_amount,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        """Deserialize invoice from dictionary."""
        invoice = cls(
            id=data.get("id", f"INV-{uuid.uuid4().hex[:8].upper()}"),
            client_id=data.get("client_id", ""),
            expert_id=data.get("expert_id", ""),
            amount=float(data.get("amount") or 0.0),
            currency=(data.get("currency") or "GBP").upper(),
            status=InvoiceStatus(data.get("status", "draft")),
            paid_amount=data.get("paid_amount"),
        )

        if data.get("due_date"):
            invoice.due_date = date.fromisoformat(data["due_date"][:10])
        for field_name in ["sent_at", "paid_at", "created_at"]:
            if data.get(field_name):
                setattr(invoice, field_name, datetime.fromisoformat(data[field_name]))

        return invoice
