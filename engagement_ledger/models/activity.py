"""Append-only activity log entries."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import uuid


@dataclass(frozen=True)
class ActivityLogEntry:
    """A write-once record of something that happened. Display only."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    expert_id: Optional[str] = None
    client_id: Optional[str] = None
    action: str = ""
    details: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expert_id": self.expert_id,
            "client_id": self.client_id,
            "action": self.action,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityLogEntry":
        kwargs = {
            "id": data.get("id", str(uuid.uuid4())),
            "expert_id": data.get("expert_id"),
            "client_id": data.get("client_id"),
            "action": data.get("action", ""),
            "details": data.get("details"),
        }
        if data.get("created_at"):
            kwargs["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**kwargs)
