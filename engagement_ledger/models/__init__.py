"""Entity models for clients, experts, assignments, tasks and billing."""

from .client import Client, Complexity, PipelineStage
from .expert import Expert, ExpertStatus
from .payment import Payment
from .assignment import Assignment, AssignmentStatus
from .task import Task, TaskStatus
from .invoice import Invoice, InvoiceStatus
from .activity import ActivityLogEntry

__all__ = [
    # Roots
    "Client",
    "Complexity",
    "PipelineStage",
    "Expert",
    "ExpertStatus",
    # Relationship
    "Assignment",
    "AssignmentStatus",
    # Work
    "Task",
    "TaskStatus",
    # Billing
    "Invoice",
    "InvoiceStatus",
    "Payment",
    # Audit
    "ActivityLogEntry",
]
