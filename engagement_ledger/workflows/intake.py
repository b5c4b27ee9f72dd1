"""Write paths: the only code that mutates stored rows."""

import logging
from datetime import date, datetime
from typing import Optional, Union

import pydantic

from ..errors import ValidationError
from ..models.activity import ActivityLogEntry
from ..models.assignment import Assignment
from ..models.client import Client, PipelineStage
from ..models.expert import Expert, ExpertStatus
from ..models.invoice import Invoice, InvoiceStatus
from ..models.payment import Payment
from ..models.task import Task
from ..schemas import (
    AssignmentCreate,
    ClientCreate,
    InvoiceCreate,
    PaymentCreate,
    TaskCreate,
)
from ..store import EntityStore, where
from .earnings import attribute_payment

logger = logging.getLogger(__name__)


def validate_payload(schema: type[pydantic.BaseModel], data):
    """Validate a payload, translating pydantic errors to ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first["loc"]) or schema.__name__
        raise ValidationError(field_name, first["msg"]) from e


class EngagementService:
    """Creates and transitions clients, assignments, tasks and billing rows."""

    def __init__(self, store: EntityStore):
        """Initialize service with an entity store."""
        self.store = store

    # === Helpers ===

    def _log(
        self,
        action: str,
        details: str,
        expert_id: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Append an activity log entry."""
        entry = ActivityLogEntry(
            expert_id=expert_id,
            client_id=client_id,
            action=action,
            details=details,
        )
        self.store.insert("activity_log", entry)
        logger.info("%s: %s", action, details)
        return entry

    def _working_expert(self, expert_id: str) -> Expert:
        expert = self.store.get("experts", expert_id)
        if expert.status == ExpertStatus.SUSPENDED:
            raise ValidationError("expert_id", f"expert {expert_id} is suspended")
        return expert

    def _pair_assignments(self, client_id: str, expert_id: str) -> list[Assignment]:
        return self.store.select(
            "assignments", where(client_id=client_id, expert_id=expert_id)
        )

    def _require_pair(self, client_id: str, expert_id: str) -> list[Assignment]:
        assignments = self._pair_assignments(client_id, expert_id)
        if not assignments:
            raise ValidationError(
                "client_id",
                f"client {client_id} has no assignment with expert {expert_id}",
            )
        return assignments

    # === Clients and assignments ===

    def add_client(self, expert_id: str, data) -> tuple[Client, Assignment]:
        """
        Create a client on behalf of an expert and link them.

        The expert is assigned on the client's first listed country.
        """
        payload = validate_payload(ClientCreate, data)
        expert = self._working_expert(expert_id)

        client = Client(
            full_name=payload.full_name,
            email=payload.email,
            phone=payload.phone,
            countries=payload.countries,
            asset_types=payload.asset_types,
            complexity=payload.complexity,
            tax_years=payload.tax_years,
            overall_status="active",
            pipeline_stage=payload.pipeline_stage,
        )
        self.store.insert("clients", client)

        assignment = Assignment(
            client_id=client.id,
            expert_id=expert.id,
            jurisdiction=client.primary_country,
        )
        self.store.insert("assignments", assignment)

        self._log(
            "client_created",
            f"Created client {client.full_name}",
            expert_id=expert.id,
            client_id=client.id,
        )
        return client, assignment

    def archive_client(self, client_id: str) -> Client:
        """Soft-delete a client and deactivate its assignments."""
        client = self.store.get("clients", client_id)
        client.overall_status = "archived"
        client.updated_at = datetime.now()
        self.store.update("clients", client)

        ended = 0
        for assignment in self.store.select("assignments", where(client_id=client_id)):
            if assignment.deactivate():
                self.store.update("assignments", assignment)
                ended += 1

        self._log(
            "client_archived",
            f"Archived client {client.full_name} ({ended} assignments ended)",
            client_id=client.id,
        )
        return client

    def assign_expert(self, client_id: str, expert_id: str, jurisdiction: str) -> Assignment:
        """Link an expert to a client for a jurisdiction, or re-engage them."""
        payload = validate_payload(
            AssignmentCreate,
            {"client_id": client_id, "expert_id": expert_id, "jurisdiction": jurisdiction},
        )
        client = self.store.get("clients", payload.client_id)
        expert = self._working_expert(payload.expert_id)

        for existing in self._pair_assignments(client.id, expert.id):
            if existing.jurisdiction.lower() != payload.jurisdiction.lower():
                continue
            if not existing.reactivate():
                raise ValidationError(
                    "jurisdiction",
                    f"{expert.full_name} is already assigned to {client.full_name} "
                    f"for {existing.jurisdiction}",
                )
            self.store.update("assignments", existing)
            self._log(
                "assignment_reactivated",
                f"{expert.full_name} re-engaged on {client.full_name} ({existing.jurisdiction})",
                expert_id=expert.id,
                client_id=client.id,
            )
            return existing

        assignment = Assignment(
            client_id=client.id,
            expert_id=expert.id,
            jurisdiction=payload.jurisdiction,
        )
        self.store.insert("assignments", assignment)
        self._log(
            "expert_assigned",
            f"{expert.full_name} assigned to {client.full_name} ({assignment.jurisdiction})",
            expert_id=expert.id,
            client_id=client.id,
        )
        return assignment

    def end_assignment(self, assignment_id: str) -> Assignment:
        """Terminate or hand off an assignment. Its earnings are kept."""
        assignment = self.store.get("assignments", assignment_id)
        if not assignment.deactivate():
            raise ValidationError("status", f"assignment {assignment_id} is not active")

        self.store.update("assignments", assignment)
        self._log(
            "assignment_ended",
            f"Assignment for {assignment.jurisdiction} ended",
            expert_id=assignment.expert_id,
            client_id=assignment.client_id,
        )
        return assignment

    def set_pipeline_stage(
        self,
        client_id: str,
        stage: Union[PipelineStage, str, None],
        expert_id: Optional[str] = None,
    ) -> Client:
        """Move a client in the funnel. Concurrent writers: last write wins."""
        if isinstance(stage, str):
            parsed = PipelineStage.coerce(stage)
            if parsed is None:
                raise ValidationError("pipeline_stage", f"unknown pipeline stage {stage!r}")
            stage = parsed

        client = self.store.get("clients", client_id)
        previous = client.pipeline_stage
        client.move_to_stage(stage)
        self.store.update("clients", client)

        self._log(
            "pipeline_stage_changed",
            f"{previous.value if previous else 'Not Set'} -> {stage.value if stage else 'Not Set'}",
            expert_id=expert_id,
            client_id=client.id,
        )
        return client

    def set_expert_status(self, expert_id: str, status: Union[ExpertStatus, str]) -> Expert:
        """Change an expert's account status; suspension ends their assignments."""
        if isinstance(status, str):
            try:
                status = ExpertStatus(status.lower())
            except ValueError:
                raise ValidationError("status", f"unknown expert status {status!r}") from None

        expert = self.store.get("experts", expert_id)
        expert.status = status
        expert.updated_at = datetime.now()
        self.store.update("experts", expert)

        ended = 0
        if status == ExpertStatus.SUSPENDED:
            for assignment in self.store.select("assignments", where(expert_id=expert_id)):
                if assignment.deactivate():
                    self.store.update("assignments", assignment)
                    ended += 1

        self._log(
            "expert_status_changed",
            f"{expert.full_name} is now {status.value}"
            + (f" ({ended} assignments ended)" if ended else ""),
            expert_id=expert.id,
        )
        return expert

    # === Tasks ===

    def create_task(self, data) -> Task:
        payload = validate_payload(TaskCreate, data)
        self._require_pair(payload.client_id, payload.expert_id)

        task = Task(
            client_id=payload.client_id,
            expert_id=payload.expert_id,
            title=payload.title,
            description=payload.description,
            due_date=payload.due_date,
        )
        self.store.insert("tasks", task)
        self._log(
            "task_created",
            f"Created task {task.title}",
            expert_id=task.expert_id,
            client_id=task.client_id,
        )
        return task

    def advance_task(self, task_id: str) -> Task:
        """Step a task forward: pending -> in_progress -> completed."""
        task = self.store.get("tasks", task_id)
        if not task.advance():
            raise ValidationError("status", f"task {task_id} is already completed")

        self.store.update("tasks", task)
        self._log(
            "task_updated",
            f"{task.title}: {task.status.value}",
            expert_id=task.expert_id,
            client_id=task.client_id,
        )
        return task

    # === Billing ===

    def create_invoice(self, data) -> Invoice:
        payload = validate_payload(InvoiceCreate, data)
        self._require_pair(payload.client_id, payload.expert_id)

        invoice = Invoice(
            client_id=payload.client_id,
            expert_id=payload.expert_id,
            amount=payload.amount,
            currency=payload.currency,
            due_date=payload.due_date,
        )
        self.store.insert("invoices", invoice)
        self._log(
            "invoice_created",
            f"Invoice {invoice.id} for {invoice.amount:.2f} {invoice.currency}",
            expert_id=invoice.expert_id,
            client_id=invoice.client_id,
        )
        return invoice

    def send_invoice(self, invoice_id: str, due_date: Optional[date] = None) -> Invoice:
        invoice = self.store.get("invoices", invoice_id)
        if not invoice.send(due_date):
            raise ValidationError("status", f"invoice {invoice_id} is not a draft")

        self.store.update("invoices", invoice)
        self._log(
            "invoice_sent",
            f"Invoice {invoice.id} sent",
            expert_id=invoice.expert_id,
            client_id=invoice.client_id,
        )
        return invoice

    def refresh_overdue(self, today: Optional[date] = None) -> list[Invoice]:
        """Move sent invoices past their due date to overdue."""
        changed = []
        for invoice in self.store.select("invoices", where(status=InvoiceStatus.SENT.value)):
            if invoice.refresh_overdue(today):
                self.store.update("invoices", invoice)
                self._log(
                    "invoice_overdue",
                    f"Invoice {invoice.id} is overdue",
                    expert_id=invoice.expert_id,
                    client_id=invoice.client_id,
                )
                changed.append(invoice)
        return changed

    def record_payment(self, data) -> Payment:
        """
        Record money received and credit it to the owning assignment.

        When the client/expert pair has several assignments the payment's
        jurisdiction picks one. A payment without a client is kept for the
        expert's totals but credits no assignment.
        """
        payload = validate_payload(PaymentCreate, data)
        self.store.get("experts", payload.expert_id)

        kwargs = payload.model_dump(exclude_none=True)
        payment = Payment(**kwargs)

        target = None
        if payment.client_id:
            candidates = self._require_pair(payment.client_id, payment.expert_id)
            target = attribute_payment(payment, candidates)
            if target is None:
                if payment.jurisdiction:
                    message = f"no assignment for jurisdiction {payment.jurisdiction}"
                else:
                    message = "client/expert pair has several assignments; give a jurisdiction"
                raise ValidationError("jurisdiction", message)

        self.store.insert("payments", payment)
        if target is not None:
            target.apply_payment(payment)
            self.store.update("assignments", target)

        self._log(
            "payment_recorded",
            f"Payment {payment.id} of {payment.amount:.2f} {payment.currency}",
            expert_id=payment.expert_id,
            client_id=payment.client_id,
        )
        return payment

    def mark_invoice_paid(
        self,
        invoice_id: str,
        amount: Optional[float] = None,
        paid_at: Optional[datetime] = None,
        jurisdiction: Optional[str] = None,
    ) -> tuple[Invoice, Payment]:
        """
        Settle an invoice (fully by default) through a recorded payment.

        The payment is written first; the invoice only caches it.
        """
        invoice = self.store.get("invoices", invoice_id)
        if not invoice.status.is_outstanding:
            raise ValidationError("status", f"invoice {invoice_id} is not awaiting payment")
        if amount is not None and round(amount, 2) > round(invoice.remaining_balance, 2):
            raise ValidationError(
                "amount", f"{amount:.2f} exceeds the {invoice.remaining_balance:.2f} still owed on {invoice_id}"
            )

        payment = self.record_payment({
            "expert_id": invoice.expert_id,
            "client_id": invoice.client_id,
            "amount": invoice.remaining_balance if amount is None else amount,
            "currency": invoice.currency,
            "payment_date": paid_at or datetime.now(),
            "jurisdiction": jurisdiction,
            "invoice_id": invoice.id,
            "description": f"Payment for invoice {invoice.id}",
        })

        invoice.apply_payment(payment.amount, payment.payment_date)
        self.store.update("invoices", invoice)
        if invoice.status == InvoiceStatus.PAID:
            self._log(
                "invoice_paid",
                f"Invoice {invoice.id} paid",
                expert_id=invoice.expert_id,
                client_id=invoice.client_id,
            )
        return invoice, payment
