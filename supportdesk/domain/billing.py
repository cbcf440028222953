"""Monthly invoicing of resolved work."""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from opentelemetry import trace

from supportdesk.security.policy import Target, authorize, require
from supportdesk.security.roles import Action, allowed_roles

from .clock import Clock, advance, utcnow
from .errors import ForbiddenError, InvalidArgumentError, NotFoundError
from .models import Invoice, User
from .state import InvoiceStateMachine, InvoiceStatus, TicketStateMachine
from .store import AggregateStore, StoreChange

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(slots=True, frozen=True)
class BillingPeriod:
    month: int
    year: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise InvalidArgumentError(f"Invalid billing month: {self.month}")
        if not 1 <= self.year <= 9999:
            raise InvalidArgumentError(f"Invalid billing year: {self.year}")

    def contains(self, moment: datetime) -> bool:
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return moment.year == self.year and moment.month == self.month


@dataclass(slots=True, frozen=True)
class PeriodSummary:
    tickets_closed: int
    total_hours: float


class BillingService:
    """Invoices are snapshots: later ticket edits never change an issued invoice."""

    def __init__(
        self,
        store: AggregateStore,
        *,
        rate_per_hour: float = 150.0,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._rate_per_hour = rate_per_hour
        self._clock = clock or utcnow

    @property
    def rate_per_hour(self) -> float:
        return self._rate_per_hour

    def set_rate_per_hour(self, actor: User, rate: float) -> float:
        require(actor, Action.MANAGE_BILLING_SETTINGS)
        if not math.isfinite(rate) or rate <= 0:
            raise InvalidArgumentError("Hourly rate must be a positive number")
        self._rate_per_hour = float(rate)
        logger.info("Hourly rate set to %.2f by %s", rate, actor.id)
        return self._rate_per_hour

    def list_invoices(self, actor: User, organization_id: str | None = None) -> list[Invoice]:
        if actor.role not in allowed_roles(Action.VIEW_INVOICES):
            raise ForbiddenError(f"Role {actor.role.value} may not view invoices")
        invoices = [
            invoice
            for invoice in self._store.snapshot().invoices.values()
            if (organization_id is None or invoice.organization_id == organization_id)
            and authorize(actor, Action.VIEW_INVOICES, Target(organization_id=invoice.organization_id))
        ]
        return sorted(invoices, key=lambda invoice: (invoice.year, invoice.month, invoice.created_at), reverse=True)

    def get_invoice(self, actor: User, invoice_id: str) -> Invoice:
        invoice = self._store.get_invoice(invoice_id)
        if invoice is None or not authorize(
            actor, Action.VIEW_INVOICES, Target(organization_id=invoice.organization_id)
        ):
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def summarize_period(self, actor: User, organization_id: str, *, month: int, year: int) -> PeriodSummary:
        """Tickets finished and hours logged for an organization in one month.

        A ticket counts as finished in the month of its last update while it is
        resolved or closed.
        """

        require(actor, Action.MANAGE_INVOICES)
        period = BillingPeriod(month=month, year=year)
        snapshot = self._store.snapshot()
        if organization_id not in snapshot.organizations:
            raise NotFoundError(f"Organization {organization_id} not found")

        tickets = [ticket for ticket in snapshot.tickets.values() if ticket.organization_id == organization_id]
        closed = sum(
            1
            for ticket in tickets
            if TicketStateMachine.is_terminal(ticket.status) and period.contains(ticket.updated_at)
        )
        hours = sum(
            entry.hours
            for ticket in tickets
            for entry in ticket.time_entries
            if entry.date.year == period.year and entry.date.month == period.month
        )
        return PeriodSummary(tickets_closed=closed, total_hours=round(hours, 2))

    async def create_invoice(
        self,
        actor: User,
        organization_id: str,
        *,
        month: int,
        year: int,
        summary: PeriodSummary | None = None,
        rate_per_hour: float | None = None,
    ) -> Invoice:
        require(actor, Action.MANAGE_INVOICES)
        period = BillingPeriod(month=month, year=year)
        rate = self._rate_per_hour if rate_per_hour is None else rate_per_hour
        if not math.isfinite(rate) or rate <= 0:
            raise InvalidArgumentError("Hourly rate must be a positive number")

        with tracer.start_as_current_span("billing.create_invoice"):
            async with self._store.catalog_lock:
                if summary is None:
                    summary = self.summarize_period(actor, organization_id, month=month, year=year)
                elif self._store.get_organization(organization_id) is None:
                    raise NotFoundError(f"Organization {organization_id} not found")
                if summary.tickets_closed < 0 or summary.total_hours < 0:
                    raise InvalidArgumentError("Invoice aggregates must not be negative")

                invoice = Invoice(
                    id=str(uuid.uuid4()),
                    organization_id=organization_id,
                    month=period.month,
                    year=period.year,
                    tickets_closed=summary.tickets_closed,
                    total_hours=summary.total_hours,
                    rate_per_hour=rate,
                    total_amount=round(summary.total_hours * rate, 2),
                    status=InvoiceStateMachine.initial_state(),
                    created_at=advance(self._clock),
                )
                await self._store.commit(StoreChange(invoices=[invoice]))

        logger.info(
            "Invoice %s for organization %s %02d/%d: %.2f",
            invoice.id,
            organization_id,
            period.month,
            period.year,
            invoice.total_amount,
        )
        return invoice

    async def update_invoice_status(self, actor: User, invoice_id: str, status: InvoiceStatus) -> Invoice:
        require(actor, Action.MANAGE_INVOICES)
        async with self._store.catalog_lock:
            invoice = self._store.get_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Invoice {invoice_id} not found")
            InvoiceStateMachine.assert_transition(invoice.status, status)
            updated = replace(invoice, status=status)
            await self._store.commit(StoreChange(invoices=[updated]))
        logger.info("Invoice %s moved %s -> %s by %s", invoice_id, invoice.status.value, status.value, actor.id)
        return updated
