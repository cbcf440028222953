from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from supportdesk.db.models import (
    ActivityTable,
    ConversionRequestTable,
    InvoiceTable,
    OrganizationTable,
    TicketMessageTable,
    TicketTable,
    TimeEntryTable,
    UserTable,
)
from supportdesk.security.roles import Role

from .errors import ConcurrentModificationError
from .models import (
    ActivityItem,
    ActivityType,
    ApprovalStatus,
    ConversionRequest,
    Invoice,
    Message,
    Organization,
    OrganizationPlan,
    ProposedType,
    Ticket,
    TicketCategory,
    TicketPriority,
    TimeEntry,
    User,
)
from .state import InvoiceStatus, TicketStatus
from .store import StoreChange, StoreSnapshot

logger = logging.getLogger(__name__)


class SqlStoreRepository:
    """Persistence for the aggregate store backed by SQLModel tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def persist(self, change: StoreChange) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                for organization in change.organizations:
                    await session.merge(self._organization_to_row(organization))
                for user in change.users:
                    await session.merge(self._user_to_row(user))
                for ticket in change.tickets:
                    await self._write_ticket(session, ticket, change.expected_revisions.get(ticket.id))
                # parents first; child tables carry foreign keys
                await session.flush()
                for request in change.conversions:
                    await session.merge(self._conversion_to_row(request))
                for message in change.messages:
                    session.add(self._message_to_row(message))
                for entry in change.time_entries:
                    session.add(self._time_entry_to_row(entry))
                for invoice in change.invoices:
                    await session.merge(self._invoice_to_row(invoice))
                for activity in change.activities:
                    session.add(self._activity_to_row(activity))
                for organization_id in change.removed_organizations:
                    row = await session.get(OrganizationTable, organization_id)
                    if row is not None:
                        await session.delete(row)

    async def _write_ticket(self, session: AsyncSession, ticket: Ticket, expected_revision: int | None) -> None:
        if expected_revision is None:
            session.add(self._ticket_to_row(ticket))
            return
        result = await session.execute(
            update(TicketTable)
            .where(TicketTable.id == ticket.id, TicketTable.revision == expected_revision)
            .values(
                title=ticket.title,
                description=ticket.description,
                status=ticket.status.value,
                priority=ticket.priority.value,
                category=ticket.category.value,
                assigned_to=ticket.assigned_to,
                revision=ticket.revision,
                updated_at=ticket.updated_at,
            )
        )
        if result.rowcount != 1:
            logger.warning("Ticket %s changed underneath revision %d", ticket.id, expected_revision)
            raise ConcurrentModificationError(f"Ticket {ticket.id} was modified concurrently")

    async def load(self) -> StoreSnapshot:
        async with self._session_factory() as session:
            organizations = (await session.execute(select(OrganizationTable))).scalars().all()
            users = (await session.execute(select(UserTable))).scalars().all()
            tickets = (await session.execute(select(TicketTable))).scalars().all()
            messages = (
                await session.execute(select(TicketMessageTable).order_by(TicketMessageTable.created_at.asc()))
            ).scalars().all()
            entries = (
                await session.execute(select(TimeEntryTable).order_by(TimeEntryTable.created_at.asc()))
            ).scalars().all()
            conversions = (
                await session.execute(
                    select(ConversionRequestTable).order_by(ConversionRequestTable.created_at.asc())
                )
            ).scalars().all()
            invoices = (await session.execute(select(InvoiceTable))).scalars().all()
            activities = (
                await session.execute(select(ActivityTable).order_by(ActivityTable.created_at.asc()))
            ).scalars().all()

        messages_by_ticket: dict[str, list[Message]] = defaultdict(list)
        for row in messages:
            messages_by_ticket[row.ticket_id].append(self._row_to_message(row))
        entries_by_ticket: dict[str, list[TimeEntry]] = defaultdict(list)
        for row in entries:
            entries_by_ticket[row.ticket_id].append(self._row_to_time_entry(row))
        conversion_map: dict[str, ConversionRequest] = {}
        latest_conversion: dict[str, ConversionRequest] = {}
        for row in conversions:
            request = self._row_to_conversion(row)
            conversion_map[request.id] = request
            latest_conversion[request.ticket_id] = request

        ticket_map = {
            row.id: self._row_to_ticket(
                row,
                messages=messages_by_ticket.get(row.id, ()),
                time_entries=entries_by_ticket.get(row.id, ()),
                conversion_request=latest_conversion.get(row.id),
            )
            for row in tickets
        }
        return StoreSnapshot(
            organizations={row.id: self._row_to_organization(row) for row in organizations},
            users={row.id: self._row_to_user(row) for row in users},
            tickets=ticket_map,
            invoices={row.id: self._row_to_invoice(row) for row in invoices},
            conversions=conversion_map,
            activities=tuple(self._row_to_activity(row) for row in activities),
        )

    @staticmethod
    def _organization_to_row(organization: Organization) -> OrganizationTable:
        return OrganizationTable(
            id=organization.id,
            name=organization.name,
            plan=organization.plan.value,
            contact_email=organization.contact_email,
            created_at=organization.created_at,
        )

    @staticmethod
    def _user_to_row(user: User) -> UserTable:
        return UserTable(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role.value,
            organization_id=user.organization_id,
            avatar=user.avatar,
            phone=user.phone,
            is_active=user.is_active,
            created_at=user.created_at,
        )

    @staticmethod
    def _ticket_to_row(ticket: Ticket) -> TicketTable:
        return TicketTable(
            id=ticket.id,
            title=ticket.title,
            description=ticket.description,
            status=ticket.status.value,
            priority=ticket.priority.value,
            category=ticket.category.value,
            organization_id=ticket.organization_id,
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            revision=ticket.revision,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
        )

    @staticmethod
    def _conversion_to_row(request: ConversionRequest) -> ConversionRequestTable:
        return ConversionRequestTable(
            id=request.id,
            ticket_id=request.ticket_id,
            proposed_type=request.proposed_type.value,
            reason=request.reason,
            proposed_by=request.proposed_by,
            internal_approval=request.internal_approval.value,
            client_approval=request.client_approval.value,
            created_at=request.created_at,
        )

    @staticmethod
    def _message_to_row(message: Message) -> TicketMessageTable:
        return TicketMessageTable(
            id=message.id,
            ticket_id=message.ticket_id,
            author_id=message.author_id,
            content=message.content,
            is_internal=message.is_internal,
            created_at=message.created_at,
        )

    @staticmethod
    def _time_entry_to_row(entry: TimeEntry) -> TimeEntryTable:
        return TimeEntryTable(
            id=entry.id,
            ticket_id=entry.ticket_id,
            author_id=entry.author_id,
            hours=entry.hours,
            description=entry.description,
            entry_date=entry.date,
            created_at=entry.created_at,
        )

    @staticmethod
    def _invoice_to_row(invoice: Invoice) -> InvoiceTable:
        return InvoiceTable(
            id=invoice.id,
            organization_id=invoice.organization_id,
            month=invoice.month,
            year=invoice.year,
            tickets_closed=invoice.tickets_closed,
            total_hours=invoice.total_hours,
            rate_per_hour=invoice.rate_per_hour,
            total_amount=invoice.total_amount,
            status=invoice.status.value,
            created_at=invoice.created_at,
        )

    @staticmethod
    def _activity_to_row(activity: ActivityItem) -> ActivityTable:
        return ActivityTable(
            id=activity.id,
            type=activity.type.value,
            description=activity.description,
            actor_id=activity.actor_id,
            ticket_id=activity.ticket_id,
            metadata_=dict(activity.metadata),
            created_at=activity.created_at,
        )

    @staticmethod
    def _row_to_organization(row: OrganizationTable) -> Organization:
        return Organization(
            id=row.id,
            name=row.name,
            plan=OrganizationPlan(row.plan),
            contact_email=row.contact_email,
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_user(row: UserTable) -> User:
        return User(
            id=row.id,
            name=row.name,
            email=row.email,
            role=Role(row.role),
            organization_id=row.organization_id,
            avatar=row.avatar,
            phone=row.phone,
            is_active=bool(row.is_active),
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_ticket(
        row: TicketTable,
        *,
        messages: Sequence[Message],
        time_entries: Sequence[TimeEntry],
        conversion_request: ConversionRequest | None,
    ) -> Ticket:
        return Ticket(
            id=row.id,
            title=row.title,
            description=row.description,
            status=TicketStatus(row.status),
            priority=TicketPriority(row.priority),
            category=TicketCategory(row.category),
            organization_id=row.organization_id,
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            messages=tuple(messages),
            time_entries=tuple(time_entries),
            conversion_request=conversion_request,
            revision=row.revision,
        )

    @staticmethod
    def _row_to_message(row: TicketMessageTable) -> Message:
        return Message(
            id=row.id,
            ticket_id=row.ticket_id,
            author_id=row.author_id,
            content=row.content,
            is_internal=bool(row.is_internal),
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_time_entry(row: TimeEntryTable) -> TimeEntry:
        return TimeEntry(
            id=row.id,
            ticket_id=row.ticket_id,
            author_id=row.author_id,
            hours=float(row.hours),
            description=row.description,
            date=row.entry_date,
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_conversion(row: ConversionRequestTable) -> ConversionRequest:
        return ConversionRequest(
            id=row.id,
            ticket_id=row.ticket_id,
            proposed_type=ProposedType(row.proposed_type),
            reason=row.reason,
            proposed_by=row.proposed_by,
            created_at=_ensure_datetime(row.created_at),
            internal_approval=ApprovalStatus(row.internal_approval),
            client_approval=ApprovalStatus(row.client_approval),
        )

    @staticmethod
    def _row_to_invoice(row: InvoiceTable) -> Invoice:
        return Invoice(
            id=row.id,
            organization_id=row.organization_id,
            month=row.month,
            year=row.year,
            tickets_closed=row.tickets_closed,
            total_hours=float(row.total_hours),
            rate_per_hour=float(row.rate_per_hour),
            total_amount=float(row.total_amount),
            status=InvoiceStatus(row.status),
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_activity(row: ActivityTable) -> ActivityItem:
        return ActivityItem(
            id=row.id,
            type=ActivityType(row.type),
            description=row.description,
            actor_id=row.actor_id,
            ticket_id=row.ticket_id,
            metadata=dict(row.metadata_ or {}),
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
