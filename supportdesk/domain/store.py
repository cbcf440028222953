"""In-memory aggregate of every entity, with per-ticket locking.

Mutations are expressed as a :class:`StoreChange`. :meth:`AggregateStore.commit`
hands the change to the persistence layer first and only then swaps the new
entity values in, in one step with no suspension point. Reads through
:meth:`AggregateStore.snapshot` therefore never observe half of a change.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Protocol

from .activity import ActivitySink, LoggingActivitySink
from .models import ActivityItem, ConversionRequest, Invoice, Message, Organization, Ticket, TimeEntry, User

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class StoreChange:
    """Entities written by one atomic operation."""

    tickets: list[Ticket] = field(default_factory=list)
    expected_revisions: dict[str, int] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    time_entries: list[TimeEntry] = field(default_factory=list)
    conversions: list[ConversionRequest] = field(default_factory=list)
    organizations: list[Organization] = field(default_factory=list)
    removed_organizations: list[str] = field(default_factory=list)
    users: list[User] = field(default_factory=list)
    invoices: list[Invoice] = field(default_factory=list)
    activities: list[ActivityItem] = field(default_factory=list)

    def save_ticket(self, ticket: Ticket, *, previous: Ticket | None = None) -> None:
        """Queue ``ticket``; ``previous`` is the version it replaces, if any."""

        self.tickets.append(ticket)
        if previous is not None:
            self.expected_revisions[ticket.id] = previous.revision


@dataclass(slots=True, frozen=True)
class StoreSnapshot:
    """Point-in-time view over every entity."""

    organizations: Mapping[str, Organization] = field(default_factory=dict)
    users: Mapping[str, User] = field(default_factory=dict)
    tickets: Mapping[str, Ticket] = field(default_factory=dict)
    invoices: Mapping[str, Invoice] = field(default_factory=dict)
    conversions: Mapping[str, ConversionRequest] = field(default_factory=dict)
    activities: tuple[ActivityItem, ...] = ()


class StorePersistence(Protocol):
    """Durable storage behind the aggregate store."""

    async def load(self) -> StoreSnapshot:
        ...

    async def persist(self, change: StoreChange) -> None:
        ...


class NullPersistence:
    """Keeps nothing; the store lives in memory only."""

    async def load(self) -> StoreSnapshot:
        return StoreSnapshot()

    async def persist(self, change: StoreChange) -> None:
        return None


class AggregateStore:
    """Materialised state shared by the domain services."""

    def __init__(
        self,
        persistence: StorePersistence | None = None,
        *,
        sink: ActivitySink | None = None,
    ) -> None:
        self._persistence = persistence or NullPersistence()
        self._sink = sink or LoggingActivitySink()
        self._organizations: dict[str, Organization] = {}
        self._users: dict[str, User] = {}
        self._tickets: dict[str, Ticket] = {}
        self._invoices: dict[str, Invoice] = {}
        self._conversions: dict[str, ConversionRequest] = {}
        self._activities: list[ActivityItem] = []
        self._ticket_locks: dict[str, asyncio.Lock] = {}
        self._catalog_lock = asyncio.Lock()

    async def load(self) -> None:
        """Replace the in-memory state with what the persistence layer holds."""

        state = await self._persistence.load()
        self._organizations = dict(state.organizations)
        self._users = dict(state.users)
        self._tickets = dict(state.tickets)
        self._invoices = dict(state.invoices)
        self._conversions = dict(state.conversions)
        self._activities = sorted(state.activities, key=lambda item: item.created_at)
        logger.info(
            "Loaded %d organizations, %d users, %d tickets",
            len(self._organizations),
            len(self._users),
            len(self._tickets),
        )

    def ticket_lock(self, ticket_id: str) -> asyncio.Lock:
        """Return the lock serialising mutations of one ticket.

        Only stored tickets get a registered lock. An unknown id gets a fresh
        private lock; the caller then fails its lookup with ``NotFoundError``.
        """

        lock = self._ticket_locks.get(ticket_id)
        if lock is None:
            if ticket_id not in self._tickets:
                return asyncio.Lock()
            lock = self._ticket_locks[ticket_id] = asyncio.Lock()
        return lock

    @property
    def ticket_lock_count(self) -> int:
        return len(self._ticket_locks)

    @property
    def catalog_lock(self) -> asyncio.Lock:
        """Lock serialising organization, user and invoice mutations."""

        return self._catalog_lock

    def get_ticket(self, ticket_id: str) -> Ticket | None:
        return self._tickets.get(ticket_id)

    def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def get_organization(self, organization_id: str) -> Organization | None:
        return self._organizations.get(organization_id)

    def get_invoice(self, invoice_id: str) -> Invoice | None:
        return self._invoices.get(invoice_id)

    def get_conversion(self, request_id: str) -> ConversionRequest | None:
        return self._conversions.get(request_id)

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(
            organizations=MappingProxyType(dict(self._organizations)),
            users=MappingProxyType(dict(self._users)),
            tickets=MappingProxyType(dict(self._tickets)),
            invoices=MappingProxyType(dict(self._invoices)),
            conversions=MappingProxyType(dict(self._conversions)),
            activities=tuple(self._activities),
        )

    async def commit(self, change: StoreChange) -> None:
        """Persist ``change`` and apply it; nothing is applied if persisting fails."""

        await self._persistence.persist(change)
        self._apply(change)
        for activity in change.activities:
            await self._publish(activity)

    def _apply(self, change: StoreChange) -> None:
        for organization in change.organizations:
            self._organizations[organization.id] = organization
        for organization_id in change.removed_organizations:
            self._organizations.pop(organization_id, None)
        for user in change.users:
            self._users[user.id] = user
        for ticket in change.tickets:
            self._tickets[ticket.id] = ticket
            if ticket.conversion_request is not None:
                self._conversions[ticket.conversion_request.id] = ticket.conversion_request
        for invoice in change.invoices:
            self._invoices[invoice.id] = invoice
        self._activities.extend(change.activities)

    async def _publish(self, activity: ActivityItem) -> None:
        try:
            await self._sink.publish(activity)
        except Exception:  # the change is already committed
            logger.exception("Activity sink failed for activity %s", activity.id)
