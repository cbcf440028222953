"""Read-side views over the aggregate store, filtered to what an actor may see."""

from __future__ import annotations

from dataclasses import dataclass, replace

from supportdesk.security.policy import Target, authorize, can_view_ticket, can_view_user, visible_to
from supportdesk.security.roles import INTERNAL_ROLES, Action

from . import conversion
from .errors import NotFoundError
from .models import ActivityItem, Ticket, TicketCategory, TicketPriority, User
from .state import TicketStatus
from .store import AggregateStore, StoreSnapshot


def redact_ticket(actor: User, ticket: Ticket) -> Ticket:
    """Strip internal notes from a ticket shown to a client."""

    if not actor.is_client or not any(message.is_internal for message in ticket.messages):
        return ticket
    return replace(ticket, messages=tuple(message for message in ticket.messages if not message.is_internal))


def visible_tickets(actor: User, snapshot: StoreSnapshot) -> list[Ticket]:
    """Tickets ``actor`` may read, newest first, already redacted."""

    tickets = [redact_ticket(actor, ticket) for ticket in visible_to(actor, snapshot.tickets.values())]
    return sorted(tickets, key=lambda ticket: ticket.created_at, reverse=True)


@dataclass(slots=True, frozen=True)
class TicketFilters:
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    organization_id: str | None = None
    assigned_to: str | None = None
    search: str | None = None

    def matches(self, ticket: Ticket) -> bool:
        if self.status is not None and ticket.status is not self.status:
            return False
        if self.priority is not None and ticket.priority is not self.priority:
            return False
        if self.category is not None and ticket.category is not self.category:
            return False
        if self.organization_id is not None and ticket.organization_id != self.organization_id:
            return False
        if self.assigned_to is not None and ticket.assigned_to != self.assigned_to:
            return False
        if self.search:
            needle = self.search.strip().lower()
            return needle in ticket.title.lower() or needle in ticket.description.lower()
        return True


@dataclass(slots=True, frozen=True)
class DashboardStats:
    total_tickets: int
    open_tickets: int
    in_progress: int
    awaiting_client: int
    resolved: int
    closed: int
    unassigned: int
    pending_approvals: int
    total_hours: float
    avg_response_hours: float | None = None


def _average_response_hours(tickets: list[Ticket], snapshot: StoreSnapshot) -> float | None:
    """Mean hours from ticket creation to the first public reply by the support team."""

    delays = []
    for ticket in tickets:
        for message in sorted(ticket.messages, key=lambda message: message.created_at):
            author = snapshot.users.get(message.author_id)
            if message.is_internal or author is None or author.role not in INTERNAL_ROLES:
                continue
            delays.append((message.created_at - ticket.created_at).total_seconds() / 3600)
            break
    if not delays:
        return None
    return round(sum(delays) / len(delays), 2)


class ProjectionService:
    """Derived listings, dashboard counters and the activity feed.

    Each call reads a single snapshot, so its results are internally consistent
    even while mutations are running.
    """

    def __init__(self, store: AggregateStore, *, activity_limit: int = 50) -> None:
        self._store = store
        self._activity_limit = activity_limit

    def list_tickets(self, actor: User, filters: TicketFilters | None = None) -> list[Ticket]:
        filters = filters or TicketFilters()
        return [ticket for ticket in visible_tickets(actor, self._store.snapshot()) if filters.matches(ticket)]

    def tickets_for_organization(self, actor: User, organization_id: str) -> list[Ticket]:
        snapshot = self._store.snapshot()
        if organization_id not in snapshot.organizations or not authorize(
            actor, Action.VIEW_ORGANIZATIONS, Target(organization_id=organization_id)
        ):
            raise NotFoundError(f"Organization {organization_id} not found")
        return [ticket for ticket in visible_tickets(actor, snapshot) if ticket.organization_id == organization_id]

    def tickets_for_assignee(self, actor: User, user_id: str) -> list[Ticket]:
        snapshot = self._store.snapshot()
        user = snapshot.users.get(user_id)
        if user is None or not can_view_user(actor, user):
            raise NotFoundError(f"User {user_id} not found")
        return [ticket for ticket in visible_tickets(actor, snapshot) if ticket.assigned_to == user_id]

    def dashboard_stats(self, actor: User) -> DashboardStats:
        snapshot = self._store.snapshot()
        tickets = visible_tickets(actor, snapshot)
        counts = {status: 0 for status in TicketStatus}
        for ticket in tickets:
            counts[ticket.status] += 1
        return DashboardStats(
            total_tickets=len(tickets),
            open_tickets=counts[TicketStatus.OPEN],
            in_progress=counts[TicketStatus.IN_PROGRESS],
            awaiting_client=counts[TicketStatus.AWAITING_CLIENT],
            resolved=counts[TicketStatus.RESOLVED],
            closed=counts[TicketStatus.CLOSED],
            unassigned=sum(1 for ticket in tickets if ticket.assigned_to is None),
            pending_approvals=sum(1 for ticket in tickets if conversion.is_open(ticket.conversion_request)),
            total_hours=round(sum(ticket.hours_worked for ticket in tickets), 2),
            avg_response_hours=_average_response_hours(tickets, snapshot),
        )

    def activities_for(self, actor: User, limit: int | None = None) -> list[ActivityItem]:
        """Most recent activity first; clients only see public events on their tickets."""

        snapshot = self._store.snapshot()
        limit = self._activity_limit if limit is None else max(limit, 0)
        if actor.is_client:
            ticket_ids = {ticket.id for ticket in snapshot.tickets.values() if can_view_ticket(actor, ticket)}
            items = [
                item
                for item in snapshot.activities
                if item.ticket_id in ticket_ids and not item.is_internal
            ]
        else:
            items = list(snapshot.activities)
        # later commits win ties
        items.reverse()
        items.sort(key=lambda item: item.created_at, reverse=True)
        return items[:limit]
