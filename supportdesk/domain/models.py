from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping

from supportdesk.security.roles import Role

from .state import InvoiceStatus, TicketStatus


class TicketPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TicketCategory(str, Enum):
    BUG = "bug"
    SUPPORT = "support"
    QUESTION = "question"
    FEATURE = "feature"
    ENHANCEMENT = "enhancement"


CONVERTIBLE_CATEGORIES: frozenset[TicketCategory] = frozenset(
    {TicketCategory.BUG, TicketCategory.SUPPORT, TicketCategory.QUESTION}
)


class ProposedType(str, Enum):
    """Work item categories a ticket can be converted into."""

    FEATURE = "feature"
    ENHANCEMENT = "enhancement"

    @property
    def category(self) -> TicketCategory:
        return TicketCategory(self.value)


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ApprovalSide(str, Enum):
    INTERNAL = "internal"
    CLIENT = "client"


class OrganizationPlan(str, Enum):
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class ActivityType(str, Enum):
    TICKET_CREATED = "ticket-created"
    TICKET_UPDATED = "ticket-updated"
    MESSAGE_ADDED = "message-added"
    TICKET_RESOLVED = "ticket-resolved"
    CONVERSION_REQUESTED = "conversion-requested"
    CONVERSION_APPROVED = "conversion-approved"


@dataclass(slots=True, frozen=True)
class Organization:
    """A client organization raising tickets."""

    id: str
    name: str
    plan: OrganizationPlan
    contact_email: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class User:
    """An internal staff member or a client user.

    Client users always belong to an organization; internal roles never do.
    Deleted users are kept with ``is_active`` cleared so references resolve.
    """

    id: str
    name: str
    email: str
    role: Role
    organization_id: str | None
    avatar: str
    created_at: datetime
    phone: str | None = None
    is_active: bool = True

    @property
    def is_client(self) -> bool:
        return self.role is Role.CLIENT


@dataclass(slots=True, frozen=True)
class Message:
    id: str
    ticket_id: str
    author_id: str
    content: str
    created_at: datetime
    is_internal: bool = False


@dataclass(slots=True, frozen=True)
class TimeEntry:
    id: str
    ticket_id: str
    author_id: str
    hours: float
    description: str
    date: date
    created_at: datetime


@dataclass(slots=True, frozen=True)
class ConversionRequest:
    """Proposal to reclassify a ticket, gated by internal and client sign-off."""

    id: str
    ticket_id: str
    proposed_type: ProposedType
    reason: str
    proposed_by: str
    created_at: datetime
    internal_approval: ApprovalStatus = ApprovalStatus.PENDING
    client_approval: ApprovalStatus = ApprovalStatus.PENDING

    def approval(self, side: ApprovalSide) -> ApprovalStatus:
        if side is ApprovalSide.INTERNAL:
            return self.internal_approval
        return self.client_approval


@dataclass(slots=True, frozen=True)
class Ticket:
    """Aggregate representing a support ticket and its append-only history."""

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory
    organization_id: str
    created_by: str
    assigned_to: str | None
    created_at: datetime
    updated_at: datetime
    messages: tuple[Message, ...] = ()
    time_entries: tuple[TimeEntry, ...] = ()
    conversion_request: ConversionRequest | None = None
    revision: int = 1

    @property
    def hours_worked(self) -> float:
        return sum(entry.hours for entry in self.time_entries)


@dataclass(slots=True, frozen=True)
class Invoice:
    """Billing snapshot for one organization and month."""

    id: str
    organization_id: str
    month: int
    year: int
    tickets_closed: int
    total_hours: float
    rate_per_hour: float
    total_amount: float
    status: InvoiceStatus
    created_at: datetime


@dataclass(slots=True, frozen=True)
class ActivityItem:
    """Immutable audit record of a domain event."""

    id: str
    type: ActivityType
    description: str
    actor_id: str
    created_at: datetime
    ticket_id: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_internal(self) -> bool:
        return bool(self.metadata.get("internal", False))
