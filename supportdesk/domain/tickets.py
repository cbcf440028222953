from __future__ import annotations

import logging
import math
import uuid
from contextlib import AsyncExitStack
from dataclasses import replace
from datetime import date

from opentelemetry import trace

from supportdesk.security.policy import Target, approval_action, can_view_ticket, require
from supportdesk.security.roles import INTERNAL_ROLES, Action

from . import conversion
from .activity import new_activity
from .clock import Clock, advance, utcnow
from .errors import InvalidArgumentError, InvalidStateTransitionError, NotFoundError
from .models import (
    ActivityType,
    ApprovalSide,
    ApprovalStatus,
    ConversionRequest,
    Message,
    ProposedType,
    Ticket,
    TicketCategory,
    TicketPriority,
    TimeEntry,
    User,
)
from .projections import redact_ticket
from .state import TicketStateMachine, TicketStatus
from .store import AggregateStore, StoreChange

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketService:
    """Ticket lifecycle and conversion approval operations.

    Every mutation runs under the ticket's lock, re-reads the ticket, checks the
    policy and the state machine, and commits the new ticket together with its
    activity records in a single store change.
    """

    def __init__(self, store: AggregateStore, *, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or utcnow

    def _visible_ticket(self, actor: User, ticket_id: str) -> Ticket:
        ticket = self._store.get_ticket(ticket_id)
        if ticket is None or not can_view_ticket(actor, ticket):
            raise NotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    def _touch(self, ticket: Ticket, **changes) -> Ticket:
        return replace(
            ticket,
            updated_at=advance(self._clock, ticket.updated_at),
            revision=ticket.revision + 1,
            **changes,
        )

    def get_ticket(self, actor: User, ticket_id: str) -> Ticket:
        return redact_ticket(actor, self._visible_ticket(actor, ticket_id))

    async def create_ticket(
        self,
        actor: User,
        *,
        title: str,
        description: str,
        priority: TicketPriority,
        category: TicketCategory,
        organization_id: str,
    ) -> Ticket:
        with tracer.start_as_current_span("tickets.create"):
            require(actor, Action.CREATE_TICKET, Target(organization_id=organization_id))
            title = title.strip()
            if not title:
                raise InvalidArgumentError("Ticket title must not be empty")

            async with self._store.catalog_lock:
                if self._store.get_organization(organization_id) is None:
                    raise NotFoundError(f"Organization {organization_id} not found")
                now = advance(self._clock)
                ticket = Ticket(
                    id=str(uuid.uuid4()),
                    title=title,
                    description=description.strip(),
                    status=TicketStateMachine.initial_state(),
                    priority=priority,
                    category=category,
                    organization_id=organization_id,
                    created_by=actor.id,
                    assigned_to=None,
                    created_at=now,
                    updated_at=now,
                )
                change = StoreChange(
                    activities=[
                        new_activity(
                            ActivityType.TICKET_CREATED,
                            f'Ticket "{title}" created',
                            actor_id=actor.id,
                            created_at=now,
                            ticket_id=ticket.id,
                        )
                    ]
                )
                change.save_ticket(ticket)
                await self._store.commit(change)

        logger.info("Ticket %s created by %s for organization %s", ticket.id, actor.id, organization_id)
        return redact_ticket(actor, ticket)

    async def update_status(self, actor: User, ticket_id: str, new_status: TicketStatus) -> Ticket:
        with tracer.start_as_current_span("tickets.update_status"):
            async with self._store.ticket_lock(ticket_id):
                ticket = self._visible_ticket(actor, ticket_id)
                require(actor, Action.UPDATE_TICKET, Target.for_ticket(ticket))
                TicketStateMachine.assert_transition(ticket.status, new_status)

                updated = self._touch(ticket, status=new_status)
                activity_type = (
                    ActivityType.TICKET_RESOLVED if new_status is TicketStatus.RESOLVED else ActivityType.TICKET_UPDATED
                )
                change = StoreChange(
                    activities=[
                        new_activity(
                            activity_type,
                            f"Status changed from {ticket.status.value} to {new_status.value}",
                            actor_id=actor.id,
                            created_at=updated.updated_at,
                            ticket_id=ticket_id,
                            metadata={"from_status": ticket.status.value, "to_status": new_status.value},
                        )
                    ]
                )
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)

        logger.info("Ticket %s moved %s -> %s by %s", ticket_id, ticket.status.value, new_status.value, actor.id)
        return redact_ticket(actor, updated)

    async def update_priority(self, actor: User, ticket_id: str, priority: TicketPriority) -> Ticket:
        with tracer.start_as_current_span("tickets.update_priority"):
            async with self._store.ticket_lock(ticket_id):
                ticket = self._visible_ticket(actor, ticket_id)
                require(actor, Action.UPDATE_TICKET, Target.for_ticket(ticket))
                TicketStateMachine.assert_editable(ticket.status)
                if ticket.priority is priority:
                    return redact_ticket(actor, ticket)

                updated = self._touch(ticket, priority=priority)
                change = StoreChange(
                    activities=[
                        new_activity(
                            ActivityType.TICKET_UPDATED,
                            f"Priority changed from {ticket.priority.value} to {priority.value}",
                            actor_id=actor.id,
                            created_at=updated.updated_at,
                            ticket_id=ticket_id,
                        )
                    ]
                )
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)
        return redact_ticket(actor, updated)

    async def assign_ticket(self, actor: User, ticket_id: str, assignee_id: str | None) -> Ticket:
        with tracer.start_as_current_span("tickets.assign"):
            async with AsyncExitStack() as stack:
                if assignee_id is not None:
                    # catalog before ticket: the assignee cannot be deactivated or demoted meanwhile
                    await stack.enter_async_context(self._store.catalog_lock)
                await stack.enter_async_context(self._store.ticket_lock(ticket_id))

                ticket = self._visible_ticket(actor, ticket_id)
                require(actor, Action.UPDATE_TICKET, Target.for_ticket(ticket))
                TicketStateMachine.assert_editable(ticket.status)

                if assignee_id is None:
                    description = "Ticket unassigned"
                else:
                    assignee = self._store.get_user(assignee_id)
                    if assignee is None or not assignee.is_active:
                        raise InvalidArgumentError(f"User {assignee_id} cannot be assigned")
                    if assignee.role not in INTERNAL_ROLES:
                        raise InvalidArgumentError("Tickets can only be assigned to support team members")
                    description = f"Assigned to {assignee.name}"
                if ticket.assigned_to == assignee_id:
                    return redact_ticket(actor, ticket)

                updated = self._touch(ticket, assigned_to=assignee_id)
                change = StoreChange(
                    activities=[
                        new_activity(
                            ActivityType.TICKET_UPDATED,
                            description,
                            actor_id=actor.id,
                            created_at=updated.updated_at,
                            ticket_id=ticket_id,
                        )
                    ]
                )
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)
        return redact_ticket(actor, updated)

    async def add_message(
        self,
        actor: User,
        ticket_id: str,
        *,
        content: str,
        is_internal: bool = False,
    ) -> Message:
        with tracer.start_as_current_span("tickets.add_message"):
            async with self._store.ticket_lock(ticket_id):
                ticket = self._visible_ticket(actor, ticket_id)
                target = Target.for_ticket(ticket)
                require(actor, Action.ADD_MESSAGE, target)
                if is_internal:
                    require(actor, Action.ADD_INTERNAL_NOTE, target)
                content = content.strip()
                if not content:
                    raise InvalidArgumentError("Message content must not be empty")

                updated_at = advance(self._clock, ticket.updated_at)
                message = Message(
                    id=str(uuid.uuid4()),
                    ticket_id=ticket_id,
                    author_id=actor.id,
                    content=content,
                    created_at=updated_at,
                    is_internal=is_internal,
                )
                updated = replace(
                    ticket,
                    messages=(*ticket.messages, message),
                    updated_at=updated_at,
                    revision=ticket.revision + 1,
                )
                description = "Internal note added" if is_internal else f"{actor.name} added a message"
                change = StoreChange(
                    messages=[message],
                    activities=[
                        new_activity(
                            ActivityType.MESSAGE_ADDED,
                            description,
                            actor_id=actor.id,
                            created_at=updated_at,
                            ticket_id=ticket_id,
                            metadata={"internal": True} if is_internal else None,
                        )
                    ],
                )
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)
        return message

    async def add_time_entry(
        self,
        actor: User,
        ticket_id: str,
        *,
        hours: float,
        description: str,
        entry_date: date | None = None,
    ) -> TimeEntry:
        """Log time on a ticket.

        Time entries bump ``updated_at`` but do not appear in the activity feed.
        """

        with tracer.start_as_current_span("tickets.add_time_entry"):
            async with self._store.ticket_lock(ticket_id):
                ticket = self._visible_ticket(actor, ticket_id)
                require(actor, Action.LOG_TIME, Target.for_ticket(ticket))
                if not math.isfinite(hours) or hours <= 0:
                    raise InvalidArgumentError("Logged hours must be a positive number")

                updated_at = advance(self._clock, ticket.updated_at)
                entry = TimeEntry(
                    id=str(uuid.uuid4()),
                    ticket_id=ticket_id,
                    author_id=actor.id,
                    hours=float(hours),
                    description=description.strip(),
                    date=entry_date or updated_at.date(),
                    created_at=updated_at,
                )
                updated = replace(
                    ticket,
                    time_entries=(*ticket.time_entries, entry),
                    updated_at=updated_at,
                    revision=ticket.revision + 1,
                )
                change = StoreChange(time_entries=[entry])
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)
        return entry

    async def request_conversion(
        self,
        actor: User,
        ticket_id: str,
        *,
        proposed_type: ProposedType,
        reason: str,
    ) -> ConversionRequest:
        with tracer.start_as_current_span("tickets.request_conversion"):
            async with self._store.ticket_lock(ticket_id):
                ticket = self._visible_ticket(actor, ticket_id)
                require(actor, Action.REQUEST_CONVERSION, Target.for_ticket(ticket))
                TicketStateMachine.assert_editable(ticket.status)

                created_at = advance(self._clock, ticket.updated_at)
                request = conversion.propose(
                    ticket,
                    request_id=str(uuid.uuid4()),
                    proposed_type=proposed_type,
                    reason=reason,
                    proposed_by=actor.id,
                    created_at=created_at,
                )
                updated = replace(
                    ticket,
                    conversion_request=request,
                    updated_at=created_at,
                    revision=ticket.revision + 1,
                )
                change = StoreChange(
                    conversions=[request],
                    activities=[
                        new_activity(
                            ActivityType.CONVERSION_REQUESTED,
                            f"Conversion to {proposed_type.value} requested",
                            actor_id=actor.id,
                            created_at=created_at,
                            ticket_id=ticket_id,
                        )
                    ],
                )
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)

        logger.info("Conversion %s requested on ticket %s by %s", request.id, ticket_id, actor.id)
        return request

    async def decide_approval(
        self,
        actor: User,
        request_id: str,
        *,
        side: ApprovalSide,
        decision: ApprovalStatus,
    ) -> ConversionRequest:
        """Record one side's decision on a conversion request.

        Side authorization is checked before anything else is revealed, so a
        client of another organization is refused rather than told the request
        does not exist.
        """

        with tracer.start_as_current_span("tickets.decide_approval"):
            existing = self._store.get_conversion(request_id)
            if existing is None:
                raise NotFoundError(f"Conversion request {request_id} not found")

            async with self._store.ticket_lock(existing.ticket_id):
                ticket = self._store.get_ticket(existing.ticket_id)
                if ticket is None:
                    raise NotFoundError(f"Conversion request {request_id} not found")
                require(actor, approval_action(side), Target.for_ticket(ticket))

                current = ticket.conversion_request
                if current is None or current.id != request_id:
                    raise InvalidStateTransitionError(f"Conversion request {request_id} is no longer active")
                decided = conversion.decide(current, side, decision)
                result = conversion.outcome(decided)

                changes: dict[str, object] = {"conversion_request": decided}
                if result is conversion.ConversionOutcome.APPROVED:
                    changes["category"] = decided.proposed_type.category
                updated = self._touch(ticket, **changes)

                summary = f"{side.value.capitalize()} approval {decision.value}"
                if result is conversion.ConversionOutcome.REJECTED:
                    summary += f"; conversion to {decided.proposed_type.value} rejected"
                activities = [
                    new_activity(
                        ActivityType.TICKET_UPDATED,
                        summary,
                        actor_id=actor.id,
                        created_at=updated.updated_at,
                        ticket_id=ticket.id,
                        metadata={"conversion_request_id": request_id, "side": side.value},
                    )
                ]
                if result is conversion.ConversionOutcome.APPROVED:
                    activities.append(
                        new_activity(
                            ActivityType.CONVERSION_APPROVED,
                            f"Ticket converted to {decided.proposed_type.value}",
                            actor_id=actor.id,
                            created_at=updated.updated_at,
                            ticket_id=ticket.id,
                            metadata={"conversion_request_id": request_id},
                        )
                    )
                change = StoreChange(conversions=[decided], activities=activities)
                change.save_ticket(updated, previous=ticket)
                await self._store.commit(change)

        logger.info(
            "Conversion %s: %s side %s by %s (outcome %s)",
            request_id,
            side.value,
            decision.value,
            actor.id,
            result.value,
        )
        return decided

    def list_approvals(self, actor: User) -> list[ConversionRequest]:
        """Undecided conversion requests on tickets the actor can see."""

        snapshot = self._store.snapshot()
        pending = [
            ticket.conversion_request
            for ticket in snapshot.tickets.values()
            if conversion.is_open(ticket.conversion_request) and can_view_ticket(actor, ticket)
        ]
        return sorted(pending, key=lambda request: request.created_at, reverse=True)
