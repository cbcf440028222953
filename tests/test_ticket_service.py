from __future__ import annotations

import asyncio
import logging
import math
from datetime import date
from unittest.mock import AsyncMock

import pytest

from conftest import build_desk
from supportdesk.domain.errors import (
    ConcurrentModificationError,
    ConflictingConversionRequestError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
)
from supportdesk.domain.models import (
    ActivityType,
    ApprovalSide,
    ApprovalStatus,
    ProposedType,
    TicketCategory,
    TicketPriority,
)
from supportdesk.domain.state import TicketStatus
from supportdesk.domain.store import AggregateStore, StoreSnapshot


class YieldingPersistence:
    """Persistence that suspends on every write so coroutines interleave."""

    def __init__(self) -> None:
        self.persisted = []

    async def load(self) -> StoreSnapshot:
        return StoreSnapshot()

    async def persist(self, change) -> None:
        await asyncio.sleep(0)
        self.persisted.append(change)


async def _create(desk, *, actor=None, category=TicketCategory.BUG, organization_id="org-a"):
    return await desk.tickets.create_ticket(
        actor or desk.staff,
        title="Login fails",
        description="SSO redirect loop",
        priority=TicketPriority.HIGH,
        category=category,
        organization_id=organization_id,
    )


def _ticket_activities(desk, ticket_id):
    return [item for item in desk.store.snapshot().activities if item.ticket_id == ticket_id]


@pytest.mark.asyncio
async def test_staff_works_ticket_through_to_resolution(desk):
    ticket = await _create(desk)
    assert ticket.status is TicketStatus.OPEN
    stamps = [ticket.updated_at]

    ticket = await desk.tickets.assign_ticket(desk.staff, ticket.id, desk.staff.id)
    stamps.append(ticket.updated_at)
    ticket = await desk.tickets.update_status(desk.staff, ticket.id, TicketStatus.IN_PROGRESS)
    stamps.append(ticket.updated_at)
    entry = await desk.tickets.add_time_entry(desk.staff, ticket.id, hours=2.5, description="Debugging")
    stamps.append(desk.tickets.get_ticket(desk.staff, ticket.id).updated_at)
    ticket = await desk.tickets.update_status(desk.staff, ticket.id, TicketStatus.RESOLVED)
    stamps.append(ticket.updated_at)

    assert entry.hours == 2.5
    assert ticket.hours_worked == 2.5
    assert ticket.assigned_to == desk.staff.id
    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))
    assert ticket.revision == 5

    types = [item.type for item in _ticket_activities(desk, ticket.id)]
    assert types == [
        ActivityType.TICKET_CREATED,
        ActivityType.TICKET_UPDATED,
        ActivityType.TICKET_UPDATED,
        ActivityType.TICKET_RESOLVED,
    ]


@pytest.mark.asyncio
async def test_conversion_needs_both_sides_and_rightful_client(desk):
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Belongs on the roadmap"
    )

    await desk.tickets.decide_approval(
        desk.lead, request.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.APPROVED
    )
    with pytest.raises(ForbiddenError):
        await desk.tickets.decide_approval(
            desk.client_b, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.APPROVED
        )
    assert desk.tickets.get_ticket(desk.staff, ticket.id).category is TicketCategory.BUG

    decided = await desk.tickets.decide_approval(
        desk.client_a, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.APPROVED
    )

    assert decided.internal_approval is ApprovalStatus.APPROVED
    assert decided.client_approval is ApprovalStatus.APPROVED
    updated = desk.tickets.get_ticket(desk.staff, ticket.id)
    assert updated.category is TicketCategory.FEATURE
    assert updated.conversion_request == decided
    assert ActivityType.CONVERSION_APPROVED in [item.type for item in _ticket_activities(desk, ticket.id)]


@pytest.mark.asyncio
async def test_internal_rejection_is_terminal(desk):
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.ENHANCEMENT, reason="Scope creep"
    )

    rejected = await desk.tickets.decide_approval(
        desk.lead, request.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.REJECTED
    )
    assert rejected.client_approval is ApprovalStatus.PENDING

    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.decide_approval(
            desk.client_a, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.APPROVED
        )

    current = desk.tickets.get_ticket(desk.staff, ticket.id)
    assert current.category is TicketCategory.BUG
    assert current.conversion_request == rejected
    assert desk.store.get_conversion(request.id) == rejected


@pytest.mark.asyncio
async def test_side_cannot_vote_twice(desk):
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Roadmap"
    )
    first = await desk.tickets.decide_approval(
        desk.client_a, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.APPROVED
    )
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.decide_approval(
            desk.client_a, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.REJECTED
        )
    assert desk.store.get_conversion(request.id) == first


@pytest.mark.asyncio
async def test_support_staff_cannot_decide_internal_side(desk):
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Roadmap"
    )
    with pytest.raises(ForbiddenError):
        await desk.tickets.decide_approval(
            desk.staff, request.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.APPROVED
        )


@pytest.mark.asyncio
async def test_duplicate_open_proposal_conflicts_and_rejected_one_can_be_replaced(desk):
    ticket = await _create(desk)
    first = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Roadmap"
    )
    with pytest.raises(ConflictingConversionRequestError):
        await desk.tickets.request_conversion(
            desk.lead, ticket.id, proposed_type=ProposedType.ENHANCEMENT, reason="Smaller change"
        )

    await desk.tickets.decide_approval(
        desk.client_a, first.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.REJECTED
    )
    second = await desk.tickets.request_conversion(
        desk.lead, ticket.id, proposed_type=ProposedType.ENHANCEMENT, reason="Smaller change"
    )
    assert desk.tickets.get_ticket(desk.lead, ticket.id).conversion_request == second
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.decide_approval(
            desk.lead, first.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.APPROVED
        )


@pytest.mark.asyncio
async def test_conversion_rules_on_category_role_and_status(desk):
    feature = await _create(desk, category=TicketCategory.FEATURE)
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.request_conversion(
            desk.staff, feature.id, proposed_type=ProposedType.ENHANCEMENT, reason="Already planned"
        )

    ticket = await _create(desk, actor=desk.client_a)
    with pytest.raises(ForbiddenError):
        await desk.tickets.request_conversion(
            desk.client_a, ticket.id, proposed_type=ProposedType.FEATURE, reason="Please"
        )

    await desk.tickets.update_status(desk.staff, ticket.id, TicketStatus.CLOSED)
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.request_conversion(
            desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Too late"
        )


@pytest.mark.asyncio
async def test_unknown_conversion_request_is_not_found(desk):
    with pytest.raises(NotFoundError):
        await desk.tickets.decide_approval(
            desk.lead, "missing", side=ApprovalSide.INTERNAL, decision=ApprovalStatus.APPROVED
        )


@pytest.mark.asyncio
async def test_client_never_sees_internal_notes(desk):
    ticket = await _create(desk)
    await desk.tickets.add_message(desk.staff, ticket.id, content="Customer is on legacy SSO", is_internal=True)
    await desk.tickets.add_message(desk.staff, ticket.id, content="We are looking into it")
    await desk.tickets.add_message(desk.client_a, ticket.id, content="Thanks!")

    staff_view = desk.tickets.get_ticket(desk.staff, ticket.id)
    client_view = desk.tickets.get_ticket(desk.client_a, ticket.id)

    assert len(staff_view.messages) == 3
    assert [message.content for message in client_view.messages] == ["We are looking into it", "Thanks!"]
    assert not any(message.is_internal for message in client_view.messages)


@pytest.mark.asyncio
async def test_clients_cannot_write_internal_notes_or_log_time(desk):
    ticket = await _create(desk)
    with pytest.raises(ForbiddenError):
        await desk.tickets.add_message(desk.client_a, ticket.id, content="sneaky", is_internal=True)
    with pytest.raises(ForbiddenError):
        await desk.tickets.add_time_entry(desk.client_a, ticket.id, hours=1, description="me")
    with pytest.raises(ForbiddenError):
        await desk.tickets.update_status(desk.client_a, ticket.id, TicketStatus.CLOSED)
    assert desk.store.get_ticket(ticket.id) == ticket


@pytest.mark.asyncio
async def test_out_of_scope_ticket_looks_missing(desk):
    ticket = await _create(desk)
    with pytest.raises(NotFoundError):
        desk.tickets.get_ticket(desk.client_b, ticket.id)
    with pytest.raises(NotFoundError):
        await desk.tickets.add_message(desk.client_b, ticket.id, content="hello")


@pytest.mark.asyncio
async def test_ticket_creation_is_org_scoped_for_clients(desk):
    own = await _create(desk, actor=desk.client_a)
    assert own.created_by == desk.client_a.id
    with pytest.raises(ForbiddenError):
        await _create(desk, actor=desk.client_a, organization_id="org-b")
    with pytest.raises(NotFoundError):
        await _create(desk, organization_id="org-missing")
    with pytest.raises(InvalidArgumentError):
        await desk.tickets.create_ticket(
            desk.staff,
            title="   ",
            description="",
            priority=TicketPriority.LOW,
            category=TicketCategory.QUESTION,
            organization_id="org-a",
        )


@pytest.mark.asyncio
@pytest.mark.parametrize("hours", [0, -1.5, math.nan, math.inf])
async def test_time_entry_hours_must_be_positive(desk, hours):
    ticket = await _create(desk)
    with pytest.raises(InvalidArgumentError):
        await desk.tickets.add_time_entry(desk.staff, ticket.id, hours=hours, description="bad")
    assert desk.store.get_ticket(ticket.id).time_entries == ()


@pytest.mark.asyncio
async def test_hours_worked_tracks_every_entry(desk):
    ticket = await _create(desk)
    for hours in (0.25, 1.5, 3):
        await desk.tickets.add_time_entry(
            desk.staff, ticket.id, hours=hours, description="work", entry_date=date(2024, 3, 2)
        )
        current = desk.store.get_ticket(ticket.id)
        assert current.hours_worked == sum(entry.hours for entry in current.time_entries)
    assert current.hours_worked == 4.75
    assert _ticket_activities(desk, ticket.id)[-1].type is ActivityType.TICKET_CREATED


@pytest.mark.asyncio
async def test_priority_and_assignee_locked_once_terminal(desk):
    ticket = await _create(desk)
    ticket = await desk.tickets.update_priority(desk.lead, ticket.id, TicketPriority.CRITICAL)
    assert ticket.priority is TicketPriority.CRITICAL
    await desk.tickets.update_status(desk.lead, ticket.id, TicketStatus.RESOLVED)

    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.update_priority(desk.lead, ticket.id, TicketPriority.LOW)
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.assign_ticket(desk.lead, ticket.id, desk.staff.id)
    with pytest.raises(InvalidStateTransitionError):
        await desk.tickets.update_status(desk.lead, ticket.id, TicketStatus.IN_PROGRESS)

    message = await desk.tickets.add_message(desk.client_a, ticket.id, content="Confirmed fixed")
    assert message.ticket_id == ticket.id


@pytest.mark.asyncio
async def test_assignee_must_be_active_support_member(desk):
    ticket = await _create(desk)
    with pytest.raises(InvalidArgumentError):
        await desk.tickets.assign_ticket(desk.lead, ticket.id, desk.client_a.id)
    with pytest.raises(InvalidArgumentError):
        await desk.tickets.assign_ticket(desk.lead, ticket.id, "ghost")

    assigned = await desk.tickets.assign_ticket(desk.lead, ticket.id, desk.staff.id)
    unassigned = await desk.tickets.assign_ticket(desk.lead, assigned.id, None)
    assert unassigned.assigned_to is None


@pytest.mark.asyncio
async def test_failed_persist_leaves_state_untouched():
    persistence = AsyncMock()
    persistence.load = AsyncMock(return_value=StoreSnapshot())
    desk = await build_desk(AggregateStore(persistence))
    ticket = await _create(desk)
    activities_before = desk.store.snapshot().activities

    persistence.persist.side_effect = RuntimeError("database unavailable")
    with pytest.raises(RuntimeError):
        await desk.tickets.update_status(desk.staff, ticket.id, TicketStatus.IN_PROGRESS)

    assert desk.store.get_ticket(ticket.id) == ticket
    assert desk.store.snapshot().activities == activities_before


@pytest.mark.asyncio
async def test_revision_conflict_surfaces_to_caller():
    persistence = AsyncMock()
    desk = await build_desk(AggregateStore(persistence))
    ticket = await _create(desk)

    persistence.persist.side_effect = ConcurrentModificationError("Ticket was modified concurrently")
    with pytest.raises(ConcurrentModificationError):
        await desk.tickets.add_message(desk.staff, ticket.id, content="hello")
    assert desk.store.get_ticket(ticket.id).messages == ()


@pytest.mark.asyncio
async def test_activity_sink_failure_does_not_fail_committed_operation(caplog):
    sink = AsyncMock()
    sink.publish.side_effect = RuntimeError("webhook down")
    desk = await build_desk(AggregateStore(sink=sink))

    with caplog.at_level(logging.ERROR):
        ticket = await _create(desk)

    assert desk.store.get_ticket(ticket.id) is not None
    sink.publish.assert_awaited()
    assert "Activity sink failed" in caplog.text


@pytest.mark.asyncio
async def test_concurrent_decisions_on_both_sides_are_serialised():
    desk = await build_desk(AggregateStore(YieldingPersistence()))
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Roadmap"
    )

    await asyncio.gather(
        desk.tickets.decide_approval(
            desk.lead, request.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.APPROVED
        ),
        desk.tickets.decide_approval(
            desk.client_a, request.id, side=ApprovalSide.CLIENT, decision=ApprovalStatus.APPROVED
        ),
        desk.tickets.add_message(desk.staff, ticket.id, content="Both sides notified"),
    )

    final = desk.store.get_ticket(ticket.id)
    assert final.category is TicketCategory.FEATURE
    assert final.conversion_request.internal_approval is ApprovalStatus.APPROVED
    assert final.conversion_request.client_approval is ApprovalStatus.APPROVED
    assert len(final.messages) == 1
    assert final.revision == 5


@pytest.mark.asyncio
async def test_concurrent_proposals_yield_single_request():
    desk = await build_desk(AggregateStore(YieldingPersistence()))
    ticket = await _create(desk)

    results = await asyncio.gather(
        desk.tickets.request_conversion(desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="a"),
        desk.tickets.request_conversion(desk.lead, ticket.id, proposed_type=ProposedType.ENHANCEMENT, reason="b"),
        return_exceptions=True,
    )

    errors = [result for result in results if isinstance(result, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], ConflictingConversionRequestError)


@pytest.mark.asyncio
async def test_list_approvals_is_scoped_to_visible_tickets(desk):
    ticket = await _create(desk)
    request = await desk.tickets.request_conversion(
        desk.staff, ticket.id, proposed_type=ProposedType.FEATURE, reason="Roadmap"
    )

    assert [item.id for item in desk.tickets.list_approvals(desk.client_a)] == [request.id]
    assert [item.id for item in desk.tickets.list_approvals(desk.staff)] == [request.id]
    assert desk.tickets.list_approvals(desk.client_b) == []

    await desk.tickets.decide_approval(
        desk.lead, request.id, side=ApprovalSide.INTERNAL, decision=ApprovalStatus.REJECTED
    )
    assert desk.tickets.list_approvals(desk.lead) == []


@pytest.mark.asyncio
async def test_unknown_ticket_ids_do_not_accumulate_locks(desk):
    ticket = await _create(desk)
    await desk.tickets.update_status(desk.staff, ticket.id, TicketStatus.IN_PROGRESS)
    assert desk.store.ticket_lock(ticket.id) is desk.store.ticket_lock(ticket.id)
    before = desk.store.ticket_lock_count

    for index in range(50):
        with pytest.raises(NotFoundError):
            await desk.tickets.update_status(desk.client_a, f"bogus-{index}", TicketStatus.CLOSED)
        with pytest.raises(NotFoundError):
            await desk.tickets.add_message(desk.client_a, f"bogus-{index}", content="hello?")

    assert desk.store.ticket_lock_count == before
