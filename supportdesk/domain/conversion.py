"""Dual-sided approval protocol for converting tickets into planned work.

A conversion request carries two independent approval tracks. Each track moves
``pending -> approved`` or ``pending -> rejected`` exactly once. The request is
resolved as soon as either track rejects, or when both have approved; a
resolved request accepts no further decisions.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from enum import Enum

from .errors import ConflictingConversionRequestError, InvalidArgumentError, InvalidStateTransitionError
from .models import (
    CONVERTIBLE_CATEGORIES,
    ApprovalSide,
    ApprovalStatus,
    ConversionRequest,
    ProposedType,
    Ticket,
)


class ConversionOutcome(str, Enum):
    OPEN = "open"
    APPROVED = "approved"
    REJECTED = "rejected"


def outcome(request: ConversionRequest) -> ConversionOutcome:
    """Resolve the request; a rejection on either side dominates."""

    votes = (request.internal_approval, request.client_approval)
    if ApprovalStatus.REJECTED in votes:
        return ConversionOutcome.REJECTED
    if all(vote is ApprovalStatus.APPROVED for vote in votes):
        return ConversionOutcome.APPROVED
    return ConversionOutcome.OPEN


def is_open(request: ConversionRequest | None) -> bool:
    return request is not None and outcome(request) is ConversionOutcome.OPEN


def propose(
    ticket: Ticket,
    *,
    request_id: str,
    proposed_type: ProposedType,
    reason: str,
    proposed_by: str,
    created_at: datetime,
) -> ConversionRequest:
    """Build a new request for ``ticket``.

    A ticket may be proposed again once its previous request was rejected.
    """

    if ticket.category not in CONVERTIBLE_CATEGORIES:
        raise InvalidStateTransitionError(
            f"Tickets of category {ticket.category.value} cannot be converted"
        )
    if is_open(ticket.conversion_request):
        raise ConflictingConversionRequestError(
            f"Ticket {ticket.id} already has an undecided conversion request"
        )
    if not reason.strip():
        raise InvalidArgumentError("A conversion request needs a reason")
    return ConversionRequest(
        id=request_id,
        ticket_id=ticket.id,
        proposed_type=proposed_type,
        reason=reason.strip(),
        proposed_by=proposed_by,
        created_at=created_at,
    )


def decide(request: ConversionRequest, side: ApprovalSide, decision: ApprovalStatus) -> ConversionRequest:
    """Record ``decision`` for ``side`` and return the updated request."""

    if decision is ApprovalStatus.PENDING:
        raise InvalidArgumentError("A decision must be approved or rejected")
    if outcome(request) is not ConversionOutcome.OPEN:
        raise InvalidStateTransitionError(f"Conversion request {request.id} is already resolved")
    if request.approval(side) is not ApprovalStatus.PENDING:
        raise InvalidStateTransitionError(
            f"The {side.value} side of conversion request {request.id} was already decided"
        )
    if side is ApprovalSide.INTERNAL:
        return replace(request, internal_approval=decision)
    return replace(request, client_approval=decision)
