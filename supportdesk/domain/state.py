from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence

from .errors import InvalidStateTransitionError


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "open"
    IN_PROGRESS = "in-progress"
    AWAITING_CLIENT = "awaiting-client"
    RESOLVED = "resolved"
    CLOSED = "closed"


class TicketStateMachine:
    """Validate ticket lifecycle transitions.

    Tickets only move forward along ``open -> in-progress -> awaiting-client ->
    resolved -> closed``; intermediate states may be skipped. There is no
    reopening edge, so ``resolved`` and ``closed`` are terminal for field edits.
    """

    _TRANSITIONS: Mapping[TicketStatus, Sequence[TicketStatus]] = {
        TicketStatus.OPEN: (
            TicketStatus.IN_PROGRESS,
            TicketStatus.AWAITING_CLIENT,
            TicketStatus.RESOLVED,
            TicketStatus.CLOSED,
        ),
        TicketStatus.IN_PROGRESS: (TicketStatus.AWAITING_CLIENT, TicketStatus.RESOLVED, TicketStatus.CLOSED),
        TicketStatus.AWAITING_CLIENT: (TicketStatus.RESOLVED, TicketStatus.CLOSED),
        TicketStatus.RESOLVED: (TicketStatus.CLOSED,),
        TicketStatus.CLOSED: (),
    }

    _TERMINAL: frozenset[TicketStatus] = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def can_transition(cls, current: TicketStatus, target: TicketStatus) -> bool:
        return target in cls._TRANSITIONS.get(current, ())

    @classmethod
    def assert_transition(cls, current: TicketStatus, target: TicketStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidStateTransitionError(
                f"Invalid ticket status transition: {current.value} -> {target.value}"
            )

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in cls._TERMINAL

    @classmethod
    def assert_editable(cls, status: TicketStatus) -> None:
        if cls.is_terminal(status):
            raise InvalidStateTransitionError(f"Ticket is {status.value}; its fields can no longer change")


class InvoiceStatus(str, Enum):
    """Billing states of an invoice."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"


class InvoiceStateMachine:
    """Invoices move forward only: draft -> sent -> paid."""

    _TRANSITIONS: Mapping[InvoiceStatus, Sequence[InvoiceStatus]] = {
        InvoiceStatus.DRAFT: (InvoiceStatus.SENT, InvoiceStatus.PAID),
        InvoiceStatus.SENT: (InvoiceStatus.PAID,),
        InvoiceStatus.PAID: (),
    }

    @classmethod
    def initial_state(cls) -> InvoiceStatus:
        return InvoiceStatus.DRAFT

    @classmethod
    def can_transition(cls, current: InvoiceStatus, target: InvoiceStatus) -> bool:
        return target in cls._TRANSITIONS.get(current, ())

    @classmethod
    def assert_transition(cls, current: InvoiceStatus, target: InvoiceStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidStateTransitionError(
                f"Invalid invoice status transition: {current.value} -> {target.value}"
            )
