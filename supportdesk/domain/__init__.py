"""Support desk domain: entities, state machines and services."""

from .errors import (
    ConcurrentModificationError,
    ConflictingConversionRequestError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ReferencedEntityError,
    SupportDeskError,
)
from .state import InvoiceStatus, TicketStateMachine, TicketStatus

__all__ = [
    "ConcurrentModificationError",
    "ConflictingConversionRequestError",
    "ForbiddenError",
    "InvalidArgumentError",
    "InvalidStateTransitionError",
    "InvoiceStatus",
    "NotFoundError",
    "ReferencedEntityError",
    "SupportDeskError",
    "TicketStateMachine",
    "TicketStatus",
]
