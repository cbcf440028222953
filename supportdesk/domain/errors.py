"""Errors raised by the SupportDesk domain core."""

from __future__ import annotations


class SupportDeskError(RuntimeError):
    """Base error for domain operations."""


class NotFoundError(SupportDeskError):
    """Raised when an entity id does not resolve, or is outside the actor's scope."""


class ForbiddenError(SupportDeskError):
    """Raised when the authorization policy denies an action."""


class InvalidStateTransitionError(SupportDeskError):
    """Raised when a status or approval transition is not permitted."""


class ConflictingConversionRequestError(SupportDeskError):
    """Raised when a ticket already carries an undecided conversion request."""


class InvalidArgumentError(SupportDeskError, ValueError):
    """Raised for malformed input."""


class ReferencedEntityError(SupportDeskError):
    """Raised when deleting an entity that other records still reference."""


class ConcurrentModificationError(SupportDeskError):
    """Raised when a persisted ticket revision no longer matches the expected one."""
