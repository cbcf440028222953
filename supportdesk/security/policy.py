"""Authorization decisions for every mutating and reading operation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from supportdesk.domain.errors import ForbiddenError
from supportdesk.domain.models import ApprovalSide, Ticket, User

from .roles import CAPABILITIES, Action, Scope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    """Attributes of the entity an action is aimed at."""

    organization_id: str | None = None
    user_id: str | None = None

    @classmethod
    def for_ticket(cls, ticket: Ticket) -> "Target":
        return cls(organization_id=ticket.organization_id)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def authorize(actor: User, action: Action, target: Target | None = None) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``target``.

    The result depends only on the arguments: the actor's role, active flag and
    organization membership, the action and the target's attributes.
    """

    target = target or Target()
    if not actor.is_active:
        return Decision(False, "User account is deactivated")

    scope = CAPABILITIES.get(action, {}).get(actor.role)
    if scope is None:
        return Decision(False, f"Role {actor.role.value} may not {action.value.replace('_', ' ')}")

    if scope is Scope.ANY:
        return ALLOW
    if scope is Scope.SELF:
        if target.user_id is not None and target.user_id == actor.id:
            return ALLOW
        return Decision(False, "Only the account owner may do this")
    if actor.organization_id is not None and target.organization_id == actor.organization_id:
        return ALLOW
    return Decision(False, "Target belongs to another organization")


def require(actor: User, action: Action, target: Target | None = None) -> None:
    """Raise :class:`ForbiddenError` unless ``actor`` is authorized."""

    decision = authorize(actor, action, target)
    if not decision:
        logger.warning("Denied %s for user %s: %s", action.value, actor.id, decision.reason)
        raise ForbiddenError(decision.reason)


def approval_action(side: ApprovalSide) -> Action:
    if side is ApprovalSide.INTERNAL:
        return Action.DECIDE_INTERNAL_APPROVAL
    return Action.DECIDE_CLIENT_APPROVAL


def can_view_ticket(actor: User, ticket: Ticket) -> bool:
    return authorize(actor, Action.VIEW_TICKET, Target.for_ticket(ticket)).allowed


def visible_to(actor: User, tickets: Iterable[Ticket]) -> list[Ticket]:
    return [ticket for ticket in tickets if can_view_ticket(actor, ticket)]


def can_view_user(actor: User, user: User) -> bool:
    if authorize(actor, Action.VIEW_USERS, Target(organization_id=user.organization_id)).allowed:
        return True
    # clients also see the support team working their tickets
    return actor.is_active and actor.is_client and not user.is_client and user.is_active
