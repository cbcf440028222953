"""Organization and user management."""

from __future__ import annotations

import logging
import uuid
from contextlib import AsyncExitStack
from dataclasses import replace

from opentelemetry import trace

from supportdesk.security.policy import Target, authorize, can_view_user, require
from supportdesk.security.roles import INTERNAL_ROLES, Action, Role

from .activity import new_activity
from .clock import Clock, advance, utcnow
from .errors import InvalidArgumentError, NotFoundError, ReferencedEntityError
from .models import ActivityType, Organization, OrganizationPlan, User
from .state import TicketStateMachine
from .store import AggregateStore, StoreChange

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def initials(name: str) -> str:
    """Avatar label: the upper-cased initials of the first two name parts."""

    letters = [part[0] for part in name.split() if part]
    return "".join(letters[:2]).upper()


def _clean_email(email: str) -> str:
    email = email.strip()
    local, _, domain = email.partition("@")
    if not local or not domain:
        raise InvalidArgumentError(f"Invalid email address: {email!r}")
    return email


def _clean_name(name: str, what: str) -> str:
    name = name.strip()
    if not name:
        raise InvalidArgumentError(f"{what} name must not be empty")
    return name


class DirectoryService:
    """CRUD for organizations and users.

    Mutations serialise on the store's catalog lock. Users are never removed:
    deleting one clears ``is_active`` and releases their open assignments.
    """

    def __init__(self, store: AggregateStore, *, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or utcnow

    # Organizations

    def list_organizations(self, actor: User) -> list[Organization]:
        snapshot = self._store.snapshot()
        organizations = [
            organization
            for organization in snapshot.organizations.values()
            if authorize(actor, Action.VIEW_ORGANIZATIONS, Target(organization_id=organization.id))
        ]
        return sorted(organizations, key=lambda organization: organization.name.lower())

    def get_organization(self, actor: User, organization_id: str) -> Organization:
        organization = self._store.get_organization(organization_id)
        if organization is None or not authorize(
            actor, Action.VIEW_ORGANIZATIONS, Target(organization_id=organization_id)
        ):
            raise NotFoundError(f"Organization {organization_id} not found")
        return organization

    async def create_organization(
        self,
        actor: User,
        *,
        name: str,
        plan: OrganizationPlan,
        contact_email: str,
    ) -> Organization:
        require(actor, Action.MANAGE_ORGANIZATIONS)
        organization = Organization(
            id=str(uuid.uuid4()),
            name=_clean_name(name, "Organization"),
            plan=plan,
            contact_email=_clean_email(contact_email),
            created_at=advance(self._clock),
        )
        async with self._store.catalog_lock:
            await self._store.commit(StoreChange(organizations=[organization]))
        logger.info("Organization %s created by %s", organization.id, actor.id)
        return organization

    async def update_organization(
        self,
        actor: User,
        organization_id: str,
        *,
        name: str | None = None,
        plan: OrganizationPlan | None = None,
        contact_email: str | None = None,
    ) -> Organization:
        require(actor, Action.MANAGE_ORGANIZATIONS)
        async with self._store.catalog_lock:
            organization = self._store.get_organization(organization_id)
            if organization is None:
                raise NotFoundError(f"Organization {organization_id} not found")
            updated = replace(
                organization,
                name=organization.name if name is None else _clean_name(name, "Organization"),
                plan=plan or organization.plan,
                contact_email=organization.contact_email if contact_email is None else _clean_email(contact_email),
            )
            if updated != organization:
                await self._store.commit(StoreChange(organizations=[updated]))
        return updated

    async def delete_organization(self, actor: User, organization_id: str) -> None:
        """Remove an organization that nothing references any more."""

        require(actor, Action.MANAGE_ORGANIZATIONS)
        with tracer.start_as_current_span("directory.delete_organization"):
            async with self._store.catalog_lock:
                snapshot = self._store.snapshot()
                if organization_id not in snapshot.organizations:
                    raise NotFoundError(f"Organization {organization_id} not found")
                references = {
                    "tickets": sum(1 for t in snapshot.tickets.values() if t.organization_id == organization_id),
                    "users": sum(1 for u in snapshot.users.values() if u.organization_id == organization_id),
                    "invoices": sum(1 for i in snapshot.invoices.values() if i.organization_id == organization_id),
                }
                held = ", ".join(f"{count} {kind}" for kind, count in references.items() if count)
                if held:
                    raise ReferencedEntityError(f"Organization {organization_id} is still referenced by {held}")
                await self._store.commit(StoreChange(removed_organizations=[organization_id]))
        logger.info("Organization %s deleted by %s", organization_id, actor.id)

    # Users

    def list_users(self, actor: User) -> list[User]:
        users = [user for user in self._store.snapshot().users.values() if can_view_user(actor, user)]
        return sorted(users, key=lambda user: user.name.lower())

    def get_user(self, actor: User, user_id: str) -> User:
        user = self._store.get_user(user_id)
        if user is None or not can_view_user(actor, user):
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _check_membership(self, role: Role, organization_id: str | None) -> str | None:
        if role is not Role.CLIENT:
            return None
        if organization_id is None:
            raise InvalidArgumentError("Client users must belong to an organization")
        if self._store.get_organization(organization_id) is None:
            raise InvalidArgumentError(f"Organization {organization_id} does not exist")
        return organization_id

    def _check_email_free(self, email: str, *, user_id: str | None = None) -> None:
        wanted = email.lower()
        for user in self._store.snapshot().users.values():
            if user.email.lower() == wanted and user.id != user_id:
                raise InvalidArgumentError(f"Email {email} is already registered")

    async def create_user(
        self,
        actor: User,
        *,
        name: str,
        email: str,
        role: Role,
        organization_id: str | None = None,
        phone: str | None = None,
    ) -> User:
        require(actor, Action.MANAGE_USERS)
        name = _clean_name(name, "User")
        email = _clean_email(email)
        async with self._store.catalog_lock:
            self._check_email_free(email)
            user = User(
                id=str(uuid.uuid4()),
                name=name,
                email=email,
                role=role,
                organization_id=self._check_membership(role, organization_id),
                avatar=initials(name),
                created_at=advance(self._clock),
                phone=phone,
            )
            await self._store.commit(StoreChange(users=[user]))
        logger.info("User %s (%s) created by %s", user.id, role.value, actor.id)
        return user

    async def _release_assignments(
        self,
        stack: AsyncExitStack,
        actor: User,
        user: User,
        change: StoreChange,
        reason: str,
    ) -> None:
        """Unassign ``user`` from their unfinished tickets within ``change``.

        The caller holds the catalog lock; ticket locks are entered on ``stack``.
        """

        assigned = sorted(
            ticket.id
            for ticket in self._store.snapshot().tickets.values()
            if ticket.assigned_to == user.id and not TicketStateMachine.is_terminal(ticket.status)
        )
        # sorted acquisition keeps concurrent releases deadlock free
        for ticket_id in assigned:
            await stack.enter_async_context(self._store.ticket_lock(ticket_id))

        for ticket_id in assigned:
            ticket = self._store.get_ticket(ticket_id)
            if ticket is None or ticket.assigned_to != user.id:
                continue
            updated = replace(
                ticket,
                assigned_to=None,
                updated_at=advance(self._clock, ticket.updated_at),
                revision=ticket.revision + 1,
            )
            change.save_ticket(updated, previous=ticket)
            change.activities.append(
                new_activity(
                    ActivityType.TICKET_UPDATED,
                    f"Unassigned from {user.name} ({reason})",
                    actor_id=actor.id,
                    created_at=updated.updated_at,
                    ticket_id=ticket_id,
                )
            )

    async def update_user(
        self,
        actor: User,
        user_id: str,
        *,
        name: str | None = None,
        email: str | None = None,
        role: Role | None = None,
        organization_id: str | None = None,
        phone: str | None = None,
    ) -> User:
        """Admin edit of any user.

        Moving to an internal role drops the organization. Moving to ``client``
        releases the user's unfinished ticket assignments in the same change.
        """

        require(actor, Action.MANAGE_USERS)
        async with self._store.catalog_lock:
            user = self._store.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            new_role = role or user.role
            new_name = user.name if name is None else _clean_name(name, "User")
            new_email = user.email
            if email is not None:
                new_email = _clean_email(email)
                self._check_email_free(new_email, user_id=user_id)
            updated = replace(
                user,
                name=new_name,
                avatar=initials(new_name),
                email=new_email,
                role=new_role,
                organization_id=self._check_membership(new_role, organization_id or user.organization_id),
                phone=user.phone if phone is None else (phone.strip() or None),
            )
            if updated == user:
                return user

            async with AsyncExitStack() as stack:
                change = StoreChange(users=[updated])
                if user.role in INTERNAL_ROLES and new_role not in INTERNAL_ROLES:
                    await self._release_assignments(stack, actor, user, change, "no longer on the support team")
                await self._store.commit(change)

        if change.tickets:
            logger.info("User %s moved to %s; %d tickets unassigned", user_id, new_role.value, len(change.tickets))
        return updated

    async def update_profile(self, actor: User, *, name: str | None = None, phone: str | None = None) -> User:
        require(actor, Action.UPDATE_PROFILE, Target(user_id=actor.id))
        async with self._store.catalog_lock:
            user = self._store.get_user(actor.id)
            if user is None:
                raise NotFoundError(f"User {actor.id} not found")
            new_name = user.name if name is None else _clean_name(name, "User")
            updated = replace(
                user,
                name=new_name,
                avatar=initials(new_name),
                phone=user.phone if phone is None else (phone.strip() or None),
            )
            if updated != user:
                await self._store.commit(StoreChange(users=[updated]))
        return updated

    async def delete_user(self, actor: User, user_id: str) -> User:
        """Deactivate a user and unassign their unfinished tickets in one change."""

        require(actor, Action.MANAGE_USERS)
        if user_id == actor.id:
            raise InvalidArgumentError("Administrators cannot delete their own account")

        with tracer.start_as_current_span("directory.delete_user"):
            async with self._store.catalog_lock:
                user = self._store.get_user(user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")
                if not user.is_active:
                    return user

                async with AsyncExitStack() as stack:
                    deactivated = replace(user, is_active=False)
                    change = StoreChange(users=[deactivated])
                    await self._release_assignments(stack, actor, user, change, "account deactivated")
                    await self._store.commit(change)

        logger.info("User %s deactivated by %s; %d tickets unassigned", user_id, actor.id, len(change.tickets))
        return deactivated
