from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest_asyncio

from supportdesk.domain.billing import BillingService
from supportdesk.domain.directory import DirectoryService, initials
from supportdesk.domain.models import Organization, OrganizationPlan, User
from supportdesk.domain.projections import ProjectionService
from supportdesk.domain.store import AggregateStore, StoreChange
from supportdesk.domain.tickets import TicketService
from supportdesk.security.roles import Role

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class SteppingClock:
    """Deterministic clock that moves one step forward on every read."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(minutes=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def make_user(
    user_id: str,
    role: Role,
    organization_id: str | None = None,
    *,
    name: str | None = None,
    is_active: bool = True,
) -> User:
    name = name or user_id.replace("-", " ").title()
    return User(
        id=user_id,
        name=name,
        email=f"{user_id}@example.test",
        role=role,
        organization_id=organization_id,
        avatar=initials(name),
        created_at=START,
        is_active=is_active,
    )


def make_organization(organization_id: str, name: str) -> Organization:
    return Organization(
        id=organization_id,
        name=name,
        plan=OrganizationPlan.PROFESSIONAL,
        contact_email=f"support@{organization_id}.test",
        created_at=START,
    )


@dataclass
class Desk:
    store: AggregateStore
    clock: SteppingClock
    tickets: TicketService
    directory: DirectoryService
    billing: BillingService
    projections: ProjectionService
    org_a: Organization
    org_b: Organization
    admin: User
    lead: User
    staff: User
    client_a: User
    client_b: User


async def build_desk(store: AggregateStore | None = None) -> Desk:
    clock = SteppingClock()
    store = store or AggregateStore()
    org_a = make_organization("org-a", "Acme")
    org_b = make_organization("org-b", "Globex")
    admin = make_user("admin", Role.ADMIN, name="Ada Admin")
    lead = make_user("lead", Role.SUPPORT_LEAD, name="Lee Lead")
    staff = make_user("staff", Role.SUPPORT_STAFF, name="Sam Staff")
    client_a = make_user("client-a", Role.CLIENT, "org-a", name="Carla Client")
    client_b = make_user("client-b", Role.CLIENT, "org-b", name="Bob Buyer")
    await store.commit(
        StoreChange(
            organizations=[org_a, org_b],
            users=[admin, lead, staff, client_a, client_b],
        )
    )
    return Desk(
        store=store,
        clock=clock,
        tickets=TicketService(store, clock=clock),
        directory=DirectoryService(store, clock=clock),
        billing=BillingService(store, rate_per_hour=100.0, clock=clock),
        projections=ProjectionService(store, activity_limit=50),
        org_a=org_a,
        org_b=org_b,
        admin=admin,
        lead=lead,
        staff=staff,
        client_a=client_a,
        client_b=client_b,
    )


@pytest_asyncio.fixture
async def desk() -> Desk:
    return await build_desk()
