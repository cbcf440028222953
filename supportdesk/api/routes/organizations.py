from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import DirectoryServiceDep, ProjectionServiceDep
from supportdesk.domain.models import Organization, OrganizationPlan

from .tickets import TicketResponse, to_ticket_response

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


class OrganizationCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    plan: OrganizationPlan = OrganizationPlan.STARTER
    contact_email: str = Field(..., min_length=3)


class OrganizationUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    plan: OrganizationPlan | None = None
    contact_email: str | None = Field(default=None, min_length=3)

    def ensure_payload(self) -> None:
        if self.name is None and self.plan is None and self.contact_email is None:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class OrganizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    plan: OrganizationPlan
    contact_email: str
    created_at: datetime


def _to_response(organization: Organization) -> OrganizationResponse:
    return OrganizationResponse.model_validate(organization)


@router.get("", response_model=list[OrganizationResponse])
async def list_organizations(service: DirectoryServiceDep, user: CurrentUser) -> list[OrganizationResponse]:
    return [_to_response(organization) for organization in service.list_organizations(user)]


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreateRequest,
    service: DirectoryServiceDep,
    user: CurrentUser,
) -> OrganizationResponse:
    organization = await service.create_organization(
        user,
        name=payload.name,
        plan=payload.plan,
        contact_email=payload.contact_email,
    )
    return _to_response(organization)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(organization_id: str, service: DirectoryServiceDep, user: CurrentUser) -> OrganizationResponse:
    return _to_response(service.get_organization(user, organization_id))


@router.put("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    payload: OrganizationUpdateRequest,
    service: DirectoryServiceDep,
    user: CurrentUser,
) -> OrganizationResponse:
    payload.ensure_payload()
    organization = await service.update_organization(
        user,
        organization_id,
        name=payload.name,
        plan=payload.plan,
        contact_email=payload.contact_email,
    )
    return _to_response(organization)


@router.delete("/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_organization(organization_id: str, service: DirectoryServiceDep, user: CurrentUser) -> None:
    await service.delete_organization(user, organization_id)


@router.get("/{organization_id}/tickets", response_model=list[TicketResponse])
async def organization_tickets(
    organization_id: str,
    projections: ProjectionServiceDep,
    user: CurrentUser,
) -> list[TicketResponse]:
    return [to_ticket_response(ticket) for ticket in projections.tickets_for_organization(user, organization_id)]
