from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import DirectoryServiceDep, ProjectionServiceDep
from supportdesk.domain.models import User
from supportdesk.security.roles import Role

from .tickets import TicketResponse, to_ticket_response

router = APIRouter(prefix="/api/users", tags=["users"])
profile_router = APIRouter(prefix="/api/auth", tags=["auth"])


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=320)
    role: Role
    organization_id: str | None = None
    phone: str | None = Field(default=None, max_length=50)


class UserUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    email: str | None = Field(default=None, min_length=3, max_length=320)
    role: Role | None = None
    organization_id: str | None = None
    phone: str | None = Field(default=None, max_length=50)


class ProfileUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=50)

    def ensure_payload(self) -> None:
        if self.name is None and self.phone is None:
            raise HTTPException(status_code=400, detail="No fields provided for update")


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    role: Role
    organization_id: str | None
    avatar: str
    phone: str | None
    is_active: bool
    created_at: datetime


def _to_response(user: User) -> UserResponse:
    return UserResponse.model_validate(user)


@router.get("", response_model=list[UserResponse])
async def list_users(service: DirectoryServiceDep, user: CurrentUser) -> list[UserResponse]:
    return [_to_response(item) for item in service.list_users(user)]


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreateRequest, service: DirectoryServiceDep, user: CurrentUser) -> UserResponse:
    created = await service.create_user(
        user,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        organization_id=payload.organization_id,
        phone=payload.phone,
    )
    return _to_response(created)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, service: DirectoryServiceDep, user: CurrentUser) -> UserResponse:
    return _to_response(service.get_user(user, user_id))


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: str,
    payload: UserUpdateRequest,
    service: DirectoryServiceDep,
    user: CurrentUser,
) -> UserResponse:
    updated = await service.update_user(
        user,
        user_id,
        name=payload.name,
        email=payload.email,
        role=payload.role,
        organization_id=payload.organization_id,
        phone=payload.phone,
    )
    return _to_response(updated)


@router.delete("/{user_id}", response_model=UserResponse)
async def delete_user(user_id: str, service: DirectoryServiceDep, user: CurrentUser) -> UserResponse:
    return _to_response(await service.delete_user(user, user_id))


@router.get("/{user_id}/tickets", response_model=list[TicketResponse])
async def assigned_tickets(user_id: str, projections: ProjectionServiceDep, user: CurrentUser) -> list[TicketResponse]:
    return [to_ticket_response(ticket) for ticket in projections.tickets_for_assignee(user, user_id)]


@profile_router.get("/me", response_model=UserResponse)
async def read_profile(user: CurrentUser) -> UserResponse:
    return _to_response(user)


@profile_router.put("/me", response_model=UserResponse)
async def update_profile(payload: ProfileUpdateRequest, service: DirectoryServiceDep, user: CurrentUser) -> UserResponse:
    payload.ensure_payload()
    return _to_response(await service.update_profile(user, name=payload.name, phone=payload.phone))
