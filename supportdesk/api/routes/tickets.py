from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import ProjectionServiceDep, TicketServiceDep
from supportdesk.domain.models import (
    ApprovalStatus,
    ConversionRequest,
    Message,
    ProposedType,
    Ticket,
    TicketCategory,
    TicketPriority,
    TimeEntry,
)
from supportdesk.domain.projections import TicketFilters
from supportdesk.domain.state import TicketStatus

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="")
    priority: TicketPriority = TicketPriority.MEDIUM
    category: TicketCategory = TicketCategory.SUPPORT
    organization_id: str


class StatusChangeRequest(BaseModel):
    status: TicketStatus


class PriorityChangeRequest(BaseModel):
    priority: TicketPriority


class AssignRequest(BaseModel):
    assigned_to: str | None = None


class MessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    is_internal: bool = False


class TimeEntryCreateRequest(BaseModel):
    hours: float
    description: str = Field(default="")
    date: dt.date | None = None


class ConversionCreateRequest(BaseModel):
    proposed_type: ProposedType
    reason: str = Field(..., min_length=1)


class MessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    content: str
    created_at: dt.datetime
    is_internal: bool


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    author_id: str
    hours: float
    description: str
    date: dt.date
    created_at: dt.datetime


class ConversionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    proposed_type: ProposedType
    reason: str
    proposed_by: str
    created_at: dt.datetime
    internal_approval: ApprovalStatus
    client_approval: ApprovalStatus


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory
    organization_id: str
    created_by: str
    assigned_to: str | None
    created_at: dt.datetime
    updated_at: dt.datetime
    hours_worked: float
    messages: list[MessageResponse]
    time_entries: list[TimeEntryResponse]
    conversion_request: ConversionResponse | None


def to_ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse.model_validate(ticket)


def to_conversion_response(request: ConversionRequest) -> ConversionResponse:
    return ConversionResponse.model_validate(request)


def _to_message_response(message: Message) -> MessageResponse:
    return MessageResponse.model_validate(message)


def _to_time_entry_response(entry: TimeEntry) -> TimeEntryResponse:
    return TimeEntryResponse.model_validate(entry)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(payload: TicketCreateRequest, service: TicketServiceDep, user: CurrentUser) -> TicketResponse:
    ticket = await service.create_ticket(
        user,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        category=payload.category,
        organization_id=payload.organization_id,
    )
    return to_ticket_response(ticket)


@router.get("", response_model=list[TicketResponse])
async def list_tickets(
    projections: ProjectionServiceDep,
    user: CurrentUser,
    status_filter: TicketStatus | None = Query(default=None, alias="status"),
    priority: TicketPriority | None = Query(default=None),
    category: TicketCategory | None = Query(default=None),
    organization_id: str | None = Query(default=None),
    assigned_to: str | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200),
) -> list[TicketResponse]:
    filters = TicketFilters(
        status=status_filter,
        priority=priority,
        category=category,
        organization_id=organization_id,
        assigned_to=assigned_to,
        search=search,
    )
    return [to_ticket_response(ticket) for ticket in projections.list_tickets(user, filters)]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep, user: CurrentUser) -> TicketResponse:
    return to_ticket_response(service.get_ticket(user, ticket_id))


@router.put("/{ticket_id}/status", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: StatusChangeRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketResponse:
    ticket = await service.update_status(user, ticket_id, payload.status)
    return to_ticket_response(ticket)


@router.put("/{ticket_id}/priority", response_model=TicketResponse)
async def change_ticket_priority(
    ticket_id: str,
    payload: PriorityChangeRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketResponse:
    ticket = await service.update_priority(user, ticket_id, payload.priority)
    return to_ticket_response(ticket)


@router.put("/{ticket_id}/assignee", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: str,
    payload: AssignRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TicketResponse:
    ticket = await service.assign_ticket(user, ticket_id, payload.assigned_to)
    return to_ticket_response(ticket)


@router.post("/{ticket_id}/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def add_message(
    ticket_id: str,
    payload: MessageCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> MessageResponse:
    message = await service.add_message(user, ticket_id, content=payload.content, is_internal=payload.is_internal)
    return _to_message_response(message)


@router.post("/{ticket_id}/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
async def add_time_entry(
    ticket_id: str,
    payload: TimeEntryCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> TimeEntryResponse:
    entry = await service.add_time_entry(
        user,
        ticket_id,
        hours=payload.hours,
        description=payload.description,
        entry_date=payload.date,
    )
    return _to_time_entry_response(entry)


@router.post("/{ticket_id}/conversion", response_model=ConversionResponse, status_code=status.HTTP_201_CREATED)
async def request_conversion(
    ticket_id: str,
    payload: ConversionCreateRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> ConversionResponse:
    request = await service.request_conversion(
        user,
        ticket_id,
        proposed_type=payload.proposed_type,
        reason=payload.reason,
    )
    return to_conversion_response(request)
