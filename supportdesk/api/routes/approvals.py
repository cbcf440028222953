from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import TicketServiceDep
from supportdesk.domain.models import ApprovalSide, ApprovalStatus

from .tickets import ConversionResponse, to_conversion_response

router = APIRouter(prefix="/api/approvals", tags=["approvals"])


class DecisionRequest(BaseModel):
    side: ApprovalSide
    decision: ApprovalStatus


@router.get("", response_model=list[ConversionResponse])
async def list_open_approvals(service: TicketServiceDep, user: CurrentUser) -> list[ConversionResponse]:
    return [to_conversion_response(request) for request in service.list_approvals(user)]


@router.post("/{request_id}/decision", response_model=ConversionResponse)
async def decide_approval(
    request_id: str,
    payload: DecisionRequest,
    service: TicketServiceDep,
    user: CurrentUser,
) -> ConversionResponse:
    request = await service.decide_approval(user, request_id, side=payload.side, decision=payload.decision)
    return to_conversion_response(request)
