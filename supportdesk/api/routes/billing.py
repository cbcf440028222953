from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import BillingServiceDep
from supportdesk.domain.billing import PeriodSummary
from supportdesk.domain.models import Invoice
from supportdesk.domain.state import InvoiceStatus

router = APIRouter(prefix="/api/invoices", tags=["invoices"])
settings_router = APIRouter(prefix="/api/billing", tags=["billing"])


class InvoiceCreateRequest(BaseModel):
    organization_id: str
    month: int
    year: int
    tickets_closed: int | None = None
    total_hours: float | None = None
    rate_per_hour: float | None = None

    def summary(self) -> PeriodSummary | None:
        if self.tickets_closed is None and self.total_hours is None:
            return None
        return PeriodSummary(tickets_closed=self.tickets_closed or 0, total_hours=self.total_hours or 0.0)


class InvoiceStatusRequest(BaseModel):
    status: InvoiceStatus


class RateRequest(BaseModel):
    rate_per_hour: float


class RateResponse(BaseModel):
    rate_per_hour: float


class PeriodSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    organization_id: str
    month: int
    year: int
    tickets_closed: int
    total_hours: float


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    month: int
    year: int
    tickets_closed: int
    total_hours: float
    rate_per_hour: float
    total_amount: float
    status: InvoiceStatus
    created_at: datetime


def _to_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse.model_validate(invoice)


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    service: BillingServiceDep,
    user: CurrentUser,
    organization_id: str | None = Query(default=None),
) -> list[InvoiceResponse]:
    return [_to_response(invoice) for invoice in service.list_invoices(user, organization_id)]


@router.get("/summary", response_model=PeriodSummaryResponse)
async def summarize_period(
    service: BillingServiceDep,
    user: CurrentUser,
    organization_id: str = Query(...),
    month: int = Query(...),
    year: int = Query(...),
) -> PeriodSummaryResponse:
    summary = service.summarize_period(user, organization_id, month=month, year=year)
    return PeriodSummaryResponse(
        organization_id=organization_id,
        month=month,
        year=year,
        tickets_closed=summary.tickets_closed,
        total_hours=summary.total_hours,
    )


@router.post("", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(payload: InvoiceCreateRequest, service: BillingServiceDep, user: CurrentUser) -> InvoiceResponse:
    invoice = await service.create_invoice(
        user,
        payload.organization_id,
        month=payload.month,
        year=payload.year,
        summary=payload.summary(),
        rate_per_hour=payload.rate_per_hour,
    )
    return _to_response(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(invoice_id: str, service: BillingServiceDep, user: CurrentUser) -> InvoiceResponse:
    return _to_response(service.get_invoice(user, invoice_id))


@router.put("/{invoice_id}/status", response_model=InvoiceResponse)
async def update_invoice_status(
    invoice_id: str,
    payload: InvoiceStatusRequest,
    service: BillingServiceDep,
    user: CurrentUser,
) -> InvoiceResponse:
    return _to_response(await service.update_invoice_status(user, invoice_id, payload.status))


@settings_router.get("/rate", response_model=RateResponse)
async def read_rate(service: BillingServiceDep, _: CurrentUser) -> RateResponse:
    return RateResponse(rate_per_hour=service.rate_per_hour)


@settings_router.put("/rate", response_model=RateResponse)
async def update_rate(payload: RateRequest, service: BillingServiceDep, user: CurrentUser) -> RateResponse:
    return RateResponse(rate_per_hour=service.set_rate_per_hour(user, payload.rate_per_hour))
