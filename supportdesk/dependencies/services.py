from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from supportdesk.domain.billing import BillingService
from supportdesk.domain.directory import DirectoryService
from supportdesk.domain.projections import ProjectionService
from supportdesk.domain.tickets import TicketService


def _service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} service is not configured")
    return service


async def get_ticket_service(request: Request) -> TicketService:
    return _service(request, "ticket_service", "Ticket")


async def get_directory_service(request: Request) -> DirectoryService:
    return _service(request, "directory_service", "Directory")


async def get_billing_service(request: Request) -> BillingService:
    return _service(request, "billing_service", "Billing")


async def get_projection_service(request: Request) -> ProjectionService:
    return _service(request, "projection_service", "Projection")


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
DirectoryServiceDep = Annotated[DirectoryService, Depends(get_directory_service)]
BillingServiceDep = Annotated[BillingService, Depends(get_billing_service)]
ProjectionServiceDep = Annotated[ProjectionService, Depends(get_projection_service)]
