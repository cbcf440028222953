from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict

from supportdesk.dependencies.auth import CurrentUser
from supportdesk.dependencies.services import ProjectionServiceDep
from supportdesk.domain.models import ActivityType

router = APIRouter(prefix="/api", tags=["dashboard"])


class DashboardStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_tickets: int
    open_tickets: int
    in_progress: int
    awaiting_client: int
    resolved: int
    closed: int
    unassigned: int
    pending_approvals: int
    total_hours: float
    avg_response_hours: float | None = None


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: ActivityType
    description: str
    actor_id: str
    ticket_id: str | None
    created_at: datetime
    metadata: dict[str, Any]


@router.get("/dashboard/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(projections: ProjectionServiceDep, user: CurrentUser) -> DashboardStatsResponse:
    return DashboardStatsResponse.model_validate(projections.dashboard_stats(user))


@router.get("/activities", response_model=list[ActivityResponse])
async def list_activities(
    projections: ProjectionServiceDep,
    user: CurrentUser,
    limit: int | None = Query(default=None, ge=1, le=500),
) -> list[ActivityResponse]:
    return [ActivityResponse.model_validate(item) for item in projections.activities_for(user, limit)]
