from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Mapping, Protocol

from .models import ActivityItem, ActivityType

logger = logging.getLogger(__name__)


class ActivitySink(Protocol):
    """Receives activities after they have been committed."""

    async def publish(self, activity: ActivityItem) -> None:
        ...


class LoggingActivitySink:
    """Default sink that writes committed activities to the log."""

    def __init__(self, logger_: logging.Logger | None = None) -> None:
        self._logger = logger_ or logger

    async def publish(self, activity: ActivityItem) -> None:
        self._logger.info(
            "activity %s by %s on %s: %s",
            activity.type.value,
            activity.actor_id,
            activity.ticket_id or "-",
            activity.description,
        )


def new_activity(
    activity_type: ActivityType,
    description: str,
    *,
    actor_id: str,
    created_at: datetime,
    ticket_id: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> ActivityItem:
    return ActivityItem(
        id=str(uuid.uuid4()),
        type=activity_type,
        description=description,
        actor_id=actor_id,
        created_at=created_at,
        ticket_id=ticket_id,
        metadata=dict(metadata or {}),
    )
