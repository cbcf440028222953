"""Translation of domain errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from supportdesk.domain.errors import (
    ConcurrentModificationError,
    ConflictingConversionRequestError,
    ForbiddenError,
    InvalidArgumentError,
    InvalidStateTransitionError,
    NotFoundError,
    ReferencedEntityError,
    SupportDeskError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[SupportDeskError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    ConflictingConversionRequestError: status.HTTP_409_CONFLICT,
    InvalidArgumentError: status.HTTP_400_BAD_REQUEST,
    ReferencedEntityError: status.HTTP_409_CONFLICT,
    ConcurrentModificationError: status.HTTP_409_CONFLICT,
}


def status_code_for(exc: SupportDeskError) -> int:
    for error_type in type(exc).__mro__:
        code = STATUS_CODES.get(error_type)
        if code is not None:
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def handle_domain_error(request: Request, exc: SupportDeskError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error("Unmapped domain error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SupportDeskError, handle_domain_error)
