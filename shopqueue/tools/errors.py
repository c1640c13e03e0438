from __future__ import annotations

import logging

from fastapi import HTTPException

from shopqueue.services.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ServiceError,
    StoreUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def to_http_exception(exc: ServiceError) -> HTTPException:
    """Translate a service failure into the HTTP status the UI expects."""

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=409,
            detail={"message": str(exc), "suggested_slots": exc.suggested_slots},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "current_status": exc.current_status,
                "event": exc.event,
            },
        )
    if isinstance(exc, StoreUnavailableError):
        logger.warning("Record store unavailable: %s", exc)
        return HTTPException(status_code=503, detail=str(exc))
    logger.error("Unhandled service error: %s", exc)
    return HTTPException(status_code=502, detail=str(exc))
