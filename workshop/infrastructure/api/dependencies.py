"""FastAPI dependency injection: hands the app's EngineContext to routes."""

from __future__ import annotations

from fastapi import HTTPException, Request

from workshop.domain.errors import (
    AssignmentFailedError,
    AssignmentInProgressError,
    CircuitOpenError,
    NotFoundError,
    RateLimitExceeded,
    TransientStoreError,
    ValidationError,
    WorkshopError,
)
from workshop.infrastructure.container import EngineContext

_STATUS_BY_ERROR: list[tuple[type[WorkshopError], int]] = [
    (NotFoundError, 404),
    (ValidationError, 422),
    (RateLimitExceeded, 429),
    (CircuitOpenError, 503),
    (TransientStoreError, 503),
    (AssignmentInProgressError, 409),
    (AssignmentFailedError, 500),
]


def get_engine(request: Request) -> EngineContext:
    return request.app.state.engine


def http_error(exc: WorkshopError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
