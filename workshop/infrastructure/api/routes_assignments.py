"""Assignment endpoint: automatic technician assignment for a queued request."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from workshop.domain.entities.assignment import NoTechnicianAvailable
from workshop.domain.errors import WorkshopError
from workshop.infrastructure.api.dependencies import get_engine, http_error
from workshop.infrastructure.container import EngineContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post("/{request_id}")
async def assign_request(request_id: str, engine: EngineContext = Depends(get_engine)):
    """Score technicians and assign the winner to *request_id*."""
    try:
        outcome = await engine.assignment.execute(request_id)
    except WorkshopError as e:
        logger.warning("Assignment of %s failed: %s", request_id, e)
        raise http_error(e) from e

    if isinstance(outcome, NoTechnicianAvailable):
        return {"status": "no_technician_available", **outcome.to_event()}
    return {
        "status": "already_assigned" if outcome.already_assigned else "assigned",
        **outcome.to_event(),
    }
