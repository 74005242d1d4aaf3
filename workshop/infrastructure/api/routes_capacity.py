"""Capacity endpoints: current snapshot and cache invalidation."""

from fastapi import APIRouter, Depends

from workshop.domain.errors import WorkshopError
from workshop.infrastructure.api.dependencies import get_engine, http_error
from workshop.infrastructure.container import EngineContext

router = APIRouter(prefix="/capacity", tags=["capacity"])


@router.get("")
async def current_capacity(engine: EngineContext = Depends(get_engine)):
    try:
        snapshot = await engine.capacity.execute()
    except WorkshopError as e:
        raise http_error(e) from e
    return snapshot.to_dict()


@router.delete("/cache")
async def invalidate_capacity_cache(engine: EngineContext = Depends(get_engine)):
    try:
        removed = await engine.capacity.invalidate_cache()
    except WorkshopError as e:
        raise http_error(e) from e
    return {"status": "ok", "invalidated": removed}
