"""Health check endpoint."""

from fastapi import APIRouter, Depends

from workshop.infrastructure.api.dependencies import get_engine
from workshop.infrastructure.container import EngineContext

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(engine: EngineContext = Depends(get_engine)):
    """Check API and store connectivity, plus breaker states."""
    try:
        await engine.store.ping()
        store_status = "connected"
    except Exception as e:
        store_status = f"error: {e}"

    return {
        "status": "ok" if store_status == "connected" else "degraded",
        "store": store_status,
        "store_backend": engine.settings.store_backend,
        "breakers": engine.breakers.all_status(),
        "service": "Workshop Resource Allocation Engine",
    }
