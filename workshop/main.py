"""Workshop engine: FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workshop.config import Settings, settings as default_settings
from workshop.infrastructure.api.routes_assignments import router as assignments_router
from workshop.infrastructure.api.routes_capacity import router as capacity_router
from workshop.infrastructure.api.routes_health import router as health_router
from workshop.infrastructure.api.routes_metrics import router as metrics_router
from workshop.infrastructure.api.routes_scheduling import router as scheduling_router
from workshop.infrastructure.container import EngineContext, build_engine
from workshop.infrastructure.scheduler import PeriodicScheduler

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, engine: EngineContext | None = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        ctx = engine or build_engine(settings)
        app.state.engine = ctx
        try:
            await ctx.store.ping()
            logger.info("Document store connection established")
        except Exception as e:
            logger.warning("Document store not available on startup: %s", e)

        scheduler = PeriodicScheduler.for_engine(ctx)
        app.state.scheduler = scheduler
        if settings.scheduler_enabled:
            await scheduler.start()
        yield
        await scheduler.stop()
        await ctx.aclose()

    app = FastAPI(
        title="Workshop Resource Allocation Engine",
        description="Technician assignment, shop capacity and workload balancing",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:4200",
            "http://127.0.0.1:4200",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")
    app.include_router(assignments_router, prefix="/api")
    app.include_router(capacity_router, prefix="/api")
    app.include_router(scheduling_router, prefix="/api")
    app.include_router(metrics_router, prefix="/api")

    return app


app = create_app()
