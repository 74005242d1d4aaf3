"""CalculateTechnicianMetricsUseCase: monthly workshop and per-technician performance."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from workshop.application.mappers import WORK_ORDERS, work_order_from_document
from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore, where
from workshop.application.queries import load_appointments, load_technicians, month_bounds
from workshop.application.resilience.cache import CacheService
from workshop.application.resilience.circuit_breaker import CircuitBreakerRegistry
from workshop.application.resilience.rate_limiter import RateLimiter
from workshop.domain.errors import CacheWriteError, CircuitOpenError, RateLimitExceeded
from workshop.domain.value_objects.enums import AppointmentStatus, WorkOrderStatus

logger = logging.getLogger(__name__)

OPERATION = "calculateMonthlyMetrics"
CACHE_PREFIX = "technician_metrics"
# Completed work orders that count as 100% efficiency for one month
EFFICIENCY_TARGET = 10


def _rate(part: int, whole: int) -> float:
    return part / whole * 100.0 if whole > 0 else 0.0


class CalculateTechnicianMetricsUseCase:
    def __init__(
        self,
        store: DocumentStore,
        cache: CacheService,
        rate_limiter: RateLimiter,
        breakers: CircuitBreakerRegistry,
        metrics: MetricsCollector,
        tz: ZoneInfo | None = None,
        utcnow: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._cache = cache
        self._limiter = rate_limiter
        self._breakers = breakers
        self._metrics = metrics
        self._tz = tz or ZoneInfo("America/Bogota")
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    async def execute(self) -> dict[str, Any]:
        """Metrics for the current month, cached under ``technician_metrics_YYYY-MM``."""
        self._metrics.increment("technician_metrics.calculate")
        month_key, start, end = month_bounds(self._utcnow(), self._tz)
        cache_key = f"{CACHE_PREFIX}_{month_key}"

        if not await self._limiter.try_acquire(OPERATION):
            cached = await self._cache.get(cache_key)
            if cached is not None:
                self._metrics.increment("technician_metrics.rate_limited_cache_hit")
                logger.info("Rate limited, returning cached technician metrics for %s", month_key)
                return cached
            self._metrics.record_error("technician_metrics.rate_limited_no_cache")
            raise RateLimitExceeded(f"{OPERATION}: rate limit exceeded and no cached result")

        cached = await self._cache.get(cache_key)
        if cached is not None:
            self._metrics.increment("technician_metrics.cache_hit")
            return cached

        try:
            with self._metrics.timed("technician_metrics.calculate.duration"):
                result = await self._breakers.execute(
                    lambda: self._compute(month_key, start, end), OPERATION
                )
        except CircuitOpenError:
            self._metrics.record_error("technician_metrics.calculate")
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return cached
            raise
        except Exception:
            self._metrics.record_error("technician_metrics.calculate")
            raise

        try:
            await self._cache.set(cache_key, result)
        except CacheWriteError as e:
            logger.warning("Monthly metrics computed but not cached: %s", e)

        logger.info(
            "Monthly metrics for %s: %d work orders, completion %.1f%%, revenue %.2f",
            month_key, result["totalWorkOrders"], result["completionRate"], result["totalRevenue"],
        )
        return result

    async def _compute(self, month_key: str, start: datetime, end: datetime) -> dict[str, Any]:
        self._metrics.increment("technician_metrics.db_query")
        wo_docs = await self._store.query(
            WORK_ORDERS, [where("createdAt", ">=", start), where("createdAt", "<", end)]
        )
        work_orders = [work_order_from_document(doc) for doc in wo_docs]
        appointments = await load_appointments(self._store, start, end)
        technicians = await load_technicians(self._store)

        completed = [wo for wo in work_orders if wo.status == WorkOrderStatus.READY_FOR_PICKUP]
        completed_apts = [a for a in appointments if a.status == AppointmentStatus.COMPLETED]

        timed = [wo for wo in completed if wo.created_at and wo.updated_at]
        avg_completion_hours = (
            sum((wo.updated_at - wo.created_at).total_seconds() for wo in timed) / len(timed) / 3600.0
            if timed else 0.0
        )

        per_technician = []
        for tech in technicians:
            assigned = [wo for wo in work_orders if wo.assigned_to == tech.id]
            done = [wo for wo in assigned if wo.status == WorkOrderStatus.READY_FOR_PICKUP]
            tech_apts = [a for a in appointments if a.assigned_to == tech.id]
            per_technician.append(
                {
                    "technicianId": tech.id,
                    "technicianName": tech.name,
                    "workOrdersAssigned": len(assigned),
                    "workOrdersCompleted": len(done),
                    "appointmentsAssigned": len(tech_apts),
                    "appointmentsCompleted": sum(
                        1 for a in tech_apts if a.status == AppointmentStatus.COMPLETED
                    ),
                    "efficiency": min(100.0, len(done) / EFFICIENCY_TARGET * 100.0),
                }
            )

        return {
            "month": month_key,
            "periodStart": start.isoformat(),
            "periodEnd": end.isoformat(),
            "totalWorkOrders": len(work_orders),
            "completedWorkOrders": len(completed),
            "completionRate": _rate(len(completed), len(work_orders)),
            "totalAppointments": len(appointments),
            "completedAppointments": len(completed_apts),
            "appointmentCompletionRate": _rate(len(completed_apts), len(appointments)),
            "averageCompletionTime": avg_completion_hours,
            "totalRevenue": sum(wo.total_price for wo in work_orders if wo.total_price),
            "technicianMetrics": per_technician,
            "calculatedAt": self._utcnow().isoformat(),
        }

    async def invalidate_cache(self) -> int:
        return await self._cache.invalidate(CACHE_PREFIX)
