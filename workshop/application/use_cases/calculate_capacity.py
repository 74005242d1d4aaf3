"""CalculateCapacityUseCase: real-time shop capacity behind limiter, cache and breaker."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore
from workshop.application.queries import day_bounds, load_appointments, load_technicians, load_work_orders
from workshop.application.resilience.cache import CacheService
from workshop.application.resilience.circuit_breaker import CircuitBreakerRegistry
from workshop.application.resilience.rate_limiter import RateLimiter
from workshop.domain.errors import CacheWriteError, CircuitOpenError, RateLimitExceeded
from workshop.domain.value_objects.capacity import CapacitySnapshot
from workshop.domain.value_objects.enums import (
    BOOKED_APPOINTMENT_STATUSES,
    IN_SHOP_WORK_ORDER_STATUSES,
)

logger = logging.getLogger(__name__)

OPERATION = "calculateCurrentCapacity"
CACHE_PREFIX = "workshop_capacity"
CACHE_KEY = f"{CACHE_PREFIX}_current"


class CalculateCapacityUseCase:
    def __init__(
        self,
        store: DocumentStore,
        cache: CacheService,
        rate_limiter: RateLimiter,
        breakers: CircuitBreakerRegistry,
        metrics: MetricsCollector,
        hours_per_technician: int = 8,
        tz: ZoneInfo | None = None,
        utcnow: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._cache = cache
        self._limiter = rate_limiter
        self._breakers = breakers
        self._metrics = metrics
        self._hours = hours_per_technician
        self._tz = tz or ZoneInfo("America/Bogota")
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    async def execute(self) -> CapacitySnapshot:
        """Current capacity snapshot.

        1. Admission: a denied call answers from cache or raises RateLimitExceeded.
        2. A fresh cache entry is returned as is.
        3. Otherwise compute under the ``calculateCurrentCapacity`` breaker and
           cache the result. A failed cache write is logged; the fresh
           snapshot is still returned.
        """
        self._metrics.increment("workshop_capacity.calculate")

        if not await self._limiter.try_acquire(OPERATION):
            cached = await self._cache.get(CACHE_KEY)
            if cached is not None:
                self._metrics.increment("workshop_capacity.rate_limited_cache_hit")
                logger.info("Rate limited, returning cached workshop capacity")
                return CapacitySnapshot.from_dict(cached)
            self._metrics.record_error("workshop_capacity.rate_limited_no_cache")
            raise RateLimitExceeded(f"{OPERATION}: rate limit exceeded and no cached result")

        cached = await self._cache.get(CACHE_KEY)
        if cached is not None:
            self._metrics.increment("workshop_capacity.cache_hit")
            return CapacitySnapshot.from_dict(cached)

        try:
            with self._metrics.timed("workshop_capacity.calculate.duration"):
                snapshot = await self._breakers.execute(self._compute, OPERATION)
        except CircuitOpenError:
            cached = await self._cache.get(CACHE_KEY)
            if cached is not None:
                logger.warning("%s breaker open, serving cached capacity", OPERATION)
                return CapacitySnapshot.from_dict(cached)
            self._metrics.record_error("workshop_capacity.calculate")
            raise
        except Exception:
            self._metrics.record_error("workshop_capacity.calculate")
            raise

        try:
            await self._cache.set(CACHE_KEY, snapshot.to_dict())
        except CacheWriteError as e:
            logger.warning("Capacity computed but not cached: %s", e)

        logger.info(
            "Workshop capacity: total=%d used=%d utilization=%.1f%% available_technicians=%d",
            snapshot.total_capacity, snapshot.used_capacity,
            snapshot.utilization_rate, snapshot.available_technicians,
        )
        return snapshot

    async def _compute(self) -> CapacitySnapshot:
        self._metrics.increment("workshop_capacity.db_query")
        start, end = day_bounds(self._utcnow(), self._tz)

        work_orders = await load_work_orders(self._store, IN_SHOP_WORK_ORDER_STATUSES)
        appointments = await load_appointments(self._store, start, end, BOOKED_APPOINTMENT_STATUSES)
        technicians = await load_technicians(self._store)

        busy = {wo.assigned_to for wo in work_orders if wo.assigned_to}
        busy |= {apt.assigned_to for apt in appointments if apt.assigned_to}
        available = sum(1 for t in technicians if t.is_available and t.id not in busy)

        total = len(technicians) * self._hours
        used = len(work_orders) + len(appointments)
        return CapacitySnapshot(
            total_capacity=total,
            used_capacity=used,
            available_capacity=max(0, total - used),
            utilization_rate=(used / total * 100.0) if total > 0 else 0.0,
            available_technicians=available,
            active_work_orders=len(work_orders),
            scheduled_appointments=len(appointments),
        )

    async def invalidate_cache(self) -> int:
        return await self._cache.invalidate(CACHE_PREFIX)
