"""Composition root: builds one EngineContext per running application."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from zoneinfo import ZoneInfo

from workshop.adapters.notifications.store_notifier import StoreNotifier
from workshop.adapters.notifications.webhook_notifier import WebhookNotifier
from workshop.adapters.persistence.memory_store import MemoryDocumentStore
from workshop.adapters.persistence.resilient_store import ResilientDocumentStore
from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore
from workshop.application.ports.notifier import NotifierPort
from workshop.application.resilience.cache import CacheService
from workshop.application.resilience.circuit_breaker import CircuitBreakerRegistry
from workshop.application.resilience.rate_limiter import RateLimiter
from workshop.application.use_cases.assign_technician import AssignTechnicianUseCase
from workshop.application.use_cases.calculate_capacity import CalculateCapacityUseCase
from workshop.application.use_cases.calculate_technician_metrics import (
    CalculateTechnicianMetricsUseCase,
)
from workshop.application.use_cases.notify_delayed_jobs import NotifyDelayedJobsUseCase
from workshop.application.use_cases.optimize_schedule import OptimizeScheduleUseCase
from workshop.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Everything with state lives here: store, metrics, breakers, use cases."""

    settings: Settings
    store: DocumentStore
    notifier: NotifierPort
    metrics: MetricsCollector
    breakers: CircuitBreakerRegistry
    cache: CacheService
    rate_limiter: RateLimiter
    capacity: CalculateCapacityUseCase
    assignment: AssignTechnicianUseCase
    optimizer: OptimizeScheduleUseCase
    delayed_jobs: NotifyDelayedJobsUseCase
    technician_metrics: CalculateTechnicianMetricsUseCase

    async def flush_metrics(self) -> str | None:
        return await self.metrics.flush(self.store)

    async def aclose(self) -> None:
        await self.assignment.drain()
        await self.flush_metrics()
        await self.notifier.aclose()
        await self.store.aclose()


def _build_raw_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "memory":
        logger.info("Using in-memory document store")
        return MemoryDocumentStore()

    from workshop.adapters.persistence.database import build_engine
    from workshop.adapters.persistence.sql_store import SqlDocumentStore

    logger.info("Using PostgreSQL document store")
    return SqlDocumentStore(build_engine(settings.database_url, echo=settings.debug))


def _build_notifier(settings: Settings, store: DocumentStore) -> NotifierPort:
    if settings.notifier_backend == "webhook":
        logger.info("Notifications delivered by webhook")
        return WebhookNotifier(settings.notification_webhook_url)
    return StoreNotifier(store)


def build_engine(settings: Settings, store: DocumentStore | None = None) -> EngineContext:
    """Wire the engine. Pass *store* to reuse an existing backend (tests)."""
    tz = ZoneInfo(settings.workshop_timezone)
    store = ResilientDocumentStore(
        store if store is not None else _build_raw_store(settings),
        timeout_s=settings.store_timeout_s,
        max_attempts=settings.store_max_attempts,
    )
    metrics = MetricsCollector()
    breakers = CircuitBreakerRegistry.for_engine(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout_s=settings.breaker_recovery_timeout_s,
    )
    cache = CacheService(store, metrics, ttl_s=settings.cache_ttl_s)
    limiter = RateLimiter(
        store, metrics, window_s=settings.rate_limit_window_s, max_calls=settings.rate_limit_max_calls
    )
    notifier = _build_notifier(settings, store)

    return EngineContext(
        settings=settings,
        store=store,
        notifier=notifier,
        metrics=metrics,
        breakers=breakers,
        cache=cache,
        rate_limiter=limiter,
        capacity=CalculateCapacityUseCase(
            store, cache, limiter, breakers, metrics,
            hours_per_technician=settings.hours_per_technician, tz=tz,
        ),
        assignment=AssignTechnicianUseCase(
            store, notifier, metrics,
            default_required_skills=settings.default_required_skills, tz=tz,
        ),
        optimizer=OptimizeScheduleUseCase(store, breakers, metrics, tz=tz),
        delayed_jobs=NotifyDelayedJobsUseCase(
            store, notifier, breakers, metrics,
            delay_threshold_hours=settings.delay_threshold_hours,
        ),
        technician_metrics=CalculateTechnicianMetricsUseCase(
            store, cache, limiter, breakers, metrics, tz=tz,
        ),
    )
