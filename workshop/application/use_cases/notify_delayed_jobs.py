"""NotifyDelayedJobsUseCase: alert assignees and managers about work running past the threshold."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore
from workshop.application.ports.notifier import NotifierPort
from workshop.application.queries import load_users, load_work_orders
from workshop.application.resilience.circuit_breaker import CircuitBreakerRegistry
from workshop.domain.value_objects.enums import IN_SHOP_WORK_ORDER_STATUSES, UserRole

logger = logging.getLogger(__name__)

OPERATION = "notifyDelayedJobs"


class NotifyDelayedJobsUseCase:
    def __init__(
        self,
        store: DocumentStore,
        notifier: NotifierPort,
        breakers: CircuitBreakerRegistry,
        metrics: MetricsCollector,
        delay_threshold_hours: float = 2.0,
        utcnow: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._notifier = notifier
        self._breakers = breakers
        self._metrics = metrics
        self._threshold = timedelta(hours=delay_threshold_hours)
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    async def execute(self) -> int:
        """Number of delayed work orders found in this check."""
        self._metrics.increment("delayed_jobs.check")
        try:
            with self._metrics.timed("delayed_jobs.check.duration"):
                count = await self._breakers.execute(self._check, OPERATION)
        except Exception:
            self._metrics.record_error("delayed_jobs.check")
            raise
        logger.info("Delayed jobs check completed: %d delayed", count)
        return count

    async def _check(self) -> int:
        self._metrics.increment("delayed_jobs.db_query")
        now = self._utcnow()
        work_orders = await load_work_orders(self._store, IN_SHOP_WORK_ORDER_STATUSES)
        delayed = [
            wo for wo in work_orders
            if wo.created_at is not None and now - wo.created_at > self._threshold
        ]
        if not delayed:
            return 0

        managers = await load_users(self._store, UserRole.MANAGER)
        sends = []
        for wo in delayed:
            delay_hours = round((now - wo.created_at).total_seconds() / 3600)
            label = wo.number or wo.id
            if wo.assigned_to:
                sends.append(
                    self._notifier.notify_user(
                        wo.assigned_to,
                        "Delayed job",
                        f"Work order {label} is delayed. Please review its progress.",
                        priority="high",
                        meta={"workOrderId": wo.id, "delayHours": delay_hours},
                    )
                )
            for manager in managers:
                sends.append(
                    self._notifier.notify_user(
                        manager.id,
                        "Delayed work order",
                        f"Work order {label} for customer {wo.client_id} is delayed.",
                        priority="medium",
                        meta={"workOrderId": wo.id, "requiresAttention": True, "delayHours": delay_hours},
                    )
                )

        outcomes = await asyncio.gather(*sends, return_exceptions=True)
        failures = [o for o in outcomes if isinstance(o, BaseException)]
        for failure in failures:
            logger.warning("Delayed-job notification failed: %s", failure)
        self._metrics.increment("delayed_jobs.notifications_sent", len(outcomes) - len(failures))
        return len(delayed)
