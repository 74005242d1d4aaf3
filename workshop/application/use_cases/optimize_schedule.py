"""OptimizeScheduleUseCase: periodic workload rebalance and fill of unassigned appointments."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from workshop.application.mappers import APPOINTMENTS, WORK_ORDERS
from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import DocumentStore
from workshop.application.queries import day_bounds, load_appointments, load_technicians, load_work_orders
from workshop.application.resilience.circuit_breaker import CircuitBreakerRegistry
from workshop.domain.policies.workload_balancing import classify, plan_rebalance
from workshop.domain.value_objects.enums import ACTIVE_WORK_ORDER_STATUSES, AppointmentStatus

logger = logging.getLogger(__name__)

OPERATION = "optimizeDailySchedule"

_CLOSED_APPOINTMENT_STATUSES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


@dataclass
class OptimizationResult:
    reassigned_count: int = 0
    filled_count: int = 0
    gaps: list[str] = field(default_factory=list)
    failed_writes: int = 0

    def to_dict(self) -> dict:
        return {
            "reassignedCount": self.reassigned_count,
            "filledCount": self.filled_count,
            "gaps": list(self.gaps),
            "failedWrites": self.failed_writes,
        }


class OptimizeScheduleUseCase:
    def __init__(
        self,
        store: DocumentStore,
        breakers: CircuitBreakerRegistry,
        metrics: MetricsCollector,
        tz: ZoneInfo | None = None,
        utcnow: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._breakers = breakers
        self._metrics = metrics
        self._tz = tz or ZoneInfo("America/Bogota")
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))

    async def execute(self) -> OptimizationResult:
        self._metrics.increment("schedule_optimization.attempt")
        try:
            with self._metrics.timed("schedule_optimization.duration"):
                result = await self._breakers.execute(self._optimize, OPERATION)
        except Exception:
            self._metrics.record_error("schedule_optimization")
            raise
        logger.info(
            "Schedule optimization: %d work orders moved, %d appointments filled, %d gaps, %d failed writes",
            result.reassigned_count, result.filled_count, len(result.gaps), result.failed_writes,
        )
        return result

    async def _optimize(self) -> OptimizationResult:
        """One pass.

        Workload = active work orders + today's booked appointments per
        technician. Unavailable technicians count toward the average but
        never receive work. Every write is independent; failed writes are
        counted and logged, never abort the rest of the pass.
        """
        self._metrics.increment("schedule_optimization.db_query")
        now = self._utcnow()
        start, end = day_bounds(now, self._tz)

        technicians = await load_technicians(self._store)
        work_orders = await load_work_orders(self._store, ACTIVE_WORK_ORDER_STATUSES)
        appointments = await load_appointments(self._store, start, end)

        workloads = {t.id: 0 for t in technicians}
        open_orders: dict[str, list[str]] = {t.id: [] for t in technicians}

        for wo in sorted(work_orders, key=lambda w: (w.created_at or start, w.id)):
            if wo.assigned_to in workloads:
                workloads[wo.assigned_to] += 1
                if wo.is_movable():
                    open_orders[wo.assigned_to].append(wo.id)

        unassigned = []
        for apt in appointments:
            if apt.status in _CLOSED_APPOINTMENT_STATUSES:
                continue
            if apt.is_unassigned():
                unassigned.append(apt)
            elif apt.is_booked() and apt.assigned_to in workloads:
                workloads[apt.assigned_to] += 1
        unassigned.sort(key=lambda a: (a.scheduled_at, a.id))

        avg, overloaded, underloaded = classify(workloads)
        logger.info(
            "Workload avg=%.2f overloaded=%s underloaded=%s unassigned=%d",
            avg, overloaded, underloaded, len(unassigned),
        )

        plan = plan_rebalance(
            workloads,
            open_orders,
            [a.id for a in unassigned],
            eligible_targets=[t.id for t in technicians if t.is_available],
        )

        writes = [
            self._store.update(
                WORK_ORDERS,
                move.work_order_id,
                {"assignedTo": move.to_technician, "reassignedFrom": move.from_technician, "updatedAt": now},
            )
            for move in plan.moves
        ] + [
            self._store.update(
                APPOINTMENTS,
                fill.appointment_id,
                {
                    "assignedTo": fill.technician_id,
                    "status": AppointmentStatus.SCHEDULED.value,
                    "updatedAt": now,
                },
            )
            for fill in plan.fills
        ]
        outcomes = await asyncio.gather(*writes, return_exceptions=True)

        labels = [f"move {m.work_order_id} {m.from_technician}->{m.to_technician}" for m in plan.moves]
        labels += [f"fill {f.appointment_id}->{f.technician_id}" for f in plan.fills]
        failed = 0
        for label, outcome in zip(labels, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.warning("Optimizer write failed (%s): %s", label, outcome)

        move_outcomes = outcomes[: len(plan.moves)]
        fill_outcomes = outcomes[len(plan.moves):]
        result = OptimizationResult(
            reassigned_count=sum(1 for o in move_outcomes if not isinstance(o, BaseException)),
            filled_count=sum(1 for o in fill_outcomes if not isinstance(o, BaseException)),
            gaps=list(plan.gaps),
            failed_writes=failed,
        )
        if writes:
            self._metrics.increment("schedule_optimization.reassignments", len(writes) - failed)
        if plan.gaps:
            logger.info("Optimization gaps (left unassigned): %s", plan.gaps)
        return result
