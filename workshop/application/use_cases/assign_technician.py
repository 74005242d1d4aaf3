"""AssignTechnicianUseCase: score eligible technicians, persist the winner, fan out side effects."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from workshop.application.mappers import (
    ASSIGNMENT_AUDIT_LOG,
    MOTORCYCLES,
    QUEUE_ENTRIES,
    SERVICES,
    TECHNICIAN_METRICS,
    USERS,
    WORK_ORDERS,
    parse_datetime,
    service_request_from_document,
    vehicle_from_document,
    work_order_from_document,
)
from workshop.application.metrics import MetricsCollector
from workshop.application.ports.document_store import (
    Document,
    DocumentStore,
    OrderBy,
    Transaction,
    where,
)
from workshop.application.ports.notifier import NotifierPort
from workshop.application.queries import load_technicians, load_users, month_bounds
from workshop.domain.entities.assignment import AssignmentResult, NoTechnicianAvailable
from workshop.domain.entities.service_request import ServiceRequest
from workshop.domain.entities.technician import Technician
from workshop.domain.entities.vehicle import UNKNOWN_BRAND
from workshop.domain.entities.work_order import format_work_order_number
from workshop.domain.errors import (
    AssignmentFailedError,
    AssignmentInProgressError,
    NotFoundError,
)
from workshop.domain.policies.required_skills import (
    DEFAULT_REQUIRED_SKILLS,
    determine_required_skills,
)
from workshop.domain.policies.technician_scoring import rank_scores, score_technician
from workshop.domain.value_objects.enums import (
    ACTIVE_WORK_ORDER_STATUSES,
    AssignmentStatus,
    RequestStatus,
    UserRole,
    WorkOrderStatus,
)
from workshop.domain.value_objects.technician_score import TechnicianScore

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_ASSIGNMENTS = 0
DEFAULT_HOURS_SINCE_LAST = 24.0
CLAIM_TIMEOUT = timedelta(minutes=10)


class AssignTechnicianUseCase:
    """Automatic technician assignment for one queue entry.

    Pipeline:
    1. Load the request; a request that already has a work order is returned untouched.
    2. Eligible technicians: available and carrying at least one skill.
       None eligible → managers notified, one failure audit event, NoTechnicianAvailable.
    3. Per technician, workload and last-assignment reads run concurrently and
       degrade to 0 active / 24 h on failure.
    4. Rank by score; claim the request in a transaction, then persist the
       work order first and the request update second.
    5. SMS, push, technician metrics and audit log run as background tasks.
    """

    def __init__(
        self,
        store: DocumentStore,
        notifier: NotifierPort,
        metrics: MetricsCollector,
        default_required_skills: Iterable[str] = DEFAULT_REQUIRED_SKILLS,
        tz: ZoneInfo | None = None,
        utcnow: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._notifier = notifier
        self._metrics = metrics
        self._default_skills = tuple(default_required_skills)
        self._tz = tz or ZoneInfo("America/Bogota")
        self._utcnow = utcnow or (lambda: datetime.now(timezone.utc))
        self._pending: set[asyncio.Task] = set()

    async def execute(self, request_id: str) -> AssignmentResult | NoTechnicianAvailable:
        self._metrics.increment("auto_assignment.trigger")
        doc = await self._store.get(QUEUE_ENTRIES, request_id)
        if doc is None:
            raise NotFoundError(f"Service request {request_id} not found")
        request = service_request_from_document(doc)

        if request.is_assigned():
            return _already_assigned(request)

        logger.info(
            "Auto-assignment for request %s: customer=%s service=%s plate=%s",
            request.id, request.customer_id, request.service_type, request.plate,
        )

        technicians = [t for t in await load_technicians(self._store) if t.is_eligible()]
        if not technicians:
            return await self._no_technician(request)

        now = self._utcnow()
        with self._metrics.timed("auto_assignment.score_calculation.duration"):
            scores = await self._score_all(request, technicians, now)
        winner = scores[0]
        logger.info(
            "Request %s: selected technician %s (score=%.2f of %d candidates)",
            request.id, winner.technician_id, winner.total, len(scores),
        )

        customer = await self._store.get(USERS, request.customer_id)
        if customer is None:
            raise NotFoundError(f"Customer {request.customer_id} not found")

        claimed = await self._claim(request.id, now)
        if claimed.is_assigned():
            return _already_assigned(claimed)

        work_order_id = await self._persist(request, winner, now)
        result = AssignmentResult(
            request_id=request.id,
            technician_id=winner.technician_id,
            work_order_id=work_order_id,
            scores=scores,
        )

        technician = next(t for t in technicians if t.id == winner.technician_id)
        self._spawn(self._side_effects(request, customer, technician, result, now))
        return result

    async def drain(self) -> None:
        """Wait for every background side effect spawned so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ─── Scoring ────────────────────────────────────────────────────

    async def _score_all(
        self, request: ServiceRequest, technicians: list[Technician], now: datetime
    ) -> list[TechnicianScore]:
        required = await self._required_skills(request.service_type)
        brand = await self._vehicle_brand(request.vehicle_id)
        loads = await asyncio.gather(
            *(self._technician_load(t.id, now) for t in technicians)
        )
        return rank_scores(
            score_technician(t, required, brand, active, hours)
            for t, (active, hours) in zip(technicians, loads)
        )

    async def _required_skills(self, service_type: str) -> frozenset[str]:
        try:
            entry = await self._store.get(SERVICES, service_type)
        except Exception as e:
            logger.warning("Service catalog unavailable for %s, using defaults: %s", service_type, e)
            entry = None
        return determine_required_skills(
            service_type, entry.data if entry else None, self._default_skills
        )

    async def _vehicle_brand(self, vehicle_id: str | None) -> str | None:
        if not vehicle_id:
            return None
        try:
            doc = await self._store.get(MOTORCYCLES, vehicle_id)
            return vehicle_from_document(doc).known_brand() if doc else None
        except Exception as e:
            logger.warning("Vehicle %s unreadable, scoring without brand: %s", vehicle_id, e)
            return None

    async def _technician_load(self, technician_id: str, now: datetime) -> tuple[int, float | None]:
        active, hours = await asyncio.gather(
            self._active_assignments(technician_id),
            self._hours_since_last_assignment(technician_id, now),
        )
        return active, hours

    async def _active_assignments(self, technician_id: str) -> int:
        try:
            docs = await self._store.query(
                WORK_ORDERS,
                [
                    where("assignedTo", "==", technician_id),
                    where("status", "in", [s.value for s in ACTIVE_WORK_ORDER_STATUSES]),
                ],
            )
            return len(docs)
        except Exception as e:
            logger.warning("Workload read failed for %s, using default: %s", technician_id, e)
            return DEFAULT_ACTIVE_ASSIGNMENTS

    async def _hours_since_last_assignment(self, technician_id: str, now: datetime) -> float | None:
        """None when the technician was never assigned."""
        try:
            docs = await self._store.query(
                WORK_ORDERS,
                [where("assignedTo", "==", technician_id)],
                order_by=OrderBy("createdAt", descending=True),
                limit=1,
            )
            if not docs:
                return None
            created_at = work_order_from_document(docs[0]).created_at
            if created_at is None:
                return None
            return (now - created_at).total_seconds() / 3600.0
        except Exception as e:
            logger.warning("Last-assignment read failed for %s, using default: %s", technician_id, e)
            return DEFAULT_HOURS_SINCE_LAST

    # ─── Persistence ────────────────────────────────────────────────

    async def _claim(self, request_id: str, now: datetime) -> ServiceRequest:
        """Mark the request as being assigned, or return it already assigned.

        A claim older than CLAIM_TIMEOUT belongs to a caller that died and is taken over.
        """

        async def _take(tx: Transaction) -> ServiceRequest:
            doc = await tx.get(QUEUE_ENTRIES, request_id)
            if doc is None:
                raise NotFoundError(f"Service request {request_id} not found")
            current = service_request_from_document(doc)
            if current.is_assigned():
                return current
            claimed_at = parse_datetime(
                doc.get("assignmentClaimedAt"), where=f"{request_id}.assignmentClaimedAt"
            )
            if doc.get("assignmentStatus") == AssignmentStatus.ASSIGNING.value:
                if claimed_at is not None and now - claimed_at < CLAIM_TIMEOUT:
                    raise AssignmentInProgressError(request_id)
                logger.warning("Taking over stale assignment claim on request %s", request_id)
            tx.update(
                QUEUE_ENTRIES,
                request_id,
                {
                    "assignmentStatus": AssignmentStatus.ASSIGNING.value,
                    "assignmentClaimedAt": now,
                },
            )
            return current

        return await self._store.run_transaction(_take)

    async def _persist(self, request: ServiceRequest, winner: TechnicianScore, now: datetime) -> str:
        """Work order first, request update second; any failure flags the request."""
        work_order_id: str | None = None
        try:
            vehicle_id = request.vehicle_id or await self._create_placeholder_vehicle(request, now)
            number = await self._next_work_order_number(now)
            with self._metrics.timed("auto_assignment.work_order_creation.duration"):
                work_order_id = await self._store.add(
                    WORK_ORDERS,
                    {
                        "clientId": request.customer_id,
                        "vehicleId": vehicle_id,
                        "services": [],
                        "products": [],
                        "status": WorkOrderStatus.OPEN.value,
                        "totalPrice": 0,
                        "assignedTo": winner.technician_id,
                        "number": number,
                        "queueEntryId": request.id,
                        "createdAt": now,
                        "updatedAt": now,
                    },
                )
            logger.info("Work order %s (%s) created for request %s", work_order_id, number, request.id)

            await self._store.update(
                QUEUE_ENTRIES,
                request.id,
                {
                    "assignedTo": winner.technician_id,
                    "workOrderId": work_order_id,
                    "status": RequestStatus.CALLED.value,
                    "assignmentStatus": AssignmentStatus.ASSIGNED.value,
                    "assignmentClaimedAt": None,
                    "updatedAt": now,
                },
            )
        except Exception as e:
            self._metrics.record_error("auto_assignment.persist")
            logger.exception("Assignment writes failed for request %s", request.id)
            await self._mark_failed(request, winner, work_order_id, e, now)
            raise AssignmentFailedError(
                request.id, f"Assignment of request {request.id} failed: {e}", work_order_id
            ) from e
        return work_order_id

    async def _create_placeholder_vehicle(self, request: ServiceRequest, now: datetime) -> str:
        vehicle_id = await self._store.add(
            MOTORCYCLES,
            {
                "userId": request.customer_id,
                "plate": request.plate,
                "mileageKm": request.mileage_km,
                "brand": UNKNOWN_BRAND,
                "model": UNKNOWN_BRAND,
                "year": now.astimezone(self._tz).year,
                "createdAt": now,
                "updatedAt": now,
            },
        )
        logger.info("Placeholder vehicle %s created for request %s", vehicle_id, request.id)
        return vehicle_id

    async def _next_work_order_number(self, now: datetime) -> str:
        """Sequence = work orders created this month + 1."""
        _, month_start, _ = month_bounds(now, self._tz)
        this_month = await self._store.query(WORK_ORDERS, [where("createdAt", ">=", month_start)])
        local = now.astimezone(self._tz)
        return format_work_order_number(local.year, local.month, len(this_month) + 1)

    async def _mark_failed(
        self,
        request: ServiceRequest,
        winner: TechnicianScore,
        work_order_id: str | None,
        error: Exception,
        now: datetime,
    ) -> None:
        try:
            await self._store.update(
                QUEUE_ENTRIES,
                request.id,
                {
                    "assignmentStatus": AssignmentStatus.ASSIGNMENT_FAILED.value,
                    "assignmentClaimedAt": None,
                    "assignmentError": str(error),
                    "updatedAt": now,
                },
            )
        except Exception:
            logger.exception("Could not flag request %s as assignment_failed", request.id)
        await self._audit(
            {
                "eventType": "auto_assignment_failed",
                "queueEntryId": request.id,
                "reason": "assignment_write_failed",
                "technicianId": winner.technician_id,
                "workOrderId": work_order_id,
                "error": str(error),
                "timestamp": now,
            }
        )

    # ─── No technician ──────────────────────────────────────────────

    async def _no_technician(self, request: ServiceRequest) -> NoTechnicianAvailable:
        outcome = NoTechnicianAvailable(request_id=request.id)
        self._metrics.increment("auto_assignment.no_technician")
        logger.warning("No technicians available for request %s", request.id)

        try:
            managers = await load_users(self._store, UserRole.MANAGER)
            if not managers:
                logger.warning("No managers found to notify about request %s", request.id)
            for manager in managers:
                await self._notifier.notify_user(
                    manager.id,
                    "Automatic assignment failed",
                    f"No technician could be assigned to plate {request.plate}. Manual assignment required.",
                    priority="critical",
                    category="system_alert",
                    meta={
                        "queueEntryId": request.id,
                        "customerId": request.customer_id,
                        "requiresManualAssignment": True,
                    },
                )
        except Exception:
            self._metrics.record_error("auto_assignment.manager_notification_failed")
            logger.exception("Manager notification failed for request %s", request.id)

        await self._audit(
            {
                "eventType": "auto_assignment_failed",
                **outcome.to_event(),
                "queueEntryId": request.id,
                "timestamp": self._utcnow(),
                "queueEntryDetails": {
                    "serviceType": request.service_type,
                    "plate": request.plate,
                    "mileageKm": request.mileage_km,
                },
            }
        )
        return outcome

    # ─── Side effects ───────────────────────────────────────────────

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _side_effects(
        self,
        request: ServiceRequest,
        customer: Document,
        technician: Technician,
        result: AssignmentResult,
        now: datetime,
    ) -> None:
        await asyncio.gather(
            self._notify_customer(request, customer, technician),
            self._notify_technician(request, technician, result),
        )
        await self._update_technician_metrics(technician.id, now)
        await self._audit(self._assignment_event(request, technician, result, now))

    async def _notify_customer(self, request: ServiceRequest, customer: Document, technician: Technician) -> None:
        phone = customer.get("phone")
        if not phone:
            logger.warning("Customer %s has no phone number, skipping SMS", request.customer_id)
            return
        try:
            await self._notifier.notify_customer(
                request.customer_id,
                phone,
                f"Your service has been assigned to technician {technician.name}. "
                f"Please come to the workshop. Verification code: {request.verification_code or 'N/A'}",
                meta={"queueEntryId": request.id, "technicianId": technician.id},
            )
            self._metrics.increment("auto_assignment.sms_sent")
        except Exception:
            self._metrics.record_error("auto_assignment.sms_failed")
            logger.exception("Customer SMS failed for request %s", request.id)

    async def _notify_technician(
        self, request: ServiceRequest, technician: Technician, result: AssignmentResult
    ) -> None:
        try:
            await self._notifier.notify_user(
                technician.id,
                "New job assigned",
                f"New job assigned. Plate: {request.plate}, mileage: {request.mileage_km} km",
                priority="high",
                meta={
                    "queueEntryId": request.id,
                    "customerId": request.customer_id,
                    "workOrderId": result.work_order_id,
                },
            )
            self._metrics.increment("auto_assignment.push_sent")
        except Exception:
            self._metrics.record_error("auto_assignment.push_failed")
            logger.exception("Technician notification failed for %s", technician.id)

    async def _update_technician_metrics(self, technician_id: str, now: datetime) -> None:
        month_key, month_start, _ = month_bounds(now, self._tz)

        async def _increment(tx: Transaction) -> None:
            doc = await tx.get(TECHNICIAN_METRICS, technician_id)
            if doc is None:
                tx.set(
                    TECHNICIAN_METRICS,
                    technician_id,
                    {
                        "technicianId": technician_id,
                        "totalAssignments": 1,
                        "assignmentsThisMonth": 1,
                        "month": month_key,
                        "monthStart": month_start,
                        "lastAssignmentAt": now,
                        "createdAt": now,
                        "updatedAt": now,
                    },
                )
                return
            same_month = doc.get("month") == month_key
            tx.update(
                TECHNICIAN_METRICS,
                technician_id,
                {
                    "totalAssignments": int(doc.get("totalAssignments", 0) or 0) + 1,
                    "assignmentsThisMonth": (
                        int(doc.get("assignmentsThisMonth", 0) or 0) + 1 if same_month else 1
                    ),
                    "month": month_key,
                    "monthStart": month_start,
                    "lastAssignmentAt": now,
                    "updatedAt": now,
                },
            )

        try:
            await self._store.run_transaction(_increment)
            self._metrics.increment("auto_assignment.metrics_update")
        except Exception:
            self._metrics.record_error("auto_assignment.metrics_update_failed")
            logger.exception("Technician metrics update failed for %s", technician_id)

    @staticmethod
    def _assignment_event(
        request: ServiceRequest, technician: Technician, result: AssignmentResult, now: datetime
    ) -> dict[str, Any]:
        winner = result.winning_score
        return {
            "eventType": "auto_assignment",
            **result.to_event(),
            "queueEntryId": request.id,
            "customerId": request.customer_id,
            "assignmentTimestamp": now,
            "scoringDetails": {
                "selectedTechnician": {
                    "id": technician.id,
                    "name": technician.name,
                    "score": winner.total if winner else 0,
                    "breakdown": winner.breakdown.to_dict() if winner else {},
                },
                "alternativeTechnicians": [
                    {"id": s.technician_id, "name": s.technician_name, "score": s.total}
                    for s in result.scores[1:3]
                ],
                "totalTechniciansConsidered": len(result.scores),
            },
            "queueEntryDetails": {
                "serviceType": request.service_type,
                "plate": request.plate,
                "mileageKm": request.mileage_km,
                "joinedAt": request.joined_at,
            },
        }

    async def _audit(self, event: dict[str, Any]) -> None:
        try:
            await self._store.add(ASSIGNMENT_AUDIT_LOG, event)
            self._metrics.increment("auto_assignment.audit_log")
        except Exception:
            self._metrics.record_error("auto_assignment.audit_log_failed")
            logger.exception("Audit log write failed for %s", event.get("queueEntryId"))


def _already_assigned(request: ServiceRequest) -> AssignmentResult:
    logger.info("Request %s already has work order %s", request.id, request.work_order_id)
    return AssignmentResult(
        request_id=request.id,
        technician_id=request.assigned_to or "",
        work_order_id=request.work_order_id,
        already_assigned=True,
    )
