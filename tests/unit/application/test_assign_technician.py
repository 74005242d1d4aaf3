"""Tests for AssignTechnicianUseCase with the memory store and a recording notifier."""

import asyncio
from datetime import timedelta

import pytest

from workshop.adapters.persistence.resilient_store import ResilientDocumentStore
from workshop.application.mappers import (
    ASSIGNMENT_AUDIT_LOG,
    MOTORCYCLES,
    QUEUE_ENTRIES,
    TECHNICIAN_METRICS,
    WORK_ORDERS,
)
from workshop.application.use_cases.assign_technician import AssignTechnicianUseCase
from workshop.domain.entities.assignment import AssignmentResult, NoTechnicianAvailable
from workshop.domain.errors import (
    AssignmentFailedError,
    AssignmentInProgressError,
    NotFoundError,
)


@pytest.fixture
def use_case(store, notifier, metrics, tz, now):
    return AssignTechnicianUseCase(store, notifier, metrics, tz=tz, utcnow=lambda: now)


@pytest.fixture
def shop(seed):
    """Two technicians: t1 busier and more recently assigned than t2."""
    seed.customer("cust-1")
    seed.manager("mgr-1")
    seed.technician("t1", skills=["basic_maintenance", "engine_repair"])
    seed.technician("t2", skills=["basic_maintenance", "brake_service"])
    seed.work_order("w1", "t1", status="open", age=timedelta(hours=2))
    seed.work_order("w2", "t1", status="in_progress", age=timedelta(hours=3))
    seed.work_order("w3", "t2", status="open", age=timedelta(hours=24))
    seed.request("q1")
    return seed


def _audit_events(store):
    return list(store.dump(ASSIGNMENT_AUDIT_LOG).values())


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_least_loaded_technician_wins(self, shop, use_case):
        result = await use_case.execute("q1")

        assert isinstance(result, AssignmentResult)
        assert result.technician_id == "t2"
        assert [s.technician_id for s in result.scores] == ["t2", "t1"]
        assert result.scores[0].total == pytest.approx(86.5)
        assert result.scores[1].total == pytest.approx(82.583, abs=1e-3)

    @pytest.mark.asyncio
    async def test_work_order_and_request_written(self, shop, use_case, store):
        result = await use_case.execute("q1")

        work_order = store.dump(WORK_ORDERS)[result.work_order_id]
        assert work_order["status"] == "open"
        assert work_order["assignedTo"] == "t2"
        assert work_order["queueEntryId"] == "q1"
        assert work_order["clientId"] == "cust-1"
        assert work_order["number"] == "WO-202403-0004"

        request = store.dump(QUEUE_ENTRIES)["q1"]
        assert request["assignedTo"] == "t2"
        assert request["workOrderId"] == result.work_order_id
        assert request["status"] == "called"
        assert request["assignmentStatus"] == "assigned"

    @pytest.mark.asyncio
    async def test_work_order_written_before_request_update(self, shop, use_case, store):
        await use_case.execute("q1")
        add_wo = store.calls.index(("add", WORK_ORDERS))
        update_request = store.calls.index(("update", QUEUE_ENTRIES))
        assert add_wo < update_request

    @pytest.mark.asyncio
    async def test_placeholder_vehicle_created_without_motorcycle(self, shop, use_case, store):
        result = await use_case.execute("q1")

        vehicles = store.dump(MOTORCYCLES)
        assert len(vehicles) == 1
        vehicle_id, vehicle = next(iter(vehicles.items()))
        assert vehicle["brand"] == "Unknown"
        assert vehicle["plate"] == "ABC123"
        assert store.dump(WORK_ORDERS)[result.work_order_id]["vehicleId"] == vehicle_id

    @pytest.mark.asyncio
    async def test_side_effects_after_drain(self, shop, use_case, store, notifier):
        result = await use_case.execute("q1")
        await use_case.drain()

        assert len(notifier.sms) == 1
        assert notifier.sms[0]["phone"] == "+573001234567"
        assert "4821" in notifier.sms[0]["message"]

        pushes = notifier.for_user("t2")
        assert len(pushes) == 1
        assert pushes[0]["priority"] == "high"
        assert pushes[0]["meta"]["workOrderId"] == result.work_order_id

        metrics_doc = store.dump(TECHNICIAN_METRICS)["t2"]
        assert metrics_doc["totalAssignments"] == 1
        assert metrics_doc["assignmentsThisMonth"] == 1
        assert metrics_doc["month"] == "2024-03"

        events = _audit_events(store)
        assert len(events) == 1
        assert events[0]["eventType"] == "auto_assignment"
        assert events[0]["workOrderId"] == result.work_order_id
        assert events[0]["scoringDetails"]["selectedTechnician"]["id"] == "t2"
        assert events[0]["scoringDetails"]["totalTechniciansConsidered"] == 2


class TestScoringInputs:
    @pytest.mark.asyncio
    async def test_catalog_skills_drive_the_choice(self, shop, use_case):
        shop.service("engine_overhaul", ["engine_repair"])
        shop.request("q2", service_type="engine_overhaul")

        result = await use_case.execute("q2")

        assert result.technician_id == "t1"
        assert result.scores[0].breakdown.skills_match == 40
        assert result.scores[1].breakdown.skills_match == 0

    @pytest.mark.asyncio
    async def test_brand_experience_and_existing_vehicle(self, seed, use_case, store):
        seed.customer("cust-1")
        seed.technician("t1", skills=["basic_maintenance"])
        seed.technician("t2", skills=["basic_maintenance", "ktm_service"])
        seed.motorcycle("m1", brand="KTM")
        seed.request("q1", motorcycleId="m1")

        result = await use_case.execute("q1")

        assert result.technician_id == "t2"
        assert result.scores[0].breakdown.brand_experience == 10
        assert len(store.dump(MOTORCYCLES)) == 1
        assert store.dump(WORK_ORDERS)[result.work_order_id]["vehicleId"] == "m1"

    @pytest.mark.asyncio
    async def test_failed_workload_reads_use_defaults(self, shop, use_case, store):
        # two reads per technician during scoring
        store.fail("query", WORK_ORDERS, times=4)

        result = await use_case.execute("q1")

        for score in result.scores:
            assert score.breakdown.workload_balance == 30
            assert score.breakdown.rotation == pytest.approx(1.0)
        assert result.technician_id == "t1"

    @pytest.mark.asyncio
    async def test_unavailable_and_skill_less_technicians_ignored(self, seed, use_case):
        seed.customer("cust-1")
        seed.technician("t1", available=False)
        seed.technician("t2", skills=[])
        seed.technician("t3")
        seed.request("q1")

        result = await use_case.execute("q1")

        assert [s.technician_id for s in result.scores] == ["t3"]

    @pytest.mark.asyncio
    async def test_invalid_technician_profile_does_not_block_assignment(self, seed, use_case):
        seed.customer("cust-1")
        seed.technician("t1")
        seed.technician("t2", rating=5.2)
        seed.request("q1")

        result = await use_case.execute("q1")

        assert result.technician_id == "t1"
        assert [s.technician_id for s in result.scores] == ["t1"]


class TestNoTechnician:
    @pytest.mark.asyncio
    async def test_defined_outcome_with_single_audit_event(self, seed, use_case, store, notifier):
        seed.customer("cust-1")
        seed.manager("mgr-1")
        seed.manager("mgr-2")
        seed.technician("t1", available=False)
        seed.request("q1")

        outcome = await use_case.execute("q1")
        await use_case.drain()

        assert outcome == NoTechnicianAvailable("q1")
        assert store.dump(WORK_ORDERS) == {}
        events = _audit_events(store)
        assert len(events) == 1
        assert events[0]["eventType"] == "auto_assignment_failed"
        assert events[0]["reason"] == "no_technicians_available"

        alerts = notifier.user_notifications
        assert {n["user_id"] for n in alerts} == {"mgr-1", "mgr-2"}
        assert all(n["priority"] == "critical" and n["category"] == "system_alert" for n in alerts)
        assert "assignedTo" not in store.dump(QUEUE_ENTRIES)["q1"]

    @pytest.mark.asyncio
    async def test_manager_notification_failure_still_audited(self, seed, use_case, store, notifier):
        seed.customer("cust-1")
        seed.manager("mgr-1")
        seed.request("q1")
        notifier.fail_users.add("mgr-1")

        outcome = await use_case.execute("q1")

        assert isinstance(outcome, NoTechnicianAvailable)
        assert len(_audit_events(store)) == 1


class TestGuards:
    @pytest.mark.asyncio
    async def test_missing_request(self, shop, use_case):
        with pytest.raises(NotFoundError):
            await use_case.execute("nope")

    @pytest.mark.asyncio
    async def test_already_assigned_request_untouched(self, shop, use_case, store):
        shop.request("q9", assignedTo="t1", workOrderId="w1")

        result = await use_case.execute("q9")

        assert result.already_assigned
        assert result.work_order_id == "w1"
        assert store.count("add") == 0

    @pytest.mark.asyncio
    async def test_missing_customer_creates_nothing(self, shop, use_case, store):
        shop.request("q2", customer_id="ghost")

        with pytest.raises(NotFoundError):
            await use_case.execute("q2")
        assert set(store.dump(WORK_ORDERS)) == {"w1", "w2", "w3"}


class TestConcurrentAssignment:
    @pytest.mark.asyncio
    async def test_parallel_calls_create_one_work_order(self, shop, store, notifier, metrics, tz, now):
        use_case = AssignTechnicianUseCase(
            ResilientDocumentStore(store, initial_wait_s=0.0, max_wait_s=0.0),
            notifier,
            metrics,
            tz=tz,
            utcnow=lambda: now,
        )

        outcomes = await asyncio.gather(
            use_case.execute("q1"), use_case.execute("q1"), return_exceptions=True
        )
        await use_case.drain()

        orders = [wo_id for wo_id, wo in store.dump(WORK_ORDERS).items() if wo.get("queueEntryId") == "q1"]
        assert len(orders) == 1
        assert store.dump(QUEUE_ENTRIES)["q1"]["workOrderId"] == orders[0]
        created = [o for o in outcomes if isinstance(o, AssignmentResult) and not o.already_assigned]
        assert [o.work_order_id for o in created] == orders
        for other in outcomes:
            if other in created:
                continue
            assert isinstance(other, AssignmentInProgressError) or (
                other.already_assigned and other.work_order_id == orders[0]
            )

    @pytest.mark.asyncio
    async def test_fresh_claim_blocks_second_caller(self, shop, use_case, store, now):
        shop.request("q3", assignmentStatus="assigning", assignmentClaimedAt=now - timedelta(minutes=1))

        with pytest.raises(AssignmentInProgressError):
            await use_case.execute("q3")

        assert store.count("add", WORK_ORDERS) == 0
        assert store.dump(QUEUE_ENTRIES)["q3"]["assignmentStatus"] == "assigning"

    @pytest.mark.asyncio
    async def test_stale_claim_is_taken_over(self, shop, use_case, store, now):
        shop.request("q3", assignmentStatus="assigning", assignmentClaimedAt=now - timedelta(hours=1))

        result = await use_case.execute("q3")

        request = store.dump(QUEUE_ENTRIES)["q3"]
        assert request["workOrderId"] == result.work_order_id
        assert request["assignmentStatus"] == "assigned"
        assert request["assignmentClaimedAt"] is None

    @pytest.mark.asyncio
    async def test_request_assigned_while_scoring_is_returned(self, shop, use_case, store):
        original_get = store.get

        async def get_then_assign(collection, doc_id):
            doc = await original_get(collection, doc_id)
            if collection == QUEUE_ENTRIES and doc_id == "q1":
                shop.request("q1", assignedTo="t1", workOrderId="w1")
            return doc

        store.get = get_then_assign

        result = await use_case.execute("q1")

        assert result.already_assigned
        assert result.work_order_id == "w1"
        assert store.count("add", WORK_ORDERS) == 0


class TestWriteFailures:
    @pytest.mark.asyncio
    async def test_request_update_failure_flags_request(self, shop, use_case, store):
        store.fail("update", QUEUE_ENTRIES, times=1)

        with pytest.raises(AssignmentFailedError) as excinfo:
            await use_case.execute("q1")

        assert excinfo.value.request_id == "q1"
        assert excinfo.value.work_order_id is not None
        request = store.dump(QUEUE_ENTRIES)["q1"]
        assert request["assignmentStatus"] == "assignment_failed"
        assert request["assignmentClaimedAt"] is None
        assert "workOrderId" not in request
        events = _audit_events(store)
        assert [e["reason"] for e in events] == ["assignment_write_failed"]

    @pytest.mark.asyncio
    async def test_work_order_insert_failure(self, shop, use_case, store):
        store.fail("add", WORK_ORDERS)

        with pytest.raises(AssignmentFailedError) as excinfo:
            await use_case.execute("q1")

        assert excinfo.value.work_order_id is None
        assert store.dump(QUEUE_ENTRIES)["q1"]["assignmentStatus"] == "assignment_failed"


class TestSideEffectFailures:
    @pytest.mark.asyncio
    async def test_push_failure_does_not_block_metrics_or_audit(self, shop, use_case, store, notifier):
        notifier.fail_users.add("t2")

        result = await use_case.execute("q1")
        await use_case.drain()

        assert result.technician_id == "t2"
        assert store.dump(TECHNICIAN_METRICS)["t2"]["totalAssignments"] == 1
        assert len(_audit_events(store)) == 1

    @pytest.mark.asyncio
    async def test_customer_without_phone_gets_no_sms(self, shop, use_case, notifier):
        shop.customer("cust-1", phone=None)

        await use_case.execute("q1")
        await use_case.drain()

        assert notifier.sms == []

    @pytest.mark.asyncio
    async def test_monthly_counter_rolls_over(self, shop, use_case, store):
        store.load(
            TECHNICIAN_METRICS,
            {"t2": {"technicianId": "t2", "month": "2024-02", "totalAssignments": 5, "assignmentsThisMonth": 4}},
        )

        await use_case.execute("q1")
        await use_case.drain()

        doc = store.dump(TECHNICIAN_METRICS)["t2"]
        assert doc["totalAssignments"] == 6
        assert doc["assignmentsThisMonth"] == 1
        assert doc["month"] == "2024-03"
