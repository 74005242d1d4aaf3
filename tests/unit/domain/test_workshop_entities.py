"""Tests for domain entities, enums and value objects."""

from datetime import datetime, timezone

from workshop.domain.entities.appointment import Appointment
from workshop.domain.entities.assignment import AssignmentResult, NoTechnicianAvailable
from workshop.domain.entities.service_request import ServiceRequest
from workshop.domain.entities.technician import Technician
from workshop.domain.entities.vehicle import Vehicle
from workshop.domain.entities.work_order import WorkOrder, format_work_order_number
from workshop.domain.value_objects.capacity import CapacitySnapshot
from workshop.domain.value_objects.enums import (
    ACTIVE_WORK_ORDER_STATUSES,
    AppointmentStatus,
    BreakerState,
    WorkOrderStatus,
)


class TestTechnician:
    def test_eligible_requires_availability_and_skills(self):
        assert Technician(id="t1", name="A", skills=["x"]).is_eligible()
        assert not Technician(id="t1", name="A", skills=[]).is_eligible()
        assert not Technician(id="t1", name="A", skills=["x"], is_available=False).is_eligible()

    def test_brand_experience_is_case_insensitive(self):
        tech = Technician(id="t1", name="A", skills=["Yamaha_Certified"])
        assert tech.has_brand_experience("yamaha")
        assert not tech.has_brand_experience("")
        assert not tech.has_brand_experience(None)


class TestWorkOrder:
    def test_number_format(self):
        assert format_work_order_number(2024, 3, 7) == "WO-202403-0007"
        assert format_work_order_number(2024, 12, 12345) == "WO-202412-12345"

    def test_only_open_orders_are_movable(self):
        assert WorkOrder(id="w", status=WorkOrderStatus.OPEN).is_movable()
        assert not WorkOrder(id="w", status=WorkOrderStatus.IN_PROGRESS).is_movable()

    def test_active_statuses(self):
        assert WorkOrderStatus.WAITING_PARTS in ACTIVE_WORK_ORDER_STATUSES
        assert not WorkOrder(id="w", status=WorkOrderStatus.DELIVERED).is_active()


class TestAppointment:
    def test_pending_approval_counts_as_unassigned(self):
        at = datetime(2024, 3, 15, 14, tzinfo=timezone.utc)
        apt = Appointment(id="a", scheduled_at=at, status=AppointmentStatus.PENDING_APPROVAL, assigned_to="t1")
        assert apt.is_unassigned()
        assert not apt.is_booked()

    def test_confirmed_is_booked(self):
        at = datetime(2024, 3, 15, 14, tzinfo=timezone.utc)
        apt = Appointment(id="a", scheduled_at=at, status=AppointmentStatus.CONFIRMED, assigned_to="t1")
        assert apt.is_booked()
        assert not apt.is_unassigned()


class TestVehicle:
    def test_placeholder_brand_is_unknown(self):
        assert Vehicle(id="v", brand="Unknown").known_brand() is None
        assert Vehicle(id="v", brand=None).known_brand() is None
        assert Vehicle(id="v", brand=" KTM ").known_brand() == "KTM"


class TestAssignmentOutcomes:
    def test_request_is_assigned_once_it_has_a_work_order(self):
        request = ServiceRequest(id="q", customer_id="c", service_type="s", joined_at=None)
        assert not request.is_assigned()
        request.work_order_id = "wo-1"
        assert request.is_assigned()

    def test_no_technician_event(self):
        assert NoTechnicianAvailable("q1").to_event() == {
            "requestId": "q1",
            "reason": "no_technicians_available",
        }

    def test_result_without_scores(self):
        result = AssignmentResult(request_id="q1", technician_id="t1", work_order_id="w1")
        assert result.winning_score is None
        assert result.to_event()["scores"] == []


class TestCapacitySnapshot:
    def test_from_dict_ignores_unknown_keys(self):
        snapshot = CapacitySnapshot(16, 4, 12, 25.0, 1, 3, 1)
        data = snapshot.to_dict() | {"calculatedAt": "2024-03-15T15:00:00+00:00"}
        assert CapacitySnapshot.from_dict(data) == snapshot


def test_str_enums_compare_to_values():
    assert BreakerState.HALF_OPEN == "half_open"
    assert WorkOrderStatus("ready_for_pickup") is WorkOrderStatus.READY_FOR_PICKUP
