"""Domain enums: pure Python, no external dependencies."""

from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    TECHNICIAN = "technician"
    MANAGER = "manager"
    ADMIN = "admin"


class WorkOrderStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_PARTS = "waiting_parts"
    READY_FOR_PICKUP = "ready_for_pickup"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


# Counted as technician workload
ACTIVE_WORK_ORDER_STATUSES = (
    WorkOrderStatus.OPEN,
    WorkOrderStatus.IN_PROGRESS,
    WorkOrderStatus.WAITING_PARTS,
)

# Occupying a bay right now
IN_SHOP_WORK_ORDER_STATUSES = (
    WorkOrderStatus.IN_PROGRESS,
    WorkOrderStatus.WAITING_PARTS,
)


class RequestStatus(str, Enum):
    WAITING = "waiting"
    CALLED = "called"
    SERVED = "served"
    CANCELLED = "cancelled"


class AssignmentStatus(str, Enum):
    ASSIGNING = "assigning"
    ASSIGNED = "assigned"
    ASSIGNMENT_FAILED = "assignment_failed"


class AppointmentStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Appointments that consume capacity today
BOOKED_APPOINTMENT_STATUSES = (
    AppointmentStatus.SCHEDULED,
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.IN_PROGRESS,
)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
