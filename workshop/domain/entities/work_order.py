"""WorkOrder entity: the unit of work created once a technician is selected."""

from dataclasses import dataclass
from datetime import datetime

from workshop.domain.value_objects.enums import (
    ACTIVE_WORK_ORDER_STATUSES,
    WorkOrderStatus,
)


@dataclass
class WorkOrder:
    id: str
    status: WorkOrderStatus
    assigned_to: str | None = None
    client_id: str | None = None
    vehicle_id: str | None = None
    number: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    total_price: float = 0.0

    def is_active(self) -> bool:
        return self.status in ACTIVE_WORK_ORDER_STATUSES

    def is_movable(self) -> bool:
        """Only orders nobody has started on can change hands."""
        return self.status == WorkOrderStatus.OPEN


def format_work_order_number(year: int, month: int, sequence: int) -> str:
    """WO-YYYYMM-NNNN, sequence restarting every month."""
    return f"WO-{year}{month:02d}-{sequence:04d}"
