"""CapacitySnapshot value object: point-in-time shop capacity."""

from dataclasses import asdict, dataclass, fields


@dataclass(frozen=True)
class CapacitySnapshot:
    total_capacity: int
    used_capacity: int
    available_capacity: int
    utilization_rate: float
    available_technicians: int
    active_work_orders: int
    scheduled_appointments: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CapacitySnapshot":
        """Rebuild from a cached dict, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})
