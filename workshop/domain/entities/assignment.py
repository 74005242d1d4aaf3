"""Assignment outcomes: what the engine reports for one service request."""

from dataclasses import dataclass, field

from workshop.domain.value_objects.technician_score import TechnicianScore

NO_TECHNICIANS_AVAILABLE = "no_technicians_available"


@dataclass(frozen=True)
class AssignmentResult:
    request_id: str
    technician_id: str
    work_order_id: str
    scores: list[TechnicianScore] = field(default_factory=list)
    already_assigned: bool = False

    @property
    def winning_score(self) -> TechnicianScore | None:
        return self.scores[0] if self.scores else None

    def to_event(self) -> dict:
        return {
            "requestId": self.request_id,
            "technicianId": self.technician_id,
            "workOrderId": self.work_order_id,
            "scores": [s.to_dict() for s in self.scores],
        }


@dataclass(frozen=True)
class NoTechnicianAvailable:
    """Defined outcome, not an error: the request needs manual assignment."""

    request_id: str
    reason: str = NO_TECHNICIANS_AVAILABLE

    def to_event(self) -> dict:
        return {"requestId": self.request_id, "reason": self.reason}
