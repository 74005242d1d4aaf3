"""TechnicianScore value object: weighted suitability of one technician for one request."""

from dataclasses import asdict, dataclass

SKILLS_MATCH_MAX = 40.0
WORKLOAD_BALANCE_MAX = 30.0
RATING_MAX = 15.0
BRAND_EXPERIENCE_MAX = 10.0
ROTATION_MAX = 5.0


@dataclass(frozen=True)
class ScoreBreakdown:
    skills_match: float
    workload_balance: float
    rating: float
    brand_experience: float
    rotation: float

    def total(self) -> float:
        return (
            self.skills_match
            + self.workload_balance
            + self.rating
            + self.brand_experience
            + self.rotation
        )

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class TechnicianScore:
    technician_id: str
    technician_name: str
    breakdown: ScoreBreakdown

    @property
    def total(self) -> float:
        return self.breakdown.total()

    def to_dict(self) -> dict:
        return {
            "technician_id": self.technician_id,
            "technician_name": self.technician_name,
            "total": round(self.total, 3),
            "breakdown": self.breakdown.to_dict(),
        }
