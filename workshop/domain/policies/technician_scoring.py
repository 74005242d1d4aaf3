"""TechnicianScoringPolicy: five additive factors, 100 points in total."""

from __future__ import annotations

from collections.abc import Iterable

from workshop.domain.entities.technician import Technician
from workshop.domain.value_objects.technician_score import (
    BRAND_EXPERIENCE_MAX,
    RATING_MAX,
    ROTATION_MAX,
    SKILLS_MATCH_MAX,
    WORKLOAD_BALANCE_MAX,
    ScoreBreakdown,
    TechnicianScore,
)

WORKLOAD_PENALTY_PER_ORDER = 3.0
MAX_RATING = 5.0
NO_PRIOR_ASSIGNMENT_HOURS = 24.0 * 7


def score_technician(
    technician: Technician,
    required_skills: Iterable[str],
    vehicle_brand: str | None,
    active_assignments: int,
    hours_since_last_assignment: float | None,
) -> TechnicianScore:
    """Pure function: weighted suitability of *technician* for one request.

    Factors (max points):
      1. Skills match (40)    : share of required skills the technician has.
      2. Workload balance (30): minus 3 per active work order, floored at 0.
      3. Rating (15)          : rating / 5, rating clamped to [0, 5].
      4. Brand experience (10): 10 when a skill mentions the brand, else 5.
      5. Rotation (5)         : 1 point per idle day; never assigned = 1 week.

    Every input is explicit, so identical inputs give identical scores.
    """
    required = {s for s in required_skills}
    if required:
        matched = required.intersection(technician.skills)
        skills_match = len(matched) / len(required) * SKILLS_MATCH_MAX
    else:
        skills_match = SKILLS_MATCH_MAX

    workload_balance = max(
        0.0, WORKLOAD_BALANCE_MAX - max(0, active_assignments) * WORKLOAD_PENALTY_PER_ORDER
    )

    rating = min(MAX_RATING, max(0.0, technician.rating))
    rating_points = rating / MAX_RATING * RATING_MAX

    if vehicle_brand and technician.has_brand_experience(vehicle_brand):
        brand_points = BRAND_EXPERIENCE_MAX
    else:
        brand_points = BRAND_EXPERIENCE_MAX / 2

    hours = NO_PRIOR_ASSIGNMENT_HOURS if hours_since_last_assignment is None else hours_since_last_assignment
    rotation = min(ROTATION_MAX, max(0.0, hours) / 24.0)

    return TechnicianScore(
        technician_id=technician.id,
        technician_name=technician.name,
        breakdown=ScoreBreakdown(
            skills_match=skills_match,
            workload_balance=workload_balance,
            rating=rating_points,
            brand_experience=brand_points,
            rotation=rotation,
        ),
    )


def rank_scores(scores: Iterable[TechnicianScore]) -> list[TechnicianScore]:
    """Highest total first; ties go to the lowest rotation score, then the lowest id."""
    return sorted(
        scores,
        key=lambda s: (-s.total, s.breakdown.rotation, s.technician_id),
    )
