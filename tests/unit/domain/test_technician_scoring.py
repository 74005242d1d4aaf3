"""Tests for the technician scoring policy."""

import pytest

from workshop.domain.entities.technician import Technician
from workshop.domain.policies.technician_scoring import rank_scores, score_technician


def _tech(tech_id, skills, rating=4.5, available=True):
    return Technician(id=tech_id, name=tech_id.upper(), skills=list(skills), rating=rating, is_available=available)


class TestScoreTechnician:
    def test_worked_example_b_beats_a(self):
        a = _tech("a", ["basic_maintenance", "engine_repair"])
        b = _tech("b", ["basic_maintenance", "brake_service"])
        required = ["basic_maintenance"]

        score_a = score_technician(a, required, None, active_assignments=2, hours_since_last_assignment=2)
        score_b = score_technician(b, required, None, active_assignments=1, hours_since_last_assignment=24)

        assert score_a.breakdown.skills_match == 40
        assert score_a.breakdown.workload_balance == 24
        assert score_a.breakdown.rating == pytest.approx(13.5)
        assert score_a.breakdown.brand_experience == 5
        assert score_a.breakdown.rotation == pytest.approx(2 / 24)
        assert score_a.total == pytest.approx(82.583, abs=1e-3)

        assert score_b.breakdown.workload_balance == 27
        assert score_b.breakdown.rotation == pytest.approx(1.0)
        assert score_b.total == pytest.approx(86.5)

        assert rank_scores([score_a, score_b])[0].technician_id == "b"

    def test_partial_skill_match(self):
        tech = _tech("t1", ["engine_repair"])
        score = score_technician(tech, ["engine_repair", "electrical"], None, 0, None)
        assert score.breakdown.skills_match == 20

    def test_no_required_skills_gives_full_skill_points(self):
        score = score_technician(_tech("t1", ["x"]), [], None, 0, None)
        assert score.breakdown.skills_match == 40

    def test_workload_floors_at_zero(self):
        score = score_technician(_tech("t1", ["x"]), [], None, 15, None)
        assert score.breakdown.workload_balance == 0

    def test_brand_experience_matches_skill_substring(self):
        tech = _tech("t1", ["basic_maintenance", "ktm_specialist"])
        assert score_technician(tech, [], "KTM", 0, None).breakdown.brand_experience == 10
        assert score_technician(tech, [], "Yamaha", 0, None).breakdown.brand_experience == 5

    def test_never_assigned_gets_full_rotation(self):
        score = score_technician(_tech("t1", ["x"]), [], None, 0, None)
        assert score.breakdown.rotation == 5

    def test_negative_hours_do_not_go_below_zero(self):
        score = score_technician(_tech("t1", ["x"]), [], None, 0, -3)
        assert score.breakdown.rotation == 0

    @pytest.mark.parametrize("rating", [0.0, 2.5, 5.0, 7.0, -1.0])
    @pytest.mark.parametrize("active", [0, 3, 20])
    @pytest.mark.parametrize("hours", [None, 0.0, 30.0, 500.0])
    def test_total_is_bounded_and_sums_breakdown(self, rating, active, hours):
        tech = _tech("t1", ["basic_maintenance", "honda"], rating=rating)
        score = score_technician(tech, ["basic_maintenance", "engine_repair"], "Honda", active, hours)
        parts = score.breakdown.to_dict()
        assert 0 <= score.total <= 100
        assert score.total == pytest.approx(sum(parts.values()))

    def test_identical_inputs_identical_scores(self):
        tech = _tech("t1", ["basic_maintenance"])
        first = score_technician(tech, ["basic_maintenance"], "KTM", 2, 10)
        second = score_technician(tech, ["basic_maintenance"], "KTM", 2, 10)
        assert first == second


class TestRankScores:
    def test_tie_goes_to_lower_rotation_then_id(self):
        t1, t2, t3 = _tech("t1", ["x"]), _tech("t2", ["x"]), _tech("t3", ["x"])
        # Same total: t2 trades 3 workload points for 3 rotation points
        s1 = score_technician(t1, [], None, 1, 0)
        s2 = score_technician(t2, [], None, 2, 72)
        s3 = score_technician(t3, [], None, 1, 0)
        assert s1.total == pytest.approx(s2.total)

        ranked = rank_scores([s2, s3, s1])
        assert [s.technician_id for s in ranked] == ["t1", "t3", "t2"]

    def test_to_dict_exposes_breakdown(self):
        score = score_technician(_tech("t1", ["x"]), ["x"], None, 0, None)
        data = score.to_dict()
        assert data["technician_id"] == "t1"
        assert set(data["breakdown"]) == {
            "skills_match", "workload_balance", "rating", "brand_experience", "rotation"
        }
