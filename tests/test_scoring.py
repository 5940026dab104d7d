"""Tests for impact and balance scoring."""

import numpy as np
import pytest

from legacy_planner.utils.config import FamilyMember
from legacy_planner.utils.scoring import calculate_balance_score, calculate_impact_score, mission_alignment


def _member(expenses: float = 100_000.0, interest: float = 0.5) -> FamilyMember:
    return FamilyMember("m", 50, 85, 0.0, expenses, interest)


def test_mission_alignment_counts_distinct_shared_causes():
    """Two of three distinct vehicle causes are shared with the family."""
    vehicle = ["Education", "Arts", "Education", "Health"]
    family = ["Education", "Health", "Climate"]
    assert mission_alignment(vehicle, family) == pytest.approx(2 / 3)


def test_mission_alignment_with_no_vehicle_causes_is_zero():
    """An empty cause list avoids the zero denominator."""
    assert mission_alignment([], ["Education"]) == 0.0


def test_impact_score_focus_multiplier_is_capped():
    """Four or more cause areas hit the 1.2 focus cap."""
    distributions = [0.0, 100.0, 100.0]
    two = calculate_impact_score(distributions, ["a", "b"], 1.0)
    many = calculate_impact_score(distributions, ["a", "b", "c", "d", "e", "f"], 1.0)
    assert two == pytest.approx(200.0 * 1.0 * 1.0)
    assert many == pytest.approx(200.0 * 1.2 * 1.0)


def test_impact_score_alignment_multiplier_and_floor():
    """No alignment halves the score and a negative total floors at zero."""
    assert calculate_impact_score([100.0], ["a", "b"], 0.0) == pytest.approx(50.0)
    assert calculate_impact_score([-100.0], ["a"], 1.0) == 0.0


def test_balance_score_on_target_ratio_with_full_coverage():
    """A 70/30 split at target with 25 years of expenses covered scores 0.8 + 0.2 x interest."""
    members = [_member(expenses=100_000.0, interest=0.5)]
    score = calculate_balance_score(2_500_000.0, 2_500_000.0 * 3 / 7, members, 0.3)
    assert score == pytest.approx(0.4 * 1.0 + 0.4 * 1.0 + 0.2 * 0.5)


def test_balance_score_zero_denominators_contribute_nothing():
    """No assets and no expenses leave only the interest term."""
    members = [_member(expenses=0.0, interest=1.0)]
    assert calculate_balance_score(0.0, 0.0, members, 0.3) == pytest.approx(0.2)
    assert calculate_balance_score(0.0, 0.0, [], 0.3) == 0.0


@pytest.mark.parametrize("seed", range(5))
def test_balance_score_stays_within_unit_interval(seed):
    """Random valid inputs, including negative family wealth, keep the score in [0, 1]."""
    rng = np.random.default_rng(seed)
    for _ in range(200):
        family = float(rng.uniform(-1e7, 1e8))
        charitable = float(rng.uniform(0.0, 1e8))
        members = [_member(float(rng.uniform(0, 1e6)), float(rng.uniform(0, 1))) for _ in range(3)]
        score = calculate_balance_score(family, charitable, members, float(rng.uniform(0, 1)))
        assert 0.0 <= score <= 1.0
