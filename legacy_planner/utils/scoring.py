"""Impact and family/philanthropy balance scores for one completed trial."""

from __future__ import annotations

from typing import Iterable, Sequence

from legacy_planner.utils.config import FamilyMember

MAX_FOCUS_MULTIPLIER = 1.2
NEEDS_COVERAGE_YEARS = 25.0


def unique_in_order(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def mission_alignment(vehicle_causes: Iterable[str], family_causes: Iterable[str]) -> float:
    """Share of distinct vehicle cause areas that some family member also cares about."""
    vehicle_unique = unique_in_order(vehicle_causes)
    family_unique = set(family_causes)
    common = [cause for cause in vehicle_unique if cause in family_unique]
    return len(common) / max(len(vehicle_unique), 1)


def calculate_impact_score(
    distributions: Iterable[float],
    unique_cause_areas: Sequence[str],
    alignment: float,
) -> float:
    """Distributions scaled by cause focus and mission alignment; never negative."""
    total = max(float(sum(distributions)), 0.0)
    focus_multiplier = min(MAX_FOCUS_MULTIPLIER, 0.8 + 0.1 * len(unique_cause_areas))
    alignment_multiplier = 0.5 + 0.5 * alignment
    return total * focus_multiplier * alignment_multiplier


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def calculate_balance_score(
    final_family_assets: float,
    final_charitable_assets: float,
    members: Sequence[FamilyMember],
    philanthropic_allocation: float,
) -> float:
    """Blend of target-ratio alignment (40%), needs coverage (40%) and family interest (20%).

    Each component is clamped to [0, 1]; a zero denominator contributes zero.
    """
    total_assets = final_family_assets + final_charitable_assets
    if total_assets > 0:
        final_ratio = final_family_assets / total_assets
        ratio_alignment = _clamp_unit(1.0 - abs(final_ratio - (1.0 - philanthropic_allocation)))
    else:
        ratio_alignment = 0.0

    total_expenses = sum(member.annual_expenses for member in members)
    if total_expenses > 0:
        needs_coverage = _clamp_unit(final_family_assets / (NEEDS_COVERAGE_YEARS * total_expenses))
    else:
        needs_coverage = 0.0

    if members:
        average_interest = _clamp_unit(sum(m.philanthropic_interest for m in members) / len(members))
    else:
        average_interest = 0.0

    return 0.4 * ratio_alignment + 0.4 * needs_coverage + 0.2 * average_interest
