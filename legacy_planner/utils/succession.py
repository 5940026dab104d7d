"""Deterministic family roster evolution: aging, mortality cutoff, successor pool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from legacy_planner.utils.config import FamilyMember


@dataclass(frozen=True)
class SuccessionPath:
    """Roster snapshot per simulated year. Index 0 is the opening roster."""

    alive_by_year: tuple[tuple[str, ...], ...]
    successors_by_year: tuple[tuple[str, ...], ...]
    involvement_by_year: tuple[float, ...]

    @property
    def final_successors(self) -> tuple[str, ...]:
        return self.successors_by_year[-1]

    @property
    def final_involvement(self) -> float:
        return self.involvement_by_year[-1]

    def alive_counts(self) -> list[int]:
        return [len(alive) for alive in self.alive_by_year]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "year": range(len(self.alive_by_year)),
                "alive": self.alive_counts(),
                "successors": [len(s) for s in self.successors_by_year],
                "involvement_hours": list(self.involvement_by_year),
            }
        )


def model_family_succession(members: Sequence[FamilyMember], years: int) -> SuccessionPath:
    """Age the roster one year at a time.

    A member survives into a year while their age is at most their life
    expectancy. Removal is permanent: each year only filters the previous
    year's survivors.
    """
    ages = [member.age for member in members]
    alive = list(range(len(members)))

    alive_by_year = [tuple(members[i].id for i in alive)]
    successors_by_year = [tuple(members[i].id for i in alive if members[i].successor_flag)]
    involvement_by_year = [float(sum(members[i].time_commitment for i in alive))]

    for _ in range(years):
        survivors = []
        for i in alive:
            ages[i] += 1
            if ages[i] <= members[i].life_expectancy:
                survivors.append(i)
        alive = survivors

        alive_by_year.append(tuple(members[i].id for i in alive))
        successors_by_year.append(tuple(members[i].id for i in alive if members[i].successor_flag))
        involvement_by_year.append(float(sum(members[i].time_commitment for i in alive)))

    return SuccessionPath(
        alive_by_year=tuple(alive_by_year),
        successors_by_year=tuple(successors_by_year),
        involvement_by_year=tuple(involvement_by_year),
    )


def successor_readiness(path: SuccessionPath, members: Sequence[FamilyMember]) -> float:
    """Mean philanthropic interest of the successors still alive at the horizon; 0 when none remain."""
    final = path.final_successors
    if not final:
        return 0.0
    interest = {member.id: member.philanthropic_interest for member in members}
    return sum(interest[member_id] for member_id in final) / len(final)


def family_engagement(final_involvement: float, minimum_involvement: float) -> float:
    """Share of the required family hours still covered at the horizon, capped at 1."""
    if minimum_involvement <= 0:
        return 1.0 if final_involvement > 0 else 0.0
    return min(1.0, final_involvement / minimum_involvement)
