"""Discrete grid searches over withdrawal rates, vehicle types and entity/jurisdiction pairs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Mapping, Sequence

import numpy as np

from legacy_planner.utils.config import (
    ENTITY_TYPES,
    JURISDICTIONS,
    VEHICLE_TYPES,
    CharitableVehicle,
    HarvestingStrategy,
    StrategyAssumptions,
    TaxAsset,
    TaxRates,
)
from legacy_planner.utils.defaults import (
    DEFAULT_HARVESTING_STRATEGY,
    DEFAULT_INVESTMENT_STRATEGIES,
    ENTITY_JURISDICTION_CATALOG,
    VEHICLE_CHARACTERISTICS,
)
from legacy_planner.utils.returns import random_normal_array
from legacy_planner.utils.tax_engine import calculate_asset_taxes, simulate_asset_performance, terminal_value

logger = logging.getLogger(__name__)

DEFAULT_SUCCESS_PROBABILITY = 0.95
RATE_DECIMALS = 6


@dataclass(frozen=True)
class SearchOutcome:
    rate: float
    outcome: float


@dataclass(frozen=True)
class EntityJurisdictionChoice:
    """Winning single entity/jurisdiction assignment as one-hot mixes.

    Both mixes are all zero when no combination produced a positive
    after-tax value.
    """

    entity_mix: dict[str, float]
    jurisdiction_mix: dict[str, float]
    total_value: float
    entity_type: str | None = None
    jurisdiction: str | None = None


def withdrawal_rate_grid(start: float = 0.02, stop: float = 0.07, step: float = 0.0025) -> list[float]:
    """Inclusive rate grid; empty when `step` is not positive or `stop` < `start`."""
    if step <= 0 or stop < start:
        return []
    count = int(np.floor((stop - start) / step + 1e-9)) + 1
    return [round(start + i * step, RATE_DECIMALS) for i in range(count)]


def _strategy_arrays(strategy: StrategyAssumptions | None) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if strategy is None:
        empty = np.zeros(0, dtype=float)
        return empty, empty, empty
    classes = list(strategy.allocation)
    weights = np.array([strategy.allocation[c] for c in classes], dtype=float)
    means = np.array([strategy.returns[c] for c in classes], dtype=float)
    stds = np.array([strategy.volatility[c] for c in classes], dtype=float)
    return weights, means, stds


def _withdrawal_success_probability(
    vehicle: CharitableVehicle,
    weights: np.ndarray,
    means: np.ndarray,
    stds: np.ndarray,
    rate: float,
    years: int,
    rng: np.random.Generator,
    inflation_rate: float,
    runs: int,
) -> float:
    """Share of `runs` paths on which the vehicle stays positive while paying an inflating grant."""
    values = np.full(runs, float(vehicle.current_value))
    distribution = vehicle.current_value * rate
    failed = np.zeros(runs, dtype=bool)
    total_weight = float(weights.sum())

    for _ in range(years):
        if total_weight > 0:
            draws = random_normal_array(means, stds, rng, (runs, weights.size))
            blended = draws @ weights / total_weight
        else:
            blended = np.zeros(runs)

        values = values * (1.0 + blended)
        values = values + vehicle.annual_contribution
        values = values - values * vehicle.annual_admin_costs
        distribution *= 1.0 + inflation_rate
        values = values - distribution
        failed |= values <= 0

    return float(np.count_nonzero(~failed)) / runs


def find_sustainable_withdrawal_rate(
    vehicle: CharitableVehicle,
    strategy: StrategyAssumptions | None,
    years: int,
    rng: np.random.Generator,
    success_probability: float = DEFAULT_SUCCESS_PROBABILITY,
    inflation_rate: float = 0.02,
    runs: int = 1_000,
    rates: Sequence[float] | None = None,
) -> SearchOutcome:
    """Highest grid rate whose simulated success probability meets the target.

    Success probability is assumed to fall as the rate rises, so the scan
    stops at the first rate that misses the target; a non-monotonic optimum
    further up the grid is not explored. The outcome is the success
    probability of the accepted rate.
    """
    if runs < 1:
        raise ValueError("runs must be at least 1.")
    if rates is None:
        rates = withdrawal_rate_grid()

    weights, means, stds = _strategy_arrays(strategy)
    best = SearchOutcome(rate=0.0, outcome=0.0)
    for rate in rates:
        probability = _withdrawal_success_probability(
            vehicle, weights, means, stds, rate, years, rng, inflation_rate, runs
        )
        if probability < success_probability:
            break
        best = SearchOutcome(rate=rate, outcome=probability)
    return best


def score_withdrawal_rates(
    rates: Sequence[float],
    final_charitable: float,
    initial_charitable: float,
    years: int,
) -> SearchOutcome:
    """Pick the rate maximizing 0.6 x vehicle sustainability + 0.4 x cumulative payout share."""
    sustainability = final_charitable / initial_charitable if initial_charitable > 0 else 0.0

    best = SearchOutcome(rate=0.0, outcome=0.0)
    for rate in rates:
        outcome = sustainability * 0.6 + rate * years * 0.4
        if outcome > best.outcome:
            best = SearchOutcome(rate=rate, outcome=outcome)
    return best


def expected_strategy_return(strategy: StrategyAssumptions) -> float:
    total_weight = sum(strategy.allocation.values())
    if total_weight <= 0:
        return 0.0
    weighted = sum(weight * strategy.returns[c] for c, weight in strategy.allocation.items())
    return weighted / total_weight


def evaluate_charitable_vehicles(
    initial_capital: float,
    annual_contribution: float,
    years: int,
    inflation_rate: float,
    rng: np.random.Generator,
    runs: int = 500,
    strategy: StrategyAssumptions | None = None,
) -> dict[str, float]:
    """Score each vehicle type on payout, tax efficiency, donor control and flexibility.

    The payout component comes from a deterministic projection at the
    strategy's expected return, paying the larger of the sustainable grant
    and the vehicle's minimum distribution. Scores are normalized to sum to 1.
    """
    if strategy is None:
        strategy = DEFAULT_INVESTMENT_STRATEGIES["balanced"]
    expected_return = expected_strategy_return(strategy)
    capital_base = initial_capital + annual_contribution * years

    scores: dict[str, float] = {}
    for vehicle_type in VEHICLE_TYPES:
        traits = VEHICLE_CHARACTERISTICS[vehicle_type]
        candidate = CharitableVehicle(
            id=f"Test-{vehicle_type}",
            vehicle_type=vehicle_type,
            current_value=initial_capital,
            annual_contribution=annual_contribution,
            annual_admin_costs=traits["admin_costs"],
            distribution_requirement=traits["distribution_requirement"],
            investment_strategy=strategy.name,
        )
        sustainable = find_sustainable_withdrawal_rate(
            candidate, strategy, years, rng, inflation_rate=inflation_rate, runs=runs
        )

        value = initial_capital
        distribution = initial_capital * sustainable.rate
        total_distributions = 0.0
        for _ in range(years):
            value = value * (1.0 + expected_return)
            value += annual_contribution
            value -= value * traits["admin_costs"]
            distribution *= 1.0 + inflation_rate
            paid = max(distribution, value * traits["distribution_requirement"])
            value -= paid
            total_distributions += paid

        distribution_score = total_distributions / capital_base if capital_base > 0 else 0.0
        scores[vehicle_type] = (
            distribution_score * 0.4
            + traits["tax_efficiency"] * 0.25
            + traits["control"] * 0.2
            + traits["flexibility"] * 0.15
        )

    total_score = sum(scores.values())
    if total_score > 0:
        scores = {vehicle_type: score / total_score for vehicle_type, score in scores.items()}
    return scores


def _combination_supported(entity_type: str, jurisdiction: str, tax_rates: TaxRates) -> bool:
    tables = (
        tax_rates.dividends,
        tax_rates.long_term_capital_gains,
        tax_rates.short_term_capital_gains,
    )
    return entity_type in tax_rates.entity_modifiers and all(jurisdiction in table for table in tables)


def evaluate_entity_jurisdiction_combinations(
    assets: Sequence[TaxAsset],
    tax_rates: TaxRates,
    years: int,
    transfer_costs: Mapping[str, float],
    rng: np.random.Generator,
    harvesting: HarvestingStrategy = DEFAULT_HARVESTING_STRATEGY,
    catalog: Sequence[tuple[str, str]] = ENTITY_JURISDICTION_CATALOG,
    path_model: str = "income_only",
) -> EntityJurisdictionChoice:
    """Re-simulate every asset under each catalogued pair and keep the best after-tax total.

    Each asset's after-tax value is its terminal value less taxes and the
    entity's one-off transfer cost. A pair replaces the current best only
    when strictly better, starting from zero, so ties keep the earlier pair.
    """
    best_value = 0.0
    best_pair: tuple[str, str] | None = None

    for entity_type, jurisdiction in catalog:
        if not _combination_supported(entity_type, jurisdiction, tax_rates):
            logger.debug("Skipping %s/%s: no tax rates for that pair.", entity_type, jurisdiction)
            continue

        transfer_cost = transfer_costs.get(entity_type, 0.0)
        total_after_tax = 0.0
        for asset in assets:
            candidate = replace(asset, entity_type=entity_type, jurisdiction=jurisdiction)
            performance = simulate_asset_performance(candidate, years, rng, path_model)
            taxes = calculate_asset_taxes(candidate, performance, tax_rates, harvesting)
            total_after_tax += terminal_value(candidate, performance) - taxes.total_tax - transfer_cost

        if total_after_tax > best_value:
            best_value = total_after_tax
            best_pair = (entity_type, jurisdiction)

    entity_mix = {entity_type: 0.0 for entity_type in ENTITY_TYPES}
    jurisdiction_mix = {jurisdiction: 0.0 for jurisdiction in JURISDICTIONS}
    if best_pair is None:
        return EntityJurisdictionChoice(entity_mix, jurisdiction_mix, best_value)

    entity_mix[best_pair[0]] = 1.0
    jurisdiction_mix[best_pair[1]] = 1.0
    return EntityJurisdictionChoice(
        entity_mix=entity_mix,
        jurisdiction_mix=jurisdiction_mix,
        total_value=best_value,
        entity_type=best_pair[0],
        jurisdiction=best_pair[1],
    )
