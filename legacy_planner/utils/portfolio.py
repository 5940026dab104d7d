"""Year-by-year evolution of the family portfolio and its charitable vehicles."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import numpy as np
import pandas as pd

from legacy_planner.utils.config import (
    CharitableVehicle,
    PhilanthropyConfig,
    StrategyAssumptions,
    resolve_strategy_references,
    validate_correlation_matrix,
)
from legacy_planner.utils.returns import build_cholesky_factor, generate_correlated_returns, random_normal


@dataclass(frozen=True)
class VehicleYear:
    """Outcome of one vehicle-year: closing value, grant distribution, admin drag."""

    value: float
    distribution: float
    admin_costs: float


@dataclass(frozen=True, eq=False)
class PortfolioPath:
    """Year-end aggregates of one trial. Index 0 is the opening position."""

    portfolio: np.ndarray
    charitable: np.ndarray
    distributions: np.ndarray
    family: np.ndarray
    vehicle_values: np.ndarray

    @property
    def years(self) -> int:
        return len(self.portfolio) - 1

    @property
    def final_family(self) -> float:
        return float(self.family[-1])

    @property
    def final_charitable(self) -> float:
        return float(self.charitable[-1])

    @property
    def initial_charitable(self) -> float:
        return float(self.charitable[0])

    @property
    def total_distributions(self) -> float:
        return float(self.distributions.sum())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "year": np.arange(len(self.portfolio), dtype=int),
                "portfolio": self.portfolio,
                "charitable": self.charitable,
                "distributions": self.distributions,
                "family": self.family,
            }
        )


def blend_strategy_return(strategy: StrategyAssumptions, rng: np.random.Generator) -> float:
    """Allocation-weighted return with one independent draw per asset class.

    The blend is normalized by the weights actually iterated, so allocations
    that do not sum to one still yield a weighted average. Zero total weight
    yields a zero return.
    """
    blended = 0.0
    total_weight = 0.0
    for asset_class, weight in strategy.allocation.items():
        draw = random_normal(strategy.returns[asset_class], strategy.volatility[asset_class], rng)
        blended += weight * draw
        total_weight += weight

    if total_weight > 0:
        blended = blended / total_weight
    else:
        blended = 0.0
    return blended


def advance_vehicle_year(
    value: float,
    vehicle: CharitableVehicle,
    strategy: StrategyAssumptions | None,
    rng: np.random.Generator,
) -> VehicleYear:
    """Apply return, contribution, admin cost and minimum distribution, in that order.

    A vehicle without a resolved strategy is held flat for the year.
    """
    if strategy is None:
        return VehicleYear(value=value, distribution=0.0, admin_costs=0.0)

    value = max(value * (1.0 + blend_strategy_return(strategy, rng)), 0.0)
    value += vehicle.annual_contribution

    admin_costs = value * vehicle.annual_admin_costs
    value -= admin_costs

    distribution = value * vehicle.distribution_requirement
    value -= distribution
    return VehicleYear(value=value, distribution=distribution, admin_costs=admin_costs)


def _family_value(portfolio: float, charitable: float, convention: str) -> float:
    if convention == "separate_pools":
        return portfolio
    return portfolio - charitable


def simulate_portfolio_performance(
    config: PhilanthropyConfig,
    rng: np.random.Generator,
    strategies: Mapping[str, StrategyAssumptions | None] | None = None,
    correlation_matrix: np.ndarray | None = None,
) -> PortfolioPath:
    """Run one trial of the portfolio and vehicle recurrences.

    Per-trial balances live in arrays owned by this call and indexed by the
    position of each asset/vehicle in the config; the config itself is never
    written to. Under ``"net_of_vehicles"`` family value is the portfolio less
    the vehicle total; under ``"separate_pools"`` it is the whole portfolio and
    vehicles are tracked beside it.
    """
    if strategies is None:
        strategies = resolve_strategy_references(
            config.charitable_vehicles,
            config.investment_strategies,
            policy=config.missing_strategy_policy,
        )
    if correlation_matrix is None:
        correlation_matrix = validate_correlation_matrix(config.correlation_matrix)

    assets = config.assets
    vehicles = config.charitable_vehicles
    years = config.simulation_years
    convention = config.family_value_convention

    asset_values = np.array([asset.current_value for asset in assets], dtype=float)
    premium = np.array(
        [config.impact_premium if asset.impact_focused else 0.0 for asset in assets],
        dtype=float,
    )
    vehicle_state = np.array([vehicle.current_value for vehicle in vehicles], dtype=float)

    cholesky_factor = None
    if config.correlation_method == "cholesky" and assets:
        cholesky_factor = build_cholesky_factor(
            correlation_matrix,
            [asset.correlation_group - 1 for asset in assets],
        )

    portfolio = np.empty(years + 1, dtype=float)
    charitable = np.empty(years + 1, dtype=float)
    distributions = np.zeros(years + 1, dtype=float)
    family = np.empty(years + 1, dtype=float)
    vehicle_values = np.empty((years + 1, len(vehicles)), dtype=float)

    portfolio[0] = float(asset_values.sum())
    charitable[0] = float(vehicle_state.sum())
    family[0] = _family_value(portfolio[0], charitable[0], convention)
    vehicle_values[0] = vehicle_state

    for year in range(1, years + 1):
        asset_returns = generate_correlated_returns(
            assets,
            correlation_matrix,
            rng,
            method=config.correlation_method,
            cholesky_factor=cholesky_factor,
        )
        # A return below -100% wipes the position out rather than flipping its sign.
        asset_values = np.maximum(asset_values * (1.0 + (asset_returns + premium)), 0.0)

        year_distributions = 0.0
        for idx, vehicle in enumerate(vehicles):
            outcome = advance_vehicle_year(vehicle_state[idx], vehicle, strategies.get(vehicle.id), rng)
            vehicle_state[idx] = outcome.value
            year_distributions += outcome.distribution

        portfolio[year] = float(asset_values.sum())
        charitable[year] = float(vehicle_state.sum())
        distributions[year] = year_distributions
        family[year] = _family_value(portfolio[year], charitable[year], convention)
        vehicle_values[year] = vehicle_state

    return PortfolioPath(
        portfolio=portfolio,
        charitable=charitable,
        distributions=distributions,
        family=family,
        vehicle_values=vehicle_values,
    )
