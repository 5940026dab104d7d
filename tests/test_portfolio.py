"""Tests for the yearly portfolio and charitable-vehicle recurrences."""

import copy
from dataclasses import replace
from unittest.mock import patch

import numpy as np
import pytest

from legacy_planner.utils.config import (
    Asset,
    CharitableVehicle,
    FamilyMember,
    LegacyPlan,
    PhilanthropyConfig,
    StrategyAssumptions,
)
from legacy_planner.utils.defaults import DEFAULT_INVESTMENT_STRATEGIES, build_sample_philanthropy_config
from legacy_planner.utils.portfolio import (
    advance_vehicle_year,
    blend_strategy_return,
    simulate_portfolio_performance,
)
from legacy_planner.utils.returns import build_cholesky_factor

FLAT = StrategyAssumptions(
    name="flat",
    returns={"cash": 0.0},
    volatility={"cash": 0.0},
    allocation={"cash": 1.0},
)


def _vehicle(**overrides) -> CharitableVehicle:
    fields = {
        "id": "Fund",
        "vehicle_type": "privateFoundation",
        "current_value": 1_000_000.0,
        "annual_contribution": 0.0,
        "annual_admin_costs": 0.0,
        "distribution_requirement": 0.0,
        "investment_strategy": "flat",
    }
    fields.update(overrides)
    return CharitableVehicle(**fields)


def _config(assets, vehicles, years=5, **overrides) -> PhilanthropyConfig:
    fields = {
        "simulation_years": years,
        "simulation_runs": 1,
        "assets": tuple(assets),
        "charitable_vehicles": tuple(vehicles),
        "family_members": (FamilyMember("Founder", 60, 90, 0.0, 10_000.0, 0.5),),
        "legacy_plan": LegacyPlan(minimum_family_involvement=0.0),
        "investment_strategies": {"flat": FLAT},
        "correlation_matrix": ((1.0,),),
        "impact_premium": 0.0,
    }
    fields.update(overrides)
    return PhilanthropyConfig(**fields)


def test_zero_volatility_zero_return_asset_holds_value_every_year():
    """One flat equity asset stays at exactly 1,000,000 for every year of the horizon."""
    asset = Asset("Equity", "equity", 1_000_000.0, 0.0, 0.0, 1)
    config = _config([asset], [_vehicle(current_value=0.0)], years=5)

    path = simulate_portfolio_performance(config, np.random.default_rng(1))

    assert path.years == 5
    assert list(path.portfolio) == [1_000_000.0] * 6


def test_full_distribution_vehicle_drains_in_first_year():
    """A 100% distribution requirement with no contribution empties the vehicle after year one."""
    asset = Asset("Equity", "equity", 5_000_000.0, 0.05, 0.1, 1)
    vehicle = _vehicle(
        annual_admin_costs=0.01,
        distribution_requirement=1.0,
        investment_strategy="balanced",
    )
    config = _config([asset], [vehicle], years=3, investment_strategies=dict(DEFAULT_INVESTMENT_STRATEGIES))

    for seed in range(10):
        path = simulate_portfolio_performance(config, np.random.default_rng(seed))
        assert path.charitable[1] == pytest.approx(0.0, abs=1e-6)
        assert path.distributions[1] > 0.0


def test_vehicle_year_applies_return_contribution_admin_then_distribution():
    """Order of operations on a flat strategy: contribution, 1% admin, then 5% distribution."""
    vehicle = _vehicle(annual_contribution=100_000.0, annual_admin_costs=0.01, distribution_requirement=0.05)

    outcome = advance_vehicle_year(1_000_000.0, vehicle, FLAT, np.random.default_rng(0))

    assert outcome.admin_costs == pytest.approx(11_000.0)
    assert outcome.distribution == pytest.approx(1_089_000.0 * 0.05)
    assert outcome.value == pytest.approx(1_089_000.0 * 0.95)


def test_vehicle_without_strategy_is_held_flat():
    """An unresolved strategy carries the value unchanged with no distribution."""
    outcome = advance_vehicle_year(250_000.0, _vehicle(), None, np.random.default_rng(0))
    assert outcome.value == 250_000.0
    assert outcome.distribution == 0.0


def test_blend_normalizes_by_weights_actually_used():
    """Allocations summing to 0.5 still produce the weighted-average return."""
    strategy = StrategyAssumptions(
        name="half",
        returns={"equity": 0.10, "cash": 0.02},
        volatility={"equity": 0.0, "cash": 0.0},
        allocation={"equity": 0.25, "cash": 0.25},
    )
    assert blend_strategy_return(strategy, np.random.default_rng(0)) == pytest.approx(0.06)


def test_blend_with_zero_total_weight_returns_zero():
    """An empty allocation contributes no return instead of dividing by zero."""
    strategy = StrategyAssumptions(name="empty", returns={}, volatility={}, allocation={})
    assert blend_strategy_return(strategy, np.random.default_rng(0)) == 0.0


def test_unknown_strategy_reference_never_produces_nan():
    """Under the skip policy an orphaned vehicle is carried flat and totals stay finite."""
    asset = Asset("Equity", "equity", 1_000_000.0, 0.05, 0.1, 1)
    config = _config([asset], [_vehicle(investment_strategy="missing")], years=4)

    path = simulate_portfolio_performance(config, np.random.default_rng(2))

    assert np.all(np.isfinite(path.family))
    assert list(path.charitable) == [1_000_000.0] * 5


def test_impact_premium_is_added_to_impact_focused_assets_only():
    """A -1% premium trims the impact asset while the plain asset keeps its return."""
    plain = Asset("Plain", "equity", 100.0, 0.05, 0.0, 1)
    impact = Asset("Impact", "privateEquity", 100.0, 0.05, 0.0, 1, impact_focused=True)
    config = _config([plain, impact], [_vehicle(current_value=0.0)], years=1, impact_premium=-0.01)

    path = simulate_portfolio_performance(config, np.random.default_rng(0))

    assert path.portfolio[1] == pytest.approx(105.0 + 104.0)


def test_asset_balances_are_floored_at_zero():
    """A return below -100% wipes a position out instead of turning it negative."""
    asset = Asset("Doomed", "hedge", 100.0, -3.0, 0.0, 1)
    config = _config([asset], [_vehicle(current_value=0.0)], years=2)

    path = simulate_portfolio_performance(config, np.random.default_rng(0))

    assert path.portfolio[1] == 0.0
    assert path.portfolio[2] == 0.0


def test_net_of_vehicles_convention_boundaries():
    """Family value is portfolio less vehicles: unchanged with no vehicle capital, zero when equal."""
    asset = Asset("Cash", "cash", 500_000.0, 0.0, 0.0, 1)

    empty = simulate_portfolio_performance(
        _config([asset], [_vehicle(current_value=0.0)], years=2), np.random.default_rng(0)
    )
    equal = simulate_portfolio_performance(
        _config([asset], [_vehicle(current_value=500_000.0)], years=2), np.random.default_rng(0)
    )

    assert list(empty.family) == [500_000.0] * 3
    assert list(equal.family) == [0.0] * 3


def test_separate_pools_convention_boundaries():
    """Family value is the whole portfolio while vehicles are tracked beside it."""
    asset = Asset("Cash", "cash", 500_000.0, 0.0, 0.0, 1)

    empty = simulate_portfolio_performance(
        _config([asset], [_vehicle(current_value=0.0)], years=2, family_value_convention="separate_pools"),
        np.random.default_rng(0),
    )
    equal = simulate_portfolio_performance(
        _config([asset], [_vehicle(current_value=500_000.0)], years=2, family_value_convention="separate_pools"),
        np.random.default_rng(0),
    )

    assert list(empty.family) == [500_000.0] * 3
    assert list(equal.family) == [500_000.0] * 3
    assert list(equal.charitable) == [500_000.0] * 3


def test_simulation_leaves_caller_config_untouched():
    """Per-trial balances live outside the config, so inputs compare equal afterwards."""
    config = build_sample_philanthropy_config(simulation_years=10, simulation_runs=1)
    snapshot = copy.deepcopy(config)

    simulate_portfolio_performance(config, np.random.default_rng(9))

    assert config == snapshot
    assert config.assets[0].current_value == 50_000_000.0


def test_same_seed_gives_identical_paths_and_frame_layout():
    """A seeded generator makes the path reproducible; the frame has one row per year."""
    config = build_sample_philanthropy_config(simulation_years=8, simulation_runs=1)

    first = simulate_portfolio_performance(config, np.random.default_rng(21))
    second = simulate_portfolio_performance(config, np.random.default_rng(21))

    assert np.array_equal(first.family, second.family)
    assert np.array_equal(first.vehicle_values, second.vehicle_values)
    frame = first.to_frame()
    assert list(frame.columns) == ["year", "portfolio", "charitable", "distributions", "family"]
    assert len(frame) == 9


def test_cholesky_method_is_used_when_configured():
    """The evolver builds the factor once and hands it to the return generator."""
    config = replace(build_sample_philanthropy_config(simulation_years=2, simulation_runs=1), correlation_method="cholesky")

    with patch("legacy_planner.utils.portfolio.build_cholesky_factor", wraps=build_cholesky_factor) as factor:
        path = simulate_portfolio_performance(config, np.random.default_rng(4))

    factor.assert_called_once()
    assert np.all(np.isfinite(path.portfolio))
