"""Tests for the philanthropy and tax-structuring Monte Carlo drivers."""

import copy
import threading
from dataclasses import replace
from unittest.mock import patch

import numpy as np
import pytest

from legacy_planner.utils.config import InvalidConfigurationError, SimulationCancelledError
from legacy_planner.utils.defaults import build_sample_philanthropy_config, build_sample_tax_config
from legacy_planner.utils.monte_carlo import (
    median_annual_tax_rate,
    run_philanthropy_legacy_mcs,
    run_tax_optimization_mcs,
)
from legacy_planner.utils.portfolio import simulate_portfolio_performance


def _small_legacy_config(**overrides):
    config = build_sample_philanthropy_config(simulation_years=6, simulation_runs=8)
    return replace(config, vehicle_mix_runs=20, **overrides)


def _small_tax_config(**overrides):
    config = build_sample_tax_config(simulation_years=5, simulation_runs=6)
    return replace(config, **overrides)


def test_seeded_legacy_runs_are_identical():
    """Two runs with the same seed produce equal results and equal trial frames."""
    config = _small_legacy_config()

    first = run_philanthropy_legacy_mcs(config, random_seed=123)
    second = run_philanthropy_legacy_mcs(config, random_seed=123)

    assert first == second
    assert first.trials.equals(second.trials)


def test_parallel_legacy_run_matches_serial_run():
    """Per-trial generators make the worker count irrelevant to the outcome."""
    config = _small_legacy_config()

    serial = run_philanthropy_legacy_mcs(config, random_seed=7, max_workers=1)
    parallel = run_philanthropy_legacy_mcs(config, random_seed=7, max_workers=3)

    assert serial == parallel
    assert list(parallel.trials["trial"]) == list(range(config.simulation_runs))


def test_seed_sequence_argument_overrides_random_seed():
    """An explicit SeedSequence drives the batch in place of the integer seed."""
    config = _small_legacy_config()

    via_sequence = run_philanthropy_legacy_mcs(config, seed_sequence=np.random.SeedSequence(99), random_seed=1)
    via_seed = run_philanthropy_legacy_mcs(config, random_seed=99)

    assert via_sequence == via_seed


def test_reused_seed_sequence_reproduces_the_batch():
    """Passing the same SeedSequence object twice yields identical results and leaves it unspawned."""
    config = _small_legacy_config()
    sequence = np.random.SeedSequence(99)

    first = run_philanthropy_legacy_mcs(config, seed_sequence=sequence)
    second = run_philanthropy_legacy_mcs(config, seed_sequence=sequence)

    assert first == second
    assert first.trials.equals(second.trials)
    assert sequence.n_children_spawned == 0

    tax_config = _small_tax_config()
    assert run_tax_optimization_mcs(tax_config, seed_sequence=sequence) == run_tax_optimization_mcs(
        tax_config, seed_sequence=sequence
    )


def test_legacy_result_ranges_and_series_layout():
    """Rates are probabilities, the vehicle mix sums to 1 and the series is flat."""
    result = run_philanthropy_legacy_mcs(_small_legacy_config(), random_seed=5)

    assert 0.0 <= result.failure_rate <= 1.0
    assert result.sustainability_score == pytest.approx(1.0 - result.failure_rate)
    assert 0.0 <= result.perpetuity_probability <= 1.0
    assert 0.0 <= result.balance_score <= 1.0
    assert result.philanthropic_impact >= 0.0
    assert sum(result.optimal_vehicle_mix.values()) == pytest.approx(1.0)
    assert 0.02 <= result.optimal_withdrawal_rate <= 0.07
    assert result.completed_runs == 8
    assert result.faulted_runs == 0

    series = result.to_series()
    assert series["failure_rate"] == result.failure_rate
    assert "optimal_vehicle_mix.privateFoundation" in series.index


def test_caller_configuration_is_not_mutated():
    """The input configuration compares equal to a deep snapshot after a full batch."""
    config = _small_legacy_config()
    snapshot = copy.deepcopy(config)

    run_philanthropy_legacy_mcs(config, random_seed=3)

    assert config == snapshot


def test_unaffordable_expenses_fail_every_trial():
    """Family expenses far beyond the portfolio make every trial a failure."""
    base = _small_legacy_config()
    members = tuple(replace(member, annual_expenses=1e12) for member in base.family_members)
    result = run_philanthropy_legacy_mcs(replace(base, family_members=members), random_seed=2)

    assert result.failure_rate == 1.0
    assert result.sustainability_score == 0.0


def test_full_distribution_vehicles_never_reach_perpetuity():
    """Vehicles that pay out everything each year end below their initial value."""
    base = _small_legacy_config()
    vehicles = tuple(
        replace(vehicle, distribution_requirement=1.0, annual_contribution=0.0) for vehicle in base.charitable_vehicles
    )
    result = run_philanthropy_legacy_mcs(replace(base, charitable_vehicles=vehicles), random_seed=2)

    assert result.perpetuity_probability == 0.0
    assert result.trials["final_charitable"].abs().max() == pytest.approx(0.0, abs=1e-6)


def test_faulted_trial_counts_as_failure_and_is_excluded_from_means():
    """An arithmetic fault in one trial is logged, counted failed and left out of averages."""
    config = _small_legacy_config()
    calls = {"count": 0}

    def flaky(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise FloatingPointError("overflow encountered in multiply")
        return simulate_portfolio_performance(*args, **kwargs)

    clean = run_philanthropy_legacy_mcs(config, random_seed=11)
    with patch("legacy_planner.utils.monte_carlo.simulate_portfolio_performance", side_effect=flaky):
        faulted = run_philanthropy_legacy_mcs(config, random_seed=11)

    assert faulted.faulted_runs == 1
    assert faulted.completed_runs == config.simulation_runs
    assert bool(faulted.trials.loc[0, "failed"]) is True
    healthy_wealth = clean.trials.loc[1:, "family_wealth"].mean()
    assert faulted.family_wealth == pytest.approx(healthy_wealth)
    clean_failures = int(clean.trials.loc[1:, "failed"].astype(bool).sum())
    assert faulted.failure_rate == pytest.approx((clean_failures + 1) / config.simulation_runs)


def test_cancelled_before_start_raises():
    """With the event already set no trial runs and the driver refuses to report."""
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(SimulationCancelledError):
        run_philanthropy_legacy_mcs(_small_legacy_config(), random_seed=1, cancel_event=cancel)


def test_cancellation_mid_batch_reduces_completed_trials():
    """Trials finished before the event was set are still reduced."""
    config = _small_legacy_config()
    cancel = threading.Event()

    def cancel_after_first(*args, **kwargs):
        cancel.set()
        return simulate_portfolio_performance(*args, **kwargs)

    with patch("legacy_planner.utils.monte_carlo.simulate_portfolio_performance", side_effect=cancel_after_first):
        result = run_philanthropy_legacy_mcs(config, random_seed=4, cancel_event=cancel)

    assert result.completed_runs == 1
    assert result.cancelled is True
    assert len(result.trials) == 1


def test_invalid_configuration_fails_before_any_trial():
    """Validation errors surface synchronously and no trial is simulated."""
    config = _small_legacy_config(correlation_matrix=((1.0, 0.3), (0.2, 1.0)))
    with patch("legacy_planner.utils.monte_carlo.simulate_portfolio_performance") as simulate:
        with pytest.raises(InvalidConfigurationError):
            run_philanthropy_legacy_mcs(config, random_seed=1)
    simulate.assert_not_called()


def test_invalid_worker_count_is_rejected():
    """Zero workers is not a usable pool size."""
    with pytest.raises(ValueError, match="max_workers"):
        run_philanthropy_legacy_mcs(_small_legacy_config(), random_seed=1, max_workers=0)


def test_seeded_tax_runs_are_identical_and_parallel_safe():
    """The tax driver is reproducible and independent of the worker count."""
    config = _small_tax_config()

    first = run_tax_optimization_mcs(config, random_seed=17)
    second = run_tax_optimization_mcs(config, random_seed=17, max_workers=2)

    assert first == second


def test_tax_result_mixes_and_rates():
    """Mixes are averages of one-hot choices and rates are probabilities."""
    result = run_tax_optimization_mcs(_small_tax_config(), random_seed=8)

    assert sum(result.optimal_entity_mix.values()) == pytest.approx(1.0)
    assert sum(result.optimal_jurisdiction_mix.values()) == pytest.approx(1.0)
    assert 0.0 <= result.success_rate <= 1.0
    assert result.median_annual_tax_rate >= 0.0
    assert result.taxes_paid >= 0.0
    assert result.pre_withdrawal_after_tax_value >= result.after_tax_value

    series = result.to_series()
    assert "optimal_entity_mix.foundation" in series.index
    assert "optimal_jurisdiction_mix.US" in series.index


def test_zero_withdrawal_always_succeeds_and_keeps_value():
    """Without withdrawals every trial succeeds and nothing is deducted."""
    result = run_tax_optimization_mcs(_small_tax_config(annual_withdrawal=0.0), random_seed=8)

    assert result.success_rate == 1.0
    assert result.after_tax_value == pytest.approx(result.pre_withdrawal_after_tax_value)


def test_impossible_withdrawal_fails_every_trial():
    """A withdrawal larger than the whole portfolio fails in the first year."""
    result = run_tax_optimization_mcs(_small_tax_config(annual_withdrawal=1e12), random_seed=8)
    assert result.success_rate == 0.0


def test_faulted_tax_trial_is_counted_unsuccessful():
    """A fault inside the entity search marks that trial unsuccessful without aborting the batch."""
    config = _small_tax_config(annual_withdrawal=0.0)

    with patch(
        "legacy_planner.utils.monte_carlo.evaluate_entity_jurisdiction_combinations",
        side_effect=ZeroDivisionError("division by zero"),
    ):
        result = run_tax_optimization_mcs(config, random_seed=8)

    assert result.faulted_runs == config.simulation_runs
    assert result.success_rate == 0.0
    assert result.after_tax_value == 0.0
    assert result.median_annual_tax_rate == 0.0


def test_total_return_path_model_is_opt_in():
    """Compounding the full return is only used when the config asks for it."""
    base = _small_tax_config(annual_withdrawal=0.0)
    steady = tuple(replace(asset, annual_volatility=0.0, annual_return=0.06) for asset in base.assets)
    income_only = run_tax_optimization_mcs(replace(base, assets=steady), random_seed=8)
    total_return = run_tax_optimization_mcs(
        replace(base, assets=steady, asset_path_model="total_return"), random_seed=8
    )

    assert base.asset_path_model == "income_only"
    assert total_return.pre_withdrawal_after_tax_value > income_only.pre_withdrawal_after_tax_value


def test_tax_path_overflow_becomes_a_faulted_trial():
    """An asset path that overflows float64 is isolated as a fault rather than reported as inf."""
    base = _small_tax_config(simulation_years=10, annual_withdrawal=0.0)
    runaway = replace(base.assets[0], current_value=1e300, income_pct=10.0)
    config = replace(base, assets=(runaway,) + base.assets[1:])

    result = run_tax_optimization_mcs(config, random_seed=8)

    assert result.faulted_runs == config.simulation_runs
    assert result.success_rate == 0.0
    assert result.after_tax_value == 0.0


def test_median_annual_tax_rate_uses_upper_median():
    """Even-length samples take the upper middle element; empty inputs yield zero."""
    assert median_annual_tax_rate([4.0, 1.0, 3.0, 2.0], 10.0, 2) == pytest.approx(3.0 / 20.0)
    assert median_annual_tax_rate([], 10.0, 2) == 0.0
    assert median_annual_tax_rate([1.0], 10.0, 0) == 0.0
