"""Monte Carlo drivers for the philanthropy/legacy plan and the tax-structuring plan.

Every trial draws from its own generator spawned from a single
``SeedSequence`` (child ``i`` for trial ``i``), so a seeded batch produces
the same result for any worker count. Per-trial records are gathered in
trial order into a DataFrame and reduced once.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Sequence

import numpy as np
import pandas as pd

from legacy_planner.utils.config import (
    ENTITY_TYPES,
    JURISDICTIONS,
    VEHICLE_TYPES,
    CharitableVehicle,
    PhilanthropyConfig,
    SimulationCancelledError,
    StrategyAssumptions,
    TaxOptimizationConfig,
    resolve_strategy_references,
    validate_philanthropy_config,
    validate_tax_config,
)
from legacy_planner.utils.portfolio import simulate_portfolio_performance
from legacy_planner.utils.scoring import (
    calculate_balance_score,
    calculate_impact_score,
    mission_alignment,
    unique_in_order,
)
from legacy_planner.utils.search import (
    evaluate_charitable_vehicles,
    evaluate_entity_jurisdiction_combinations,
    find_sustainable_withdrawal_rate,
    score_withdrawal_rates,
    withdrawal_rate_grid,
)
from legacy_planner.utils.succession import family_engagement, model_family_succession, successor_readiness
from legacy_planner.utils.tax_engine import calculate_asset_taxes, calculate_estate_tax, simulate_asset_performance, terminal_value

logger = logging.getLogger(__name__)

FAILURE_EXPENSE_MULTIPLE = 10.0
VEHICLE_MIX_CAPITAL_SHARE = 0.3
VEHICLE_MIX_INCOME_SHARE = 0.1
TRIAL_WITHDRAWAL_RATES: tuple[float, ...] = tuple(withdrawal_rate_grid(0.02, 0.07, 0.005))
TASKS_PER_WORKER = 4

TrialFn = Callable[[np.random.Generator], dict[str, Any]]


@dataclass(frozen=True)
class LegacySimulationResult:
    """Batch summary of the philanthropy/legacy plan.

    Averages are taken over trials that completed without an arithmetic
    fault; rates (`failure_rate`, `perpetuity_probability`) are taken over
    all completed trials, with faulted trials counted as failures.
    """

    philanthropic_impact: float
    family_wealth: float
    sustainability_score: float
    philanthropic_capital_deployed: float
    optimal_vehicle_mix: dict[str, float]
    successor_readiness: float
    family_engagement_score: float
    failure_rate: float
    optimal_withdrawal_rate: float
    perpetuity_probability: float
    balance_score: float
    sustainable_withdrawal_rate: float
    completed_runs: int
    faulted_runs: int
    cancelled: bool = False
    trials: pd.DataFrame = field(default_factory=pd.DataFrame, compare=False, repr=False)

    def to_series(self) -> pd.Series:
        data: dict[str, Any] = {
            "philanthropic_impact": self.philanthropic_impact,
            "family_wealth": self.family_wealth,
            "sustainability_score": self.sustainability_score,
            "philanthropic_capital_deployed": self.philanthropic_capital_deployed,
            "successor_readiness": self.successor_readiness,
            "family_engagement_score": self.family_engagement_score,
            "failure_rate": self.failure_rate,
            "optimal_withdrawal_rate": self.optimal_withdrawal_rate,
            "perpetuity_probability": self.perpetuity_probability,
            "balance_score": self.balance_score,
            "sustainable_withdrawal_rate": self.sustainable_withdrawal_rate,
            "completed_runs": self.completed_runs,
            "faulted_runs": self.faulted_runs,
        }
        for vehicle_type, share in self.optimal_vehicle_mix.items():
            data[f"optimal_vehicle_mix.{vehicle_type}"] = share
        return pd.Series(data)


@dataclass(frozen=True)
class TaxSimulationResult:
    """Batch summary of the tax-structuring plan.

    `after_tax_value` is what remains after the inflation-grown withdrawals
    have been paid out; `pre_withdrawal_after_tax_value` is the terminal
    after-tax value before any withdrawal.
    """

    after_tax_value: float
    pre_withdrawal_after_tax_value: float
    taxes_paid: float
    harvested_losses: float
    optimal_entity_mix: dict[str, float]
    optimal_jurisdiction_mix: dict[str, float]
    success_rate: float
    median_annual_tax_rate: float
    estate_tax_exposure: float
    completed_runs: int
    faulted_runs: int
    cancelled: bool = False
    trials: pd.DataFrame = field(default_factory=pd.DataFrame, compare=False, repr=False)

    def to_series(self) -> pd.Series:
        data: dict[str, Any] = {
            "after_tax_value": self.after_tax_value,
            "pre_withdrawal_after_tax_value": self.pre_withdrawal_after_tax_value,
            "taxes_paid": self.taxes_paid,
            "harvested_losses": self.harvested_losses,
            "success_rate": self.success_rate,
            "median_annual_tax_rate": self.median_annual_tax_rate,
            "estate_tax_exposure": self.estate_tax_exposure,
            "completed_runs": self.completed_runs,
            "faulted_runs": self.faulted_runs,
        }
        for entity_type, share in self.optimal_entity_mix.items():
            data[f"optimal_entity_mix.{entity_type}"] = share
        for jurisdiction, share in self.optimal_jurisdiction_mix.items():
            data[f"optimal_jurisdiction_mix.{jurisdiction}"] = share
        return pd.Series(data)


def _resolve_max_workers(max_workers: int | None, runs: int) -> int:
    """Bound the pool by the requested size, the trial count and the host CPU count."""
    if max_workers is not None and max_workers < 1:
        raise ValueError("max_workers must be at least 1.")
    if runs <= 1:
        return 1
    if max_workers is None:
        return max(1, min(runs, os.cpu_count() or 1))
    return max(1, min(max_workers, runs))


def _chunk(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def _resolve_seed_sequence(
    random_seed: int | None,
    seed_sequence: np.random.SeedSequence | None,
) -> np.random.SeedSequence:
    # Spawning advances a sequence's child counter, so the caller's object is copied.
    if seed_sequence is not None:
        return np.random.SeedSequence(
            seed_sequence.entropy,
            spawn_key=seed_sequence.spawn_key,
            pool_size=seed_sequence.pool_size,
            n_children_spawned=seed_sequence.n_children_spawned,
        )
    return np.random.SeedSequence(random_seed)


def _run_trial_guarded(trial_fn: TrialFn, index: int, seed: np.random.SeedSequence) -> dict[str, Any]:
    """Run one trial with floating-point faults raised, turning a fault into a faulted record."""
    rng = np.random.default_rng(seed)
    try:
        with np.errstate(over="raise", divide="raise", invalid="raise"):
            record = trial_fn(rng)
    except ArithmeticError as exc:
        logger.warning("Trial %d hit an arithmetic fault and is counted as failed: %s", index, exc)
        return {"trial": index, "faulted": True}
    record["trial"] = index
    record["faulted"] = False
    return record


def _run_batch(
    trial_fn: TrialFn,
    batch: Sequence[tuple[int, np.random.SeedSequence]],
    cancel_event: threading.Event | None = None,
) -> list[dict[str, Any]]:
    records = []
    for index, seed in batch:
        if cancel_event is not None and cancel_event.is_set():
            break
        records.append(_run_trial_guarded(trial_fn, index, seed))
    return records


def _execute_trials(
    trial_fn: TrialFn,
    seeds: Sequence[np.random.SeedSequence],
    max_workers: int | None,
    cancel_event: threading.Event | None,
) -> list[dict[str, Any]]:
    indexed = list(enumerate(seeds))
    worker_count = _resolve_max_workers(max_workers, len(indexed))
    if worker_count == 1:
        return _run_batch(trial_fn, indexed, cancel_event)

    batch_size = max(1, math.ceil(len(indexed) / (worker_count * TASKS_PER_WORKER)))
    batches = _chunk(indexed, batch_size)
    worker = partial(_run_batch, trial_fn, cancel_event=cancel_event)

    records: list[dict[str, Any]] = []
    with ThreadPoolExecutor(max_workers=worker_count) as pool:
        for batch_records in pool.map(worker, batches):
            records.extend(batch_records)
    records.sort(key=lambda record: record["trial"])
    return records


def _trials_frame(records: list[dict[str, Any]], requested: int, cancel_event: threading.Event | None) -> pd.DataFrame:
    cancelled = cancel_event is not None and cancel_event.is_set() and len(records) < requested
    if not records:
        raise SimulationCancelledError("Simulation was cancelled before any trial completed.")
    if cancelled:
        logger.info("Simulation cancelled after %d of %d trials; reducing completed trials.", len(records), requested)
    return pd.DataFrame.from_records(records)


def _healthy_mean(frame: pd.DataFrame, column: str) -> float:
    healthy = frame.loc[~frame["faulted"].astype(bool)]
    if column not in healthy or healthy.empty:
        return 0.0
    return float(healthy[column].mean())


def _select_primary_vehicle(config: PhilanthropyConfig) -> CharitableVehicle:
    for vehicle in config.charitable_vehicles:
        if vehicle.vehicle_type == config.legacy_plan.primary_charitable_entity:
            return vehicle
    return config.charitable_vehicles[0]


def _philanthropy_trial(
    rng: np.random.Generator,
    *,
    config: PhilanthropyConfig,
    strategies: dict[str, StrategyAssumptions | None],
    correlation_matrix: np.ndarray,
    unique_causes: list[str],
    alignment: float,
    failure_threshold: float,
) -> dict[str, Any]:
    path = simulate_portfolio_performance(config, rng, strategies=strategies, correlation_matrix=correlation_matrix)
    succession = model_family_succession(config.family_members, config.simulation_years)
    withdrawal = score_withdrawal_rates(
        TRIAL_WITHDRAWAL_RATES,
        path.final_charitable,
        path.initial_charitable,
        config.simulation_years,
    )

    return {
        "family_wealth": path.final_family,
        "final_charitable": path.final_charitable,
        "philanthropic_capital_deployed": path.total_distributions,
        "philanthropic_impact": calculate_impact_score(path.distributions, unique_causes, alignment),
        "successor_readiness": successor_readiness(succession, config.family_members),
        "family_engagement": family_engagement(
            succession.final_involvement, config.legacy_plan.minimum_family_involvement
        ),
        "balance_score": calculate_balance_score(
            path.final_family,
            path.final_charitable,
            config.family_members,
            config.philanthropic_allocation,
        ),
        "optimal_withdrawal_rate": withdrawal.rate,
        "failed": path.final_family < failure_threshold,
        "perpetuity": path.final_charitable >= path.initial_charitable,
    }


def run_philanthropy_legacy_mcs(
    config: PhilanthropyConfig,
    *,
    random_seed: int | None = None,
    seed_sequence: np.random.SeedSequence | None = None,
    max_workers: int | None = 1,
    cancel_event: threading.Event | None = None,
) -> LegacySimulationResult:
    """Run the philanthropy/legacy plan over `config.simulation_runs` independent trials.

    Each trial evolves the portfolio and vehicles, ages the family roster and
    scores the completed path. A trial fails when terminal family wealth is
    below ten years of family expenses grown at `family_growth_rate` over the
    horizon. The vehicle-type mix and the primary vehicle's sustainable
    withdrawal rate do not depend on the market path; each is evaluated once
    per batch on its own child stream.
    """
    correlation_matrix = validate_philanthropy_config(config)
    strategies = resolve_strategy_references(
        config.charitable_vehicles,
        config.investment_strategies,
        policy=config.missing_strategy_policy,
    )

    runs = config.simulation_runs
    years = config.simulation_years
    root = _resolve_seed_sequence(random_seed, seed_sequence)
    children = root.spawn(runs + 2)
    trial_seeds, mix_seed, rate_seed = children[:runs], children[runs], children[runs + 1]

    unique_causes = unique_in_order(c for v in config.charitable_vehicles for c in v.cause_areas)
    alignment = mission_alignment(unique_causes, (c for m in config.family_members for c in m.cause_areas))
    total_expenses = sum(member.annual_expenses for member in config.family_members)
    failure_threshold = FAILURE_EXPENSE_MULTIPLE * total_expenses * (1.0 + config.family_growth_rate) ** years

    logger.info(
        "Running %d philanthropy trials over %d years (seed=%s, max_workers=%s).",
        runs,
        years,
        random_seed if seed_sequence is None else "sequence",
        max_workers,
    )

    trial_fn = partial(
        _philanthropy_trial,
        config=config,
        strategies=strategies,
        correlation_matrix=correlation_matrix,
        unique_causes=unique_causes,
        alignment=alignment,
        failure_threshold=failure_threshold,
    )
    records = _execute_trials(trial_fn, trial_seeds, max_workers, cancel_event)
    for record in records:
        if record["faulted"]:
            record["failed"] = True
            record["perpetuity"] = False
    trials = _trials_frame(records, runs, cancel_event)

    vehicle_mix = evaluate_charitable_vehicles(
        sum(asset.current_value for asset in config.assets) * VEHICLE_MIX_CAPITAL_SHARE,
        sum(member.annual_income for member in config.family_members) * VEHICLE_MIX_INCOME_SHARE,
        years,
        config.inflation_rate,
        np.random.default_rng(mix_seed),
        runs=config.vehicle_mix_runs,
    )
    primary = _select_primary_vehicle(config)
    sustainable = find_sustainable_withdrawal_rate(
        primary,
        strategies.get(primary.id),
        years,
        np.random.default_rng(rate_seed),
        inflation_rate=config.inflation_rate,
        runs=config.vehicle_mix_runs,
    )

    completed = len(trials)
    failure_rate = float(trials["failed"].astype(bool).sum()) / completed
    result = LegacySimulationResult(
        philanthropic_impact=_healthy_mean(trials, "philanthropic_impact"),
        family_wealth=_healthy_mean(trials, "family_wealth"),
        sustainability_score=1.0 - failure_rate,
        philanthropic_capital_deployed=_healthy_mean(trials, "philanthropic_capital_deployed"),
        optimal_vehicle_mix={vehicle_type: vehicle_mix[vehicle_type] for vehicle_type in VEHICLE_TYPES},
        successor_readiness=_healthy_mean(trials, "successor_readiness"),
        family_engagement_score=_healthy_mean(trials, "family_engagement"),
        failure_rate=failure_rate,
        optimal_withdrawal_rate=_healthy_mean(trials, "optimal_withdrawal_rate"),
        perpetuity_probability=float(trials["perpetuity"].astype(bool).sum()) / completed,
        balance_score=_healthy_mean(trials, "balance_score"),
        sustainable_withdrawal_rate=sustainable.rate,
        completed_runs=completed,
        faulted_runs=int(trials["faulted"].astype(bool).sum()),
        cancelled=completed < runs,
        trials=trials,
    )
    logger.info(
        "Philanthropy batch finished: %d trials, failure rate %.4f, %d faulted.",
        completed,
        result.failure_rate,
        result.faulted_runs,
    )
    return result


def _tax_trial(rng: np.random.Generator, *, config: TaxOptimizationConfig) -> dict[str, Any]:
    years = config.simulation_years
    choice = evaluate_entity_jurisdiction_combinations(
        config.assets,
        config.tax_rates,
        years,
        config.entity_transfer_costs,
        rng,
        path_model=config.asset_path_model,
    )

    after_tax_value = choice.total_value
    taxes_paid = 0.0
    harvested = 0.0
    estate_exposure = 0.0
    best_harvesting_value = 0.0
    for strategy in config.harvesting_strategies:
        strategy_value = 0.0
        strategy_taxes = 0.0
        strategy_harvested = 0.0
        strategy_estate = 0.0
        for asset in config.assets:
            performance = simulate_asset_performance(asset, years, rng, config.asset_path_model)
            taxes = calculate_asset_taxes(asset, performance, config.tax_rates, strategy)
            net_value = terminal_value(asset, performance) - taxes.total_tax
            strategy_value += net_value
            strategy_taxes += taxes.total_tax
            strategy_harvested += taxes.harvested_losses
            strategy_estate += calculate_estate_tax(net_value, asset.jurisdiction, asset.entity_type, config.tax_rates)

        if strategy_value > best_harvesting_value:
            best_harvesting_value = strategy_value
            after_tax_value = strategy_value
            taxes_paid = strategy_taxes
            harvested = strategy_harvested
            estate_exposure = strategy_estate

    pre_withdrawal = after_tax_value
    withdrawal = config.annual_withdrawal
    succeeded = True
    for _ in range(years):
        withdrawal *= 1.0 + config.inflation_rate
        if after_tax_value < withdrawal:
            succeeded = False
            break
        after_tax_value -= withdrawal

    record: dict[str, Any] = {
        "after_tax_value": after_tax_value,
        "pre_withdrawal_after_tax_value": pre_withdrawal,
        "taxes_paid": taxes_paid,
        "harvested_losses": harvested,
        "estate_tax_exposure": estate_exposure,
        "succeeded": succeeded,
    }
    for entity_type, share in choice.entity_mix.items():
        record[f"entity_mix.{entity_type}"] = share
    for jurisdiction, share in choice.jurisdiction_mix.items():
        record[f"jurisdiction_mix.{jurisdiction}"] = share
    return record


def median_annual_tax_rate(taxes_paid: Sequence[float], initial_value: float, years: int) -> float:
    """Upper median of per-trial taxes over initial value times horizon; 0 when either is empty."""
    denominator = initial_value * years
    if not taxes_paid or denominator <= 0:
        return 0.0
    ordered = sorted(taxes_paid)
    return ordered[len(ordered) // 2] / denominator


def run_tax_optimization_mcs(
    config: TaxOptimizationConfig,
    *,
    random_seed: int | None = None,
    seed_sequence: np.random.SeedSequence | None = None,
    max_workers: int | None = 1,
    cancel_event: threading.Event | None = None,
) -> TaxSimulationResult:
    """Run the tax-structuring plan over `config.simulation_runs` independent trials.

    Each trial searches the entity/jurisdiction catalog, then re-simulates
    the original asset set once per harvesting strategy and keeps the
    highest after-tax value. The trial succeeds when that value sustains
    the inflation-grown annual withdrawal for every year of the horizon.
    """
    validate_tax_config(config)

    runs = config.simulation_runs
    root = _resolve_seed_sequence(random_seed, seed_sequence)
    trial_seeds = root.spawn(runs)

    logger.info(
        "Running %d tax-structuring trials over %d years (seed=%s, max_workers=%s).",
        runs,
        config.simulation_years,
        random_seed if seed_sequence is None else "sequence",
        max_workers,
    )

    records = _execute_trials(partial(_tax_trial, config=config), trial_seeds, max_workers, cancel_event)
    for record in records:
        if record["faulted"]:
            record["succeeded"] = False
    trials = _trials_frame(records, runs, cancel_event)

    completed = len(trials)
    healthy = trials.loc[~trials["faulted"].astype(bool)]
    taxes = healthy["taxes_paid"].tolist() if "taxes_paid" in healthy else []
    initial_value = sum(asset.current_value for asset in config.assets)

    result = TaxSimulationResult(
        after_tax_value=_healthy_mean(trials, "after_tax_value"),
        pre_withdrawal_after_tax_value=_healthy_mean(trials, "pre_withdrawal_after_tax_value"),
        taxes_paid=_healthy_mean(trials, "taxes_paid"),
        harvested_losses=_healthy_mean(trials, "harvested_losses"),
        optimal_entity_mix={e: _healthy_mean(trials, f"entity_mix.{e}") for e in ENTITY_TYPES},
        optimal_jurisdiction_mix={j: _healthy_mean(trials, f"jurisdiction_mix.{j}") for j in JURISDICTIONS},
        success_rate=float(trials["succeeded"].astype(bool).sum()) / completed,
        median_annual_tax_rate=median_annual_tax_rate(taxes, initial_value, config.simulation_years),
        estate_tax_exposure=_healthy_mean(trials, "estate_tax_exposure"),
        completed_runs=completed,
        faulted_runs=int(trials["faulted"].astype(bool).sum()),
        cancelled=completed < runs,
        trials=trials,
    )
    logger.info(
        "Tax-structuring batch finished: %d trials, success rate %.4f, %d faulted.",
        completed,
        result.success_rate,
        result.faulted_runs,
    )
    return result
