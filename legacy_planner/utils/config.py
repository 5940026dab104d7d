"""Configuration value types and validation for the legacy-planning engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping, Sequence

import numpy as np

logger = logging.getLogger(__name__)

ASSET_CLASSES: tuple[str, ...] = (
    "equity",
    "fixedIncome",
    "privateEquity",
    "realEstate",
    "hedge",
    "cash",
)
VEHICLE_TYPES: tuple[str, ...] = (
    "privateFoundation",
    "donorAdvisedFund",
    "charitableTrust",
    "directGiving",
    "llc",
)
JURISDICTIONS: tuple[str, ...] = ("US", "UK", "Switzerland", "Singapore", "Cayman")
ENTITY_TYPES: tuple[str, ...] = (
    "individual",
    "revocableTrust",
    "irrevocableTrust",
    "familyLimitedPartnership",
    "llc",
    "foundation",
)
FAMILY_VALUE_CONVENTIONS: tuple[str, ...] = ("net_of_vehicles", "separate_pools")
MISSING_STRATEGY_POLICIES: tuple[str, ...] = ("skip", "strict")
CORRELATION_METHODS: tuple[str, ...] = ("legacy", "cholesky")
ASSET_PATH_MODELS: tuple[str, ...] = ("income_only", "total_return")

SYMMETRY_TOLERANCE = 1e-9


class InvalidConfigurationError(ValueError):
    """Raised when a simulation configuration fails validation before any trial runs."""


class MissingStrategyReferenceError(KeyError):
    """Raised when a vehicle names an investment strategy absent from the strategy table."""


class SimulationCancelledError(RuntimeError):
    """Raised when a batch is cancelled before a single trial completes."""


@dataclass(frozen=True)
class Asset:
    """One investable holding of the family portfolio."""

    id: str
    asset_class: str
    current_value: float
    annual_return: float
    annual_volatility: float
    correlation_group: int = 1
    esg_aligned: bool = False
    impact_focused: bool = False


@dataclass(frozen=True)
class TaxLot:
    purchase_date: date
    purchase_price: float
    quantity: float


@dataclass(frozen=True)
class TaxAsset(Asset):
    """Asset carrying the tax attributes used by the entity/jurisdiction search.

    `holding_period` is compared against a coarse cutoff rather than calendar
    rules; see `tax_engine.LONG_TERM_HOLDING_THRESHOLD`.
    """

    cost_basis: float = 0.0
    jurisdiction: str = "US"
    entity_type: str = "individual"
    income_pct: float = 0.0
    holding_period: float = 0.0
    is_tax_deferred: bool = False
    tax_lots: tuple[TaxLot, ...] = ()


@dataclass(frozen=True)
class StrategyAssumptions:
    """Per asset-class capital-market assumptions for a named investment strategy.

    Allocation weights need not sum to one; the evolver normalizes by the
    weights it actually iterates.
    """

    name: str
    returns: Mapping[str, float]
    volatility: Mapping[str, float]
    allocation: Mapping[str, float]


@dataclass(frozen=True)
class CharitableVehicle:
    id: str
    vehicle_type: str
    current_value: float
    annual_contribution: float
    annual_admin_costs: float
    distribution_requirement: float
    investment_strategy: str
    cause_areas: tuple[str, ...] = ()
    family_involvement: float = 0.0
    mission_statement: str = ""


@dataclass(frozen=True)
class FamilyMember:
    id: str
    age: int
    life_expectancy: int
    annual_income: float
    annual_expenses: float
    philanthropic_interest: float
    cause_areas: tuple[str, ...] = ()
    time_commitment: float = 0.0
    successor_flag: bool = False


@dataclass(frozen=True)
class LegacyPlan:
    minimum_family_involvement: float
    philanthropic_percentage: float = 0.3
    sunsetting: bool = False
    successor_policy: str = "familyAndProfessional"
    governance_structure: str = "mixedBoard"
    primary_charitable_entity: str = "privateFoundation"
    mission_statement: str = ""


@dataclass(frozen=True)
class EntityModifiers:
    """Multipliers applied to the base jurisdiction rates for one legal wrapper."""

    income_tax: float = 1.0
    capital_gains: float = 1.0
    dividends: float = 1.0
    estate_tax: float = 1.0


@dataclass(frozen=True)
class TaxRates:
    ordinary_income: Mapping[str, float]
    long_term_capital_gains: Mapping[str, float]
    short_term_capital_gains: Mapping[str, float]
    dividends: Mapping[str, float]
    estate_tax: Mapping[str, float]
    entity_modifiers: Mapping[str, EntityModifiers]


@dataclass(frozen=True)
class HarvestingStrategy:
    """Tax-loss harvesting rule.

    A yearly loss is harvested when it exceeds `threshold` times the
    position value and does not exceed `max_annual_loss`.
    """

    threshold: float
    max_annual_loss: float
    reinvestment_delay: int = 30


@dataclass(frozen=True)
class PhilanthropyConfig:
    """Full input of the philanthropy and legacy Monte Carlo driver."""

    simulation_years: int
    simulation_runs: int
    assets: tuple[Asset, ...]
    charitable_vehicles: tuple[CharitableVehicle, ...]
    family_members: tuple[FamilyMember, ...]
    legacy_plan: LegacyPlan
    investment_strategies: Mapping[str, StrategyAssumptions]
    correlation_matrix: tuple[tuple[float, ...], ...]
    inflation_rate: float = 0.02
    family_growth_rate: float = 0.01
    philanthropic_allocation: float = 0.3
    impact_premium: float = -0.01
    family_value_convention: str = "net_of_vehicles"
    missing_strategy_policy: str = "skip"
    correlation_method: str = "legacy"
    vehicle_mix_runs: int = 500


@dataclass(frozen=True)
class TaxOptimizationConfig:
    """Full input of the tax-structuring Monte Carlo driver."""

    simulation_years: int
    simulation_runs: int
    assets: tuple[TaxAsset, ...]
    tax_rates: TaxRates
    harvesting_strategies: tuple[HarvestingStrategy, ...]
    annual_withdrawal: float
    inflation_rate: float = 0.02
    entity_transfer_costs: Mapping[str, float] = field(default_factory=dict)
    asset_path_model: str = "income_only"


def validate_correlation_matrix(
    matrix: Sequence[Sequence[float]] | np.ndarray,
    n_groups: int | None = None,
) -> np.ndarray:
    """Return the matrix as a float array after checking the correlation invariants."""
    try:
        arr = np.asarray(matrix, dtype=float)
    except (TypeError, ValueError) as exc:
        raise InvalidConfigurationError("correlation_matrix must be a rectangular numeric matrix.") from exc

    if arr.ndim != 2 or arr.shape[0] != arr.shape[1] or arr.shape[0] == 0:
        raise InvalidConfigurationError("correlation_matrix must be a non-empty square matrix.")
    if not np.all(np.isfinite(arr)):
        raise InvalidConfigurationError("correlation_matrix entries must be finite.")
    if not np.allclose(arr, arr.T, rtol=0.0, atol=SYMMETRY_TOLERANCE):
        raise InvalidConfigurationError("correlation_matrix must be symmetric.")
    if not np.allclose(np.diag(arr), 1.0, rtol=0.0, atol=SYMMETRY_TOLERANCE):
        raise InvalidConfigurationError("correlation_matrix must have a unit diagonal.")
    if np.any(arr < -1.0) or np.any(arr > 1.0):
        raise InvalidConfigurationError("correlation_matrix entries must lie in [-1, 1].")
    if n_groups is not None and arr.shape[0] < n_groups:
        raise InvalidConfigurationError(
            f"correlation_matrix has {arr.shape[0]} groups but {n_groups} are referenced."
        )
    return arr


def _require_unit_interval(value: float, name: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise InvalidConfigurationError(f"{name} must be between 0 and 1.")


def _require_unique_ids(items: Iterable[Any], label: str) -> None:
    seen: set[str] = set()
    for item in items:
        if item.id in seen:
            raise InvalidConfigurationError(f"Duplicate {label} id: {item.id}")
        seen.add(item.id)


def _validate_horizon(years: int, runs: int) -> None:
    if years < 0:
        raise InvalidConfigurationError("simulation_years must be non-negative.")
    if runs < 1:
        raise InvalidConfigurationError("simulation_runs must be at least 1.")


def _validate_assets(assets: Sequence[Asset], n_groups: int | None) -> None:
    if not assets:
        raise InvalidConfigurationError("At least one asset is required.")
    _require_unique_ids(assets, "asset")
    for asset in assets:
        if asset.asset_class not in ASSET_CLASSES:
            raise InvalidConfigurationError(f"Asset {asset.id} has unknown asset class {asset.asset_class!r}.")
        if asset.current_value < 0:
            raise InvalidConfigurationError(f"Asset {asset.id} current_value must be non-negative.")
        if asset.annual_volatility < 0:
            raise InvalidConfigurationError(f"Asset {asset.id} annual_volatility must be non-negative.")
        if n_groups is not None and not 1 <= asset.correlation_group <= n_groups:
            raise InvalidConfigurationError(
                f"Asset {asset.id} correlation_group {asset.correlation_group} is outside 1..{n_groups}."
            )


def _validate_strategy(strategy: StrategyAssumptions) -> None:
    for asset_class, weight in strategy.allocation.items():
        if weight < 0:
            raise InvalidConfigurationError(f"Strategy {strategy.name} has a negative weight for {asset_class}.")
        if asset_class not in strategy.returns or asset_class not in strategy.volatility:
            raise InvalidConfigurationError(
                f"Strategy {strategy.name} allocates to {asset_class} without return/volatility assumptions."
            )
        if strategy.volatility[asset_class] < 0:
            raise InvalidConfigurationError(f"Strategy {strategy.name} volatility for {asset_class} is negative.")


def validate_philanthropy_config(config: PhilanthropyConfig) -> np.ndarray:
    """Fail fast on an invalid philanthropy configuration; return the correlation matrix array."""
    _validate_horizon(config.simulation_years, config.simulation_runs)
    matrix = validate_correlation_matrix(config.correlation_matrix)
    _validate_assets(config.assets, matrix.shape[0])

    if not config.charitable_vehicles:
        raise InvalidConfigurationError("At least one charitable vehicle is required.")
    if not config.family_members:
        raise InvalidConfigurationError("At least one family member is required.")
    _require_unique_ids(config.charitable_vehicles, "vehicle")
    _require_unique_ids(config.family_members, "family member")

    for vehicle in config.charitable_vehicles:
        if vehicle.current_value < 0:
            raise InvalidConfigurationError(f"Vehicle {vehicle.id} current_value must be non-negative.")
        if vehicle.annual_contribution < 0:
            raise InvalidConfigurationError(f"Vehicle {vehicle.id} annual_contribution must be non-negative.")
        _require_unit_interval(vehicle.annual_admin_costs, f"Vehicle {vehicle.id} annual_admin_costs")
        _require_unit_interval(vehicle.distribution_requirement, f"Vehicle {vehicle.id} distribution_requirement")

    for member in config.family_members:
        _require_unit_interval(member.philanthropic_interest, f"Family member {member.id} philanthropic_interest")
        if member.annual_expenses < 0:
            raise InvalidConfigurationError(f"Family member {member.id} annual_expenses must be non-negative.")

    for strategy in config.investment_strategies.values():
        _validate_strategy(strategy)

    _require_unit_interval(config.philanthropic_allocation, "philanthropic_allocation")
    if config.legacy_plan.minimum_family_involvement < 0:
        raise InvalidConfigurationError("minimum_family_involvement must be non-negative.")
    if config.family_value_convention not in FAMILY_VALUE_CONVENTIONS:
        raise InvalidConfigurationError(
            f"family_value_convention must be one of {FAMILY_VALUE_CONVENTIONS}."
        )
    if config.missing_strategy_policy not in MISSING_STRATEGY_POLICIES:
        raise InvalidConfigurationError(
            f"missing_strategy_policy must be one of {MISSING_STRATEGY_POLICIES}."
        )
    if config.correlation_method not in CORRELATION_METHODS:
        raise InvalidConfigurationError(f"correlation_method must be one of {CORRELATION_METHODS}.")
    if config.vehicle_mix_runs < 1:
        raise InvalidConfigurationError("vehicle_mix_runs must be at least 1.")
    return matrix


def validate_tax_config(config: TaxOptimizationConfig) -> None:
    """Fail fast on an invalid tax-structuring configuration."""
    _validate_horizon(config.simulation_years, config.simulation_runs)
    _validate_assets(config.assets, None)
    if config.annual_withdrawal < 0:
        raise InvalidConfigurationError("annual_withdrawal must be non-negative.")
    if config.asset_path_model not in ASSET_PATH_MODELS:
        raise InvalidConfigurationError(f"asset_path_model must be one of {ASSET_PATH_MODELS}.")

    rates = config.tax_rates
    tables = {
        "ordinary_income": rates.ordinary_income,
        "long_term_capital_gains": rates.long_term_capital_gains,
        "short_term_capital_gains": rates.short_term_capital_gains,
        "dividends": rates.dividends,
        "estate_tax": rates.estate_tax,
    }
    for name, table in tables.items():
        for jurisdiction, rate in table.items():
            _require_unit_interval(rate, f"{name}[{jurisdiction}]")

    for asset in config.assets:
        for name, table in tables.items():
            if asset.jurisdiction not in table:
                raise InvalidConfigurationError(
                    f"Asset {asset.id} jurisdiction {asset.jurisdiction!r} missing from {name} table."
                )
        if asset.entity_type not in rates.entity_modifiers:
            raise InvalidConfigurationError(
                f"Asset {asset.id} entity_type {asset.entity_type!r} has no entity modifiers."
            )

    for strategy in config.harvesting_strategies:
        if strategy.threshold < 0 or strategy.max_annual_loss < 0:
            raise InvalidConfigurationError("Harvesting thresholds and caps must be non-negative.")


def resolve_strategy_references(
    vehicles: Sequence[CharitableVehicle],
    strategies: Mapping[str, StrategyAssumptions],
    policy: str = "skip",
) -> dict[str, StrategyAssumptions | None]:
    """Resolve each vehicle's strategy name once, before any trial runs.

    Under the ``"skip"`` policy an unknown name maps to ``None`` and the
    evolver carries that vehicle's value unchanged every year. Under
    ``"strict"`` the first unknown name raises.
    """
    if policy not in MISSING_STRATEGY_POLICIES:
        raise InvalidConfigurationError(f"missing_strategy_policy must be one of {MISSING_STRATEGY_POLICIES}.")

    resolved: dict[str, StrategyAssumptions | None] = {}
    for vehicle in vehicles:
        strategy = strategies.get(vehicle.investment_strategy)
        if strategy is None:
            if policy == "strict":
                raise MissingStrategyReferenceError(
                    f"Vehicle {vehicle.id} references unknown strategy {vehicle.investment_strategy!r}."
                )
            logger.warning(
                "Vehicle %s references unknown strategy %r; its value is held flat each year.",
                vehicle.id,
                vehicle.investment_strategy,
            )
        resolved[vehicle.id] = strategy
    return resolved
