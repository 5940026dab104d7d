"""Build validated engine configurations from plain camelCase mappings.

The surrounding application hands the engine nested dictionaries (form state,
JSON payloads). Everything is converted to frozen value types and validated
here, so strategy references and correlation groups are resolved once before
any trial runs.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Mapping

from legacy_planner.utils.config import (
    Asset,
    CharitableVehicle,
    EntityModifiers,
    FamilyMember,
    HarvestingStrategy,
    InvalidConfigurationError,
    LegacyPlan,
    PhilanthropyConfig,
    StrategyAssumptions,
    TaxAsset,
    TaxLot,
    TaxOptimizationConfig,
    TaxRates,
    resolve_strategy_references,
    validate_philanthropy_config,
    validate_tax_config,
)
from legacy_planner.utils.defaults import (
    DEFAULT_CLASS_RETURNS,
    DEFAULT_CLASS_VOLATILITY,
    DEFAULT_CORRELATION_MATRIX,
    DEFAULT_ENTITY_TRANSFER_COSTS,
    DEFAULT_INVESTMENT_STRATEGIES,
    DEFAULT_TAX_RATES,
)


def _as_tuple(values: Iterable[Any] | None) -> tuple[Any, ...]:
    return tuple(values) if values is not None else ()


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _asset_kwargs(raw: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "id": str(raw["id"]),
        "asset_class": str(raw["assetClass"]),
        "current_value": float(raw["currentValue"]),
        "annual_return": float(raw["annualReturn"]),
        "annual_volatility": float(raw["annualVolatility"]),
        "correlation_group": int(raw.get("correlationGroup", 1)),
        "esg_aligned": bool(raw.get("esgAligned", False)),
        "impact_focused": bool(raw.get("impactFocused", False)),
    }


def _load_strategies(raw: Any) -> dict[str, StrategyAssumptions]:
    """Accept either a name-keyed table or the form-style list of allocations."""
    if raw is None:
        return dict(DEFAULT_INVESTMENT_STRATEGIES)

    strategies: dict[str, StrategyAssumptions] = {}
    if isinstance(raw, Mapping):
        for name, entry in raw.items():
            strategies[str(name)] = StrategyAssumptions(
                name=str(name),
                returns=dict(entry.get("returns", DEFAULT_CLASS_RETURNS)),
                volatility=dict(entry.get("volatility", DEFAULT_CLASS_VOLATILITY)),
                allocation=dict(entry.get("allocation", entry.get("assetAllocation", {}))),
            )
        return strategies

    for entry in raw:
        name = str(entry["name"])
        strategies[name] = StrategyAssumptions(
            name=name,
            returns=dict(entry.get("returns", DEFAULT_CLASS_RETURNS)),
            volatility=dict(entry.get("volatility", DEFAULT_CLASS_VOLATILITY)),
            allocation=dict(entry.get("assetAllocation", entry.get("allocation", {}))),
        )
    return strategies


def load_philanthropy_config(raw: Mapping[str, Any]) -> PhilanthropyConfig:
    """Build and validate a `PhilanthropyConfig` from a camelCase mapping."""
    try:
        plan_raw = raw.get("legacyPlan", {})
        config = PhilanthropyConfig(
            simulation_years=int(raw["simulationYears"]),
            simulation_runs=int(raw["simulationRuns"]),
            assets=tuple(Asset(**_asset_kwargs(a)) for a in raw.get("assets", ())),
            charitable_vehicles=tuple(
                CharitableVehicle(
                    id=str(v["id"]),
                    vehicle_type=str(v.get("type", "privateFoundation")),
                    current_value=float(v["currentValue"]),
                    annual_contribution=float(v.get("annualContribution", 0.0)),
                    annual_admin_costs=float(v.get("annualAdminCosts", 0.0)),
                    distribution_requirement=float(v.get("distributionRequirement", 0.0)),
                    investment_strategy=str(v.get("investmentStrategy", "balanced")),
                    cause_areas=_as_tuple(v.get("causeAreas")),
                    family_involvement=float(v.get("familyInvolvement", 0.0)),
                    mission_statement=str(v.get("missionStatement", "")),
                )
                for v in raw.get("charitableVehicles", ())
            ),
            family_members=tuple(
                FamilyMember(
                    id=str(m["id"]),
                    age=int(m["age"]),
                    life_expectancy=int(m["lifeExpectancy"]),
                    annual_income=float(m.get("annualIncome", 0.0)),
                    annual_expenses=float(m.get("annualExpenses", 0.0)),
                    philanthropic_interest=float(m.get("philanthropicInterest", 0.0)),
                    cause_areas=_as_tuple(m.get("causeAreas")),
                    time_commitment=float(m.get("timeCommitment", 0.0)),
                    successor_flag=bool(m.get("successorFlag", False)),
                )
                for m in raw.get("familyMembers", ())
            ),
            legacy_plan=LegacyPlan(
                minimum_family_involvement=float(plan_raw.get("minimumFamilyInvolvement", 0.0)),
                philanthropic_percentage=float(plan_raw.get("philanthropicPercentage", 0.3)),
                sunsetting=bool(plan_raw.get("sunsetting", False)),
                successor_policy=str(plan_raw.get("successorPolicy", "familyAndProfessional")),
                governance_structure=str(plan_raw.get("governanceStructure", "mixedBoard")),
                primary_charitable_entity=str(plan_raw.get("primaryCharitableEntity", "privateFoundation")),
                mission_statement=str(plan_raw.get("missionStatement", "")),
            ),
            investment_strategies=_load_strategies(raw.get("investmentStrategies")),
            correlation_matrix=tuple(
                tuple(float(x) for x in row) for row in raw.get("correlationMatrix", DEFAULT_CORRELATION_MATRIX)
            ),
            inflation_rate=float(raw.get("inflationRate", 0.02)),
            family_growth_rate=float(raw.get("familyGrowthRate", 0.01)),
            philanthropic_allocation=float(raw.get("philanthropicAllocation", 0.3)),
            impact_premium=float(raw.get("impactPremium", -0.01)),
            family_value_convention=str(raw.get("familyValueConvention", "net_of_vehicles")),
            missing_strategy_policy=str(raw.get("missingStrategyPolicy", "skip")),
            correlation_method=str(raw.get("correlationMethod", "legacy")),
            vehicle_mix_runs=int(raw.get("vehicleMixRuns", 500)),
        )
    except KeyError as exc:
        raise InvalidConfigurationError(f"Missing required configuration field: {exc.args[0]}") from exc

    validate_philanthropy_config(config)
    resolve_strategy_references(
        config.charitable_vehicles,
        config.investment_strategies,
        policy=config.missing_strategy_policy,
    )
    return config


def _load_tax_rates(raw: Mapping[str, Any]) -> TaxRates:
    return TaxRates(
        ordinary_income=dict(raw["ordinaryIncome"]),
        long_term_capital_gains=dict(raw["longTermCapitalGains"]),
        short_term_capital_gains=dict(raw["shortTermCapitalGains"]),
        dividends=dict(raw["dividends"]),
        estate_tax=dict(raw["estateTax"]),
        entity_modifiers={
            str(entity): EntityModifiers(
                income_tax=float(mods.get("incomeTaxModifier", 1.0)),
                capital_gains=float(mods.get("capitalGainsModifier", 1.0)),
                dividends=float(mods.get("dividendsModifier", 1.0)),
                estate_tax=float(mods.get("estateTaxModifier", 1.0)),
            )
            for entity, mods in raw["entitySpecificRates"].items()
        },
    )


def load_tax_config(raw: Mapping[str, Any]) -> TaxOptimizationConfig:
    """Build and validate a `TaxOptimizationConfig` from a camelCase mapping."""
    try:
        assets = tuple(
            TaxAsset(
                **_asset_kwargs(a),
                cost_basis=float(a.get("costBasis", a["currentValue"])),
                jurisdiction=str(a.get("jurisdiction", "US")),
                entity_type=str(a.get("entityType", "individual")),
                income_pct=float(a.get("incomePct", 0.0)),
                holding_period=float(a.get("holdingPeriod", 0.0)),
                is_tax_deferred=bool(a.get("isTaxDeferred", False)),
                tax_lots=tuple(
                    TaxLot(
                        purchase_date=_parse_date(lot["purchaseDate"]),
                        purchase_price=float(lot["purchasePrice"]),
                        quantity=float(lot["quantity"]),
                    )
                    for lot in a.get("taxLots", ())
                ),
            )
            for a in raw.get("assets", ())
        )
        config = TaxOptimizationConfig(
            simulation_years=int(raw["simulationYears"]),
            simulation_runs=int(raw["simulationRuns"]),
            assets=assets,
            tax_rates=_load_tax_rates(raw["taxRates"]) if "taxRates" in raw else DEFAULT_TAX_RATES,
            harvesting_strategies=tuple(
                HarvestingStrategy(
                    threshold=float(s["threshold"]),
                    max_annual_loss=float(s["maxAnnualLoss"]),
                    reinvestment_delay=int(s.get("reinvestmentDelay", 30)),
                )
                for s in raw.get("harvestingStrategies", ())
            ),
            annual_withdrawal=float(raw.get("annualWithdrawal", 0.0)),
            inflation_rate=float(raw.get("inflationRate", 0.02)),
            entity_transfer_costs=dict(raw.get("entityTransferCosts", DEFAULT_ENTITY_TRANSFER_COSTS)),
            asset_path_model=str(raw.get("assetPathModel", "income_only")),
        )
    except KeyError as exc:
        raise InvalidConfigurationError(f"Missing required configuration field: {exc.args[0]}") from exc

    validate_tax_config(config)
    return config
