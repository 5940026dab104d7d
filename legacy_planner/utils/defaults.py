"""Reference capital-market, tax and vehicle tables plus the sample family-office scenario."""

from __future__ import annotations

from datetime import date

from legacy_planner.utils.config import (
    Asset,
    CharitableVehicle,
    EntityModifiers,
    FamilyMember,
    HarvestingStrategy,
    LegacyPlan,
    PhilanthropyConfig,
    StrategyAssumptions,
    TaxAsset,
    TaxLot,
    TaxOptimizationConfig,
    TaxRates,
)

# Order: equity, fixedIncome, realEstate, privateEquity, hedge, cash
DEFAULT_CORRELATION_MATRIX: tuple[tuple[float, ...], ...] = (
    (1.0, 0.2, 0.5, 0.7, 0.6, 0.0),
    (0.2, 1.0, 0.3, 0.1, 0.2, 0.1),
    (0.5, 0.3, 1.0, 0.4, 0.3, 0.0),
    (0.7, 0.1, 0.4, 1.0, 0.5, 0.0),
    (0.6, 0.2, 0.3, 0.5, 1.0, 0.0),
    (0.0, 0.1, 0.0, 0.0, 0.0, 1.0),
)

# Class assumptions applied to form-style strategies that carry only an allocation.
DEFAULT_CLASS_RETURNS: dict[str, float] = {
    "equity": 0.07,
    "fixedIncome": 0.03,
    "privateEquity": 0.10,
    "realEstate": 0.05,
    "hedge": 0.06,
    "cash": 0.01,
}
DEFAULT_CLASS_VOLATILITY: dict[str, float] = {
    "equity": 0.18,
    "fixedIncome": 0.05,
    "privateEquity": 0.25,
    "realEstate": 0.14,
    "hedge": 0.14,
    "cash": 0.01,
}

DEFAULT_INVESTMENT_STRATEGIES: dict[str, StrategyAssumptions] = {
    "conservative": StrategyAssumptions(
        name="conservative",
        returns={
            "equity": 0.06,
            "fixedIncome": 0.03,
            "realEstate": 0.04,
            "privateEquity": 0.08,
            "hedge": 0.05,
            "cash": 0.01,
        },
        volatility={
            "equity": 0.15,
            "fixedIncome": 0.05,
            "realEstate": 0.12,
            "privateEquity": 0.25,
            "hedge": 0.12,
            "cash": 0.01,
        },
        allocation={
            "equity": 0.30,
            "fixedIncome": 0.40,
            "realEstate": 0.10,
            "privateEquity": 0.05,
            "hedge": 0.05,
            "cash": 0.10,
        },
    ),
    "balanced": StrategyAssumptions(
        name="balanced",
        returns={
            "equity": 0.07,
            "fixedIncome": 0.03,
            "realEstate": 0.05,
            "privateEquity": 0.10,
            "hedge": 0.06,
            "cash": 0.01,
        },
        volatility={
            "equity": 0.18,
            "fixedIncome": 0.05,
            "realEstate": 0.14,
            "privateEquity": 0.25,
            "hedge": 0.14,
            "cash": 0.01,
        },
        allocation={
            "equity": 0.50,
            "fixedIncome": 0.25,
            "realEstate": 0.10,
            "privateEquity": 0.05,
            "hedge": 0.07,
            "cash": 0.03,
        },
    ),
    "growth": StrategyAssumptions(
        name="growth",
        returns={
            "equity": 0.08,
            "fixedIncome": 0.03,
            "realEstate": 0.06,
            "privateEquity": 0.12,
            "hedge": 0.07,
            "cash": 0.01,
        },
        volatility={
            "equity": 0.20,
            "fixedIncome": 0.05,
            "realEstate": 0.16,
            "privateEquity": 0.30,
            "hedge": 0.16,
            "cash": 0.01,
        },
        allocation={
            "equity": 0.65,
            "fixedIncome": 0.10,
            "realEstate": 0.10,
            "privateEquity": 0.08,
            "hedge": 0.05,
            "cash": 0.02,
        },
    ),
}

DEFAULT_TAX_RATES = TaxRates(
    ordinary_income={"US": 0.37, "UK": 0.45, "Switzerland": 0.22, "Singapore": 0.22, "Cayman": 0.0},
    long_term_capital_gains={"US": 0.20, "UK": 0.20, "Switzerland": 0.20, "Singapore": 0.0, "Cayman": 0.0},
    short_term_capital_gains={"US": 0.37, "UK": 0.45, "Switzerland": 0.22, "Singapore": 0.22, "Cayman": 0.0},
    dividends={"US": 0.20, "UK": 0.39, "Switzerland": 0.35, "Singapore": 0.0, "Cayman": 0.0},
    estate_tax={"US": 0.40, "UK": 0.40, "Switzerland": 0.25, "Singapore": 0.0, "Cayman": 0.0},
    entity_modifiers={
        "individual": EntityModifiers(1.0, 1.0, 1.0, 1.0),
        "revocableTrust": EntityModifiers(1.0, 1.0, 1.0, 0.9),
        # Compressed trust brackets; assets sit outside the estate.
        "irrevocableTrust": EntityModifiers(1.1, 1.0, 1.0, 0.0),
        # Valuation discounts on partnership interests.
        "familyLimitedPartnership": EntityModifiers(1.0, 0.85, 1.0, 0.6),
        "llc": EntityModifiers(1.0, 0.9, 1.0, 0.8),
        "foundation": EntityModifiers(0.0, 0.0, 0.0, 0.0),
    },
)

DEFAULT_HARVESTING_STRATEGY = HarvestingStrategy(threshold=0.10, max_annual_loss=3_000_000.0, reinvestment_delay=30)

DEFAULT_ENTITY_TRANSFER_COSTS: dict[str, float] = {
    "individual": 0.0,
    "revocableTrust": 50_000.0,
    "irrevocableTrust": 100_000.0,
    "familyLimitedPartnership": 75_000.0,
    "llc": 40_000.0,
    "foundation": 250_000.0,
}

ENTITY_JURISDICTION_CATALOG: tuple[tuple[str, str], ...] = (
    ("individual", "US"),
    ("revocableTrust", "US"),
    ("irrevocableTrust", "US"),
    ("familyLimitedPartnership", "US"),
    ("llc", "US"),
    ("foundation", "US"),
    ("individual", "Singapore"),
    ("irrevocableTrust", "Singapore"),
    ("individual", "Cayman"),
    ("llc", "Cayman"),
)

# admin cost, minimum distribution, then 0-1 scores for tax efficiency, donor control, flexibility
VEHICLE_CHARACTERISTICS: dict[str, dict[str, float]] = {
    "privateFoundation": {
        "admin_costs": 0.01,
        "distribution_requirement": 0.05,
        "tax_efficiency": 0.8,
        "control": 1.0,
        "flexibility": 0.9,
    },
    "donorAdvisedFund": {
        "admin_costs": 0.007,
        "distribution_requirement": 0.0,
        "tax_efficiency": 0.9,
        "control": 0.7,
        "flexibility": 0.8,
    },
    "charitableTrust": {
        "admin_costs": 0.008,
        "distribution_requirement": 0.04,
        "tax_efficiency": 0.85,
        "control": 0.8,
        "flexibility": 0.6,
    },
    "directGiving": {
        "admin_costs": 0.0,
        "distribution_requirement": 1.0,
        "tax_efficiency": 0.7,
        "control": 0.5,
        "flexibility": 0.5,
    },
    "llc": {
        "admin_costs": 0.005,
        "distribution_requirement": 0.0,
        "tax_efficiency": 0.6,
        "control": 1.0,
        "flexibility": 1.0,
    },
}


def build_sample_philanthropy_config(
    simulation_years: int = 30,
    simulation_runs: int = 500,
) -> PhilanthropyConfig:
    """Return the reference three-generation family office with a foundation, DAF and trust."""
    assets = (
        Asset("US-Equity-Portfolio", "equity", 50_000_000.0, 0.08, 0.18, 1),
        Asset("ESG-Equity-Fund", "equity", 30_000_000.0, 0.075, 0.17, 1, esg_aligned=True),
        Asset("Bond-Portfolio", "fixedIncome", 40_000_000.0, 0.03, 0.05, 2),
        Asset(
            "Impact-Investment-Fund",
            "privateEquity",
            15_000_000.0,
            0.09,
            0.22,
            3,
            esg_aligned=True,
            impact_focused=True,
        ),
        Asset("Real-Estate-Holdings", "realEstate", 25_000_000.0, 0.06, 0.15, 4),
        Asset("Hedge-Fund-Allocation", "hedge", 20_000_000.0, 0.07, 0.14, 5),
        Asset("Cash-Reserves", "cash", 10_000_000.0, 0.01, 0.01, 6),
    )
    vehicles = (
        CharitableVehicle(
            id="Family-Foundation",
            vehicle_type="privateFoundation",
            current_value=20_000_000.0,
            annual_contribution=2_000_000.0,
            annual_admin_costs=0.01,
            distribution_requirement=0.05,
            investment_strategy="balanced",
            cause_areas=("Education", "Healthcare", "Environment"),
            family_involvement=500.0,
            mission_statement="To create lasting positive change in our communities through strategic philanthropy.",
        ),
        CharitableVehicle(
            id="Donor-Advised-Fund",
            vehicle_type="donorAdvisedFund",
            current_value=5_000_000.0,
            annual_contribution=1_000_000.0,
            annual_admin_costs=0.007,
            distribution_requirement=0.0,
            investment_strategy="growth",
            cause_areas=("Poverty Alleviation", "Arts"),
            family_involvement=100.0,
        ),
        CharitableVehicle(
            id="Charitable-Trust",
            vehicle_type="charitableTrust",
            current_value=10_000_000.0,
            annual_contribution=0.0,
            annual_admin_costs=0.008,
            distribution_requirement=0.04,
            investment_strategy="conservative",
            cause_areas=("Medical Research",),
            family_involvement=50.0,
        ),
    )
    members = (
        FamilyMember("Founder", 70, 90, 2_000_000.0, 1_000_000.0, 0.9, ("Education", "Healthcare", "Environment"), 300.0),
        FamilyMember("Spouse", 68, 92, 500_000.0, 1_000_000.0, 0.8, ("Arts", "Education"), 250.0),
        FamilyMember("Child-1", 45, 85, 1_500_000.0, 800_000.0, 0.7, ("Environment", "Social Justice"), 150.0, True),
        FamilyMember("Child-2", 42, 85, 1_200_000.0, 700_000.0, 0.4, ("Poverty Alleviation",), 50.0),
        FamilyMember("Grandchild-1", 18, 85, 0.0, 100_000.0, 0.6, ("Climate Change", "Education"), 30.0, True),
    )
    plan = LegacyPlan(
        minimum_family_involvement=200.0,
        philanthropic_percentage=0.3,
        primary_charitable_entity="privateFoundation",
        mission_statement=(
            "To create lasting positive change through strategic philanthropy while ensuring "
            "financial security for future generations."
        ),
    )
    return PhilanthropyConfig(
        simulation_years=simulation_years,
        simulation_runs=simulation_runs,
        assets=assets,
        charitable_vehicles=vehicles,
        family_members=members,
        legacy_plan=plan,
        investment_strategies=dict(DEFAULT_INVESTMENT_STRATEGIES),
        correlation_matrix=DEFAULT_CORRELATION_MATRIX,
        inflation_rate=0.02,
        family_growth_rate=0.01,
        philanthropic_allocation=0.3,
        impact_premium=-0.01,
    )


def build_sample_tax_config(
    simulation_years: int = 20,
    simulation_runs: int = 1_000,
) -> TaxOptimizationConfig:
    """Return the reference multi-jurisdiction portfolio used by the tax-structuring driver."""
    assets = (
        TaxAsset(
            "US-Equity-Portfolio", "equity", 50_000_000.0, 0.07, 0.15, 1,
            cost_basis=30_000_000.0, jurisdiction="US", entity_type="individual",
            income_pct=0.02, holding_period=365,
            tax_lots=(TaxLot(date(2020, 1, 1), 100.0, 500_000.0),),
        ),
        TaxAsset(
            "US-Treasuries", "fixedIncome", 30_000_000.0, 0.03, 0.05, 2, esg_aligned=True,
            cost_basis=30_000_000.0, jurisdiction="US", entity_type="revocableTrust",
            income_pct=0.03, holding_period=3,
            tax_lots=(TaxLot(date(2023, 1, 1), 1_000.0, 30_000.0),),
        ),
        TaxAsset(
            "Real-Estate-Portfolio", "realEstate", 25_000_000.0, 0.06, 0.12, 3,
            esg_aligned=True, impact_focused=True,
            cost_basis=15_000_000.0, jurisdiction="US", entity_type="llc",
            income_pct=0.04, holding_period=10,
            tax_lots=(TaxLot(date(2015, 1, 1), 15_000_000.0, 1.0),),
        ),
        TaxAsset(
            "Private-Equity-Fund", "privateEquity", 20_000_000.0, 0.12, 0.25, 4,
            cost_basis=18_000_000.0, jurisdiction="Cayman", entity_type="familyLimitedPartnership",
            income_pct=0.01, holding_period=7,
            tax_lots=(TaxLot(date(2018, 1, 1), 18_000_000.0, 1.0),),
        ),
        TaxAsset(
            "Hedge-Fund-Allocation", "hedge", 15_000_000.0, 0.09, 0.14, 5, esg_aligned=True,
            cost_basis=15_000_000.0, jurisdiction="Singapore", entity_type="irrevocableTrust",
            income_pct=0.02, holding_period=4,
            tax_lots=(TaxLot(date(2021, 1, 1), 15_000_000.0, 1.0),),
        ),
    )
    return TaxOptimizationConfig(
        simulation_years=simulation_years,
        simulation_runs=simulation_runs,
        assets=assets,
        tax_rates=DEFAULT_TAX_RATES,
        harvesting_strategies=(
            HarvestingStrategy(0.05, 1_000_000.0, 31),
            HarvestingStrategy(0.10, 3_000_000.0, 31),
            HarvestingStrategy(0.15, 5_000_000.0, 31),
        ),
        annual_withdrawal=5_000_000.0,
        inflation_rate=0.02,
        entity_transfer_costs=dict(DEFAULT_ENTITY_TRANSFER_COSTS),
    )
