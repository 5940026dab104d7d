"""Per-asset tax computation: income tax, loss harvesting and terminal capital gains."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from legacy_planner.utils.config import ASSET_PATH_MODELS, HarvestingStrategy, TaxAsset, TaxRates
from legacy_planner.utils.returns import random_normal

# Coarse cutoff on `TaxAsset.holding_period`; anything above it is taxed at the long-term rate.
LONG_TERM_HOLDING_THRESHOLD = 1


@dataclass(frozen=True)
class AssetYear:
    """Closing value of one asset-year plus the income and drawdown loss realized in it."""

    value: float
    income: float
    loss: float


@dataclass(frozen=True)
class AssetTaxBreakdown:
    total_tax: float
    income_tax: float
    capital_gains_tax: float
    harvested_losses: float


def simulate_asset_performance(
    asset: TaxAsset,
    years: int,
    rng: np.random.Generator,
    model: str = "income_only",
) -> list[AssetYear]:
    """Simulate the asset value path with one normal return draw per year.

    Income is paid on the opening value and the drawdown loss is the opening
    value times the magnitude of a negative return; the loss is what the
    harvesting rule may realize. Under ``"income_only"`` the value moves by
    income less loss, so positive returns never compound. ``"total_return"``
    applies the full return and adds income on top. Values are floored at 0.
    """
    if years < 0:
        raise ValueError("years must be non-negative.")
    if model not in ASSET_PATH_MODELS:
        raise ValueError(f"Unknown asset path model: {model!r}")

    value = np.float64(asset.current_value)
    path: list[AssetYear] = []
    for _ in range(years):
        annual_return = random_normal(asset.annual_return, asset.annual_volatility, rng)
        income = value * asset.income_pct
        loss = value * max(-annual_return, 0.0)
        if model == "income_only":
            value = np.maximum(value + income - loss, 0.0)
        else:
            value = np.maximum(value * (1.0 + annual_return) + income, 0.0)
        path.append(AssetYear(value=value, income=income, loss=loss))
    return path


def terminal_value(asset: TaxAsset, performance: Sequence[AssetYear]) -> float:
    """Closing value of the last simulated year, or the opening value for a zero horizon."""
    if not performance:
        return float(asset.current_value)
    return performance[-1].value


def capital_gains_rate(asset: TaxAsset, tax_rates: TaxRates) -> float:
    modifiers = tax_rates.entity_modifiers[asset.entity_type]
    if asset.holding_period > LONG_TERM_HOLDING_THRESHOLD:
        base = tax_rates.long_term_capital_gains[asset.jurisdiction]
    else:
        base = tax_rates.short_term_capital_gains[asset.jurisdiction]
    return base * modifiers.capital_gains


def calculate_asset_taxes(
    asset: TaxAsset,
    performance: Sequence[AssetYear],
    tax_rates: TaxRates,
    harvesting: HarvestingStrategy,
) -> AssetTaxBreakdown:
    """Taxes owed over the horizon for one asset under its entity/jurisdiction assignment.

    Income is taxed yearly at the jurisdiction's dividend rate scaled by the
    entity's dividend modifier, except for tax-deferred assets. A yearly loss
    above `threshold` times the closing value and within `max_annual_loss`
    is harvested and lowers the aggregate adjusted cost basis. At the horizon
    the unrealized gain is taxed once if positive, and that tax is reduced
    by the harvested losses times the same rate, never below zero.
    """
    modifiers = tax_rates.entity_modifiers[asset.entity_type]
    income_rate = tax_rates.dividends[asset.jurisdiction] * modifiers.dividends

    incomes = np.array([year.income for year in performance], dtype=np.float64)
    losses = np.array([year.loss for year in performance], dtype=np.float64)
    closing = np.array([year.value for year in performance], dtype=np.float64)

    income_tax = np.float64(0.0) if asset.is_tax_deferred else np.sum(incomes * income_rate)
    harvestable = (losses > closing * harvesting.threshold) & (losses <= harvesting.max_annual_loss)
    harvested_losses = np.sum(losses[harvestable])
    adjusted_cost_basis = np.float64(asset.cost_basis) - harvested_losses

    unrealized_gain = np.float64(terminal_value(asset, performance)) - adjusted_cost_basis
    cg_rate = capital_gains_rate(asset, tax_rates)

    capital_gains_tax = np.float64(0.0)
    if unrealized_gain > 0:
        capital_gains_tax = unrealized_gain * cg_rate
    capital_gains_tax -= min(capital_gains_tax, harvested_losses * cg_rate)

    return AssetTaxBreakdown(
        total_tax=float(income_tax + capital_gains_tax),
        income_tax=float(income_tax),
        capital_gains_tax=float(capital_gains_tax),
        harvested_losses=float(harvested_losses),
    )


def calculate_estate_tax(value: float, jurisdiction: str, entity_type: str, tax_rates: TaxRates) -> float:
    """Estate-tax exposure if `value` passed at death under the given wrapper and domicile."""
    if value <= 0:
        return 0.0
    rate = tax_rates.estate_tax[jurisdiction] * tax_rates.entity_modifiers[entity_type].estate_tax
    return value * rate
