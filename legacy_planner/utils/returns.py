"""Normal variates and correlated annual asset returns."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from legacy_planner.utils.config import Asset, InvalidConfigurationError


def random_normal(mean: float, std: float, rng: np.random.Generator) -> float:
    """Draw one normal variate with the Box-Muller transform.

    Both uniforms are resampled until strictly positive so the logarithm stays
    finite. The generator is owned by the caller; nothing here is shared.
    """
    u = 0.0
    while u == 0.0:
        u = float(rng.random())
    v = 0.0
    while v == 0.0:
        v = float(rng.random())
    z = math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)
    return mean + z * std


def _positive_uniforms(rng: np.random.Generator, size: int | tuple[int, ...]) -> np.ndarray:
    draws = rng.random(size)
    zero = draws == 0.0
    while np.any(zero):
        draws[zero] = rng.random(int(zero.sum()))
        zero = draws == 0.0
    return draws


def random_normal_array(
    mean: float | np.ndarray,
    std: float | np.ndarray,
    rng: np.random.Generator,
    size: int | tuple[int, ...],
) -> np.ndarray:
    """Vectorized Box-Muller draws; `mean` and `std` broadcast against `size`."""
    u = _positive_uniforms(rng, size)
    v = _positive_uniforms(rng, size)
    z = np.sqrt(-2.0 * np.log(u)) * np.cos(2.0 * np.pi * v)
    return np.asarray(mean, dtype=float) + z * np.asarray(std, dtype=float)


def build_cholesky_factor(correlation_matrix: np.ndarray, groups: Sequence[int]) -> np.ndarray:
    """Lower Cholesky factor of the asset-level correlation implied by group membership.

    Assets sharing a group make the expanded matrix singular, so a failed
    factorization is retried on the nearest positive semi-definite matrix.
    """
    idx = np.asarray(groups, dtype=int)
    expanded = np.asarray(correlation_matrix, dtype=float)[np.ix_(idx, idx)]
    try:
        return np.linalg.cholesky(expanded)
    except np.linalg.LinAlgError:
        eigvals, eigvecs = np.linalg.eigh(expanded)
        clipped = (eigvecs * np.maximum(eigvals, 1e-10)) @ eigvecs.T
        scale = np.sqrt(np.diag(clipped))
        clipped = clipped / np.outer(scale, scale)
        try:
            return np.linalg.cholesky(clipped + np.eye(idx.size) * 1e-12)
        except np.linalg.LinAlgError as exc:
            raise InvalidConfigurationError("correlation_matrix cannot be factorized.") from exc


def generate_correlated_returns(
    assets: Sequence[Asset],
    correlation_matrix: np.ndarray,
    rng: np.random.Generator,
    *,
    method: str = "legacy",
    cholesky_factor: np.ndarray | None = None,
) -> np.ndarray:
    """Draw one year of returns for `assets`, ordered as given.

    The ``"legacy"`` method accumulates ``sum_{j<=i} M[g_i][g_j] * z_j`` over
    the lower triangle. It is not a Cholesky factorization and does not
    reproduce the input covariance exactly for non-trivial matrices; the
    summation order is kept so simulated distributions stay comparable across
    releases. ``"cholesky"`` applies a true factor of the group-expanded matrix.
    """
    n = len(assets)
    if n == 0:
        return np.zeros(0, dtype=float)

    groups = [asset.correlation_group - 1 for asset in assets]
    independent = [random_normal(0.0, 1.0, rng) for _ in range(n)]

    if method == "legacy":
        matrix = np.asarray(correlation_matrix, dtype=float)
        pairwise = matrix[np.ix_(groups, groups)].tolist()
        shocks = []
        for i in range(n):
            correlated = 0.0
            for j in range(i + 1):
                correlated += pairwise[i][j] * independent[j]
            shocks.append(correlated)
        shock_arr = np.asarray(shocks, dtype=float)
    elif method == "cholesky":
        factor = cholesky_factor if cholesky_factor is not None else build_cholesky_factor(correlation_matrix, groups)
        shock_arr = factor @ np.asarray(independent, dtype=float)
    else:
        raise ValueError(f"Unknown correlation method: {method!r}")

    mu = np.array([asset.annual_return for asset in assets], dtype=float)
    vol = np.array([asset.annual_volatility for asset in assets], dtype=float)
    return mu + shock_arr * vol
