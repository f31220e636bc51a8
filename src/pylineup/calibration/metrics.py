"""Scoring rules and calibration diagnostics for probabilistic projections."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from scipy.stats import norm

QUANTILE_LEVELS = tuple(round(0.1 * i, 1) for i in range(1, 10))

_INV_SQRT_PI = 1.0 / math.sqrt(math.pi)


def gaussian_crps(mean, std, actual) -> np.ndarray:
    """Closed-form CRPS of ``Normal(mean, std)`` against ``actual``."""

    mean = np.asarray(mean, dtype=float)
    std = np.maximum(np.asarray(std, dtype=float), 1e-9)
    z = (np.asarray(actual, dtype=float) - mean) / std
    return std * (z * (2.0 * norm.cdf(z) - 1.0) + 2.0 * norm.pdf(z) - _INV_SQRT_PI)


def sample_crps(samples: Sequence[float], actual: float) -> float:
    """CRPS from an ensemble: ``E|X - y| - 0.5 * E|X - X'|``."""

    draws = np.sort(np.asarray(samples, dtype=float))
    n = draws.shape[0]
    if n == 0:
        raise ValueError("sample_crps needs at least one sample")
    spread_term = float(np.abs(draws - actual).mean())
    ranks = np.arange(1, n + 1)
    pair_term = float(((2 * ranks - n - 1) * draws).sum()) * 2.0 / (n * n)
    return spread_term - 0.5 * pair_term


def quantile_ece(mean, std, actual, levels: Sequence[float] = QUANTILE_LEVELS) -> float:
    """Mean absolute gap between nominal and observed quantile frequencies."""

    mean = np.asarray(mean, dtype=float)
    std = np.maximum(np.asarray(std, dtype=float), 1e-9)
    actual = np.asarray(actual, dtype=float)
    if actual.size == 0:
        return 0.0
    gaps = []
    for level in levels:
        threshold = norm.ppf(level, loc=mean, scale=std)
        gaps.append(abs(float(np.mean(actual <= threshold)) - level))
    return float(np.mean(gaps))


def interval_coverage(mean, std, actual, width: float) -> float:
    """Fraction of ``actual`` inside the central ``width`` interval."""

    if not 0.0 < width < 1.0:
        raise ValueError(f"interval width must be in (0, 1), got {width}")
    mean = np.asarray(mean, dtype=float)
    std = np.maximum(np.asarray(std, dtype=float), 1e-9)
    actual = np.asarray(actual, dtype=float)
    if actual.size == 0:
        return 0.0
    tail = (1.0 - width) / 2.0
    low = norm.ppf(tail, loc=mean, scale=std)
    high = norm.ppf(1.0 - tail, loc=mean, scale=std)
    return float(np.mean((actual >= low) & (actual <= high)))
