"""Truncated normal score distributions and their fitting routines.

A player's weekly score is modeled as a normal distribution restricted to a
role-specific interval ``[lower, upper]``. Two fitting paths exist:

* quantile hints (two or three of p10/p50/p90) solved by a fixed-point
  iteration on the pre-truncation parameters, and
* a target mean plus a spread, where the pre-truncation mean is moved by
  Newton steps until the truncated mean lands on the target.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np
from scipy.special import ndtr, ndtri
from scipy.stats import truncnorm


logger = logging.getLogger(__name__)

_U_EPS = 1e-12
_MIN_SIGMA = 1e-3


@dataclass(frozen=True)
class TruncatedNormal:
    """Normal(mu, sigma) restricted to ``[lower, upper]``."""

    mu: float
    sigma: float
    lower: float
    upper: float

    def __post_init__(self) -> None:
        if not self.upper > self.lower:
            raise ValueError(f"upper bound {self.upper} must exceed lower bound {self.lower}")
        if not self.sigma > 0:
            raise ValueError(f"sigma must be positive, got {self.sigma}")

    @property
    def alpha(self) -> float:
        return (self.lower - self.mu) / self.sigma

    @property
    def beta(self) -> float:
        return (self.upper - self.mu) / self.sigma

    def mean(self) -> float:
        value = float(truncnorm.mean(self.alpha, self.beta, loc=self.mu, scale=self.sigma))
        return min(max(value, self.lower), self.upper)

    def variance(self) -> float:
        return max(0.0, float(truncnorm.var(self.alpha, self.beta, loc=self.mu, scale=self.sigma)))

    def std(self) -> float:
        return math.sqrt(self.variance())

    def cdf(self, x: float) -> float:
        if x <= self.lower:
            return 0.0
        if x >= self.upper:
            return 1.0
        return float(truncnorm.cdf(x, self.alpha, self.beta, loc=self.mu, scale=self.sigma))

    def quantile(self, p: float) -> float:
        if not 0.0 <= p <= 1.0:
            raise ValueError(f"quantile level must be in [0, 1], got {p}")
        value = float(truncnorm.ppf(p, self.alpha, self.beta, loc=self.mu, scale=self.sigma))
        return min(max(value, self.lower), self.upper)

    def sample(self, size: int, rng: np.random.Generator) -> np.ndarray:
        """Draw ``size`` values by inverse-transform sampling."""

        u = rng.random(size)
        draws = truncnorm.ppf(u, self.alpha, self.beta, loc=self.mu, scale=self.sigma)
        return np.clip(draws, self.lower, self.upper)


@dataclass(frozen=True)
class FitResult:
    distribution: TruncatedNormal
    converged: bool
    iterations: int
    method: str
    residual: float = 0.0


def validate_quantile_hints(
    hints: Sequence[Tuple[float, float]],
    lower: float,
    upper: float,
) -> list[Tuple[float, float]]:
    """Return hints sorted by level, raising ``ValueError`` when inconsistent."""

    if len(hints) < 2:
        raise ValueError(f"need at least two quantile hints to fit, got {len(hints)}")
    ordered = sorted((float(p), float(x)) for p, x in hints)
    for p, x in ordered:
        if not 0.0 < p < 1.0:
            raise ValueError(f"quantile level {p} must lie strictly between 0 and 1")
        if not math.isfinite(x):
            raise ValueError(f"quantile hint at level {p} is not finite")
        if x < lower or x > upper:
            raise ValueError(
                f"quantile hint q{p * 100:g}={x} lies outside truncation bounds [{lower}, {upper}]"
            )
    for (p_lo, x_lo), (p_hi, x_hi) in zip(ordered, ordered[1:]):
        if p_hi == p_lo:
            raise ValueError(f"duplicate quantile level {p_lo}")
        if x_hi < x_lo:
            raise ValueError(
                f"quantile hints must be non-decreasing: q{p_lo * 100:g}={x_lo} > q{p_hi * 100:g}={x_hi}"
            )
    return ordered


def _regress(z: np.ndarray, x: np.ndarray, anchor: Optional[int] = None) -> Tuple[float, float]:
    """Least-squares ``x = mu + sigma * z``; returns ``(mu, sigma)``.

    With ``anchor`` the line is forced through that point, so the anchored
    hint is reproduced exactly and only the spread is fitted.
    """

    if anchor is None:
        z_mean = z.mean()
        x_mean = x.mean()
    else:
        z_mean = z[anchor]
        x_mean = x[anchor]
    spread = float(((z - z_mean) ** 2).sum())
    if spread <= 0.0:
        return float("nan"), float("nan")
    sigma = float(((z - z_mean) * (x - x_mean)).sum() / spread)
    return float(x_mean - sigma * z_mean), sigma


def fit_from_quantiles(
    hints: Sequence[Tuple[float, float]],
    lower: float,
    upper: float,
    *,
    max_iter: int = 200,
    tol: float = 1e-8,
) -> Optional[FitResult]:
    """Fit a truncated normal whose quantiles match ``hints``.

    Truncation shifts quantiles nonlinearly, so the pre-truncation parameters
    are found by iterating: for the current ``(mu, sigma)`` each target level
    ``p`` maps to the untruncated level ``F(a) + p * (F(b) - F(a))``; the hint
    values are then regressed on the standard normal scores of those levels to
    produce the next ``(mu, sigma)``. A median hint, when given, is held
    exact and the other hints set the spread.

    Returns ``None`` when the hints carry no spread at all (every hint equal).
    """

    ordered = validate_quantile_hints(hints, lower, upper)
    probs = np.array([p for p, _ in ordered])
    values = np.array([x for _, x in ordered])
    if values[-1] <= values[0]:
        return None
    median = [index for index, (p, _) in enumerate(ordered) if p == 0.5]
    anchor = median[0] if median else None

    span = upper - lower
    mu, sigma = _regress(ndtri(probs), values, anchor)
    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        fa = ndtr((lower - mu) / sigma)
        fb = ndtr((upper - mu) / sigma)
        levels = np.clip(fa + probs * (fb - fa), _U_EPS, 1.0 - _U_EPS)
        new_mu, new_sigma = _regress(ndtri(levels), values, anchor)
        if not (math.isfinite(new_mu) and math.isfinite(new_sigma)) or new_sigma <= _MIN_SIGMA:
            break
        if new_sigma > 10.0 * span or abs(new_mu - lower) > 20.0 * span:
            break
        step = max(abs(new_mu - mu), abs(new_sigma - sigma))
        mu, sigma = new_mu, new_sigma
        if step < tol * (1.0 + abs(mu) + sigma):
            converged = True
            break

    if not (math.isfinite(mu) and math.isfinite(sigma)) or sigma <= _MIN_SIGMA:
        return None
    distribution = TruncatedNormal(mu, sigma, lower, upper)
    residual = math.sqrt(
        float(np.mean([(distribution.quantile(p) - x) ** 2 for p, x in ordered]))
    )
    return FitResult(distribution, converged, iterations, "quantiles", residual)


def fit_from_mean(
    target: float,
    sigma: float,
    lower: float,
    upper: float,
    *,
    max_iter: int = 100,
    tol: float = 1e-6,
) -> FitResult:
    """Find ``mu`` so the truncated mean equals ``target`` for a fixed ``sigma``.

    Uses Newton steps with ``dE[X]/dmu = Var[X] / sigma**2``. Targets on or
    beyond a bound are pulled just inside the interval.
    """

    if not math.isfinite(target):
        raise ValueError(f"target mean must be finite, got {target}")
    if not sigma > 0:
        raise ValueError(f"sigma must be positive, got {sigma}")
    margin = 1e-3 * (upper - lower)
    clipped = min(max(target, lower + margin), upper - margin)
    if clipped != target:
        logger.debug("Target mean %.3f pulled inside bounds [%s, %s]", target, lower, upper)

    mu = clipped
    best = TruncatedNormal(mu, sigma, lower, upper)
    best_gap = abs(best.mean() - clipped)
    iterations = 0
    for iterations in range(1, max_iter + 1):
        current = TruncatedNormal(mu, sigma, lower, upper)
        gap = current.mean() - clipped
        if abs(gap) < best_gap:
            best, best_gap = current, abs(gap)
        if abs(gap) < tol * (1.0 + abs(clipped)):
            return FitResult(current, True, iterations, "mean", abs(gap))
        slope = current.variance() / (sigma * sigma)
        step = gap / max(slope, 1e-6)
        step = max(-2.0 * sigma, min(2.0 * sigma, step))
        mu -= step
    return FitResult(best, best_gap < tol * (1.0 + abs(clipped)), iterations, "mean", best_gap)


__all__ = [
    "FitResult",
    "TruncatedNormal",
    "fit_from_mean",
    "fit_from_quantiles",
    "validate_quantile_hints",
]
