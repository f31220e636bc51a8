"""Win probability estimates and risk posture selection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import brentq
from scipy.special import ndtr
from scipy.stats import norm

from pylineup.models.outcome import OpponentOutcome, OpponentScenario, PlayerOutcome
from pylineup.stats.factors import FactorModel


logger = logging.getLogger(__name__)

MIN_VARIANCE = 1e-6
PERCENTILE_LEVELS: Tuple[int, ...] = (5, 25, 50, 75, 95)


class Strategy(str, Enum):
    CEILING = "ceiling"
    BALANCED = "balanced"
    FLOOR = "floor"


def analytic_win_probability(
    our_mean: float,
    our_variance: float,
    opp_mean: float,
    opp_variance: float,
) -> float:
    """``P(ours > theirs)`` with both totals treated as independent normals."""

    variance = max(MIN_VARIANCE, our_variance + opp_variance)
    return float(ndtr((our_mean - opp_mean) / math.sqrt(variance)))


def lineup_win_probability(lineup: Sequence[PlayerOutcome], opponent: OpponentOutcome) -> float:
    """Analytic win probability for a lineup under roster independence."""

    mean = sum(player.expected_mean for player in lineup)
    variance = sum(player.expected_variance for player in lineup)
    return analytic_win_probability(mean, variance, opponent.mean, opponent.variance)


def recommend_strategy(
    win_probability: float,
    *,
    underdog_threshold: float = 0.35,
    favorite_threshold: float = 0.65,
) -> Strategy:
    if win_probability < underdog_threshold:
        return Strategy.CEILING
    if win_probability > favorite_threshold:
        return Strategy.FLOOR
    return Strategy.BALANCED


def strategy_bias(strategy: Strategy, magnitude: float = 0.5) -> float:
    """Signed weight on standard deviation; positive favours upside."""

    if strategy is Strategy.CEILING:
        return magnitude
    if strategy is Strategy.FLOOR:
        return -magnitude
    return 0.0


@dataclass(frozen=True)
class MonteCarloResult:
    win_probability: float
    margin_mean: float
    margin_std: float
    score_mean: float
    score_std: float
    score_percentiles: Dict[int, float]
    margin_percentiles: Dict[int, float]
    standard_error: float
    samples: int
    seed: int


def _ladder(values: np.ndarray) -> Dict[int, float]:
    points = np.percentile(values, PERCENTILE_LEVELS)
    return {level: float(point) for level, point in zip(PERCENTILE_LEVELS, points)}


def summarize_samples(ours: np.ndarray, theirs: np.ndarray, *, seed: int) -> MonteCarloResult:
    margin = ours - theirs
    wins = float(np.mean(margin > 0))
    size = margin.shape[0]
    return MonteCarloResult(
        win_probability=wins,
        margin_mean=float(margin.mean()),
        margin_std=float(margin.std()),
        score_mean=float(ours.mean()),
        score_std=float(ours.std()),
        score_percentiles=_ladder(ours),
        margin_percentiles=_ladder(margin),
        standard_error=math.sqrt(wins * (1.0 - wins) / size),
        samples=size,
        seed=seed,
    )


def simulate_win_probability(
    model: FactorModel,
    opponent: OpponentOutcome,
    *,
    samples: int = 10_000,
    seed: int = 1337,
) -> MonteCarloResult:
    """Sample our total from ``model`` and the opponent independently."""

    if samples <= 0:
        raise ValueError(f"samples must be positive, got {samples}")
    rng = np.random.default_rng(seed)
    ours = model.sample_totals(samples, rng)
    theirs = opponent.sample(samples, rng)
    return summarize_samples(ours, theirs, seed=seed)


def monte_carlo_win_probability(
    lineup: Sequence[PlayerOutcome],
    opponent: OpponentOutcome,
    *,
    samples: int = 10_000,
    seed: int = 1337,
) -> MonteCarloResult:
    """Monte Carlo win probability for ``lineup``.

    When the opponent carries likely starters, both rosters are drawn from one
    factor model so shared teams and games move both totals together.
    """

    if samples <= 0:
        raise ValueError(f"samples must be positive, got {samples}")
    if not opponent.starters:
        return simulate_win_probability(
            FactorModel.from_outcomes(lineup), opponent, samples=samples, seed=seed
        )
    ours = list(lineup)
    theirs = list(opponent.starters)
    model = FactorModel.from_outcomes(ours + theirs)
    rng = np.random.default_rng(seed)
    our_totals, their_totals = model.sample_group_totals(
        samples,
        rng,
        [range(len(ours)), range(len(ours), len(ours) + len(theirs))],
    )
    return summarize_samples(our_totals, their_totals, seed=seed)


def _normalise_weights(scenarios: Sequence[OpponentScenario]) -> np.ndarray:
    weights = np.array([scenario.weight for scenario in scenarios], dtype=float)
    return weights / weights.sum()


def mixture_opponent(scenarios: Sequence[OpponentScenario]) -> OpponentOutcome:
    """Moment-match weighted opponent scenarios into one outcome.

    The returned percentile ladder comes from the mixture-of-normals CDF, so
    skew and bimodality survive into Monte Carlo sampling. A single scenario
    is returned as given, ladder and starters included.
    """

    if not scenarios:
        raise ValueError("at least one opponent scenario is required")
    if len(scenarios) == 1:
        return scenarios[0].outcome
    weights = _normalise_weights(scenarios)
    means = np.array([scenario.outcome.mean for scenario in scenarios], dtype=float)
    variances = np.array([scenario.outcome.variance for scenario in scenarios], dtype=float)
    mean = float((weights * means).sum())
    variance = max(0.0, float((weights * (variances + means ** 2)).sum() - mean ** 2))

    stds = np.sqrt(np.maximum(variances, MIN_VARIANCE))

    def mixture_cdf(x: float) -> float:
        return float((weights * norm.cdf(x, loc=means, scale=stds)).sum())

    low = float((means - 10.0 * stds).min())
    high = float((means + 10.0 * stds).max())
    ladder: Dict[int, float] = {}
    for level in PERCENTILE_LEVELS:
        target = level / 100.0
        ladder[level] = float(brentq(lambda x: mixture_cdf(x) - target, low, high, xtol=1e-6))
    logger.debug(
        "Opponent mixture of %d scenarios: mean %.2f, std %.2f",
        len(scenarios),
        mean,
        math.sqrt(variance),
    )
    return OpponentOutcome(mean=mean, variance=variance, percentiles=ladder)


def screen_strategy(
    lineup: Sequence[PlayerOutcome],
    opponent: OpponentOutcome,
    *,
    underdog_threshold: float = 0.35,
    favorite_threshold: float = 0.65,
    magnitude: float = 0.5,
    win_probability: Optional[float] = None,
) -> Tuple[Strategy, float, float]:
    """Return ``(strategy, bias, win_probability)`` for a quick screen."""

    if win_probability is None:
        win_probability = lineup_win_probability(lineup, opponent)
    strategy = recommend_strategy(
        win_probability,
        underdog_threshold=underdog_threshold,
        favorite_threshold=favorite_threshold,
    )
    return strategy, strategy_bias(strategy, magnitude), win_probability


__all__ = [
    "MIN_VARIANCE",
    "MonteCarloResult",
    "PERCENTILE_LEVELS",
    "Strategy",
    "analytic_win_probability",
    "lineup_win_probability",
    "mixture_opponent",
    "monte_carlo_win_probability",
    "recommend_strategy",
    "screen_strategy",
    "simulate_win_probability",
    "strategy_bias",
]
