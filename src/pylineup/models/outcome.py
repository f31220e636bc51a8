"""Fitted per-player outcomes and opponent descriptions."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict
from scipy.special import ndtri

from pylineup.config.settings import DEFAULT_CV, DEFAULT_INJURY_RISK, MIN_SIGMA, OptimizerSettings, resolve_bounds
from pylineup.models.player import PlayerRecord, Role
from pylineup.stats.truncated import TruncatedNormal, fit_from_mean, fit_from_quantiles


logger = logging.getLogger(__name__)

CONFIDENCE_FULL = "full"
CONFIDENCE_REDUCED = "reduced"


@dataclass(frozen=True)
class PlayerOutcome:
    """A player's fitted score distribution for one period."""

    record: PlayerRecord
    distribution: TruncatedNormal
    confidence: str = CONFIDENCE_FULL
    mean_bias: float = 1.0
    variance_scale: float = 1.0
    inactive_probability: float = 0.0
    mean: float = field(init=False)
    variance: float = field(init=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.inactive_probability <= 1.0:
            raise ValueError(f"inactive_probability must lie in [0, 1], got {self.inactive_probability}")
        object.__setattr__(self, "mean", self.distribution.mean())
        object.__setattr__(self, "variance", self.distribution.variance())

    @property
    def player_id(self) -> str:
        return self.record.player_id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def role(self) -> Role:
        return self.record.role

    @property
    def team(self) -> str:
        return self.record.team.upper()

    @property
    def opponent(self) -> str:
        return self.record.opponent.upper()

    @property
    def matchup(self) -> str:
        return self.record.matchup

    @property
    def projection(self) -> float:
        return self.record.projection

    @property
    def lower(self) -> float:
        return self.distribution.lower

    @property
    def upper(self) -> float:
        return self.distribution.upper

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    @property
    def expected_mean(self) -> float:
        """Mean score counting the chance the player sits out and scores zero."""

        return (1.0 - self.inactive_probability) * self.mean

    @property
    def expected_variance(self) -> float:
        q = self.inactive_probability
        return (1.0 - q) * self.variance + q * (1.0 - q) * self.mean ** 2

    @property
    def expected_std(self) -> float:
        return math.sqrt(self.expected_variance)

    def quantile(self, p: float) -> float:
        return self.distribution.quantile(p)

    def sample(self, size: int, rng: np.random.Generator) -> np.ndarray:
        return self.distribution.sample(size, rng)

    def calibrated(self, mean_bias: float, variance_scale: float) -> "PlayerOutcome":
        """Return a copy refit with the mean scaled and the spread widened or narrowed."""

        if mean_bias == 1.0 and variance_scale == 1.0:
            return self
        if mean_bias <= 0 or variance_scale <= 0:
            raise ValueError(
                f"calibration factors must be positive, got bias={mean_bias}, scale={variance_scale}"
            )
        sigma = self.distribution.sigma * math.sqrt(variance_scale)
        fit = fit_from_mean(self.mean * mean_bias, sigma, self.lower, self.upper)
        return replace(
            self,
            distribution=fit.distribution,
            mean_bias=self.mean_bias * mean_bias,
            variance_scale=self.variance_scale * variance_scale,
        )


def _cv_sigma(role: Role, target: float, settings: Optional[OptimizerSettings]) -> float:
    ratio = settings.cv_for(role) if settings else DEFAULT_CV[role]
    return max(MIN_SIGMA, ratio * abs(target))


def _hint_sigma(hints: Sequence[Tuple[float, float]]) -> Optional[float]:
    (p_lo, x_lo), (p_hi, x_hi) = hints[0], hints[-1]
    spread = (x_hi - x_lo) / (float(ndtri(p_hi)) - float(ndtri(p_lo)))
    if not spread > 0.0:
        return None
    return max(MIN_SIGMA, spread)


def _inactive_probability(record: PlayerRecord, settings: Optional[OptimizerSettings]) -> float:
    if settings is not None:
        return settings.injury_risk_for(record.injury_status)
    return DEFAULT_INJURY_RISK[record.injury_status]


def build_outcome(record: PlayerRecord, settings: Optional[OptimizerSettings] = None) -> PlayerOutcome:
    """Fit ``record`` to a truncated normal using its hints or its projection.

    Raises ``ValueError`` when hints are non-monotonic or fall outside the
    role bounds. A quantile fit that fails to converge falls back to the
    mean path, with the spread taken from the outermost hints, and marks the
    outcome ``reduced``. The record's injury status sets the chance the
    player does not play.
    """

    lower, upper = resolve_bounds(record.role, settings, lower=record.lower, upper=record.upper)
    inactive = _inactive_probability(record, settings)
    hints = record.quantile_hints()
    if len(hints) >= 2:
        fit = fit_from_quantiles(hints, lower, upper)
        if fit is not None and fit.converged:
            return PlayerOutcome(record, fit.distribution, inactive_probability=inactive)
        target = record.p50 if record.p50 is not None else record.projection
        logger.warning(
            "Quantile fit did not converge for %s (%s); falling back to mean %.2f",
            record.player_id,
            record.name,
            target,
        )
        sigma = _hint_sigma(hints) or _cv_sigma(record.role, target, settings)
        fallback = fit_from_mean(target, sigma, lower, upper)
        return PlayerOutcome(
            record, fallback.distribution, confidence=CONFIDENCE_REDUCED, inactive_probability=inactive
        )

    for p, value in hints:
        if value < lower or value > upper:
            raise ValueError(
                f"quantile hint q{p * 100:g}={value} for {record.player_id} "
                f"lies outside truncation bounds [{lower}, {upper}]"
            )
    fit = fit_from_mean(record.projection, _cv_sigma(record.role, record.projection, settings), lower, upper)
    confidence = CONFIDENCE_FULL if fit.converged else CONFIDENCE_REDUCED
    if not fit.converged:
        logger.warning("Mean fit did not converge for %s; residual %.4f", record.player_id, fit.residual)
    return PlayerOutcome(record, fit.distribution, confidence=confidence, inactive_probability=inactive)


def build_outcomes(
    records: Sequence[PlayerRecord],
    settings: Optional[OptimizerSettings] = None,
) -> List[PlayerOutcome]:
    return [build_outcome(record, settings) for record in records]


_LADDER_TAIL = 0.001


class OpponentOutcome(BaseModel):
    """Opponent score summary, optionally with a percentile ladder or starters."""

    mean: float
    variance: float = Field(..., ge=0.0)
    percentiles: Optional[Dict[int, float]] = None
    starters: Optional[List[Any]] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("mean", "variance")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    @field_validator("percentiles")
    @classmethod
    def _check_ladder(cls, value: Optional[Dict[int, float]]) -> Optional[Dict[int, float]]:
        if value is None:
            return None
        if not value:
            return None
        ordered = sorted(value.items())
        for level, _ in ordered:
            if not 0 < level < 100:
                raise ValueError(f"percentile level {level} must lie strictly between 0 and 100")
        for (lo_level, lo_value), (hi_level, hi_value) in zip(ordered, ordered[1:]):
            if hi_value < lo_value:
                raise ValueError(
                    f"percentile ladder must be non-decreasing: p{lo_level}={lo_value} > p{hi_level}={hi_value}"
                )
        return dict(ordered)

    @model_validator(mode="after")
    def _check_starters(self) -> "OpponentOutcome":
        if self.starters is None:
            return self
        if not self.starters:
            raise ValueError("starters, when supplied, must not be empty")
        for player in self.starters:
            if not isinstance(player, PlayerOutcome):
                raise ValueError(f"starters must be PlayerOutcome instances, got {type(player).__name__}")
        return self

    @classmethod
    def from_starters(cls, starters: Sequence[PlayerOutcome], **extra) -> "OpponentOutcome":
        """Summarise starters under independence and keep them for joint simulation."""

        starters = list(starters)
        return cls(
            mean=sum(player.expected_mean for player in starters),
            variance=sum(player.expected_variance for player in starters),
            starters=starters,
            **extra,
        )

    @property
    def std(self) -> float:
        return math.sqrt(self.variance)

    def _ladder_points(self) -> Tuple[np.ndarray, np.ndarray]:
        assert self.percentiles
        probs = [level / 100.0 for level in self.percentiles]
        values = list(self.percentiles.values())
        low = self.mean + self.std * float(ndtri(_LADDER_TAIL))
        high = self.mean + self.std * float(ndtri(1.0 - _LADDER_TAIL))
        probs = [_LADDER_TAIL, *probs, 1.0 - _LADDER_TAIL]
        values = [min(low, values[0]), *values, max(high, values[-1])]
        return np.asarray(probs), np.maximum.accumulate(np.asarray(values, dtype=float))

    def sample(self, size: int, rng: np.random.Generator) -> np.ndarray:
        """Independent opponent draws from the ladder (if any) or a normal."""

        if self.percentiles:
            probs, values = self._ladder_points()
            return np.interp(rng.random(size), probs, values)
        return self.mean + self.std * rng.standard_normal(size)


class OpponentScenario(BaseModel):
    """One weighted opponent possibility for mixture optimisation."""

    weight: float = Field(..., gt=0.0)
    outcome: OpponentOutcome
    label: str = ""

    model_config = ConfigDict(frozen=True)
