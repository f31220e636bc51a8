"""Per-role projection corrections learned from completed periods."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from pylineup.calibration.metrics import gaussian_crps, interval_coverage, quantile_ece, sample_crps
from pylineup.models.outcome import PlayerOutcome
from pylineup.models.player import Role


logger = logging.getLogger(__name__)

BIAS_BOUNDS: Tuple[float, float] = (0.8, 1.2)
SCALE_BOUNDS: Tuple[float, float] = (0.5, 2.0)
SMOOTHING = 0.3
MAX_STEP = 0.1
MIN_PERIODS = 3
STALE_PERIODS = 2


class CalibrationObservation(BaseModel):
    """One uncalibrated prediction paired with the realised score."""

    player_id: str = Field(..., min_length=1)
    role: Role
    period: int
    predicted_mean: float
    predicted_variance: float = Field(..., ge=0.0)
    actual: float
    samples: Optional[List[float]] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("predicted_mean", "predicted_variance", "actual")
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    @classmethod
    def from_outcome(
        cls,
        outcome: PlayerOutcome,
        actual: float,
        period: int,
        *,
        samples: Optional[Sequence[float]] = None,
    ) -> "CalibrationObservation":
        return cls(
            player_id=outcome.player_id,
            role=outcome.role,
            period=period,
            predicted_mean=outcome.mean,
            predicted_variance=outcome.variance,
            actual=actual,
            samples=list(samples) if samples is not None else None,
        )


class RoleAdjustment(BaseModel):
    mean_bias: float = Field(1.0, ge=BIAS_BOUNDS[0], le=BIAS_BOUNDS[1])
    variance_scale: float = Field(1.0, ge=SCALE_BOUNDS[0], le=SCALE_BOUNDS[1])
    last_period: Optional[int] = None


class RoleReport(BaseModel):
    count: int
    crps: float
    ece: float
    coverage_50: float
    coverage_80: float
    mean_bias: float
    variance_scale: float
    updated: bool

    model_config = ConfigDict(frozen=True)


class CalibrationReport(BaseModel):
    period: int
    observations: int
    crps: float
    ece: float
    coverage_50: float
    coverage_80: float
    roles: Dict[Role, RoleReport] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


def _default_adjustments() -> Dict[Role, RoleAdjustment]:
    return {role: RoleAdjustment() for role in Role}


class CalibrationState(BaseModel):
    adjustments: Dict[Role, RoleAdjustment] = Field(default_factory=_default_adjustments)
    last_period: Optional[int] = None
    observations: List[CalibrationObservation] = Field(default_factory=list)
    reports: List[CalibrationReport] = Field(default_factory=list)

    def adjustment(self, role: Role) -> RoleAdjustment:
        return self.adjustments.get(role) or RoleAdjustment()

    @property
    def needs_update(self) -> bool:
        """True when some role has not been updated for more than two periods."""

        if self.last_period is None:
            return False
        for adjustment in self.adjustments.values():
            last = adjustment.last_period if adjustment.last_period is not None else 0
            if self.last_period - last > STALE_PERIODS:
                return True
        return False

    def save(self, path: Path) -> None:
        path.write_text(self.model_dump_json(indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "CalibrationState":
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


def _smooth(prior: float, proposed: float, weight: float, max_step: float) -> float:
    smoothed = weight * proposed + (1.0 - weight) * prior
    change = smoothed - prior
    if abs(change) > max_step:
        return prior + math.copysign(max_step, change)
    return smoothed


def _summarize(observations: Sequence[CalibrationObservation]) -> Tuple[float, float, float, float]:
    means = np.array([obs.predicted_mean for obs in observations])
    stds = np.sqrt(np.array([obs.predicted_variance for obs in observations]))
    actuals = np.array([obs.actual for obs in observations])
    crps_values = [
        sample_crps(obs.samples, obs.actual) if obs.samples else float(gaussian_crps(mean, std, obs.actual))
        for obs, mean, std in zip(observations, means, stds)
    ]
    return (
        float(np.mean(crps_values)),
        quantile_ece(means, stds, actuals),
        interval_coverage(means, stds, actuals, 0.5),
        interval_coverage(means, stds, actuals, 0.8),
    )


class CalibrationLoop:
    """Accumulates observations and updates per-role corrections once per period.

    Not safe for concurrent use; callers serialise ``record_period`` calls.
    """

    def __init__(
        self,
        state: Optional[CalibrationState] = None,
        *,
        min_periods: int = MIN_PERIODS,
        smoothing: float = SMOOTHING,
        max_step: float = MAX_STEP,
        bias_bounds: Tuple[float, float] = BIAS_BOUNDS,
        scale_bounds: Tuple[float, float] = SCALE_BOUNDS,
    ):
        if min_periods < 1:
            raise ValueError(f"min_periods must be positive, got {min_periods}")
        if not 0.0 < smoothing <= 1.0:
            raise ValueError(f"smoothing must be in (0, 1], got {smoothing}")
        for name, bounds, limits in (("bias_bounds", bias_bounds, BIAS_BOUNDS), ("scale_bounds", scale_bounds, SCALE_BOUNDS)):
            if not limits[0] <= bounds[0] <= bounds[1] <= limits[1]:
                raise ValueError(f"{name} {bounds} must lie within {limits}")
        self.state = state or CalibrationState()
        self.min_periods = min_periods
        self.smoothing = smoothing
        self.max_step = max_step
        self.bias_bounds = bias_bounds
        self.scale_bounds = scale_bounds

    def reset(self) -> None:
        """Start a new season with neutral corrections."""

        self.state = CalibrationState()

    def record_period(
        self,
        period: int,
        observations: Iterable[CalibrationObservation],
    ) -> CalibrationReport:
        """Add one period of observations and update eligible roles."""

        if self.state.last_period is not None and period <= self.state.last_period:
            raise ValueError(
                f"period {period} must be after the last recorded period {self.state.last_period}"
            )
        batch = list(observations)
        for obs in batch:
            if obs.period != period:
                raise ValueError(
                    f"observation for {obs.player_id} is from period {obs.period}, expected {period}"
                )

        self.state.observations.extend(batch)
        self.state.last_period = period

        by_role: Dict[Role, List[CalibrationObservation]] = defaultdict(list)
        for obs in self.state.observations:
            by_role[obs.role].append(obs)

        updated: set[Role] = set()
        for role, history in by_role.items():
            if len({obs.period for obs in history}) < self.min_periods:
                continue
            self._update_role(role, history, period)
            updated.add(role)

        report = self._build_report(period, batch, updated)
        self.state.reports.append(report)
        logger.info(
            "Calibration period %s: %d observations, CRPS %.3f, ECE %.3f, coverage50 %.2f, coverage80 %.2f, updated %s",
            period,
            report.observations,
            report.crps,
            report.ece,
            report.coverage_50,
            report.coverage_80,
            ",".join(sorted(role.value for role in updated)) or "-",
        )
        return report

    def _update_role(self, role: Role, history: Sequence[CalibrationObservation], period: int) -> None:
        current = self.state.adjustment(role)
        predicted = np.array([obs.predicted_mean for obs in history])
        actual = np.array([obs.actual for obs in history])
        variance = np.array([obs.predicted_variance for obs in history])

        mean_bias = current.mean_bias
        mean_predicted = float(predicted.mean())
        if mean_predicted > 0:
            raw_bias = _clamp(float(actual.mean()) / mean_predicted, self.bias_bounds)
            mean_bias = _clamp(_smooth(current.mean_bias, raw_bias, self.smoothing, self.max_step), self.bias_bounds)
        else:
            logger.debug("Skipping bias update for %s: mean prediction %.3f", role.value, mean_predicted)

        variance_scale = current.variance_scale
        mean_variance = float(variance.mean())
        if mean_variance > 0:
            raw_scale = _clamp(float(((actual - predicted) ** 2).mean()) / mean_variance, self.scale_bounds)
            variance_scale = _clamp(
                _smooth(current.variance_scale, raw_scale, self.smoothing, self.max_step),
                self.scale_bounds,
            )
        else:
            logger.debug("Skipping scale update for %s: mean variance %.3f", role.value, mean_variance)

        self.state.adjustments[role] = RoleAdjustment(
            mean_bias=mean_bias,
            variance_scale=variance_scale,
            last_period=period,
        )

    def _build_report(
        self,
        period: int,
        batch: Sequence[CalibrationObservation],
        updated: set[Role],
    ) -> CalibrationReport:
        if not batch:
            return CalibrationReport(
                period=period, observations=0, crps=0.0, ece=0.0, coverage_50=0.0, coverage_80=0.0
            )
        crps, ece, cov50, cov80 = _summarize(batch)
        grouped: Dict[Role, List[CalibrationObservation]] = defaultdict(list)
        for obs in batch:
            grouped[obs.role].append(obs)
        roles: Dict[Role, RoleReport] = {}
        for role, items in grouped.items():
            role_crps, role_ece, role_cov50, role_cov80 = _summarize(items)
            adjustment = self.state.adjustment(role)
            roles[role] = RoleReport(
                count=len(items),
                crps=role_crps,
                ece=role_ece,
                coverage_50=role_cov50,
                coverage_80=role_cov80,
                mean_bias=adjustment.mean_bias,
                variance_scale=adjustment.variance_scale,
                updated=role in updated,
            )
        return CalibrationReport(
            period=period,
            observations=len(batch),
            crps=crps,
            ece=ece,
            coverage_50=cov50,
            coverage_80=cov80,
            roles=roles,
        )


def apply_calibration(
    outcomes: Sequence[PlayerOutcome],
    state: Optional[CalibrationState],
) -> List[PlayerOutcome]:
    """Return outcomes refit with each role's current correction."""

    if state is None:
        return list(outcomes)
    adjusted: List[PlayerOutcome] = []
    for outcome in outcomes:
        adjustment = state.adjustment(outcome.role)
        adjusted.append(outcome.calibrated(adjustment.mean_bias, adjustment.variance_scale))
    return adjusted
