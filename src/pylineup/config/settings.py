"""Optimizer tuning knobs with environment overrides."""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict

from pylineup.models.player import InjuryStatus, Role


logger = logging.getLogger(__name__)

DEFAULT_BOUNDS: Dict[Role, Tuple[float, float]] = {
    Role.QB: (0.0, 60.0),
    Role.RB: (0.0, 50.0),
    Role.WR: (0.0, 55.0),
    Role.TE: (0.0, 40.0),
    Role.K: (0.0, 25.0),
    Role.DST: (-10.0, 35.0),
}

DEFAULT_CV: Dict[Role, float] = {
    Role.QB: 0.20,
    Role.RB: 0.25,
    Role.WR: 0.30,
    Role.TE: 0.35,
    Role.K: 0.40,
    Role.DST: 0.60,
}

MIN_SIGMA = 1.0

# chance a listed player sits out entirely
DEFAULT_INJURY_RISK: Dict[InjuryStatus, float] = {
    InjuryStatus.HEALTHY: 0.0,
    InjuryStatus.QUESTIONABLE: 0.25,
    InjuryStatus.DOUBTFUL: 0.75,
    InjuryStatus.OUT: 1.0,
    InjuryStatus.IR: 1.0,
}

_CANDIDATES_ENV = "PYLINEUP_CANDIDATES"
_SAMPLES_ENV = "PYLINEUP_SAMPLES"
_SEED_ENV = "PYLINEUP_SEED"
_WORKERS_ENV = "PYLINEUP_WORKERS"
_UNDERDOG_ENV = "PYLINEUP_UNDERDOG_THRESHOLD"
_FAVORITE_ENV = "PYLINEUP_FAVORITE_THRESHOLD"
_BIAS_ENV = "PYLINEUP_STRATEGY_BIAS"


def _env_float(name: str, default: float, *, clamp_min: float | None = None, clamp_max: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid float for %s: %s; using default %.2f", name, raw, default)
        return default
    if clamp_min is not None:
        value = max(clamp_min, value)
    if clamp_max is not None:
        value = min(clamp_max, value)
    return value


def _env_int(name: str, default: int, *, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid int for %s: %s; using default %d", name, raw, default)
        return default
    if min_value is not None:
        value = max(min_value, value)
    return value


class OptimizerSettings(BaseModel):
    """Search width, simulation size and distribution defaults for one run."""

    candidates: int = Field(50, gt=0)
    samples: int = Field(10_000, gt=0)
    seed: int = 1337
    workers: int = Field(1, ge=1)
    underdog_threshold: float = Field(0.35, gt=0.0, lt=1.0)
    favorite_threshold: float = Field(0.65, gt=0.0, lt=1.0)
    strategy_bias: float = Field(0.5, ge=0.0)
    bounds: Dict[Role, Tuple[float, float]] = Field(default_factory=lambda: dict(DEFAULT_BOUNDS))
    cv: Dict[Role, float] = Field(default_factory=lambda: dict(DEFAULT_CV))
    injury_risk: Dict[InjuryStatus, float] = Field(default_factory=lambda: dict(DEFAULT_INJURY_RISK))

    model_config = ConfigDict(frozen=True)

    @field_validator("bounds")
    @classmethod
    def _check_bounds(cls, value: Dict[Role, Tuple[float, float]]) -> Dict[Role, Tuple[float, float]]:
        merged = dict(DEFAULT_BOUNDS)
        merged.update(value)
        for role, (lower, upper) in merged.items():
            if not lower < upper:
                raise ValueError(f"bounds for {role.value} must satisfy lower < upper, got [{lower}, {upper}]")
        return merged

    @field_validator("cv")
    @classmethod
    def _check_cv(cls, value: Dict[Role, float]) -> Dict[Role, float]:
        merged = dict(DEFAULT_CV)
        merged.update(value)
        for role, ratio in merged.items():
            if ratio <= 0:
                raise ValueError(f"coefficient of variation for {role.value} must be positive, got {ratio}")
        return merged

    @field_validator("injury_risk")
    @classmethod
    def _check_injury_risk(cls, value: Dict[InjuryStatus, float]) -> Dict[InjuryStatus, float]:
        merged = dict(DEFAULT_INJURY_RISK)
        merged.update(value)
        for status, risk in merged.items():
            if not 0.0 <= risk <= 1.0:
                raise ValueError(f"injury risk for {status.value} must lie in [0, 1], got {risk}")
        return merged

    @model_validator(mode="after")
    def _check_thresholds(self) -> "OptimizerSettings":
        if self.underdog_threshold >= self.favorite_threshold:
            raise ValueError(
                f"underdog_threshold {self.underdog_threshold} must be below "
                f"favorite_threshold {self.favorite_threshold}"
            )
        return self

    def bounds_for(self, role: Role) -> Tuple[float, float]:
        return self.bounds[role]

    def cv_for(self, role: Role) -> float:
        return self.cv[role]

    def injury_risk_for(self, status: InjuryStatus) -> float:
        return self.injury_risk[status]

    @classmethod
    def from_env(cls, **overrides) -> "OptimizerSettings":
        """Build settings from ``PYLINEUP_*`` variables; keyword overrides win."""

        defaults = cls()
        values = {
            "candidates": _env_int(_CANDIDATES_ENV, defaults.candidates, min_value=1),
            "samples": _env_int(_SAMPLES_ENV, defaults.samples, min_value=1),
            "seed": _env_int(_SEED_ENV, defaults.seed),
            "workers": _env_int(_WORKERS_ENV, defaults.workers, min_value=1),
            "underdog_threshold": _env_float(
                _UNDERDOG_ENV, defaults.underdog_threshold, clamp_min=0.01, clamp_max=0.99
            ),
            "favorite_threshold": _env_float(
                _FAVORITE_ENV, defaults.favorite_threshold, clamp_min=0.01, clamp_max=0.99
            ),
            "strategy_bias": _env_float(_BIAS_ENV, defaults.strategy_bias, clamp_min=0.0),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def resolve_bounds(
    role: Role,
    settings: Optional[OptimizerSettings] = None,
    *,
    lower: Optional[float] = None,
    upper: Optional[float] = None,
) -> Tuple[float, float]:
    """League bounds for ``role`` with optional per-player overrides applied."""

    base_lower, base_upper = (settings.bounds_for(role) if settings else DEFAULT_BOUNDS[role])
    resolved = (
        base_lower if lower is None else float(lower),
        base_upper if upper is None else float(upper),
    )
    if not resolved[0] < resolved[1]:
        raise ValueError(f"invalid bounds for {role.value}: [{resolved[0]}, {resolved[1]}]")
    return resolved
