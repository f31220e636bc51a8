"""Shared-factor correlation model for lineup scores.

Each player's score is ``mean + sum(loading * factor) + residual * noise``
with independent standard normal factors and noise. Factors are per-team
pass and rush volume plus one game-environment factor per matchup. The
covariance ``L @ L.T + diag(r**2)`` is positive semi-definite for any
loadings, and each player's loadings and residual are scaled so the total
variance equals the fitted distribution's variance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from pylineup.models.player import Role

if TYPE_CHECKING:
    from pylineup.models.outcome import PlayerOutcome


logger = logging.getLogger(__name__)

EXPLAINED_FRACTION: Mapping[Role, float] = {
    Role.QB: 0.35,
    Role.WR: 0.30,
    Role.TE: 0.25,
    Role.RB: 0.20,
    Role.K: 0.15,
    Role.DST: 0.10,
}

TEAM_BOOST: Mapping[Role, float] = {
    Role.QB: 1.10,
    Role.WR: 1.10,
    Role.TE: 1.05,
}

MAX_EXPLAINED = 0.98

# (team pass, team rush, game) weights before normalisation
FACTOR_WEIGHTS: Mapping[Role, Tuple[float, float, float]] = {
    Role.QB: (0.85, 0.05, 0.25),
    Role.WR: (0.80, 0.05, 0.20),
    Role.TE: (0.70, 0.10, 0.20),
    Role.RB: (0.35, 0.65, 0.15),
    Role.K: (0.25, 0.25, 0.50),
    Role.DST: (-0.25, -0.20, 0.10),
}


def explained_fraction(role: Role) -> float:
    return min(MAX_EXPLAINED, EXPLAINED_FRACTION[role] * TEAM_BOOST.get(role, 1.0))


def _factor_keys(outcome: PlayerOutcome) -> Tuple[Optional[str], Optional[str], str]:
    game = f"game:{outcome.matchup}"
    if outcome.role is Role.DST:
        # a defense moves against the offense it faces
        if not outcome.opponent:
            return None, None, game
        return f"pass:{outcome.opponent}", f"rush:{outcome.opponent}", game
    return f"pass:{outcome.team}", f"rush:{outcome.team}", game


@dataclass(frozen=True, eq=False)
class FactorModel:
    player_ids: Tuple[str, ...]
    means: np.ndarray
    loadings: np.ndarray
    residuals: np.ndarray
    factor_labels: Tuple[str, ...]
    lower: np.ndarray
    upper: np.ndarray
    inactive: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        n = len(self.player_ids)
        if self.means.shape != (n,) or self.residuals.shape != (n,):
            raise ValueError("means and residuals must have one entry per player")
        if self.loadings.shape != (n, len(self.factor_labels)):
            raise ValueError(
                f"loadings shape {self.loadings.shape} does not match "
                f"{n} players x {len(self.factor_labels)} factors"
            )
        if np.any(self.residuals < 0):
            raise ValueError("residual standard deviations must be non-negative")
        if self.inactive is None:
            object.__setattr__(self, "inactive", np.zeros(n))
        elif self.inactive.shape != (n,) or np.any((self.inactive < 0) | (self.inactive > 1)):
            raise ValueError("inactive probabilities must be one value in [0, 1] per player")

    @classmethod
    def from_outcomes(cls, outcomes: Sequence[PlayerOutcome]) -> "FactorModel":
        """Derive loadings for ``outcomes`` from the role weight table."""

        columns: Dict[str, int] = {}
        entries: List[List[Tuple[int, float]]] = []
        residuals: List[float] = []
        for outcome in outcomes:
            keys = _factor_keys(outcome)
            weights = np.array(FACTOR_WEIGHTS[outcome.role], dtype=float)
            active = [(key, weight) for key, weight in zip(keys, weights) if key is not None and weight != 0.0]
            fraction = explained_fraction(outcome.role) if active else 0.0
            norm = float(np.sqrt(sum(weight * weight for _, weight in active))) if active else 0.0
            scale = np.sqrt(fraction * outcome.variance) / norm if norm > 0 else 0.0
            row: List[Tuple[int, float]] = []
            for key, weight in active:
                column = columns.setdefault(key, len(columns))
                row.append((column, weight * scale))
            entries.append(row)
            residuals.append(float(np.sqrt(max(0.0, (1.0 - fraction) * outcome.variance))))

        loadings = np.zeros((len(outcomes), len(columns)))
        for index, row in enumerate(entries):
            for column, value in row:
                loadings[index, column] = value
        return cls(
            player_ids=tuple(outcome.player_id for outcome in outcomes),
            means=np.array([outcome.mean for outcome in outcomes], dtype=float),
            loadings=loadings,
            residuals=np.array(residuals, dtype=float),
            factor_labels=tuple(sorted(columns, key=columns.__getitem__)),
            lower=np.array([outcome.lower for outcome in outcomes], dtype=float),
            upper=np.array([outcome.upper for outcome in outcomes], dtype=float),
            inactive=np.array([outcome.inactive_probability for outcome in outcomes], dtype=float),
        )

    @classmethod
    def from_loadings(
        cls,
        means: Sequence[float],
        loadings: Sequence[Sequence[float]],
        residuals: Sequence[float],
        *,
        player_ids: Optional[Sequence[str]] = None,
        factor_labels: Optional[Sequence[str]] = None,
        lower: Optional[Sequence[float]] = None,
        upper: Optional[Sequence[float]] = None,
        inactive: Optional[Sequence[float]] = None,
    ) -> "FactorModel":
        """Build a model from explicit loadings; bounds default to unbounded."""

        means_arr = np.asarray(means, dtype=float)
        n = means_arr.shape[0]
        loadings_arr = np.asarray(loadings, dtype=float).reshape(n, -1)
        labels = tuple(factor_labels) if factor_labels is not None else tuple(
            f"factor{i}" for i in range(loadings_arr.shape[1])
        )
        return cls(
            player_ids=tuple(player_ids) if player_ids is not None else tuple(str(i) for i in range(n)),
            means=means_arr,
            loadings=loadings_arr,
            residuals=np.asarray(residuals, dtype=float),
            factor_labels=labels,
            lower=np.full(n, -np.inf) if lower is None else np.asarray(lower, dtype=float),
            upper=np.full(n, np.inf) if upper is None else np.asarray(upper, dtype=float),
            inactive=None if inactive is None else np.asarray(inactive, dtype=float),
        )

    @property
    def size(self) -> int:
        return len(self.player_ids)

    def _select(self, indices: Optional[Sequence[int]]) -> np.ndarray:
        if indices is None:
            return np.arange(self.size)
        return np.asarray(indices, dtype=int)

    def total_variances(self) -> np.ndarray:
        return (self.loadings ** 2).sum(axis=1) + self.residuals ** 2

    def joint_moments(self, indices: Optional[Sequence[int]] = None) -> Tuple[float, float]:
        """Mean and variance of the summed score over ``indices`` when every player is active."""

        idx = self._select(indices)
        mean = float(self.means[idx].sum())
        factor_part = float((self.loadings[idx].sum(axis=0) ** 2).sum())
        residual_part = float((self.residuals[idx] ** 2).sum())
        return mean, factor_part + residual_part

    def covariance(self) -> np.ndarray:
        return self.loadings @ self.loadings.T + np.diag(self.residuals ** 2)

    def correlation(self) -> np.ndarray:
        cov = self.covariance()
        std = np.sqrt(np.diag(cov))
        with np.errstate(divide="ignore", invalid="ignore"):
            corr = cov / np.outer(std, std)
        corr[~np.isfinite(corr)] = 0.0
        np.fill_diagonal(corr, 1.0)
        return corr

    def sample(self, size: int, rng: np.random.Generator) -> np.ndarray:
        """Joint draws with shape ``(size, players)``, clipped to each player's bounds.

        A player with a non-zero ``inactive`` probability scores zero in that
        fraction of draws.
        """

        if size <= 0:
            raise ValueError(f"sample size must be positive, got {size}")
        factors = rng.standard_normal((size, len(self.factor_labels)))
        noise = rng.standard_normal((size, self.size))
        draws = self.means + factors @ self.loadings.T + noise * self.residuals
        draws = np.clip(draws, self.lower, self.upper)
        if np.any(self.inactive > 0):
            draws = draws * (rng.random((size, self.size)) >= self.inactive)
        return draws

    def sample_totals(
        self,
        size: int,
        rng: np.random.Generator,
        indices: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        return self.sample(size, rng)[:, self._select(indices)].sum(axis=1)

    def sample_group_totals(
        self,
        size: int,
        rng: np.random.Generator,
        groups: Sequence[Sequence[int]],
    ) -> List[np.ndarray]:
        """Summed draws per group, all taken from the same joint sample."""

        draws = self.sample(size, rng)
        return [draws[:, np.asarray(group, dtype=int)].sum(axis=1) for group in groups]


__all__ = [
    "EXPLAINED_FRACTION",
    "FACTOR_WEIGHTS",
    "FactorModel",
    "TEAM_BOOST",
    "explained_fraction",
]
