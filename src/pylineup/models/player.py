"""Canonical player models shared across ingestion and optimizer layers."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict


class Role(str, Enum):
    """Fixed roster roles."""

    QB = "QB"
    RB = "RB"
    WR = "WR"
    TE = "TE"
    K = "K"
    DST = "DST"

    @classmethod
    def parse(cls, token: str) -> "Role":
        key = token.strip().upper()
        key = _ROLE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown role {token!r}") from None


_ROLE_ALIASES = {
    "D": "DST",
    "D/ST": "DST",
    "DEF": "DST",
    "DEFENSE": "DST",
    "PK": "K",
}


class InjuryStatus(str, Enum):
    HEALTHY = "healthy"
    QUESTIONABLE = "questionable"
    DOUBTFUL = "doubtful"
    OUT = "out"
    IR = "ir"

    @property
    def inactive(self) -> bool:
        return self in (InjuryStatus.OUT, InjuryStatus.IR)


QUANTILE_LEVELS: Tuple[Tuple[str, float], ...] = (("p10", 0.10), ("p50", 0.50), ("p90", 0.90))


class PlayerRecord(BaseModel):
    """Normalized player payload for one scoring period."""

    player_id: str = Field(..., min_length=1)
    name: str
    team: str
    role: Role
    opponent: str = ""
    game_id: Optional[str] = None
    projection: float
    p10: Optional[float] = None
    p50: Optional[float] = None
    p90: Optional[float] = None
    injury_status: InjuryStatus = InjuryStatus.HEALTHY
    kickoff: Optional[datetime] = None
    in_lineup: bool = False
    lower: Optional[float] = None
    upper: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @field_validator("projection", "p10", "p50", "p90", "lower", "upper")
    @classmethod
    def _finite(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and not math.isfinite(value):
            raise ValueError("must be a finite number")
        return value

    @field_validator("kickoff")
    @classmethod
    def _aware_kickoff(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            raise ValueError("kickoff must be timezone-aware (UTC)")
        return value

    @model_validator(mode="after")
    def _check_hints(self) -> "PlayerRecord":
        hints = self.quantile_hints()
        for (p_lo, x_lo), (p_hi, x_hi) in zip(hints, hints[1:]):
            if x_hi < x_lo:
                raise ValueError(
                    f"quantile hints must be non-decreasing: "
                    f"q{int(p_lo * 100)}={x_lo} > q{int(p_hi * 100)}={x_hi}"
                )
        if self.lower is not None and self.upper is not None and self.lower >= self.upper:
            raise ValueError(f"lower bound {self.lower} must be below upper bound {self.upper}")
        return self

    def quantile_hints(self) -> List[Tuple[float, float]]:
        """Return the populated (probability, value) hints in probability order."""

        return [
            (level, getattr(self, field))
            for field, level in QUANTILE_LEVELS
            if getattr(self, field) is not None
        ]

    @property
    def matchup(self) -> str:
        if self.game_id:
            return self.game_id
        if self.opponent:
            return "@".join(sorted((self.team.upper(), self.opponent.upper())))
        return self.team.upper()
