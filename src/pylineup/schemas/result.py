from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pylineup.models.outcome import PlayerOutcome
from pylineup.optimizer.service import OptimizationResult


class LineupPlayerResponse(BaseModel):
    slot: Optional[str] = None
    player_id: str
    name: str
    team: str
    opponent: str
    role: str
    projection: float
    mean: float
    std: float
    p10: float
    p90: float
    confidence: str
    inactive_probability: float = 0.0


class OptimizationResponse(BaseModel):
    starters: List[LineupPlayerResponse]
    bench: List[LineupPlayerResponse]
    win_probability: float = Field(..., ge=0.0, le=1.0)
    analytic_win_probability: float = Field(..., ge=0.0, le=1.0)
    margin_mean: float
    margin_std: float
    score_percentiles: Dict[str, float]
    margin_percentiles: Dict[str, float]
    strategy: str
    confidence: str
    diagnostics: Dict[str, Any] = Field(default_factory=dict)


def _player_response(player: PlayerOutcome, slot: Optional[str] = None) -> LineupPlayerResponse:
    return LineupPlayerResponse(
        slot=slot,
        player_id=player.player_id,
        name=player.name,
        team=player.team,
        opponent=player.opponent,
        role=player.role.value,
        projection=player.projection,
        mean=player.mean,
        std=player.std,
        p10=player.quantile(0.10),
        p90=player.quantile(0.90),
        confidence=player.confidence,
        inactive_probability=player.inactive_probability,
    )


def result_to_response(result: OptimizationResult) -> OptimizationResponse:
    return OptimizationResponse(
        starters=[_player_response(player, slot) for slot, player in result.starters],
        bench=[_player_response(player) for player in result.bench],
        win_probability=result.win_probability,
        analytic_win_probability=result.analytic_win_probability,
        margin_mean=result.margin_mean,
        margin_std=result.margin_std,
        score_percentiles={f"p{level}": value for level, value in result.score_percentiles.items()},
        margin_percentiles={f"p{level}": value for level, value in result.margin_percentiles.items()},
        strategy=result.strategy.value,
        confidence=result.confidence,
        diagnostics=dict(result.diagnostics),
    )
