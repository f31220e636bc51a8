"""End-to-end lineup selection by Monte Carlo win probability."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
import multiprocessing as mp
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from pylineup.calibration.loop import CalibrationState, apply_calibration
from pylineup.config.roster import RosterRules, get_rules_by_key
from pylineup.config.settings import OptimizerSettings
from pylineup.models.outcome import (
    CONFIDENCE_FULL,
    CONFIDENCE_REDUCED,
    OpponentOutcome,
    OpponentScenario,
    PlayerOutcome,
    build_outcome,
)
from pylineup.models.player import PlayerRecord
from pylineup.optimizer.candidates import (
    Candidate,
    InfeasibleLineupError,
    best_mean_lineup,
    generate_candidates,
)
from pylineup.optimizer.winprob import (
    MonteCarloResult,
    Strategy,
    lineup_win_probability,
    mixture_opponent,
    monte_carlo_win_probability,
    screen_strategy,
)
from pylineup.stats.factors import FactorModel


logger = logging.getLogger(__name__)

DEFAULT_LEAGUE = "ESPN_PPR"

RosterEntry = Union[PlayerRecord, PlayerOutcome]


class EligibilityContext(BaseModel):
    """Period, bye table and clock used to decide who can still play."""

    period: Optional[int] = None
    byes: Dict[str, int] = Field(default_factory=dict)
    now: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("byes")
    @classmethod
    def _upper_teams(cls, value: Dict[str, int]) -> Dict[str, int]:
        return {team.strip().upper(): period for team, period in value.items()}

    @field_validator("now")
    @classmethod
    def _aware_now(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            raise ValueError("now must be timezone-aware (UTC)")
        return value


@dataclass(frozen=True)
class EligibilityOutcome:
    eligible: List[PlayerOutcome]
    filtered: Dict[str, str]
    auto_locked: Set[str]


def filter_eligible(
    outcomes: Sequence[PlayerOutcome],
    context: Optional[EligibilityContext] = None,
    *,
    excluded_ids: Iterable[str] = (),
) -> EligibilityOutcome:
    """Drop players who cannot score this period, recording why.

    A player whose game has started and who is currently slotted as a
    starter stays in the pool and is locked.
    """

    context = context or EligibilityContext()
    excluded = set(excluded_ids)
    eligible: List[PlayerOutcome] = []
    filtered: Dict[str, str] = {}
    auto_locked: Set[str] = set()
    for outcome in outcomes:
        record = outcome.record
        started = (
            context.now is not None
            and record.kickoff is not None
            and record.kickoff <= context.now
        )
        if started and record.in_lineup:
            auto_locked.add(outcome.player_id)
            eligible.append(outcome)
            continue
        if outcome.player_id in excluded:
            filtered[outcome.player_id] = "excluded"
        elif started:
            filtered[outcome.player_id] = "started"
        elif context.period is not None and context.byes.get(outcome.team) == context.period:
            filtered[outcome.player_id] = "bye"
        elif record.injury_status.inactive:
            filtered[outcome.player_id] = f"injury:{record.injury_status.value}"
        else:
            eligible.append(outcome)
    if filtered:
        logger.info("Filtered %d of %d players: %s", len(filtered), len(outcomes), filtered)
    return EligibilityOutcome(eligible, filtered, auto_locked)


@dataclass(frozen=True)
class CandidateEvaluation:
    index: int
    candidate: Candidate
    analytic_win_probability: float
    monte_carlo: MonteCarloResult

    @property
    def seed(self) -> int:
        return self.monte_carlo.seed


@dataclass(frozen=True)
class OptimizationResult:
    starters: Tuple[Tuple[str, PlayerOutcome], ...]
    bench: Tuple[PlayerOutcome, ...]
    analytic_win_probability: float
    win_probability: float
    margin_mean: float
    margin_std: float
    score_percentiles: Mapping[int, float]
    margin_percentiles: Mapping[int, float]
    strategy: Strategy
    confidence: str
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    @property
    def candidate(self) -> Candidate:
        return Candidate(slots=self.starters)

    @property
    def starter_ids(self) -> List[str]:
        return [player.player_id for _, player in self.starters]


def _evaluate_job(job: Tuple[int, Candidate, OpponentOutcome, int, int]) -> CandidateEvaluation:
    index, candidate, opponent, samples, seed = job
    return CandidateEvaluation(
        index=index,
        candidate=candidate,
        analytic_win_probability=lineup_win_probability(candidate.players, opponent),
        monte_carlo=monte_carlo_win_probability(
            candidate.players, opponent, samples=samples, seed=seed
        ),
    )


def evaluate_candidates(
    candidates: Sequence[Candidate],
    opponent: OpponentOutcome,
    *,
    samples: int,
    seed: int,
    workers: int = 1,
) -> List[CandidateEvaluation]:
    """Score candidates; candidate ``i`` always uses ``seed + i``."""

    jobs = [
        (index, candidate, opponent, samples, seed + index)
        for index, candidate in enumerate(candidates)
    ]
    workers = max(1, min(workers, len(jobs)))
    if workers == 1:
        return [_evaluate_job(job) for job in jobs]

    ctx = mp.get_context("spawn")
    logger.info("Evaluating %d candidates across %d worker processes", len(jobs), workers)
    with ctx.Pool(processes=workers) as pool:
        return pool.map(_evaluate_job, jobs)


def _as_outcomes(roster: Sequence[RosterEntry], settings: OptimizerSettings) -> List[PlayerOutcome]:
    outcomes: List[PlayerOutcome] = []
    for entry in roster:
        if isinstance(entry, PlayerOutcome):
            outcomes.append(entry)
        else:
            outcomes.append(build_outcome(entry, settings))
    return outcomes


def _select(evaluations: Sequence[CandidateEvaluation]) -> CandidateEvaluation:
    return max(
        evaluations,
        key=lambda item: (item.monte_carlo.win_probability, item.monte_carlo.margin_mean, -item.index),
    )


def optimize_lineup(
    roster: Sequence[RosterEntry],
    opponent: OpponentOutcome,
    *,
    rules: Union[RosterRules, str] = DEFAULT_LEAGUE,
    settings: Optional[OptimizerSettings] = None,
    locked_ids: Iterable[str] = (),
    excluded_ids: Iterable[str] = (),
    eligibility: Optional[EligibilityContext] = None,
    calibration: Optional[CalibrationState] = None,
    extra_diagnostics: Optional[Mapping[str, Any]] = None,
) -> OptimizationResult:
    """Pick the lineup with the highest simulated chance of beating ``opponent``.

    Raises ``ValueError`` for conflicting constraints and
    ``InfeasibleLineupError`` when no lineup satisfies the slots and locks.
    """

    start = time.perf_counter()
    settings = settings or OptimizerSettings()
    rules = get_rules_by_key(rules)
    locked = set(locked_ids)
    excluded = set(excluded_ids)
    conflicts = locked & excluded
    if conflicts:
        raise ValueError(f"Players both locked and excluded: {', '.join(sorted(conflicts))}")
    if not roster:
        raise InfeasibleLineupError("Roster is empty; no valid lineup")

    outcomes = apply_calibration(_as_outcomes(roster, settings), calibration)

    eligibility_result = filter_eligible(outcomes, eligibility, excluded_ids=excluded)
    auto_conflicts = eligibility_result.auto_locked & excluded
    if auto_conflicts:
        raise ValueError(
            f"Players already playing cannot be excluded: {', '.join(sorted(auto_conflicts))}"
        )
    locked |= eligibility_result.auto_locked
    pool = eligibility_result.eligible
    pool_ids = {player.player_id for player in pool}
    seeded_locks = locked & pool_ids
    missing_locks = locked - pool_ids
    if missing_locks:
        logger.warning("Locked players not eligible this period: %s", ", ".join(sorted(missing_locks)))

    screen_lineup = best_mean_lineup(pool, rules, locked_ids=seeded_locks)
    strategy, bias, screen_probability = screen_strategy(
        screen_lineup.players,
        opponent,
        underdog_threshold=settings.underdog_threshold,
        favorite_threshold=settings.favorite_threshold,
        magnitude=settings.strategy_bias,
    )
    logger.info(
        "Screen lineup mean %.2f vs opponent %.2f: win %.3f -> %s (bias %+.2f)",
        screen_lineup.mean,
        opponent.mean,
        screen_probability,
        strategy.value,
        bias,
    )

    generated = generate_candidates(
        pool,
        rules,
        k=settings.candidates,
        bias=bias,
        locked_ids=seeded_locks,
    )
    valid = [candidate for candidate in generated if locked <= candidate.player_ids]
    if not valid:
        raise InfeasibleLineupError(
            "No valid lineup: every candidate is missing a locked player "
            f"({', '.join(sorted(missing_locks or locked))})",
            missing_ids=missing_locks or locked,
        )

    eval_start = time.perf_counter()
    evaluations = evaluate_candidates(
        valid,
        opponent,
        samples=settings.samples,
        seed=settings.seed,
        workers=settings.workers,
    )
    logger.info(
        "Evaluated %d candidates with %d samples each in %.2fs",
        len(evaluations),
        settings.samples,
        time.perf_counter() - eval_start,
    )
    best = _select(evaluations)
    winner = best.candidate
    mc = best.monte_carlo

    starter_ids = winner.player_ids
    bench = sorted(
        (player for player in outcomes if player.player_id not in starter_ids),
        key=lambda player: (-player.expected_mean, player.player_id),
    )[: rules.bench_size]

    reduced = sorted(player.player_id for player in outcomes if player.confidence == CONFIDENCE_REDUCED)
    starters_reduced = any(player.confidence == CONFIDENCE_REDUCED for player in winner.players)
    factor_mean, factor_variance = FactorModel.from_outcomes(winner.players).joint_moments()
    elapsed = time.perf_counter() - start

    diagnostics: Dict[str, Any] = {
        "strategy": strategy.value,
        "strategy_bias": bias,
        "screen_win_probability": screen_probability,
        "candidates_generated": len(generated),
        "candidates_evaluated": len(valid),
        "selected_index": best.index,
        "lineup_mean": winner.mean,
        "lineup_variance": winner.variance,
        "lineup_factor_mean": factor_mean,
        "lineup_factor_variance": factor_variance,
        "opponent_mean": opponent.mean,
        "opponent_variance": opponent.variance,
        "samples": mc.samples,
        "standard_error": mc.standard_error,
        "base_seed": settings.seed,
        "seed": mc.seed,
        "filtered": dict(eligibility_result.filtered),
        "auto_locked": sorted(eligibility_result.auto_locked),
        "reduced_confidence": reduced,
        "elapsed_seconds": elapsed,
    }
    if extra_diagnostics:
        diagnostics.update(extra_diagnostics)

    logger.info(
        "Selected candidate %d: win %.3f (analytic %.3f), margin %.2f +/- %.2f in %.2fs",
        best.index,
        mc.win_probability,
        best.analytic_win_probability,
        mc.margin_mean,
        mc.margin_std,
        elapsed,
    )
    return OptimizationResult(
        starters=winner.slots,
        bench=tuple(bench),
        analytic_win_probability=best.analytic_win_probability,
        win_probability=mc.win_probability,
        margin_mean=mc.margin_mean,
        margin_std=mc.margin_std,
        score_percentiles=dict(mc.score_percentiles),
        margin_percentiles=dict(mc.margin_percentiles),
        strategy=strategy,
        confidence=CONFIDENCE_REDUCED if starters_reduced else CONFIDENCE_FULL,
        diagnostics=diagnostics,
    )


def optimize_against_scenarios(
    roster: Sequence[RosterEntry],
    scenarios: Sequence[OpponentScenario],
    **kwargs: Any,
) -> OptimizationResult:
    """Moment-match weighted opponent scenarios, then run :func:`optimize_lineup`."""

    opponent = mixture_opponent(scenarios)
    extra = dict(kwargs.pop("extra_diagnostics", None) or {})
    extra["scenarios"] = [
        {"label": scenario.label, "weight": scenario.weight, "mean": scenario.outcome.mean}
        for scenario in scenarios
    ]
    return optimize_lineup(roster, opponent, extra_diagnostics=extra, **kwargs)
