"""Lineup search and win-probability evaluation."""

from .candidates import Candidate, InfeasibleLineupError, generate_candidates
from .service import (
    EligibilityContext,
    OptimizationResult,
    filter_eligible,
    optimize_against_scenarios,
    optimize_lineup,
)
from .winprob import (
    MonteCarloResult,
    Strategy,
    analytic_win_probability,
    mixture_opponent,
    monte_carlo_win_probability,
    recommend_strategy,
)

__all__ = [
    "Candidate",
    "EligibilityContext",
    "InfeasibleLineupError",
    "MonteCarloResult",
    "OptimizationResult",
    "Strategy",
    "analytic_win_probability",
    "filter_eligible",
    "generate_candidates",
    "mixture_opponent",
    "monte_carlo_win_probability",
    "optimize_against_scenarios",
    "optimize_lineup",
    "recommend_strategy",
]
