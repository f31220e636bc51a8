"""Configuration helpers for league formats and optimizer settings."""

from .roster import RosterRules, build_rules, get_rules, get_rules_by_key, iter_rules
from .settings import DEFAULT_BOUNDS, DEFAULT_CV, DEFAULT_INJURY_RISK, OptimizerSettings, resolve_bounds

__all__ = [
    "DEFAULT_BOUNDS",
    "DEFAULT_CV",
    "DEFAULT_INJURY_RISK",
    "OptimizerSettings",
    "RosterRules",
    "build_rules",
    "get_rules",
    "get_rules_by_key",
    "iter_rules",
    "resolve_bounds",
]
