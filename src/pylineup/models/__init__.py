from .player import InjuryStatus, PlayerRecord, Role
from .outcome import (
    OpponentOutcome,
    OpponentScenario,
    PlayerOutcome,
    build_outcome,
    build_outcomes,
)

__all__ = [
    "InjuryStatus",
    "OpponentOutcome",
    "OpponentScenario",
    "PlayerOutcome",
    "PlayerRecord",
    "Role",
    "build_outcome",
    "build_outcomes",
]
