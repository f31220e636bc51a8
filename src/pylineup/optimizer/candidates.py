"""Beam search over lineup slots to produce diverse valid candidates."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from pylineup.config.roster import RosterRules
from pylineup.models.outcome import PlayerOutcome


logger = logging.getLogger(__name__)


class InfeasibleLineupError(RuntimeError):
    """No valid lineup can be built from the eligible players."""

    def __init__(
        self,
        message: str,
        *,
        slot: Optional[str] = None,
        eligible_roles: Iterable[str] = (),
        missing_ids: Iterable[str] = (),
    ):
        super().__init__(message)
        self.message = message
        self.slot = slot
        self.eligible_roles = tuple(sorted(eligible_roles))
        self.missing_ids = tuple(sorted(missing_ids))


@dataclass(frozen=True)
class Candidate:
    slots: Tuple[Tuple[str, PlayerOutcome], ...]

    @property
    def players(self) -> Tuple[PlayerOutcome, ...]:
        return tuple(player for _, player in self.slots)

    @property
    def player_ids(self) -> FrozenSet[str]:
        return frozenset(player.player_id for _, player in self.slots)

    @property
    def mean(self) -> float:
        return sum(player.expected_mean for _, player in self.slots)

    @property
    def variance(self) -> float:
        return sum(player.expected_variance for _, player in self.slots)

    def adjusted_value(self, bias: float) -> float:
        return sum(adjusted_value(player, bias) for _, player in self.slots)

    def signature(self) -> Tuple[str, ...]:
        return tuple(sorted(self.player_ids))


def adjusted_value(player: PlayerOutcome, bias: float) -> float:
    return player.expected_mean + bias * player.expected_std


@dataclass(frozen=True)
class _Partial:
    assignment: Tuple[Optional[PlayerOutcome], ...]
    used: FrozenSet[str]
    value: float

    def key(self) -> Tuple[float, Tuple[str, ...]]:
        return (-round(self.value, 9), tuple(sorted(self.used)))


def _fill_order(rules: RosterRules) -> List[int]:
    indexed = list(enumerate(rules.roster_order))
    return [
        index
        for index, slot in sorted(
            indexed,
            key=lambda item: (rules.is_flex(item[1]), len(rules.slot_roles[item[1]]), item[0]),
        )
    ]


def _seed_locked(
    locked: Sequence[PlayerOutcome],
    rules: RosterRules,
    labels: Sequence[str],
) -> List[Optional[PlayerOutcome]]:
    """Place every locked player in a slot, moving earlier placements when needed.

    Placement is a bipartite matching between locked players and slots, so a
    lock set is rejected only when no assignment of all of them exists.
    """

    assignment: List[Optional[PlayerOutcome]] = [None] * rules.size

    def choices(player: PlayerOutcome) -> List[int]:
        eligible = [index for index, slot in enumerate(rules.roster_order) if rules.eligible(slot, player.role)]
        return sorted(eligible, key=lambda index: (rules.is_flex(rules.roster_order[index]), index))

    def place(player: PlayerOutcome, visited: set) -> bool:
        for index in choices(player):
            if index in visited:
                continue
            visited.add(index)
            holder = assignment[index]
            if holder is None or place(holder, visited):
                assignment[index] = player
                return True
        return False

    ordered = sorted(locked, key=lambda player: (len(choices(player)), player.player_id))
    for player in ordered:
        if not place(player, set()):
            raise InfeasibleLineupError(
                f"Locked player {player.player_id} ({player.role.value}) fits no open lineup slot",
                missing_ids=[player.player_id],
            )
    for index, player in enumerate(assignment):
        if player is not None:
            logger.debug("Seeded locked player %s into %s", player.player_id, labels[index])
    return assignment


def generate_candidates(
    pool: Sequence[PlayerOutcome],
    rules: RosterRules,
    *,
    k: int = 50,
    bias: float = 0.0,
    locked_ids: Iterable[str] = (),
    excluded_ids: Iterable[str] = (),
) -> List[Candidate]:
    """Return up to ``k`` distinct lineups ranked by adjusted value.

    Slots are filled one at a time, fixed-role slots before flexible ones,
    keeping the best ``k`` partial lineups after each step. Partials holding
    the same set of players are collapsed into one.
    """

    if k <= 0:
        raise ValueError(f"k must be positive, got {k}")
    excluded = set(excluded_ids)
    locked_set = set(locked_ids)
    conflicts = locked_set & excluded
    if conflicts:
        raise ValueError(f"Players both locked and excluded: {', '.join(sorted(conflicts))}")

    available: Dict[str, PlayerOutcome] = {}
    for player in pool:
        if player.player_id not in excluded:
            available.setdefault(player.player_id, player)

    missing = locked_set - set(available)
    if missing:
        raise InfeasibleLineupError(
            f"Locked players not in the eligible pool: {', '.join(sorted(missing))}",
            missing_ids=missing,
        )

    labels = rules.slot_labels()
    seeded = _seed_locked([available[pid] for pid in sorted(locked_set)], rules, labels)
    ranked = sorted(
        available.values(),
        key=lambda player: (-adjusted_value(player, bias), player.player_id),
    )
    beam = [
        _Partial(
            assignment=tuple(seeded),
            used=frozenset(player.player_id for player in seeded if player is not None),
            value=sum(adjusted_value(player, bias) for player in seeded if player is not None),
        )
    ]

    for index in _fill_order(rules):
        if beam[0].assignment[index] is not None:
            continue
        slot = rules.roster_order[index]
        eligible = [player for player in ranked if rules.eligible(slot, player.role)]
        expanded: Dict[FrozenSet[str], _Partial] = {}
        for partial in beam:
            taken = 0
            for player in eligible:
                if player.player_id in partial.used:
                    continue
                used = partial.used | {player.player_id}
                if used not in expanded:
                    assignment = list(partial.assignment)
                    assignment[index] = player
                    expanded[used] = _Partial(
                        assignment=tuple(assignment),
                        used=used,
                        value=partial.value + adjusted_value(player, bias),
                    )
                taken += 1
                if taken >= k:
                    break
        if not expanded:
            raise InfeasibleLineupError(
                f"No eligible player left for slot {labels[index]} "
                f"(eligible roles: {', '.join(sorted(role.value for role in rules.slot_roles[slot]))})",
                slot=labels[index],
                eligible_roles=[role.value for role in rules.slot_roles[slot]],
            )
        beam = sorted(expanded.values(), key=_Partial.key)[:k]

    candidates = [
        Candidate(slots=tuple(zip(labels, partial.assignment)))
        for partial in beam
    ]
    logger.debug(
        "Generated %d candidates from %d players (k=%d, bias=%.2f)",
        len(candidates),
        len(available),
        k,
        bias,
    )
    return candidates


def best_mean_lineup(
    pool: Sequence[PlayerOutcome],
    rules: RosterRules,
    *,
    locked_ids: Iterable[str] = (),
) -> Candidate:
    """Greedy highest-mean lineup used for the strategy screen."""

    return generate_candidates(pool, rules, k=1, bias=0.0, locked_ids=locked_ids)[0]


__all__ = [
    "Candidate",
    "InfeasibleLineupError",
    "adjusted_value",
    "best_mean_lineup",
    "generate_candidates",
]
