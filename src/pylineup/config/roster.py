"""Lineup slot configuration for supported league formats."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Tuple

from pylineup.models.player import Role


@dataclass(frozen=True)
class RosterRules:
    league: str
    roster_order: Tuple[str, ...]
    slot_roles: Mapping[str, FrozenSet[Role]]
    bench_size: int
    flex_slots: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not self.roster_order:
            raise ValueError(f"League {self.league!r} defines no lineup slots")
        if self.bench_size < 0:
            raise ValueError(f"bench_size must be non-negative, got {self.bench_size}")
        for slot in self.roster_order:
            roles = self.slot_roles.get(slot)
            if not roles:
                raise ValueError(f"Slot {slot!r} in league {self.league!r} has no eligible roles")

    @property
    def size(self) -> int:
        return len(self.roster_order)

    def eligible(self, slot: str, role: Role) -> bool:
        return role in self.slot_roles[slot]

    def is_flex(self, slot: str) -> bool:
        return slot in self.flex_slots or len(self.slot_roles[slot]) > 1

    def slot_labels(self) -> List[str]:
        """Return slot labels with repeated slots numbered (RB1, RB2)."""

        totals: Dict[str, int] = {}
        for slot in self.roster_order:
            totals[slot] = totals.get(slot, 0) + 1
        seen: Dict[str, int] = {}
        labels: List[str] = []
        for slot in self.roster_order:
            seen[slot] = seen.get(slot, 0) + 1
            labels.append(f"{slot}{seen[slot]}" if totals[slot] > 1 else slot)
        return labels


def build_rules(
    league: str,
    slot_counts: Mapping[str, int],
    slot_roles: Mapping[str, Iterable[str]],
    *,
    bench_size: int = 0,
) -> RosterRules:
    """Build rules from ``{slot: count}`` and ``{slot: roles}`` mappings."""

    order: List[str] = []
    for slot, count in slot_counts.items():
        if not isinstance(count, int) or count <= 0:
            raise ValueError(f"slot {slot!r} must require a positive count, got {count!r}")
        if slot not in slot_roles:
            raise ValueError(f"slot {slot!r} has no eligible roles configured")
        order.extend([slot] * count)
    roles = {
        slot: frozenset(Role.parse(token) for token in slot_roles[slot])
        for slot in slot_counts
    }
    return RosterRules(
        league=league.upper(),
        roster_order=tuple(order),
        slot_roles=roles,
        bench_size=bench_size,
        flex_slots=frozenset(slot for slot, members in roles.items() if len(members) > 1),
    )


_FLEX = frozenset({Role.RB, Role.WR, Role.TE})
_SUPERFLEX = frozenset({Role.QB, Role.RB, Role.WR, Role.TE})

_SINGLE_ROLE_SLOTS: Dict[str, FrozenSet[Role]] = {
    "QB": frozenset({Role.QB}),
    "RB": frozenset({Role.RB}),
    "WR": frozenset({Role.WR}),
    "TE": frozenset({Role.TE}),
    "K": frozenset({Role.K}),
    "DST": frozenset({Role.DST}),
}

_ROSTER_RULES: Dict[str, RosterRules] = {
    "ESPN_PPR": RosterRules(
        league="ESPN_PPR",
        roster_order=("QB", "RB", "RB", "WR", "WR", "TE", "FLEX", "K", "DST"),
        slot_roles={**_SINGLE_ROLE_SLOTS, "FLEX": _FLEX},
        bench_size=7,
        flex_slots=frozenset({"FLEX"}),
    ),
    "STANDARD": RosterRules(
        league="STANDARD",
        roster_order=("QB", "RB", "RB", "WR", "WR", "WR", "TE", "FLEX", "K", "DST"),
        slot_roles={**_SINGLE_ROLE_SLOTS, "FLEX": _FLEX},
        bench_size=6,
        flex_slots=frozenset({"FLEX"}),
    ),
    "YAHOO": RosterRules(
        league="YAHOO",
        roster_order=("QB", "RB", "RB", "WR", "WR", "WR", "TE", "FLEX", "K", "DST"),
        slot_roles={**_SINGLE_ROLE_SLOTS, "FLEX": _FLEX},
        bench_size=6,
        flex_slots=frozenset({"FLEX"}),
    ),
    "SUPERFLEX": RosterRules(
        league="SUPERFLEX",
        roster_order=("QB", "RB", "RB", "WR", "WR", "TE", "FLEX", "SUPERFLEX", "K", "DST"),
        slot_roles={**_SINGLE_ROLE_SLOTS, "FLEX": _FLEX, "SUPERFLEX": _SUPERFLEX},
        bench_size=6,
        flex_slots=frozenset({"FLEX", "SUPERFLEX"}),
    ),
    "SLEEPER_PPR": RosterRules(
        league="SLEEPER_PPR",
        roster_order=("QB", "RB", "RB", "WR", "WR", "TE", "FLEX", "FLEX", "K", "DST"),
        slot_roles={**_SINGLE_ROLE_SLOTS, "FLEX": _FLEX},
        bench_size=6,
        flex_slots=frozenset({"FLEX"}),
    ),
}


def iter_rules() -> Iterable[RosterRules]:
    """Return an iterator of all configured rule sets."""

    return _ROSTER_RULES.values()


def get_rules(league: str) -> RosterRules:
    """Fetch rules for a league format, raising KeyError if missing."""

    key = league.strip().upper()
    if key not in _ROSTER_RULES:
        raise KeyError(f"No roster rules configured for league={league!r}")
    return _ROSTER_RULES[key]


def get_rules_by_key(league_key: str | RosterRules) -> RosterRules:
    """Resolve rules from a league key or pass through an existing rule set."""

    if isinstance(league_key, RosterRules):
        return league_key
    if not isinstance(league_key, str):
        raise TypeError("league_key must be a str or RosterRules")
    return get_rules(league_key)
