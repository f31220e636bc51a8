"""Persist and load league profiles for the CLI."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from pylineup.config.roster import RosterRules, build_rules, get_rules
from pylineup.config.settings import OptimizerSettings
from pylineup.models.player import Role


@dataclass
class LeagueProfile:
    league: str = "ESPN_PPR"
    slot_counts: Dict[str, int] = field(default_factory=dict)
    slot_roles: Dict[str, List[str]] = field(default_factory=dict)
    bench_size: Optional[int] = None
    bounds: Dict[str, List[float]] = field(default_factory=dict)
    cv: Dict[str, float] = field(default_factory=dict)
    roster_mapping: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> "LeagueProfile":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            league=data.get("league", "ESPN_PPR"),
            slot_counts=data.get("slot_counts", {}),
            slot_roles=data.get("slot_roles", {}),
            bench_size=data.get("bench_size"),
            bounds=data.get("bounds", {}),
            cv=data.get("cv", {}),
            roster_mapping=data.get("roster_mapping", {}),
        )

    def save(self, path: Path) -> None:
        payload = {
            "league": self.league,
            "slot_counts": self.slot_counts,
            "slot_roles": self.slot_roles,
            "bench_size": self.bench_size,
            "bounds": self.bounds,
            "cv": self.cv,
            "roster_mapping": self.roster_mapping,
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def rules(self) -> RosterRules:
        if self.slot_counts:
            return build_rules(
                self.league,
                self.slot_counts,
                self.slot_roles,
                bench_size=self.bench_size if self.bench_size is not None else 0,
            )
        rules = get_rules(self.league)
        if self.bench_size is not None:
            rules = replace(rules, bench_size=self.bench_size)
        return rules

    def settings(self, **overrides: Any) -> OptimizerSettings:
        """Settings from the environment with this profile's bounds and CVs applied."""

        bounds = {Role.parse(role): (float(pair[0]), float(pair[1])) for role, pair in self.bounds.items()}
        cv = {Role.parse(role): float(value) for role, value in self.cv.items()}
        return OptimizerSettings.from_env(bounds=bounds or None, cv=cv or None, **overrides)
