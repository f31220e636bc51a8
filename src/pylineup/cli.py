"""Command-line interface for picking a lineup from a roster CSV."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from pylineup.calibration import CalibrationState
from pylineup.config_loader import LeagueProfile
from pylineup.ingest import load_bye_table, load_records_from_csv
from pylineup.models import OpponentOutcome, OpponentScenario
from pylineup.optimizer import (
    EligibilityContext,
    InfeasibleLineupError,
    optimize_against_scenarios,
    optimize_lineup,
)
from pylineup.schemas import result_to_response


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Pick the lineup most likely to beat this week's opponent")
    parser.add_argument("roster", type=Path, help="Path to roster CSV")
    parser.add_argument("--league", default=None, help="League format key (e.g., ESPN_PPR, SUPERFLEX)")
    parser.add_argument(
        "--column",
        action="append",
        default=[],
        help="Mapping for roster CSV columns (e.g., name=Player or name=First|Last)",
    )
    parser.add_argument("--load-profile", type=Path, help="Load league profile JSON", default=None)
    parser.add_argument("--save-profile", type=Path, help="Save league profile JSON", default=None)
    parser.add_argument("--opponent-mean", type=float, default=None, help="Opponent projected total")
    parser.add_argument("--opponent-std", type=float, default=None, help="Opponent standard deviation")
    parser.add_argument(
        "--scenario",
        action="append",
        default=[],
        help="Weighted opponent scenario as weight:mean:std (repeatable)",
    )
    parser.add_argument("--lock", nargs="*", default=None, help="Player IDs that must start")
    parser.add_argument("--exclude", nargs="*", default=None, help="Player IDs to bench")
    parser.add_argument("--candidates", type=int, default=None, help="Candidate lineups to evaluate")
    parser.add_argument("--samples", type=int, default=None, help="Monte Carlo samples per candidate")
    parser.add_argument("--seed", type=int, default=None, help="Base random seed")
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for evaluation")
    parser.add_argument("--period", type=int, default=None, help="Scoring period (week) number")
    parser.add_argument("--byes", type=Path, default=None, help="CSV of team,bye")
    parser.add_argument("--now", default=None, help="Current UTC time (ISO 8601); defaults to now")
    parser.add_argument("--calibration", type=Path, default=None, help="Calibration state JSON")
    parser.add_argument("--output", type=Path, default=None, help="Write the result JSON here")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _parse_mapping(entries: list[str]) -> dict[str, str]:
    mapping: dict[str, str] = {}
    for entry in entries:
        if "=" not in entry:
            raise ValueError(f"Invalid mapping entry '{entry}', expected key=value")
        key, value = entry.split("=", 1)
        mapping[key.strip()] = value.strip()
    return mapping


def _parse_scenario(entry: str) -> OpponentScenario:
    parts = entry.split(":")
    if len(parts) != 3:
        raise ValueError(f"Invalid scenario '{entry}', expected weight:mean:std")
    weight, mean, std = (float(part) for part in parts)
    return OpponentScenario(weight=weight, outcome=OpponentOutcome(mean=mean, variance=std * std))


def _parse_now(raw: Optional[str]) -> datetime:
    if raw is None:
        return datetime.now(timezone.utc)
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    profile = LeagueProfile.load(args.load_profile) if args.load_profile else LeagueProfile()
    if args.league:
        profile.league = args.league
    roster_mapping = profile.roster_mapping | _parse_mapping(args.column)
    if args.save_profile:
        profile.roster_mapping = roster_mapping
        profile.save(args.save_profile)
        print(f"Saved league profile to {args.save_profile}", file=sys.stderr)

    records = load_records_from_csv(args.roster, mapping=roster_mapping or None)
    rules = profile.rules()
    settings = profile.settings(
        candidates=args.candidates,
        samples=args.samples,
        seed=args.seed,
        workers=args.workers,
    )
    eligibility = EligibilityContext(
        period=args.period,
        byes=load_bye_table(args.byes) if args.byes else {},
        now=_parse_now(args.now),
    )
    calibration = CalibrationState.load(args.calibration) if args.calibration else None
    common = dict(
        rules=rules,
        settings=settings,
        locked_ids=args.lock or (),
        excluded_ids=args.exclude or (),
        eligibility=eligibility,
        calibration=calibration,
    )

    try:
        if args.scenario:
            scenarios = [_parse_scenario(entry) for entry in args.scenario]
            result = optimize_against_scenarios(records, scenarios, **common)
        else:
            if args.opponent_mean is None or args.opponent_std is None:
                raise SystemExit("--opponent-mean and --opponent-std are required without --scenario")
            opponent = OpponentOutcome(mean=args.opponent_mean, variance=args.opponent_std ** 2)
            result = optimize_lineup(records, opponent, **common)
    except InfeasibleLineupError as exc:
        print(f"No valid lineup: {exc.message}", file=sys.stderr)
        raise SystemExit(1) from exc

    response = result_to_response(result)
    payload = response.model_dump_json(indent=2)
    if args.output:
        args.output.write_text(payload, encoding="utf-8")
        print(f"Wrote result to {args.output}", file=sys.stderr)
    else:
        print(payload)

    print(
        f"Win probability {result.win_probability:.1%} "
        f"(analytic {result.analytic_win_probability:.1%}, strategy {result.strategy.value})",
        file=sys.stderr,
    )
    for slot, player in result.starters:
        print(
            f"  {slot:<10} {player.name:<24} {player.team:<4} {player.mean:6.2f} +/- {player.std:5.2f}",
            file=sys.stderr,
        )
    if result.confidence != "full":
        reduced = ", ".join(result.diagnostics.get("reduced_confidence", []))
        print(f"Reduced confidence for: {reduced}", file=sys.stderr)


if __name__ == "__main__":
    main()
