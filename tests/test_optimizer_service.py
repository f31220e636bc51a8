from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from pylineup.calibration import CalibrationState, RoleAdjustment
from pylineup.config import OptimizerSettings, get_rules
from pylineup.models import OpponentOutcome, OpponentScenario, PlayerRecord, Role, build_outcome
from pylineup.optimizer import (
    EligibilityContext,
    InfeasibleLineupError,
    Strategy,
    filter_eligible,
    optimize_against_scenarios,
    optimize_lineup,
)
from pylineup.schemas import result_to_response


NOW = datetime(2026, 10, 18, 18, 0, tzinfo=timezone.utc)


def _record(pid, role, team, opponent, projection, **kwargs) -> PlayerRecord:
    return PlayerRecord(
        player_id=pid,
        name=pid.replace("_", " ").title(),
        team=team,
        opponent=opponent,
        role=role,
        projection=projection,
        **kwargs,
    )


def _sample_roster(**overrides) -> list[PlayerRecord]:
    rows = [
        ("kc_qb", "QB", "KC", "BUF", 22.0),
        ("buf_qb", "QB", "BUF", "KC", 20.0),
        ("kc_rb", "RB", "KC", "BUF", 15.0),
        ("dal_rb", "RB", "DAL", "PHI", 13.0),
        ("phi_rb", "RB", "PHI", "DAL", 11.0),
        ("buf_rb", "RB", "BUF", "KC", 9.0),
        ("kc_wr", "WR", "KC", "BUF", 14.0),
        ("buf_wr", "WR", "BUF", "KC", 13.0),
        ("dal_wr", "WR", "DAL", "PHI", 12.0),
        ("phi_wr", "WR", "PHI", "DAL", 10.0),
        ("kc_te", "TE", "KC", "BUF", 9.0),
        ("phi_te", "TE", "PHI", "DAL", 7.0),
        ("dal_k", "K", "DAL", "PHI", 8.0),
        ("buf_k", "K", "BUF", "KC", 7.0),
        ("phi_dst", "DST", "PHI", "DAL", 7.0),
        ("kc_dst", "DST", "KC", "BUF", 6.0),
    ]
    return [_record(*row, **overrides.get(row[0], {})) for row in rows]


def _settings(**kwargs) -> OptimizerSettings:
    values = dict(candidates=8, samples=2_000, seed=11)
    values.update(kwargs)
    return OptimizerSettings(**values)


def _opponent(mean=110.0, variance=150.0) -> OpponentOutcome:
    return OpponentOutcome(mean=mean, variance=variance)


def test_optimize_lineup_returns_full_result():
    result = optimize_lineup(_sample_roster(), _opponent(), settings=_settings())
    rules = get_rules("ESPN_PPR")

    assert [slot for slot, _ in result.starters] == rules.slot_labels()
    assert len(set(result.starter_ids)) == rules.size
    assert 0.0 <= result.win_probability <= 1.0
    assert 0.0 <= result.analytic_win_probability <= 1.0
    assert result.strategy is Strategy.BALANCED
    assert result.confidence == "full"
    assert sorted(result.score_percentiles) == [5, 25, 50, 75, 95]

    bench_ids = {player.player_id for player in result.bench}
    assert len(result.bench) == rules.bench_size
    assert not bench_ids & set(result.starter_ids)
    bench_means = [player.mean for player in result.bench]
    assert bench_means == sorted(bench_means, reverse=True)

    diagnostics = result.diagnostics
    assert diagnostics["samples"] == 2_000
    assert diagnostics["seed"] == 11 + diagnostics["selected_index"]
    assert 1 <= diagnostics["candidates_evaluated"] <= 8
    assert diagnostics["filtered"] == {}


def test_optimize_lineup_is_deterministic():
    first = optimize_lineup(_sample_roster(), _opponent(), settings=_settings())
    second = optimize_lineup(_sample_roster(), _opponent(), settings=_settings())

    assert first.starter_ids == second.starter_ids
    assert first.win_probability == second.win_probability
    assert first.margin_mean == second.margin_mean


def test_worker_pool_matches_serial_evaluation():
    serial = optimize_lineup(_sample_roster(), _opponent(), settings=_settings(candidates=4))
    parallel = optimize_lineup(_sample_roster(), _opponent(), settings=_settings(candidates=4, workers=2))

    assert serial.starter_ids == parallel.starter_ids
    assert serial.win_probability == parallel.win_probability


def test_locks_and_excludes_are_respected():
    result = optimize_lineup(
        _sample_roster(),
        _opponent(),
        settings=_settings(),
        locked_ids={"phi_te"},
        excluded_ids={"kc_qb"},
    )

    assert "phi_te" in result.starter_ids
    assert "kc_qb" not in result.starter_ids
    assert result.diagnostics["filtered"] == {"kc_qb": "excluded"}


def test_lock_missing_from_roster_is_infeasible():
    with pytest.raises(InfeasibleLineupError) as excinfo:
        optimize_lineup(_sample_roster(), _opponent(), settings=_settings(), locked_ids={"ghost"})

    assert excinfo.value.missing_ids == ("ghost",)


def test_lock_on_bye_is_infeasible():
    context = EligibilityContext(period=6, byes={"kc": 6})

    with pytest.raises(InfeasibleLineupError) as excinfo:
        optimize_lineup(
            _sample_roster(),
            _opponent(),
            settings=_settings(),
            locked_ids={"kc_qb"},
            eligibility=context,
        )

    assert excinfo.value.missing_ids == ("kc_qb",)


def test_locked_and_excluded_conflict():
    with pytest.raises(ValueError, match="locked and excluded"):
        optimize_lineup(
            _sample_roster(), _opponent(), settings=_settings(), locked_ids={"kc_qb"}, excluded_ids={"kc_qb"}
        )


def test_empty_roster_is_infeasible():
    with pytest.raises(InfeasibleLineupError):
        optimize_lineup([], _opponent(), settings=_settings())


def test_filter_eligible_records_reasons():
    started = NOW - timedelta(hours=1)
    later = NOW + timedelta(hours=3)
    roster = _sample_roster(
        buf_rb={"injury_status": "out"},
        phi_te={"injury_status": "ir"},
        dal_wr={"kickoff": started},
        phi_wr={"kickoff": started, "in_lineup": True},
        kc_wr={"kickoff": later, "in_lineup": True},
    )
    outcomes = [build_outcome(record) for record in roster]
    context = EligibilityContext(period=7, byes={"BUF": 7}, now=NOW)

    result = filter_eligible(outcomes, context, excluded_ids={"dal_k"})

    assert result.filtered == {
        "buf_qb": "bye",
        "buf_rb": "bye",
        "buf_wr": "bye",
        "buf_k": "bye",
        "phi_te": "injury:ir",
        "dal_wr": "started",
        "dal_k": "excluded",
    }
    assert result.auto_locked == {"phi_wr"}
    eligible_ids = {player.player_id for player in result.eligible}
    assert {"phi_wr", "kc_wr"} <= eligible_ids


def test_started_starter_is_locked_into_lineup():
    started = NOW - timedelta(minutes=30)
    roster = _sample_roster(
        phi_wr={"kickoff": started, "in_lineup": True},
        dal_wr={"kickoff": started},
    )
    context = EligibilityContext(now=NOW)

    result = optimize_lineup(roster, _opponent(), settings=_settings(), eligibility=context)

    assert "phi_wr" in result.starter_ids
    assert "dal_wr" not in result.starter_ids
    assert result.diagnostics["auto_locked"] == ["phi_wr"]
    assert result.diagnostics["filtered"] == {"dal_wr": "started"}


def test_excluding_a_player_already_playing_is_rejected():
    roster = _sample_roster(phi_wr={"kickoff": NOW - timedelta(hours=1), "in_lineup": True})

    with pytest.raises(ValueError, match="already playing"):
        optimize_lineup(
            roster,
            _opponent(),
            settings=_settings(),
            excluded_ids={"phi_wr"},
            eligibility=EligibilityContext(now=NOW),
        )


def test_heavy_underdog_chases_ceiling():
    result = optimize_lineup(_sample_roster(), _opponent(mean=150.0, variance=100.0), settings=_settings())

    assert result.strategy is Strategy.CEILING
    assert result.diagnostics["strategy_bias"] == 0.5
    assert result.diagnostics["screen_win_probability"] < 0.35


def test_heavy_favorite_protects_floor():
    result = optimize_lineup(_sample_roster(), _opponent(mean=70.0, variance=100.0), settings=_settings())

    assert result.strategy is Strategy.FLOOR
    assert result.diagnostics["strategy_bias"] == -0.5


def test_calibration_is_applied_before_selection():
    state = CalibrationState(adjustments={Role.QB: RoleAdjustment(mean_bias=0.8)})

    result = optimize_lineup(
        _sample_roster(), _opponent(), settings=_settings(samples=20_000), calibration=state
    )
    quarterback = dict(result.starters)["QB"]

    assert quarterback.player_id == "kc_qb"
    assert quarterback.mean_bias == pytest.approx(0.8)
    assert quarterback.mean == pytest.approx(22.0 * 0.8, abs=0.01)


def test_reduced_confidence_propagates_from_starters():
    outcomes = [build_outcome(record) for record in _sample_roster()]
    outcomes[0] = replace(outcomes[0], confidence="reduced")

    result = optimize_lineup(outcomes, _opponent(), settings=_settings(samples=20_000))

    assert "kc_qb" in result.starter_ids
    assert result.confidence == "reduced"
    assert result.diagnostics["reduced_confidence"] == ["kc_qb"]


def test_scenario_mixture_records_diagnostics():
    scenarios = [
        OpponentScenario(weight=0.7, outcome=_opponent(105.0, 120.0), label="healthy"),
        OpponentScenario(weight=0.3, outcome=_opponent(90.0, 150.0), label="star out"),
    ]

    result = optimize_against_scenarios(_sample_roster(), scenarios, settings=_settings())

    assert result.diagnostics["opponent_mean"] == pytest.approx(0.7 * 105.0 + 0.3 * 90.0)
    assert [item["label"] for item in result.diagnostics["scenarios"]] == ["healthy", "star out"]


def test_result_serialises_to_response():
    result = optimize_lineup(_sample_roster(), _opponent(), settings=_settings())
    response = result_to_response(result)
    payload = response.model_dump()

    assert [player["slot"] for player in payload["starters"]] == get_rules("ESPN_PPR").slot_labels()
    assert set(payload["score_percentiles"]) == {"p5", "p25", "p50", "p75", "p95"}
    assert payload["strategy"] == "balanced"
    assert all(player["slot"] is None for player in payload["bench"])


def test_doubtful_quarterback_loses_start_to_healthy_backup():
    roster = _sample_roster(kc_qb={"injury_status": "doubtful"})

    result = optimize_lineup(roster, _opponent(), settings=_settings())

    assert dict(result.starters)["QB"].player_id == "buf_qb"
    assert "kc_qb" in {player.player_id for player in result.bench}
