import numpy as np
import pytest
from pydantic import ValidationError

from pylineup.calibration import (
    CalibrationLoop,
    CalibrationObservation,
    CalibrationState,
    RoleAdjustment,
    apply_calibration,
    gaussian_crps,
    interval_coverage,
    quantile_ece,
    sample_crps,
)
from pylineup.models import PlayerRecord, Role, build_outcome


def _obs(period, *, role=Role.QB, mean=10.0, variance=25.0, actual=15.0, pid="qb1", samples=None):
    return CalibrationObservation(
        player_id=pid,
        role=role,
        period=period,
        predicted_mean=mean,
        predicted_variance=variance,
        actual=actual,
        samples=samples,
    )


def test_no_update_before_three_periods():
    loop = CalibrationLoop()

    for period in (1, 2):
        report = loop.record_period(period, [_obs(period)])
        assert not report.roles[Role.QB].updated

    adjustment = loop.state.adjustment(Role.QB)
    assert adjustment.mean_bias == 1.0
    assert adjustment.variance_scale == 1.0
    assert adjustment.last_period is None


def test_third_period_applies_smoothed_bias():
    loop = CalibrationLoop()
    for period in (1, 2, 3):
        report = loop.record_period(period, [_obs(period)])

    adjustment = loop.state.adjustment(Role.QB)
    assert adjustment.mean_bias == pytest.approx(1.06)
    assert adjustment.variance_scale == pytest.approx(1.0)
    assert adjustment.last_period == 3
    assert report.roles[Role.QB].updated
    assert loop.state.adjustment(Role.WR).mean_bias == 1.0


def test_step_cap_and_bounds_hold_over_many_periods():
    loop = CalibrationLoop()
    previous = loop.state.adjustment(Role.RB)

    for period in range(1, 21):
        loop.record_period(period, [_obs(period, role=Role.RB, mean=10.0, variance=1.0, actual=20.0)])
        current = loop.state.adjustment(Role.RB)
        assert abs(current.mean_bias - previous.mean_bias) <= 0.1 + 1e-12
        assert abs(current.variance_scale - previous.variance_scale) <= 0.1 + 1e-12
        assert 0.8 <= current.mean_bias <= 1.2
        assert 0.5 <= current.variance_scale <= 2.0
        previous = current

    assert loop.state.adjustment(Role.RB).variance_scale == pytest.approx(2.0, abs=0.01)
    assert loop.state.adjustment(Role.RB).mean_bias == pytest.approx(1.2, abs=1e-3)


def test_first_scale_update_is_capped():
    loop = CalibrationLoop()
    for period in (1, 2, 3):
        loop.record_period(period, [_obs(period, mean=10.0, variance=1.0, actual=20.0)])

    assert loop.state.adjustment(Role.QB).variance_scale == pytest.approx(1.1)


def test_periods_must_increase():
    loop = CalibrationLoop()
    loop.record_period(4, [_obs(4)])

    with pytest.raises(ValueError, match="must be after"):
        loop.record_period(4, [_obs(4)])
    with pytest.raises(ValueError):
        loop.record_period(3, [_obs(3)])


def test_observation_period_must_match():
    loop = CalibrationLoop()

    with pytest.raises(ValueError, match="expected 2"):
        loop.record_period(2, [_obs(1)])


def test_reset_restores_neutral_state():
    loop = CalibrationLoop()
    for period in (1, 2, 3):
        loop.record_period(period, [_obs(period)])

    loop.reset()

    assert loop.state.last_period is None
    assert loop.state.observations == []
    assert all(adj.mean_bias == 1.0 and adj.variance_scale == 1.0 for adj in loop.state.adjustments.values())
    loop.record_period(1, [_obs(1)])


def test_state_roundtrip(tmp_path):
    loop = CalibrationLoop()
    for period in (1, 2, 3):
        loop.record_period(period, [_obs(period), _obs(period, role=Role.WR, pid="wr1", samples=[8.0, 12.0])])
    path = tmp_path / "calibration.json"

    loop.state.save(path)
    restored = CalibrationState.load(path)

    assert restored.last_period == 3
    assert restored.adjustment(Role.QB).mean_bias == pytest.approx(loop.state.adjustment(Role.QB).mean_bias)
    assert len(restored.observations) == 6
    assert restored.reports[-1].roles[Role.WR].count == 1


def test_needs_update_flags_stale_roles():
    fresh = {role: RoleAdjustment(last_period=4) for role in Role}

    assert not CalibrationState().needs_update
    assert not CalibrationState(adjustments=fresh, last_period=6).needs_update
    assert CalibrationState(adjustments=fresh, last_period=7).needs_update


def test_invalid_observation_rejected():
    with pytest.raises(ValidationError):
        _obs(1, variance=-1.0)
    with pytest.raises(ValidationError):
        _obs(1, actual=float("inf"))


def test_observation_from_outcome():
    outcome = build_outcome(PlayerRecord(player_id="te1", name="TE", team="KC", role="TE", projection=9.0))
    obs = CalibrationObservation.from_outcome(outcome, 11.5, 5)

    assert obs.role is Role.TE
    assert obs.predicted_mean == pytest.approx(outcome.mean)
    assert obs.predicted_variance == pytest.approx(outcome.variance)


def test_gaussian_crps_reference_value():
    assert float(gaussian_crps(0.0, 1.0, 0.0)) == pytest.approx(0.233695, abs=1e-6)
    assert float(gaussian_crps(0.0, 1.0, 2.0)) > float(gaussian_crps(0.0, 1.0, 0.5))


def test_sample_crps_small_ensemble():
    assert sample_crps([0.0, 1.0], 0.0) == pytest.approx(0.25)
    assert sample_crps([3.0], 1.0) == pytest.approx(2.0)
    with pytest.raises(ValueError):
        sample_crps([], 1.0)


def test_interval_coverage():
    actual = np.array([0.0, 0.5, 1.0, 3.0])

    assert interval_coverage(0.0, 1.0, actual, 0.5) == pytest.approx(0.5)
    assert interval_coverage(0.0, 1.0, actual, 0.8) == pytest.approx(0.75)
    with pytest.raises(ValueError):
        interval_coverage(0.0, 1.0, actual, 1.0)


def test_quantile_ece_detects_bias():
    draws = np.random.default_rng(8).normal(0.0, 1.0, 20_000)

    assert quantile_ece(0.0, 1.0, draws) < 0.02
    assert quantile_ece(0.0, 1.0, draws + 3.0) > 0.3


def test_apply_calibration_adjusts_matching_roles():
    qb = build_outcome(PlayerRecord(player_id="qb", name="QB", team="KC", role="QB", projection=20.0))
    wr = build_outcome(PlayerRecord(player_id="wr", name="WR", team="KC", role="WR", projection=12.0))
    state = CalibrationState(adjustments={Role.QB: RoleAdjustment(mean_bias=1.1, variance_scale=1.5)})

    adjusted = apply_calibration([qb, wr], state)

    assert adjusted[0].mean == pytest.approx(22.0, abs=0.01)
    assert adjusted[0].variance > qb.variance
    assert adjusted[1] is wr
    assert apply_calibration([qb, wr], None) == [qb, wr]


@pytest.mark.parametrize("kwargs", [{"mean_bias": 5.0}, {"mean_bias": 0.5}, {"variance_scale": 3.0}])
def test_role_adjustment_rejects_factors_outside_bounds(kwargs):
    with pytest.raises(ValidationError):
        RoleAdjustment(**kwargs)


def test_loaded_state_with_out_of_range_adjustment_is_rejected(tmp_path):
    path = tmp_path / "calibration.json"
    path.write_text('{"adjustments": {"QB": {"mean_bias": 4.0, "variance_scale": 1.0}}}', encoding="utf-8")

    with pytest.raises(ValidationError):
        CalibrationState.load(path)


def test_loop_rejects_bounds_wider_than_allowed():
    with pytest.raises(ValueError, match="bias_bounds"):
        CalibrationLoop(bias_bounds=(0.5, 1.5))
    with pytest.raises(ValueError, match="scale_bounds"):
        CalibrationLoop(scale_bounds=(1.5, 1.0))
