import math

import numpy as np
import pytest

from pylineup.models import OpponentOutcome, PlayerRecord, build_outcome
from pylineup.optimizer.winprob import analytic_win_probability, simulate_win_probability
from pylineup.stats.factors import FactorModel, explained_fraction
from pylineup.models.player import Role


def _player(pid, role, team, opponent, projection):
    return build_outcome(
        PlayerRecord(
            player_id=pid,
            name=pid.upper(),
            team=team,
            opponent=opponent,
            role=role,
            projection=projection,
        )
    )


def _lineup():
    return [
        _player("kc_qb", "QB", "KC", "BUF", 22.0),
        _player("kc_wr", "WR", "KC", "BUF", 14.0),
        _player("kc_te", "TE", "KC", "BUF", 9.0),
        _player("buf_rb", "RB", "BUF", "KC", 12.0),
        _player("buf_wr", "WR", "BUF", "KC", 13.0),
        _player("dal_rb", "RB", "DAL", "PHI", 13.0),
        _player("dal_wr", "WR", "DAL", "PHI", 12.0),
        _player("phi_rb", "RB", "PHI", "DAL", 11.0),
        _player("dal_k", "K", "DAL", "PHI", 8.0),
        _player("buf_dst", "DST", "BUF", "KC", 7.0),
        _player("phi_dst", "DST", "PHI", "DAL", 6.0),
        _player("sea_wr", "WR", "SEA", "", 10.0),
    ]


def test_variance_reconstruction_is_exact():
    lineup = _lineup()
    model = FactorModel.from_outcomes(lineup)

    expected = np.array([player.variance for player in lineup])
    np.testing.assert_allclose(model.total_variances(), expected, rtol=1e-10)
    np.testing.assert_allclose(np.diag(model.covariance()), expected, rtol=1e-10)


def test_covariance_is_positive_semidefinite():
    model = FactorModel.from_outcomes(_lineup())

    eigenvalues = np.linalg.eigvalsh(model.covariance())
    assert eigenvalues.min() >= -1e-9


def test_explained_fraction_applies_team_boost_and_cap():
    assert explained_fraction(Role.QB) == pytest.approx(0.385)
    assert explained_fraction(Role.RB) == pytest.approx(0.20)
    assert explained_fraction(Role.TE) == pytest.approx(0.2625)


def test_loadings_zero_for_unrelated_factors():
    model = FactorModel.from_outcomes(_lineup())
    labels = list(model.factor_labels)
    qb_row = model.loadings[model.player_ids.index("kc_qb")]

    assert qb_row[labels.index("pass:KC")] > 0
    assert qb_row[labels.index("rush:KC")] > 0
    assert qb_row[labels.index("pass:DAL")] == 0.0
    assert qb_row[labels.index("game:DAL@PHI")] == 0.0


def test_teammates_correlate_and_defense_opposes_offense():
    model = FactorModel.from_outcomes(_lineup())
    corr = model.correlation()
    ids = list(model.player_ids)

    assert corr[ids.index("kc_qb"), ids.index("kc_wr")] > 0.1
    assert corr[ids.index("buf_dst"), ids.index("kc_qb")] < 0.0
    assert corr[ids.index("sea_wr"), ids.index("dal_wr")] == pytest.approx(0.0)


def test_joint_moments_match_covariance_sum():
    lineup = _lineup()
    model = FactorModel.from_outcomes(lineup)

    mean, variance = model.joint_moments()
    assert mean == pytest.approx(sum(player.mean for player in lineup))
    assert variance == pytest.approx(model.covariance().sum())

    subset = [0, 1, 3]
    sub_mean, sub_var = model.joint_moments(subset)
    assert sub_mean == pytest.approx(sum(lineup[i].mean for i in subset))
    assert sub_var == pytest.approx(model.covariance()[np.ix_(subset, subset)].sum())


def test_joint_samples_respect_bounds():
    lineup = _lineup()
    model = FactorModel.from_outcomes(lineup)

    draws = model.sample(10_000, np.random.default_rng(5))
    assert draws.shape == (10_000, len(lineup))
    assert np.all(draws >= model.lower)
    assert np.all(draws <= model.upper)


def test_group_totals_come_from_one_draw():
    model = FactorModel.from_outcomes(_lineup())
    first, second = model.sample_group_totals(1_000, np.random.default_rng(9), [[0, 1], [2]])
    draws = model.sample(1_000, np.random.default_rng(9))

    np.testing.assert_allclose(first, draws[:, [0, 1]].sum(axis=1))
    np.testing.assert_allclose(second, draws[:, 2])


def test_from_loadings_validates_shapes():
    with pytest.raises(ValueError):
        FactorModel.from_loadings([1.0, 2.0], [[0.5], [0.5]], [1.0])
    with pytest.raises(ValueError):
        FactorModel.from_loadings([1.0], [[0.5]], [-1.0])


def test_correlated_pair_monte_carlo_tracks_analytic_estimate():
    shared = math.sqrt(4.8)
    model = FactorModel.from_loadings(
        means=[20.0, 15.0, 10.0],
        loadings=[[shared], [shared], [0.0]],
        residuals=[math.sqrt(11.2), math.sqrt(11.2), 4.0],
    )
    opponent = OpponentOutcome(mean=40.0, variance=50.0)

    assert model.correlation()[0, 1] == pytest.approx(0.3)
    np.testing.assert_allclose(model.total_variances(), [16.0, 16.0, 16.0])

    result = simulate_win_probability(model, opponent, samples=50_000, seed=2024)
    analytic = analytic_win_probability(45.0, 48.0, 40.0, 50.0)

    assert abs(result.win_probability - analytic) <= 0.02
    assert result.samples == 50_000


def test_doubtful_player_is_zeroed_in_matching_share_of_draws():
    doubtful = build_outcome(
        PlayerRecord(
            player_id="kc_wr", name="KC_WR", team="KC", opponent="BUF", role="WR",
            projection=14.0, injury_status="doubtful",
        )
    )
    healthy = _player("kc_qb", "QB", "KC", "BUF", 22.0)
    model = FactorModel.from_outcomes([healthy, doubtful])

    draws = model.sample(20_000, np.random.default_rng(11))

    assert model.inactive.tolist() == [0.0, 0.75]
    assert np.mean(draws[:, 1] == 0.0) == pytest.approx(0.75, abs=0.02)
    assert np.mean(draws[:, 0] == 0.0) < 0.01
    assert draws[:, 1].mean() == pytest.approx(doubtful.expected_mean, rel=0.05)


def test_from_loadings_validates_inactive_probabilities():
    model = FactorModel.from_loadings([10.0, 5.0], [[1.0], [1.0]], [2.0, 2.0], inactive=[0.0, 1.0])
    draws = model.sample(100, np.random.default_rng(1))

    assert np.all(draws[:, 1] == 0.0)
    with pytest.raises(ValueError):
        FactorModel.from_loadings([10.0], [[1.0]], [2.0], inactive=[1.5])
