"""Tests for the multiple contrast test."""

import numpy as np
import pytest
from scipy import stats

from pydosefinding import InvalidArgument
from pydosefinding.doseresponse import emax
from pydosefinding.mct import (
    MVTControl,
    mods,
    opt_contr,
    mct_test,
    mct_pvalues,
    critical_value,
)


DOSES = np.array([0, 1, 2, 3], dtype=float)


@pytest.fixture
def trial_data():
    """Per-patient data with a clear emax signal."""
    rng = np.random.default_rng(2024)
    dose = np.repeat(np.array([0, 0.5, 1, 2, 4], dtype=float), 20)
    resp = emax(dose, 0.0, 1.5, 0.5) + rng.normal(0, 1.0, len(dose))
    return dose, resp


@pytest.fixture
def candidates():
    return mods(np.array([0, 0.5, 1, 2, 4]), {"linear": None, "emax": [0.2, 1.0], "exponential": 2.0})


# ---------------------------------------------------------------------------
# Independent contrasts (exact reference)
# ---------------------------------------------------------------------------

class TestIndependentContrasts:
    """With uncorrelated contrasts the joint probabilities factorise."""

    def test_one_sided_pvalue(self, orthogonal_contrasts, independent_mvt):
        mu = np.array([0.0, 0.3, 0.2, 0.8])
        S = 0.25 * np.eye(4)
        r = mct_test(DOSES, mu, cont_mat=orthogonal_contrasts, type="general", S=S,
                     distribution=independent_mvt)
        t = orthogonal_contrasts.T @ mu / 0.5
        np.testing.assert_allclose(r.t_stats, t)
        np.testing.assert_allclose(r.cor_mat, np.eye(2), atol=1e-12)
        expected = 1 - stats.norm.cdf(t) ** 2
        np.testing.assert_allclose(r.p_values, expected, rtol=1e-10)
        assert r.p_value == pytest.approx(1 - np.prod(stats.norm.cdf(np.full(2, t.max()))))

    def test_two_sided_pvalue(self, orthogonal_contrasts, independent_mvt):
        mu = np.array([0.0, -0.3, 0.2, -0.8])
        r = mct_test(DOSES, mu, cont_mat=orthogonal_contrasts, type="general",
                     S=0.25 * np.eye(4), alternative="two.sided", distribution=independent_mvt)
        a = np.abs(r.t_stats)
        expected = 1 - (stats.norm.cdf(a) - stats.norm.cdf(-a)) ** 2
        np.testing.assert_allclose(r.p_values, expected, rtol=1e-10)
        assert r.max_t == pytest.approx(a.max())

    def test_finite_df_uses_t(self, orthogonal_contrasts, independent_mvt):
        mu = np.array([0.0, 0.3, 0.2, 0.8])
        r = mct_test(DOSES, mu, cont_mat=orthogonal_contrasts, type="general",
                     S=0.25 * np.eye(4), df=20, distribution=independent_mvt)
        expected = 1 - stats.t.cdf(r.t_stats, 20) ** 2
        np.testing.assert_allclose(r.p_values, expected, rtol=1e-10)

    def test_critical_value(self, orthogonal_contrasts, independent_mvt):
        mu = np.array([0.0, 0.3, 0.2, 0.8])
        r = mct_test(DOSES, mu, cont_mat=orthogonal_contrasts, type="general",
                     S=0.25 * np.eye(4), crit_v=True, distribution=independent_mvt)
        assert r.crit_value == pytest.approx(stats.norm.ppf(0.975 ** 0.5))
        assert r.rejected == (r.max_t > r.crit_value)

    def test_critical_value_gives_level(self, independent_mvt):
        q = critical_value(np.eye(3), np.inf, alpha=0.05, distribution=independent_mvt)
        assert stats.norm.cdf(q) ** 3 == pytest.approx(0.95)

    def test_general_doses_sorted(self, orthogonal_contrasts, independent_mvt):
        mu = np.array([0.0, 0.3, 0.2, 0.8])
        S = np.diag([0.25, 0.25, 0.25, 0.25])
        order = np.array([2, 0, 3, 1])
        r1 = mct_test(DOSES, mu, cont_mat=orthogonal_contrasts, type="general", S=S,
                      distribution=independent_mvt)
        r2 = mct_test(DOSES[order], mu[order], cont_mat=orthogonal_contrasts, type="general",
                      S=S[np.ix_(order, order)], distribution=independent_mvt)
        np.testing.assert_allclose(r1.t_stats, r2.t_stats)


# ---------------------------------------------------------------------------
# Integration settings
# ---------------------------------------------------------------------------

class TestControlForwarding:
    """The caller's integration settings reach the distribution unchanged."""

    def test_mct_test(self, orthogonal_contrasts, recording_mvt):
        control = MVTControl(maxpts=1234, abseps=1e-4)
        mct_test(DOSES, np.array([0.0, 0.3, 0.2, 0.8]), cont_mat=orthogonal_contrasts,
                 type="general", S=0.25 * np.eye(4), crit_v=True, control=control,
                 distribution=recording_mvt)
        assert recording_mvt.probability_controls
        assert recording_mvt.quantile_controls
        assert all(c is control for c in recording_mvt.probability_controls)
        assert all(c is control for c in recording_mvt.quantile_controls)

    def test_critical_value(self, recording_mvt):
        control = MVTControl(maxpts=1234, abseps=1e-4)
        critical_value(np.eye(3), np.inf, control=control, distribution=recording_mvt)
        assert recording_mvt.quantile_controls == [control]
        assert recording_mvt.quantile_controls[0] is control

    def test_pvalues(self, recording_mvt):
        control = MVTControl(maxpts=1234, abseps=1e-4)
        mct_pvalues(np.array([1.0, 2.0]), np.eye(2), 15, control=control,
                    distribution=recording_mvt)
        assert len(recording_mvt.probability_controls) == 2
        assert all(c is control for c in recording_mvt.probability_controls)


# ---------------------------------------------------------------------------
# Per-patient data
# ---------------------------------------------------------------------------

class TestNormalType:

    def test_single_contrast_exact_pvalue(self, trial_data):
        """One contrast: the adjusted p-value is the univariate t tail."""
        dose, resp = trial_data
        levels = np.unique(dose)
        means = np.array([resp[dose == d].mean() for d in levels])
        n = np.array([np.sum(dose == d) for d in levels])
        df = len(dose) - len(levels)
        sigma2 = sum(np.sum((resp[dose == d] - m) ** 2) for d, m in zip(levels, means)) / df
        c = levels - levels.mean()
        c = c / np.linalg.norm(c)
        t = c @ means / np.sqrt(sigma2 * np.sum(c**2 / n))

        r = mct_test(dose, resp, cont_mat=c[:, None])
        assert r.t_stats[0] == pytest.approx(t, rel=1e-8)
        assert r.df == df
        assert r.p_values[0] == pytest.approx(stats.t.sf(t, df), abs=1e-12)

    def test_signal_detected(self, trial_data, candidates):
        dose, resp = trial_data
        r = mct_test(dose, resp, models=candidates, crit_v=True)
        assert r.names == candidates.names
        assert r.p_value < 0.025
        assert r.rejected
        assert r.max_t > r.crit_value

    def test_contrasts_follow_estimated_covariance(self, trial_data, candidates):
        dose, resp = trial_data
        r = mct_test(dose, resp, models=candidates)
        expected = opt_contr(candidates).cont_mat
        np.testing.assert_allclose(r.cont_mat, expected, atol=1e-10)

    def test_covariates_reduce_df(self, trial_data, candidates):
        dose, resp = trial_data
        x = np.linspace(-1, 1, len(dose))
        r = mct_test(dose, resp + 0.5 * x, models=candidates, covariates=x)
        assert r.df == len(dose) - 5 - 1

    def test_summary(self, trial_data, candidates):
        dose, resp = trial_data
        s = mct_test(dose, resp, models=candidates, crit_v=True).summary()
        assert "Multiple Contrast Test" in s
        assert "emax1" in s
        assert "Critical value" in s


class TestErrors:

    def test_needs_models_or_contrasts(self, trial_data):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="models or cont_mat"):
            mct_test(dose, resp)

    def test_bad_contrast_matrix(self, trial_data):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="sum to zero"):
            mct_test(dose, resp, cont_mat=np.ones((5, 1)))

    def test_wrong_contrast_rows(self, trial_data):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="rows"):
            mct_test(dose, resp, cont_mat=np.array([[-1.0], [1.0]]))

    def test_mismatched_candidate_doses(self, trial_data):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="doses"):
            mct_test(dose, resp, models=mods(np.array([0, 1, 2]), {"linear": None}))

    def test_general_needs_s(self):
        with pytest.raises(InvalidArgument, match="S must be specified"):
            mct_test(DOSES, np.zeros(4), cont_mat=np.array([[-1.0], [0], [0], [1.0]]), type="general")

    def test_general_unique_doses(self):
        with pytest.raises(InvalidArgument, match="unique"):
            mct_test(np.array([0.0, 1.0, 1.0]), np.zeros(3), cont_mat=np.array([[-1.0], [0], [1.0]]),
                     type="general", S=np.eye(3))

    def test_bad_alternative(self, trial_data, candidates):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="alternative"):
            mct_test(dose, resp, models=candidates, alternative="greater")

    def test_bad_alpha(self, trial_data, candidates):
        dose, resp = trial_data
        with pytest.raises(InvalidArgument, match="alpha"):
            mct_test(dose, resp, models=candidates, alpha=1.5)

    def test_pvalues_shape_check(self):
        with pytest.raises(InvalidArgument, match="corr"):
            mct_pvalues(np.array([1.0, 2.0]), np.eye(3), np.inf)
