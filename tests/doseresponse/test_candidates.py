"""Tests for fitting a set of candidate models."""

import numpy as np
import pytest

from pydosefinding import InvalidArgument, UnsupportedConfiguration
from pydosefinding.doseresponse import emax, fit_candidates, fit_mod


@pytest.fixture
def emax_data():
    rng = np.random.default_rng(5)
    dose = np.repeat(np.array([0, 0.5, 1, 2, 4], dtype=float), 15)
    resp = emax(dose, 0.5, 2.5, 0.6) + rng.normal(0, 0.25, len(dose))
    return dose, resp


class TestFitCandidates:

    def test_all_models_fitted(self, emax_data):
        dose, resp = emax_data
        r = fit_candidates(dose, resp, ["linear", "emax", "exponential"])
        assert set(r.fits) == {"linear", "emax", "exponential"}
        assert set(r.gaic) == set(r.fits)

    def test_matches_individual_fits(self, emax_data):
        dose, resp = emax_data
        r = fit_candidates(dose, resp, ["linear", "emax"])
        single = fit_mod(dose, resp, model="emax")
        np.testing.assert_allclose(r.fits["emax"].coefs, single.coefs)
        assert r.gaic["emax"] == pytest.approx(single.gaic())

    def test_selects_smallest_gaic(self, emax_data):
        dose, resp = emax_data
        r = fit_candidates(dose, resp, ["linear", "emax", "quadratic"])
        assert r.selected == min(r.gaic, key=r.gaic.get)
        assert r.best is r.fits[r.selected]

    def test_emax_beats_linear(self, emax_data):
        """Strongly saturating data favour emax over a straight line."""
        dose, resp = emax_data
        r = fit_candidates(dose, resp, ["linear", "emax"])
        assert r.gaic["emax"] < r.gaic["linear"]

    def test_per_model_bounds(self, emax_data):
        dose, resp = emax_data
        r = fit_candidates(dose, resp, ["emax"], bounds={"emax": [[1.5, 3.0]]})
        assert 1.5 <= r.fits["emax"].coefs[2] <= 3.0

    def test_general_type(self):
        dose = np.array([0, 1, 2, 3, 4], dtype=float)
        mu = np.array([0.0, 1.0, 1.8, 2.2, 2.4])
        r = fit_candidates(dose, mu, ["linear", "emax"], type="general", S=np.eye(5))
        assert r.fits["linear"].fit_type == "general"

    def test_summary(self, emax_data):
        dose, resp = emax_data
        s = fit_candidates(dose, resp, ["linear", "emax"]).summary()
        assert "gAIC" in s
        assert "*" in s


class TestFitCandidatesErrors:

    def test_empty(self, emax_data):
        dose, resp = emax_data
        with pytest.raises(InvalidArgument, match="at least one"):
            fit_candidates(dose, resp, [])

    def test_duplicates(self, emax_data):
        dose, resp = emax_data
        with pytest.raises(InvalidArgument, match="unique"):
            fit_candidates(dose, resp, ["emax", "emax"])

    def test_shared_start(self, emax_data):
        dose, resp = emax_data
        with pytest.raises(InvalidArgument, match="start"):
            fit_candidates(dose, resp, ["emax"], start=[1.0])

    def test_failure_propagates(self):
        dose = np.array([0, 1, 2, 3, 4], dtype=float)
        mu = np.array([0.0, 1.0, 1.8, 2.2, 2.4])
        with pytest.raises(UnsupportedConfiguration):
            fit_candidates(dose, mu, ["emax", "logistic"], type="general", S=np.eye(5),
                           placebo_adjusted=True)
