"""Tests for dose-response model functions."""

import numpy as np
import pytest

from pydosefinding import DomainError, InvalidArgument
from pydosefinding.doseresponse import (
    linear,
    linlog,
    quadratic,
    emax,
    exponential,
    logistic,
    sig_emax,
    beta_mod,
    lin_int,
    standardized_response,
    gradient,
    n_nonlinear,
    default_bounds,
    VALID_MODELS,
    NONLINEAR_MODELS,
)


class TestEmax:
    """Emax model."""

    def test_at_ed50_gives_midpoint(self):
        """At dose=ED50 the effect is half of e_max."""
        result = emax(np.array([2.0]), e0=1, e_max=4, ed50=2.0)
        assert result[0] == pytest.approx(3.0)

    def test_dose_zero_is_e0(self):
        assert emax(np.array([0.0]), 5, 10, 1)[0] == pytest.approx(5.0)

    def test_large_dose_approaches_e0_plus_emax(self):
        result = emax(np.array([1e10]), e0=0, e_max=100, ed50=1.0)
        assert result[0] == pytest.approx(100.0, abs=1e-6)

    def test_increasing(self):
        resp = emax(np.array([0, 0.5, 1, 2, 4]), 0, 1, 1)
        assert np.all(np.diff(resp) > 0)


class TestSigEmax:
    """Sigmoid Emax model."""

    def test_hill_one_equals_emax(self):
        dose = np.array([0, 0.1, 1, 10, 100])
        np.testing.assert_allclose(sig_emax(dose, 1, 2, 3, 1.0), emax(dose, 1, 2, 3))

    def test_dose_zero_is_e0(self):
        assert sig_emax(np.array([0.0]), 2, 5, 1, 3)[0] == pytest.approx(2.0)

    def test_steeper_hill(self):
        """Below ED50 a larger hill gives a smaller response."""
        r_shallow = sig_emax(np.array([0.5]), 0, 100, 1.0, h=1.0)
        r_steep = sig_emax(np.array([0.5]), 0, 100, 1.0, h=5.0)
        assert r_steep[0] < r_shallow[0]


class TestOtherShapes:

    def test_linear(self):
        np.testing.assert_allclose(linear(np.array([0, 2]), 1, 0.5), [1, 2])

    def test_linlog(self):
        np.testing.assert_allclose(linlog(np.array([0.0, 9.0]), 1, 2, off=1.0), [1, 1 + 2 * np.log(10)])

    def test_quadratic(self):
        np.testing.assert_allclose(quadratic(np.array([0, 1, 2]), 1, 2, -0.5), [1, 2.5, 3])

    def test_exponential_zero_is_e0(self):
        assert exponential(np.array([0.0]), 3, 1, 2)[0] == pytest.approx(3.0)

    def test_exponential_value(self):
        assert exponential(np.array([2.0]), 0, 1, 2)[0] == pytest.approx(np.e - 1)

    def test_logistic_midpoint(self):
        assert logistic(np.array([3.0]), 1, 4, 3, 0.5)[0] == pytest.approx(3.0)

    def test_logistic_not_e0_at_zero(self):
        """The logistic curve at dose 0 exceeds e0 for a positive e_max."""
        assert logistic(np.array([0.0]), 0, 1, 1, 1)[0] > 0


class TestBetaMod:

    def test_maximum_equals_emax(self):
        """The umbrella peaks at scal * d1 / (d1 + d2) with value e0 + e_max."""
        d1, d2, scal = 1.0, 2.0, 6.0
        peak = scal * d1 / (d1 + d2)
        assert beta_mod(np.array([peak]), 1, 3, d1, d2, scal)[0] == pytest.approx(4.0)

    def test_zero_dose_is_e0(self):
        assert beta_mod(np.array([0.0]), 1, 3, 1, 1, 5)[0] == pytest.approx(1.0)

    def test_dose_beyond_scal_raises(self):
        with pytest.raises(DomainError, match="scal"):
            beta_mod(np.array([0.0, 6.0]), 0, 1, 1, 1, scal=5.0)


class TestLinInt:

    def test_interpolates(self):
        nodes = np.array([0.0, 1.0, 3.0])
        resp = np.array([0.0, 2.0, 3.0])
        np.testing.assert_allclose(lin_int(np.array([0.5, 2.0]), resp, nodes), [1.0, 2.5])

    def test_reproduces_nodes(self):
        nodes = np.array([0.0, 1.0, 3.0])
        resp = np.array([5.0, 2.0, 3.0])
        np.testing.assert_allclose(lin_int(nodes, resp, nodes), resp)

    def test_length_mismatch(self):
        with pytest.raises(InvalidArgument, match="same length"):
            lin_int(np.array([0.5]), np.array([1.0, 2.0]), np.array([0.0, 1.0, 2.0]))

    def test_outside_nodes_raises(self):
        with pytest.raises(DomainError, match="extrapolation"):
            lin_int(np.array([4.0]), np.array([1.0, 2.0]), np.array([0.0, 2.0]))


class TestRegistry:

    def test_nonlinear_counts(self):
        assert n_nonlinear("linear") == 0
        assert n_nonlinear("linInt") == 0
        assert n_nonlinear("emax") == 1
        assert n_nonlinear("exponential") == 1
        assert n_nonlinear("sigEmax") == 2
        assert n_nonlinear("betaMod") == 2

    def test_nine_models(self):
        assert len(VALID_MODELS) == 9

    def test_unknown_model(self):
        with pytest.raises(InvalidArgument, match="model must be one of"):
            n_nonlinear("hill")

    def test_default_bounds_shapes(self):
        assert default_bounds("linear", 4.0) is None
        for model in NONLINEAR_MODELS:
            assert default_bounds(model, 4.0).shape == (n_nonlinear(model), 2)

    def test_emax_bounds_scale_with_dose(self):
        np.testing.assert_allclose(default_bounds("emax", 100.0), [[0.1, 150.0]])

    def test_standardized_is_zero_intercept_unit_scale(self):
        dose = np.array([0.0, 1.0, 2.0, 4.0])
        np.testing.assert_allclose(standardized_response("emax", dose, 2.0), emax(dose, 0, 1, 2))
        np.testing.assert_allclose(
            standardized_response("betaMod", dose, [1.0, 1.0], scal=5.0),
            beta_mod(dose, 0, 1, 1.0, 1.0, 5.0),
        )

    def test_standardized_linear_model_raises(self):
        with pytest.raises(InvalidArgument, match="no nonlinear"):
            standardized_response("linear", np.array([0.0, 1.0]), 1.0)


# ---------------------------------------------------------------------------
# Gradients against central differences
# ---------------------------------------------------------------------------

_GRAD_CASES = [
    ("emax", lambda d, cf: emax(d, *cf), [1.0, 2.0, 1.5], {}),
    ("exponential", lambda d, cf: exponential(d, *cf), [1.0, 0.5, 3.0], {}),
    ("logistic", lambda d, cf: logistic(d, *cf), [0.5, 2.0, 2.0, 0.7], {}),
    ("sigEmax", lambda d, cf: sig_emax(d, *cf), [0.5, 2.0, 2.0, 2.5], {}),
    ("betaMod", lambda d, cf: beta_mod(d, *cf, scal=5.0), [0.5, 2.0, 1.2, 0.8], {"scal": 5.0}),
    ("quadratic", lambda d, cf: quadratic(d, *cf), [0.5, 2.0, -0.3], {}),
]


@pytest.mark.parametrize("model, func, coefs, kwargs", _GRAD_CASES)
def test_gradient_matches_finite_differences(model, func, coefs, kwargs):
    dose = np.array([0.0, 0.5, 1.0, 2.0, 4.0])
    coefs = np.array(coefs)
    G = gradient(model, dose, coefs, **kwargs)
    assert G.shape == (len(dose), len(coefs))
    h = 1e-6
    for j in range(len(coefs)):
        up, dn = coefs.copy(), coefs.copy()
        up[j] += h
        dn[j] -= h
        num = (func(dose, up) - func(dose, dn)) / (2 * h)
        np.testing.assert_allclose(G[:, j], num, rtol=1e-5, atol=1e-7)


def test_lin_int_gradient_is_hat_basis():
    nodes = np.array([0.0, 1.0, 2.0])
    G = gradient("linInt", np.array([0.0, 0.5, 2.0]), np.zeros(3), nodes=nodes)
    np.testing.assert_allclose(G, [[1, 0, 0], [0.5, 0.5, 0], [0, 0, 1]])
