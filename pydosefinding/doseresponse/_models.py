"""Dose-response model functions and their gradients.

Each function computes the mean response at given dose levels for one of
the nine built-in shapes.  The set is closed: fitting and contrast
construction switch over these names explicitly, there is no way to
register a user-supplied shape.

Every shape is the sum of an intercept ``e0`` and a scaled *standardized*
shape ``f0`` (value 0 at the baseline, unit scale).  Only the parameters
inside ``f0`` are nonlinear; ``e0`` and the scale are recovered by linear
regression once the nonlinear parameters are fixed.

Doses must be non-negative.  ``beta_mod`` is only defined up to its scale
constant ``scal`` and ``lin_int`` only on ``[nodes[0], nodes[-1]]``;
outside those ranges both raise :class:`DomainError` rather than
extrapolating.

Validates against: R DoseFinding::linear(), emax(), sigEmax(), ...
"""

from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import DomainError, InvalidArgument


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_dose(dose: NDArray[np.floating]) -> NDArray[np.floating]:
    return np.asarray(dose, dtype=np.float64)


def _xlogx(x: float) -> float:
    return 0.0 if x == 0 else x * np.log(x)


def _safe_log(x: NDArray[np.floating]) -> NDArray[np.floating]:
    """``log(x)`` with ``x == 0`` mapped to 0 (used in gradients only)."""
    x = np.asarray(x, dtype=np.float64)
    out = np.zeros_like(x)
    nz = x != 0
    out[nz] = np.log(x[nz])
    return out


def _check_beta_support(dose: NDArray[np.floating], scal: float) -> None:
    if np.any(dose > scal):
        raise DomainError(
            f"doses cannot be larger than scal={scal} in betaMod model "
            f"(max dose {float(np.max(dose))})"
        )


def _check_nodes(nodes: NDArray[np.floating]) -> NDArray[np.floating]:
    nodes = np.asarray(nodes, dtype=np.float64)
    if nodes.ndim != 1 or len(nodes) < 2:
        raise InvalidArgument("linInt nodes must be a 1-D array with at least 2 entries")
    if np.any(np.diff(nodes) <= 0):
        raise InvalidArgument("linInt nodes must be strictly increasing")
    return nodes


def _check_node_range(dose: NDArray[np.floating], nodes: NDArray[np.floating]) -> None:
    if np.any(dose < nodes[0]) or np.any(dose > nodes[-1]):
        raise DomainError(
            f"linInt is only defined on [{nodes[0]}, {nodes[-1]}]; "
            "extrapolation outside the dose nodes is not supported"
        )


# ---------------------------------------------------------------------------
# Model functions
# ---------------------------------------------------------------------------

def linear(
    dose: NDArray[np.floating],
    e0: float,
    delta: float,
) -> NDArray[np.floating]:
    """Linear model ``f(d) = e0 + delta * d``."""
    return e0 + delta * _as_dose(dose)


def linlog(
    dose: NDArray[np.floating],
    e0: float,
    delta: float,
    off: float = 1.0,
) -> NDArray[np.floating]:
    """Linear in log-dose: ``f(d) = e0 + delta * log(d + off)``.

    ``off`` is a fixed constant, not estimated.
    """
    return linear(np.log(_as_dose(dose) + off), e0, delta)


def quadratic(
    dose: NDArray[np.floating],
    e0: float,
    b1: float,
    b2: float,
) -> NDArray[np.floating]:
    """Quadratic model ``f(d) = e0 + b1 * d + b2 * d^2``."""
    dose = _as_dose(dose)
    return e0 + b1 * dose + b2 * dose**2


def emax(
    dose: NDArray[np.floating],
    e0: float,
    e_max: float,
    ed50: float,
) -> NDArray[np.floating]:
    """Emax model.

    .. math::
        f(d) = E_0 + E_{max} \\frac{d}{ED_{50} + d}

    Parameters
    ----------
    dose : array
        Dose values (>= 0).
    e0 : float
        Response at placebo.
    e_max : float
        Asymptotic maximum effect over placebo.
    ed50 : float
        Dose giving half of ``e_max``.

    Returns
    -------
    NDArray

    Validates against: R DoseFinding::emax()
    """
    dose = _as_dose(dose)
    return e0 + e_max * dose / (ed50 + dose)


def exponential(
    dose: NDArray[np.floating],
    e0: float,
    e1: float,
    delta: float,
) -> NDArray[np.floating]:
    """Exponential model ``f(d) = e0 + e1 * (exp(d / delta) - 1)``."""
    dose = _as_dose(dose)
    return e0 + e1 * np.expm1(dose / delta)


def logistic(
    dose: NDArray[np.floating],
    e0: float,
    e_max: float,
    ed50: float,
    delta: float,
) -> NDArray[np.floating]:
    """Logistic model.

    .. math::
        f(d) = E_0 + \\frac{E_{max}}{1 + \\exp((ED_{50} - d) / \\delta)}

    Unlike the other shapes the value at ``d = 0`` is not ``e0``, so the
    intercept cannot be dropped for placebo-adjusted data.

    Validates against: R DoseFinding::logistic()
    """
    dose = _as_dose(dose)
    with np.errstate(over="ignore"):
        return e0 + e_max / (1.0 + np.exp((ed50 - dose) / delta))


def sig_emax(
    dose: NDArray[np.floating],
    e0: float,
    e_max: float,
    ed50: float,
    h: float,
) -> NDArray[np.floating]:
    """Sigmoid Emax (Hill) model.

    .. math::
        f(d) = E_0 + \\frac{E_{max}}{1 + (ED_{50} / d)^h}

    ``d = 0`` evaluates to ``e0``.

    Validates against: R DoseFinding::sigEmax()
    """
    dose = _as_dose(dose)
    with np.errstate(divide="ignore", over="ignore"):
        return e0 + e_max / (1.0 + (ed50 / dose) ** h)


def beta_mod(
    dose: NDArray[np.floating],
    e0: float,
    e_max: float,
    delta1: float,
    delta2: float,
    scal: float,
) -> NDArray[np.floating]:
    """Beta model, a non-monotone (umbrella) shape on ``[0, scal]``.

    .. math::
        f(d) = E_0 + E_{max} B(\\delta_1, \\delta_2)(d/S)^{\\delta_1}(1 - d/S)^{\\delta_2}

    where ``B`` normalises the maximum of the shape to 1.  ``scal`` is a
    fixed constant larger than the largest dose.

    Raises
    ------
    DomainError
        If any dose exceeds ``scal``.

    Validates against: R DoseFinding::betaMod()
    """
    dose = _as_dose(dose)
    _check_beta_support(dose, scal)
    log_max_dens = _xlogx(delta1) + _xlogx(delta2) - _xlogx(delta1 + delta2)
    x = dose / scal
    return e0 + e_max / np.exp(log_max_dens) * x**delta1 * (1.0 - x) ** delta2


def lin_int(
    dose: NDArray[np.floating],
    resp: NDArray[np.floating],
    nodes: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Piecewise linear interpolation of ``resp`` between dose ``nodes``.

    Raises
    ------
    InvalidArgument
        If ``nodes`` and ``resp`` differ in length.
    DomainError
        If a dose lies outside ``[nodes[0], nodes[-1]]``.
    """
    dose = _as_dose(dose)
    resp = np.asarray(resp, dtype=np.float64)
    nodes = _check_nodes(nodes)
    if len(nodes) != len(resp):
        raise InvalidArgument(
            f"nodes and resp need to be of same length in linInt, "
            f"got {len(nodes)} and {len(resp)}"
        )
    _check_node_range(dose, nodes)
    return np.interp(dose, nodes, resp)


# ---------------------------------------------------------------------------
# Gradients w.r.t. all natural parameters, shape (n_dose, n_param)
# ---------------------------------------------------------------------------

def linear_grad(dose: NDArray[np.floating]) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    return np.column_stack([np.ones_like(dose), dose])


def linlog_grad(dose: NDArray[np.floating], off: float) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    return np.column_stack([np.ones_like(dose), np.log(dose + off)])


def quadratic_grad(dose: NDArray[np.floating]) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    return np.column_stack([np.ones_like(dose), dose, dose**2])


def emax_grad(
    dose: NDArray[np.floating],
    e_max: float,
    ed50: float,
) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    return np.column_stack([
        np.ones_like(dose),
        dose / (ed50 + dose),
        -e_max * dose / (dose + ed50) ** 2,
    ])


def exponential_grad(
    dose: NDArray[np.floating],
    e1: float,
    delta: float,
) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    ex = np.exp(dose / delta)
    return np.column_stack([
        np.ones_like(dose),
        ex - 1.0,
        -ex * dose * e1 / delta**2,
    ])


def logistic_grad(
    dose: NDArray[np.floating],
    e_max: float,
    ed50: float,
    delta: float,
) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    with np.errstate(over="ignore", invalid="ignore"):
        den = 1.0 + np.exp((ed50 - dose) / delta)
        g_ed50 = -e_max * (den - 1.0) / (delta * den**2)
        g_delta = e_max * (den - 1.0) * (ed50 - dose) / (delta**2 * den**2)
    # den == inf means the curve is flat at e0 there
    g_ed50 = np.where(np.isfinite(den), g_ed50, 0.0)
    g_delta = np.where(np.isfinite(den), g_delta, 0.0)
    return np.column_stack([np.ones_like(dose), 1.0 / den, g_ed50, g_delta])


def sig_emax_grad(
    dose: NDArray[np.floating],
    e_max: float,
    ed50: float,
    h: float,
) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    with np.errstate(divide="ignore", over="ignore"):
        a = 1.0 / (1.0 + (dose / ed50) ** h)
        g1 = 1.0 / (1.0 + (ed50 / dose) ** h)
    g2 = -(h * e_max / ed50) * g1 * a
    g3 = e_max * _safe_log(dose / ed50) * g1 * a
    return np.column_stack([np.ones_like(dose), g1, g2, g3])


def beta_mod_grad(
    dose: NDArray[np.floating],
    e_max: float,
    delta1: float,
    delta2: float,
    scal: float,
) -> NDArray[np.floating]:
    dose = _as_dose(dose)
    _check_beta_support(dose, scal)
    x = dose / scal
    log_max_dens = _xlogx(delta1) + _xlogx(delta2) - _xlogx(delta1 + delta2)
    g1 = x**delta1 * (1.0 - x) ** delta2 / np.exp(log_max_dens)
    lsum = np.log(delta1 + delta2)
    g2 = g1 * e_max * (_safe_log(x) + lsum - np.log(delta1))
    g3 = g1 * e_max * (_safe_log(1.0 - x) + lsum - np.log(delta2))
    return np.column_stack([np.ones_like(dose), g1, g2, g3])


def lin_int_grad(
    dose: NDArray[np.floating],
    nodes: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Hat-function (linear B-spline) basis on ``nodes``."""
    dose = _as_dose(dose)
    nodes = _check_nodes(nodes)
    _check_node_range(dose, nodes)
    eye = np.eye(len(nodes))
    return np.column_stack([np.interp(dose, nodes, eye[j]) for j in range(len(nodes))])


# ---------------------------------------------------------------------------
# Model registry: maps model name to (function, gradient, parameter_names,
# number of nonlinear parameters).  linInt has one parameter per node.
# ---------------------------------------------------------------------------

_MODEL_MAP: dict[str, tuple[Callable, Callable, list[str], int]] = {
    "linear": (linear, linear_grad, ["e0", "delta"], 0),
    "linlog": (linlog, linlog_grad, ["e0", "delta"], 0),
    "quadratic": (quadratic, quadratic_grad, ["e0", "b1", "b2"], 0),
    "linInt": (lin_int, lin_int_grad, [], 0),
    "emax": (emax, emax_grad, ["e0", "e_max", "ed50"], 1),
    "exponential": (exponential, exponential_grad, ["e0", "e1", "delta"], 1),
    "logistic": (logistic, logistic_grad, ["e0", "e_max", "ed50", "delta"], 2),
    "sigEmax": (sig_emax, sig_emax_grad, ["e0", "e_max", "ed50", "h"], 2),
    "betaMod": (beta_mod, beta_mod_grad, ["e0", "e_max", "delta1", "delta2"], 2),
}

VALID_MODELS = tuple(_MODEL_MAP.keys())
LINEAR_MODELS = tuple(m for m, spec in _MODEL_MAP.items() if spec[3] == 0)
NONLINEAR_MODELS = tuple(m for m, spec in _MODEL_MAP.items() if spec[3] > 0)

# placebo adjustment drops e0; these shapes are not 0 at dose 0
_NO_PLACEBO_ADJ = ("linlog", "logistic")


def check_model(model: str) -> None:
    if model not in _MODEL_MAP:
        raise InvalidArgument(f"model must be one of {VALID_MODELS}, got {model!r}")


def n_nonlinear(model: str) -> int:
    """Number of nonlinear (shape) parameters of *model*: 0, 1 or 2."""
    check_model(model)
    return _MODEL_MAP[model][3]


def param_names(model: str, nodes: NDArray[np.floating] | None = None) -> list[str]:
    """Natural-scale parameter names, ``e0`` first."""
    check_model(model)
    if model == "linInt":
        if nodes is None:
            raise InvalidArgument("linInt parameter names need the dose nodes")
        return [f"d{d:g}" for d in nodes]
    return list(_MODEL_MAP[model][2])


def default_bounds(model: str, max_dose: float) -> NDArray[np.floating] | None:
    """Default search bounds for the nonlinear parameters.

    Returns ``None`` for models without nonlinear parameters, otherwise an
    array of shape ``(n_nonlinear, 2)``.
    """
    check_model(model)
    if model == "emax":
        return np.array([[0.001, 1.5]]) * max_dose
    if model == "exponential":
        return np.array([[0.1, 2.0]]) * max_dose
    if model == "logistic":
        return np.array([[0.001 * max_dose, 1.5 * max_dose],
                         [0.001 * max_dose, 0.5 * max_dose]])
    if model == "sigEmax":
        return np.array([[0.001 * max_dose, 1.5 * max_dose], [0.5, 10.0]])
    if model == "betaMod":
        return np.array([[0.05, 4.0], [0.05, 4.0]])
    return None


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def standardized_response(
    model: str,
    dose: NDArray[np.floating],
    nl: NDArray[np.floating] | float,
    scal: float | None = None,
) -> NDArray[np.floating]:
    """Shape evaluated with intercept 0 and unit scale.

    Only defined for models with nonlinear parameters; ``nl`` holds those
    parameters in registry order.
    """
    nl = np.atleast_1d(np.asarray(nl, dtype=np.float64))
    if model == "emax":
        return emax(dose, 0.0, 1.0, nl[0])
    if model == "exponential":
        return exponential(dose, 0.0, 1.0, nl[0])
    if model == "logistic":
        return logistic(dose, 0.0, 1.0, nl[0], nl[1])
    if model == "sigEmax":
        return sig_emax(dose, 0.0, 1.0, nl[0], nl[1])
    if model == "betaMod":
        if scal is None:
            raise InvalidArgument("betaMod needs the scale constant scal")
        return beta_mod(dose, 0.0, 1.0, nl[0], nl[1], scal)
    check_model(model)
    raise InvalidArgument(f"model {model!r} has no nonlinear parameters")


def evaluate(
    model: str,
    dose: NDArray[np.floating],
    coefs: NDArray[np.floating],
    *,
    off: float | None = None,
    scal: float | None = None,
    nodes: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Evaluate *model* at *dose* with natural-scale coefficients (``e0`` first)."""
    check_model(model)
    cf = np.asarray(coefs, dtype=np.float64)
    if model == "linInt":
        return lin_int(dose, cf, nodes)
    if model == "linlog":
        return linlog(dose, cf[0], cf[1], off=off)
    if model == "betaMod":
        return beta_mod(dose, *cf, scal=scal)
    func = _MODEL_MAP[model][0]
    return func(dose, *cf)


def gradient(
    model: str,
    dose: NDArray[np.floating],
    coefs: NDArray[np.floating],
    *,
    off: float | None = None,
    scal: float | None = None,
    nodes: NDArray[np.floating] | None = None,
) -> NDArray[np.floating]:
    """Jacobian of *model* w.r.t. its natural-scale coefficients.

    Validates against: R DoseFinding:::gradCalc()
    """
    check_model(model)
    cf = np.asarray(coefs, dtype=np.float64)
    if model == "linear":
        return linear_grad(dose)
    if model == "linlog":
        return linlog_grad(dose, off=off)
    if model == "quadratic":
        return quadratic_grad(dose)
    if model == "emax":
        return emax_grad(dose, e_max=cf[1], ed50=cf[2])
    if model == "exponential":
        return exponential_grad(dose, e1=cf[1], delta=cf[2])
    if model == "logistic":
        return logistic_grad(dose, e_max=cf[1], ed50=cf[2], delta=cf[3])
    if model == "sigEmax":
        return sig_emax_grad(dose, e_max=cf[1], ed50=cf[2], h=cf[3])
    if model == "betaMod":
        return beta_mod_grad(dose, e_max=cf[1], delta1=cf[2], delta2=cf[3], scal=scal)
    return lin_int_grad(dose, nodes=nodes)
