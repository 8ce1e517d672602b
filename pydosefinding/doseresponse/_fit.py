"""Dose-response model fitting by variable projection.

The linear parameters (intercept, scale and covariate effects) are
concentrated out of the least-squares criterion, leaving a search over the
one or two nonlinear shape parameters only:

1.  **Grid search**: the concentrated criterion
    ``RSS(theta) = ||r||^2 - (r.z)^2 / (z.z)`` is evaluated at every node of
    a deterministic grid, where ``r`` is the response and ``z`` the
    standardized shape, both residualized against the linear design.
2.  **Local refinement**: bounded Brent search (one parameter) or
    L-BFGS-B (two parameters), started at the best node.
3.  **Recovery**: one final (generalized) least-squares regression at the
    converged shape recovers the natural-scale coefficients.

Models without nonlinear parameters are a single linear regression.

Validates against: R DoseFinding::fitMod()
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray
from scipy.optimize import minimize, minimize_scalar

from pydosefinding._exceptions import (
    DomainError,
    FitFailure,
    InvalidArgument,
    UnsupportedConfiguration,
)
from pydosefinding.doseresponse import _models
from pydosefinding.doseresponse._common import DRMod, FitControl
from pydosefinding.doseresponse._grid import get_grid
from pydosefinding.doseresponse._linalg import (
    check_covariance,
    orthonormal_basis,
    qr_lstsq,
    residualize,
    whitening_matrix,
)

logger = logging.getLogger(__name__)

_VALID_TYPES = ("normal", "general")


# ---------------------------------------------------------------------------
# Input preparation
# ---------------------------------------------------------------------------

class _FitData:
    """Data in the form the fitting algorithms work on.

    ``W`` maps responses and design columns onto the scale on which plain
    least squares is the right criterion: ``diag(sqrt(n_j))`` for group
    means, the whitening matrix for a known covariance, ``None`` (identity)
    for per-observation data with covariates.
    """

    def __init__(
        self,
        dose: NDArray,
        resp: NDArray,
        fit_type: str,
        S: NDArray | None,
        covariates: NDArray | None,
    ) -> None:
        self.fit_type = fit_type
        self.S = S
        self.covariates = covariates
        self.weights: NDArray | None = None
        self.within_ss = 0.0
        self.n_obs = len(dose)

        if fit_type == "general":
            self.dose, self.resp = dose, resp
            self.W = whitening_matrix(S)
        elif covariates is not None:
            self.dose, self.resp = dose, resp
            self.W = None
        else:
            # fit on group means; the within-group sum of squares is added
            # back to the criterion afterwards
            levels, inverse = np.unique(dose, return_inverse=True)
            counts = np.bincount(inverse).astype(np.float64)
            means = np.bincount(inverse, weights=resp) / counts
            self.within_ss = float(np.sum((resp - means[inverse]) ** 2))
            self.dose, self.resp = levels, means
            self.weights = counts
            self.W = np.diag(np.sqrt(counts))

    def transform(self, X: NDArray) -> NDArray:
        X = np.asarray(X, dtype=np.float64)
        return X if self.W is None else self.W @ X


def _validate(
    dose, resp, model, fit_type, S, covariates, covariate_names, placebo_adjusted,
):
    dose = np.asarray(dose, dtype=np.float64)
    resp = np.asarray(resp, dtype=np.float64)

    if dose.ndim != 1 or resp.ndim != 1:
        raise InvalidArgument("dose and resp must be 1-D arrays")
    if dose.shape != resp.shape:
        raise InvalidArgument(
            f"dose and resp must have same shape, got {dose.shape} and {resp.shape}"
        )
    if not (np.all(np.isfinite(dose)) and np.all(np.isfinite(resp))):
        raise InvalidArgument("dose and resp must be finite")
    if np.any(dose < 0):
        raise InvalidArgument("doses must be non-negative")
    _models.check_model(model)
    if fit_type not in _VALID_TYPES:
        raise InvalidArgument(f"type must be one of {_VALID_TYPES}, got {fit_type!r}")

    if placebo_adjusted:
        if fit_type != "general":
            raise UnsupportedConfiguration(
                "placebo_adjusted=True is only supported for type='general'"
            )
        if model in _models._NO_PLACEBO_ADJ:
            raise UnsupportedConfiguration(
                f"{model} model is not allowed for placebo-adjusted data: "
                "its value at dose 0 is not determined by the intercept"
            )

    if fit_type == "general":
        if S is None:
            raise InvalidArgument("S must be specified for type='general'")
        S = check_covariance(S, k=len(dose))
        if covariates is not None:
            raise InvalidArgument("covariates are only supported for type='normal'")
    elif S is not None:
        raise InvalidArgument("S is only used for type='general'")

    names: tuple[str, ...] = ()
    if covariates is not None:
        covariates = np.asarray(covariates, dtype=np.float64)
        if covariates.ndim == 1:
            covariates = covariates[:, None]
        if covariates.ndim != 2 or covariates.shape[0] != len(dose):
            raise InvalidArgument(
                f"covariates must have {len(dose)} rows, got shape {covariates.shape}"
            )
        if covariate_names is None:
            names = tuple(f"x{j + 1}" for j in range(covariates.shape[1]))
        else:
            names = tuple(covariate_names)
            if len(names) != covariates.shape[1]:
                raise InvalidArgument("covariate_names must match the number of covariate columns")

    return dose, resp, S, covariates, names


def _check_bounds(bounds, model: str, dim: int, max_dose: float) -> NDArray:
    if bounds is None:
        bounds = _models.default_bounds(model, max_dose)
    bounds = np.asarray(bounds, dtype=np.float64).reshape(-1, 2)
    if bounds.shape != (dim, 2):
        raise InvalidArgument(f"bounds for {model} must have shape ({dim}, 2)")
    if np.any(bounds[:, 0] >= bounds[:, 1]):
        raise InvalidArgument(f"lower bounds must be smaller than upper bounds for {model}")
    return bounds


# ---------------------------------------------------------------------------
# Concentrated criterion
# ---------------------------------------------------------------------------

class _Concentration:
    """Concentrated residual sum of squares as a function of ``theta``.

    The response ``r`` is residualized once; each candidate shape column
    is transformed with the same ``W`` and projection, after which
    ``RSS(theta)`` has a closed form.
    """

    def __init__(self, data: _FitData, model: str, scal: float | None, placebo_adjusted: bool):
        self.data = data
        self.model = model
        self.scal = scal
        if placebo_adjusted:
            base = None
        elif data.covariates is not None:
            base = np.column_stack([np.ones(len(data.dose)), data.covariates])
        else:
            base = np.ones((len(data.dose), 1))
        self.Q = None if base is None else orthonormal_basis(data.transform(base))
        self.r = residualize(self.Q, data.transform(data.resp))
        self.rr = float(self.r @ self.r)

    def _values(self, Z: NDArray) -> NDArray:
        Z = residualize(self.Q, self.data.transform(Z))
        rz = self.r @ Z
        zz = np.sum(Z * Z, axis=0)
        with np.errstate(divide="ignore", invalid="ignore"):
            out = self.rr - rz * rz / zz
        # a shape column with no variation left explains nothing
        return np.where((zz > 0) & np.isfinite(out), out, self.rr)

    def shape(self, nl: NDArray) -> NDArray:
        return _models.standardized_response(self.model, self.data.dose, nl, self.scal)

    def __call__(self, nl: NDArray) -> float:
        return float(self._values(self.shape(nl)[:, None])[0])

    def on_grid(self, nodes: NDArray) -> NDArray:
        Z = np.column_stack([self.shape(node) for node in nodes])
        return self._values(Z)


def concentrated_rss(
    dose: NDArray[np.floating],
    resp: NDArray[np.floating],
    *,
    model: str,
    nl: NDArray[np.floating] | float,
    type: str = "normal",
    S: NDArray[np.floating] | None = None,
    covariates: NDArray[np.floating] | None = None,
    placebo_adjusted: bool = False,
    scal: float | None = None,
) -> float:
    """Concentrated criterion of *model* at nonlinear parameters ``nl``.

    Equals the (generalized) residual sum of squares of the full linear
    regression of ``resp`` on ``[1, f0(dose, nl), covariates]``.  For
    ``type='normal'`` without covariates the within-dose-group sum of
    squares is included, so the value is directly comparable to
    :attr:`DRMod.criterion`.
    """
    dose, resp, S, covariates, _ = _validate(
        dose, resp, model, type, S, covariates, None, placebo_adjusted,
    )
    if _models.n_nonlinear(model) == 0:
        raise InvalidArgument(f"model {model!r} has no nonlinear parameters")
    if model == "betaMod" and scal is None:
        scal = 1.2 * float(np.max(dose))
    data = _FitData(dose, resp, type, S, covariates)
    return _Concentration(data, model, scal, placebo_adjusted)(np.atleast_1d(nl)) + data.within_ss


# ---------------------------------------------------------------------------
# Optimisation of the nonlinear parameters
# ---------------------------------------------------------------------------

def _optimize(
    crit: _Concentration,
    model: str,
    dim: int,
    bounds: NDArray,
    control: FitControl,
    start: NDArray | None,
) -> tuple[NDArray, float]:
    """Grid search followed by local refinement; returns ``(theta, RSS)``."""
    if start is None:
        n_grid = control.grid_size_dim1 if dim == 1 else control.grid_size_dim2
        nodes = get_grid(n_grid, bounds, dim)
        values = crit.on_grid(nodes)
        ind = int(np.argmin(values))
        best, best_val = nodes[ind].copy(), float(values[ind])
        logger.debug("%s: grid of %d nodes, best %s (RSS %.6g)", model, len(nodes), best, best_val)
        if dim == 1:
            # tighten to the neighbourhood of the best node
            dif = (bounds[0, 1] - bounds[0, 0]) / n_grid
            bounds = np.array([[max(best[0] - 1.1 * dif, bounds[0, 0]),
                                min(best[0] + 1.1 * dif, bounds[0, 1])]])
    else:
        best, best_val = start, np.inf

    if dim == 1:
        res = minimize_scalar(
            lambda x: crit(np.array([x])),
            bounds=(bounds[0, 0], bounds[0, 1]),
            method="bounded",
            options={"xatol": control.optimize_tol, "maxiter": 500},
        )
        theta, value = np.array([res.x]), float(res.fun)
        failed = not res.success
        message = getattr(res, "message", "")
    else:
        res = minimize(
            crit,
            best,
            method="L-BFGS-B",
            bounds=[tuple(b) for b in bounds],
            options={"maxiter": control.local_maxiter},
        )
        theta, value = np.asarray(res.x, dtype=np.float64), float(res.fun)
        failed = res.status == 1
        message = res.message
        if res.status == 2 and np.isfinite(value):
            logger.warning("%s: local optimiser stopped early (%s)", model, message)

    if failed or not np.isfinite(value):
        raise FitFailure(
            f"local optimisation of {model} model failed: {message}",
            model=model,
            stage="local",
            best_params=best,
            best_value=best_val,
        )
    logger.debug("%s: local optimum %s (RSS %.6g)", model, theta, value)

    if best_val < value:
        return best, best_val
    return theta, value


# ---------------------------------------------------------------------------
# Linear designs
# ---------------------------------------------------------------------------

def _linear_design(model: str, dose: NDArray, off: float | None, nodes: NDArray | None) -> NDArray:
    if model == "linear":
        return _models.linear_grad(dose)
    if model == "linlog":
        return _models.linlog_grad(dose, off)
    if model == "quadratic":
        return _models.quadratic_grad(dose)
    # linInt: one indicator column per node
    return _models.lin_int_grad(dose, nodes)


def _regress(data: _FitData, X: NDArray) -> tuple[NDArray, float]:
    """(G)LS of the response on ``X`` (plus covariates); coefficients and criterion."""
    if data.covariates is not None:
        X = np.column_stack([X, data.covariates])
    coef, crit = qr_lstsq(data.transform(X), data.transform(data.resp))
    return coef, crit + data.within_ss


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_mod(
    dose: NDArray[np.floating],
    resp: NDArray[np.floating],
    *,
    model: str,
    type: str = "normal",
    S: NDArray[np.floating] | None = None,
    covariates: NDArray[np.floating] | None = None,
    covariate_names: list[str] | None = None,
    placebo_adjusted: bool = False,
    bounds: NDArray[np.floating] | None = None,
    df: float | None = None,
    start: NDArray[np.floating] | None = None,
    control: FitControl | None = None,
    off: float | None = None,
    scal: float | None = None,
) -> DRMod:
    """Fit a dose-response model.

    Parameters
    ----------
    dose : array
        Dose for each observation (``type='normal'``) or for each estimate
        (``type='general'``).
    resp : array
        Responses, or estimated mean responses for ``type='general'``.
    model : str
        One of ``'linear'``, ``'linlog'``, ``'quadratic'``, ``'linInt'``,
        ``'emax'``, ``'exponential'``, ``'logistic'``, ``'sigEmax'``,
        ``'betaMod'``.
    type : str
        ``'normal'``: per-patient data with independent homoscedastic
        errors; ``'general'``: estimates with known covariance ``S``.
    S : array or None
        Covariance matrix of ``resp`` (``type='general'`` only).
    covariates : array or None
        Additional linear covariates, shape ``(n_obs, q)``
        (``type='normal'`` only).
    covariate_names : list of str or None
        Names of the covariate columns.
    placebo_adjusted : bool
        ``resp`` is already a difference to placebo; the intercept is
        dropped.  Only for ``type='general'`` and not for ``linlog`` or
        ``logistic``.
    bounds : array or None
        ``(n_nonlinear, 2)`` bounds for the nonlinear parameters; defaults
        depend on the model and the largest dose.
    df : float or None
        Degrees of freedom for ``type='general'`` (default ``inf``).
    start : array or None
        Starting value for the nonlinear parameters; skips the grid search.
    control : FitControl or None
        Grid sizes and optimiser tolerances.
    off : float or None
        Offset of the ``linlog`` model (default ``0.01 * max(dose)``).
    scal : float or None
        Scale of the ``betaMod`` model (default ``1.2 * max(dose)``).

    Returns
    -------
    DRMod

    Raises
    ------
    InvalidArgument, UnsupportedConfiguration, DomainError, SingularMatrix, FitFailure

    Examples
    --------
    >>> import numpy as np
    >>> dose = np.array([0, 1, 2, 3, 4], dtype=float)
    >>> fit = fit_mod(dose, 1 + 0.5 * dose, model="linear")
    >>> np.round(fit.coefs, 6)
    array([1. , 0.5])

    Validates against: R DoseFinding::fitMod()
    """
    dose, resp, S, covariates, cov_names = _validate(
        dose, resp, model, type, S, covariates, covariate_names, placebo_adjusted,
    )
    control = FitControl() if control is None else control
    max_dose = float(np.max(dose))

    if model == "linlog":
        off = 0.01 * max_dose if off is None else float(off)
        if off <= 0:
            raise InvalidArgument(f"off must be positive, got {off}")
    else:
        off = None
    if model == "betaMod":
        scal = 1.2 * max_dose if scal is None else float(scal)
        if scal < max_dose:
            raise DomainError(f"scal={scal} must not be smaller than the maximum dose {max_dose}")
    else:
        scal = None

    nodes = None
    if model == "linInt":
        nodes = np.unique(dose)
        if placebo_adjusted:
            if np.any(dose == 0):
                raise InvalidArgument("placebo-adjusted linInt data must not contain dose 0")
            nodes = np.concatenate([[0.0], nodes])

    data = _FitData(dose, resp, type, S, covariates)
    names = _models.param_names(model, nodes)
    dim = _models.n_nonlinear(model)

    if dim == 0:
        X = _linear_design(model, data.dose, off, nodes)
        if placebo_adjusted:
            X, names = X[:, 1:], names[1:]
        coef, criterion = _regress(data, X)
    else:
        bounds = _check_bounds(bounds, model, dim, max_dose)
        if start is not None:
            start = np.atleast_1d(np.asarray(start, dtype=np.float64))
            if start.shape != (dim,):
                raise InvalidArgument(f"start for {model} must have {dim} entries")
            if np.any(start < bounds[:, 0]) or np.any(start > bounds[:, 1]):
                raise InvalidArgument(f"start {start} lies outside the bounds for {model}")

        crit = _Concentration(data, model, scal, placebo_adjusted)
        theta, _ = _optimize(crit, model, dim, bounds, control, start)

        f0 = crit.shape(theta)
        if placebo_adjusted:
            X, names = f0[:, None], names[1:]
        else:
            X = np.column_stack([np.ones(len(f0)), f0])
        lin, criterion = _regress(data, X)
        n_lin = X.shape[1]
        coef = np.concatenate([lin[:n_lin], theta, lin[n_lin:]])

    if type == "general":
        df_fit = np.inf if df is None else float(df)
    else:
        df_fit = float(data.n_obs - len(coef))
    if df_fit <= 0:
        raise InvalidArgument(
            f"not enough observations ({data.n_obs}) to fit {model} with "
            f"{len(coef)} parameters"
        )

    logger.debug("%s: coefficients %s, criterion %.6g", model, coef, criterion)

    return DRMod(
        model=model,
        coefs=coef,
        coef_names=tuple(names) + cov_names,
        criterion=float(criterion),
        df=df_fit,
        fit_type=type,
        placebo_adjusted=placebo_adjusted,
        dose=data.dose,
        response=data.resp,
        n_obs=data.n_obs,
        weights=data.weights,
        S=S,
        covariates=covariates,
        covariate_names=cov_names,
        off=off,
        scal=scal,
        nodes=nodes,
    )
