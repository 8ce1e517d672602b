"""Shared result and control types for dose-response model fitting."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from pydosefinding._exceptions import InvalidArgument
from pydosefinding.doseresponse import _models
from pydosefinding.doseresponse._linalg import _qr, whitening_matrix

_PRED_TYPES = ("ls-means", "effect-curve", "full-model")


@dataclass(frozen=True)
class FitControl:
    """Tuning constants for the grid search and the local optimiser.

    ``grid_size_dim1`` / ``grid_size_dim2`` are the requested number of grid
    nodes for models with one / two nonlinear parameters.  ``optimize_tol``
    is the absolute tolerance of the 1-D bounded search and
    ``local_maxiter`` the iteration budget of the 2-D bounded optimiser.
    """

    grid_size_dim1: int = 30
    grid_size_dim2: int = 144
    optimize_tol: float = float(np.finfo(float).eps ** 0.5)
    local_maxiter: int = 150

    def __post_init__(self) -> None:
        if self.grid_size_dim1 < 1 or self.grid_size_dim2 < 1:
            raise InvalidArgument("grid sizes must be >= 1")
        if not self.optimize_tol > 0:
            raise InvalidArgument(f"optimize_tol must be positive, got {self.optimize_tol}")
        if self.local_maxiter < 1:
            raise InvalidArgument(f"local_maxiter must be >= 1, got {self.local_maxiter}")


@dataclass(frozen=True)
class DRMod:
    """A fitted dose-response model.

    ``coefs`` are ordered ``e0`` (absent when placebo adjusted), the scale
    parameter, the nonlinear parameters, then covariate coefficients.
    ``criterion`` is the residual sum of squares for ``fit_type="normal"``
    and the generalized residual sum of squares
    ``(y - f)' S^{-1} (y - f)`` for ``fit_type="general"``.

    For normal fits without covariates the data are stored aggregated:
    ``dose`` holds the distinct dose levels, ``response`` the group means
    and ``weights`` the group sizes.
    """

    model: str
    coefs: NDArray[np.floating]
    coef_names: tuple[str, ...]
    criterion: float
    df: float
    fit_type: str  # 'normal' or 'general'
    placebo_adjusted: bool
    dose: NDArray[np.floating]
    response: NDArray[np.floating]
    n_obs: int
    weights: NDArray[np.floating] | None = None
    S: NDArray[np.floating] | None = None
    covariates: NDArray[np.floating] | None = None
    covariate_names: tuple[str, ...] = ()
    off: float | None = None
    scal: float | None = None
    nodes: NDArray[np.floating] | None = field(default=None)

    # -- coefficients -------------------------------------------------------

    @property
    def rss(self) -> float:
        """Alias of :attr:`criterion`."""
        return self.criterion

    def sep_coef(self) -> tuple[NDArray[np.floating], NDArray[np.floating]]:
        """Split ``coefs`` into dose-response and covariate coefficients."""
        n_cov = len(self.covariate_names)
        n_dr = len(self.coefs) - n_cov
        return self.coefs[:n_dr], self.coefs[n_dr:]

    def _full_dr_coefs(self) -> NDArray[np.floating]:
        dr, _ = self.sep_coef()
        if self.placebo_adjusted:
            # e0 (or the value at the zero node for linInt) is fixed at 0
            return np.concatenate([[0.0], dr])
        return dr

    def _curve(self, dose: NDArray[np.floating]) -> NDArray[np.floating]:
        return _models.evaluate(
            self.model, dose, self._full_dr_coefs(),
            off=self.off, scal=self.scal, nodes=self.nodes,
        )

    def _covariate_effect(self, covariates: NDArray[np.floating] | None, n: int) -> NDArray:
        _, cov_coefs = self.sep_coef()
        if len(cov_coefs) == 0:
            return np.zeros(n)
        if covariates is None:
            raise InvalidArgument(
                "full-model predictions of a fit with covariates need covariate values"
            )
        covariates = np.asarray(covariates, dtype=np.float64).reshape(n, -1)
        if covariates.shape[1] != len(cov_coefs):
            raise InvalidArgument(
                f"expected {len(cov_coefs)} covariate columns, got {covariates.shape[1]}"
            )
        return covariates @ cov_coefs

    def _covariate_means(self) -> NDArray[np.floating]:
        if self.covariates is None:
            return np.zeros(0)
        return self.covariates.mean(axis=0)

    # -- prediction ---------------------------------------------------------

    def _check_effect_curve(self) -> None:
        if self.nodes is not None and self.nodes[0] > 0:
            raise InvalidArgument(
                f"effect-curve is undefined for a linInt fit whose smallest node is {self.nodes[0]}; "
                "the data contain no dose 0"
            )

    def predict(
        self,
        dose: NDArray[np.floating] | None = None,
        pred_type: str = "ls-means",
        covariates: NDArray[np.floating] | None = None,
    ) -> NDArray[np.floating]:
        """Predict the response.

        Parameters
        ----------
        dose : array or None
            Doses to predict at.  ``None`` uses the distinct fitted doses
            (``"ls-means"``, ``"effect-curve"``) or the fitted observations
            (``"full-model"``).
        pred_type : str
            ``'ls-means'``: dose-response curve with covariates at their
            mean; ``'effect-curve'``: difference to dose 0 (a linInt fit
            needs dose 0 among its nodes);
            ``'full-model'``: per observation, covariate values required
            when the model has covariates.
        covariates : array or None
            Covariate rows for ``'full-model'`` predictions at new doses.
        """
        if pred_type not in _PRED_TYPES:
            raise InvalidArgument(f"pred_type must be one of {_PRED_TYPES}, got {pred_type!r}")

        if pred_type == "full-model":
            if dose is None:
                dose, covariates = self.dose, self.covariates
            dose = np.asarray(dose, dtype=np.float64)
            return self._curve(dose) + self._covariate_effect(covariates, len(dose))

        if dose is None:
            dose = np.unique(self.dose)
        dose = np.asarray(dose, dtype=np.float64)
        if pred_type == "effect-curve":
            self._check_effect_curve()
            return self._curve(dose) - self._curve(np.zeros(1))[0]
        _, cov_coefs = self.sep_coef()
        return self._curve(dose) + float(self._covariate_means() @ cov_coefs)

    def gradient(self, dose: NDArray[np.floating]) -> NDArray[np.floating]:
        """Jacobian of the curve w.r.t. the estimated dose-response coefficients."""
        G = _models.gradient(
            self.model, dose, self._full_dr_coefs(),
            off=self.off, scal=self.scal, nodes=self.nodes,
        )
        if self.placebo_adjusted:
            return G[:, 1:]
        return G

    def vcov(self) -> NDArray[np.floating]:
        """Asymptotic covariance matrix of ``coefs``.

        Normal fits: ``sigma^2 (F'WF)^{-1}`` with ``sigma^2 = RSS / df`` and
        ``F`` the gradient with covariate columns appended; general fits:
        ``(F'S^{-1}F)^{-1}``.

        Validates against: R DoseFinding::vcov.DRMod()
        """
        F = self.gradient(self.dose)
        if self.fit_type == "general":
            A = whitening_matrix(self.S) @ F
            scale = 1.0
        else:
            if not (self.df > 0):
                raise InvalidArgument(f"vcov needs positive degrees of freedom, got {self.df}")
            if self.covariates is not None:
                F = np.column_stack([F, self.covariates])
            w = np.ones(len(self.dose)) if self.weights is None else self.weights
            A = np.sqrt(w)[:, None] * F
            scale = self.criterion / self.df
        _, R = _qr(A)
        R_inv = linalg.solve_triangular(R, np.eye(R.shape[0]))
        return scale * (R_inv @ R_inv.T)

    def prediction_se(
        self,
        dose: NDArray[np.floating],
        pred_type: str = "ls-means",
        covariates: NDArray[np.floating] | None = None,
    ) -> NDArray[np.floating]:
        """Delta-method standard errors of :meth:`predict`."""
        if pred_type not in _PRED_TYPES:
            raise InvalidArgument(f"pred_type must be one of {_PRED_TYPES}, got {pred_type!r}")
        dose = np.asarray(dose, dtype=np.float64)
        G = self.gradient(dose)
        n_cov = len(self.covariate_names)
        if pred_type == "effect-curve":
            self._check_effect_curve()
            G = G - self.gradient(np.zeros(1))
            C = np.zeros((len(dose), n_cov))
        elif pred_type == "ls-means":
            C = np.tile(self._covariate_means(), (len(dose), 1))
        elif n_cov:
            if covariates is None:
                raise InvalidArgument("full-model standard errors need covariate values")
            C = np.asarray(covariates, dtype=np.float64).reshape(len(dose), n_cov)
        else:
            C = np.zeros((len(dose), 0))
        G = np.column_stack([G, C])
        V = self.vcov()
        return np.sqrt(np.maximum(np.sum((G @ V) * G, axis=1), 0.0))

    # -- model selection ----------------------------------------------------

    def gaic(self, k: float = 2.0) -> float:
        """Generalized AIC.

        Normal fits use the Gaussian log-likelihood with ``len(coefs) + 1``
        parameters; general fits use ``gRSS + k * len(coefs)``.

        Validates against: R DoseFinding::gAIC()
        """
        p = len(self.coefs)
        if self.fit_type == "general":
            return float(self.criterion + k * p)
        n = self.n_obs
        loglik = -0.5 * n * (np.log(2 * np.pi) + 1.0 - np.log(n) + np.log(self.criterion))
        return float(-2.0 * loglik + k * (p + 1))

    def summary(self) -> str:
        """Human-readable summary, similar to R DoseFinding's print.DRMod()."""
        label = "RSS" if self.fit_type == "normal" else "gRSS"
        lines = [
            f"Dose-response model: {self.model}",
            f"Fit type: {self.fit_type}" + (" (placebo adjusted)" if self.placebo_adjusted else ""),
            "",
            "Coefficients:",
        ]
        for name, val in zip(self.coef_names, self.coefs):
            lines.append(f"  {name:>12s} = {val:>12.6f}")
        lines.append("")
        lines.append(f"  {label} = {self.criterion:.6f}")
        lines.append(f"  df   = {self.df}")
        lines.append(f"  n    = {self.n_obs}")
        if self.off is not None:
            lines.append(f"  off  = {self.off}")
        if self.scal is not None:
            lines.append(f"  scal = {self.scal}")
        return "\n".join(lines)
