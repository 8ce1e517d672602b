"""
Dose-response model fitting for dose-finding studies.

Fits the standard shapes used in MCP-Mod (linear, linlog, quadratic,
linInt, emax, exponential, logistic, sigEmax, betaMod) to per-patient data
with optional covariates, or to summary estimates with a known covariance
matrix.  Nonlinear models are fitted by variable projection: a
deterministic grid search over the shape parameters with the linear
parameters concentrated out, followed by bounded local refinement.

Validates against: R package DoseFinding.
"""

from pydosefinding.doseresponse._common import DRMod, FitControl
from pydosefinding.doseresponse._models import (
    VALID_MODELS,
    LINEAR_MODELS,
    NONLINEAR_MODELS,
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
)
from pydosefinding.doseresponse._linalg import (
    qr_lstsq,
    gls_lstsq,
    orthonormal_basis,
    residualize,
    whitening_matrix,
    cov2cor,
)
from pydosefinding.doseresponse._grid import get_grid
from pydosefinding.doseresponse._fit import fit_mod, concentrated_rss
from pydosefinding.doseresponse._batch import fit_candidates, CandidateFitResult
from pydosefinding.doseresponse._potency import target_dose, effective_dose, TargetDoseResult

__all__ = [
    "DRMod",
    "FitControl",
    "CandidateFitResult",
    "TargetDoseResult",
    "VALID_MODELS",
    "LINEAR_MODELS",
    "NONLINEAR_MODELS",
    "linear",
    "linlog",
    "quadratic",
    "emax",
    "exponential",
    "logistic",
    "sig_emax",
    "beta_mod",
    "lin_int",
    "standardized_response",
    "gradient",
    "n_nonlinear",
    "default_bounds",
    "qr_lstsq",
    "gls_lstsq",
    "orthonormal_basis",
    "residualize",
    "whitening_matrix",
    "cov2cor",
    "get_grid",
    "fit_mod",
    "concentrated_rss",
    "fit_candidates",
    "target_dose",
    "effective_dose",
]
