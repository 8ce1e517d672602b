"""Optimal contrasts for the multiple contrast test.

For a candidate mean vector ``mu`` and covariance ``S`` of the dose-group
estimates, the contrast maximising the non-centrality of the test
statistic is

.. math::
    c \\propto S^{-1}\\Bigl(\\mu - \\frac{\\mu' S^{-1} 1}{1' S^{-1} 1} 1\\Bigr)

scaled to unit Euclidean norm.  It is invariant to location and positive
scale of ``mu``, so only the standardized shape matters.

Validates against: R DoseFinding::optContr()
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from pydosefinding._exceptions import InvalidArgument, SingularMatrix
from pydosefinding.doseresponse._linalg import check_covariance, cov2cor
from pydosefinding.mct._candidates import Mods
from pydosefinding.mct._common import ContrastMatrix

logger = logging.getLogger(__name__)

_SUM_TOL = 1e-8


def _mean_matrix(
    models: Mods | NDArray[np.floating],
    names: list[str] | None,
    doses: NDArray[np.floating] | None,
) -> tuple[NDArray, tuple[str, ...], NDArray]:
    """Normalise candidate input to ``(mu, names, doses)``."""
    if isinstance(models, Mods):
        return models.resp, models.names, models.doses
    mu = np.asarray(models, dtype=np.float64)
    if mu.ndim == 1:
        mu = mu[:, None]
    if mu.ndim != 2:
        raise InvalidArgument(f"mean responses must be a (n_doses, n_models) matrix, got {mu.shape}")
    k, m = mu.shape
    names_t = tuple(names) if names is not None else tuple(f"model{j + 1}" for j in range(m))
    if len(names_t) != m:
        raise InvalidArgument(f"expected {m} names, got {len(names_t)}")
    doses_a = np.arange(k, dtype=np.float64) if doses is None else np.asarray(doses, dtype=np.float64)
    if len(doses_a) != k:
        raise InvalidArgument(f"expected {k} doses, got {len(doses_a)}")
    return mu, names_t, doses_a


def _covariance(S: NDArray | None, w: NDArray | None, k: int) -> NDArray:
    if S is not None and w is not None:
        raise InvalidArgument("specify only one of S and w")
    if S is not None:
        return check_covariance(S, k=k)
    w = np.ones(k) if w is None else np.asarray(w, dtype=np.float64)
    if w.shape != (k,):
        raise InvalidArgument(f"w must have one entry per dose ({k}), got shape {w.shape}")
    if np.any(w <= 0):
        raise InvalidArgument("weights must be positive")
    return np.diag(1.0 / w)


def check_contrasts(cont_mat: NDArray[np.floating]) -> NDArray[np.floating]:
    """Validate that every column of *cont_mat* is a contrast (sums to 0)."""
    C = np.asarray(cont_mat, dtype=np.float64)
    if C.ndim == 1:
        C = C[:, None]
    if C.ndim != 2 or C.shape[0] < 2:
        raise InvalidArgument(f"contrast matrix must be (n_doses, n_contrasts), got shape {C.shape}")
    scale = np.maximum(np.sqrt(np.sum(C * C, axis=0)), 1.0)
    sums = np.abs(C.sum(axis=0)) / scale
    if np.any(sums > _SUM_TOL):
        raise InvalidArgument(
            f"contrast columns must sum to zero, got column sums {C.sum(axis=0)}"
        )
    return C


def opt_contr(
    models: Mods | NDArray[np.floating],
    *,
    S: NDArray[np.floating] | None = None,
    w: NDArray[np.floating] | None = None,
    names: list[str] | None = None,
    doses: NDArray[np.floating] | None = None,
) -> ContrastMatrix:
    """Optimal contrasts for a set of candidate shapes.

    Parameters
    ----------
    models : Mods or array
        Candidate set, or a ``(n_doses, n_models)`` matrix of mean responses.
    S : array or None
        Covariance matrix of the dose-group estimates.
    w : array or None
        Dose-group weights (e.g. sample sizes); ``S = diag(1 / w)``.  If
        neither ``S`` nor ``w`` is given, equal weights are used.
    names, doses : optional
        Labels when ``models`` is a plain matrix.

    Returns
    -------
    ContrastMatrix

    Raises
    ------
    InvalidArgument
        If ``S`` is not symmetric, a candidate is flat, or a resulting
        column does not sum to zero.
    SingularMatrix
        If ``S`` is not positive definite.
    """
    mu, names_t, doses_a = _mean_matrix(models, names, doses)
    k = mu.shape[0]
    S = _covariance(S, w, k)

    try:
        factor = linalg.cho_factor(S)
    except np.linalg.LinAlgError as exc:
        raise SingularMatrix(f"S is not positive definite: {exc}") from exc
    ones = np.ones(k)
    s_inv_mu = linalg.cho_solve(factor, mu)
    s_inv_1 = linalg.cho_solve(factor, ones)
    cont = s_inv_mu - np.outer(s_inv_1, (ones @ s_inv_mu) / (ones @ s_inv_1))

    norms = np.sqrt(np.sum(cont * cont, axis=0))
    flat = norms <= 1e-12 * np.maximum(np.max(np.abs(mu), axis=0), 1.0)
    if np.any(flat):
        bad = [names_t[j] for j in np.nonzero(flat)[0]]
        raise InvalidArgument(f"candidate shapes {bad} are flat and give no contrast")
    cont = cont / norms
    cont = check_contrasts(cont)

    cor = cov2cor(cont.T @ S @ cont)
    logger.debug("built %d contrasts for %d doses", cont.shape[1], k)
    return ContrastMatrix(cont_mat=cont, names=names_t, doses=doses_a, cor_mat=cor)
