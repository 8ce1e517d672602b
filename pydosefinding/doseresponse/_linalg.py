"""QR-based least squares, projections and whitening.

The fitting engine never forms normal equations: designs are factorised by
Householder QR and covariance matrices are turned into whitening
transforms, so ordinary and generalized least squares share one solver.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import linalg

from pydosefinding._exceptions import InvalidArgument, SingularMatrix

# relative threshold on |R_ii| below which a design counts as rank deficient
_RANK_TOL = 1e-10
_SYMMETRY_TOL = 1e-8


def _qr(X: NDArray[np.floating]) -> tuple[NDArray, NDArray]:
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, None]
    n, p = X.shape
    if p > n:
        raise SingularMatrix(f"design has more columns ({p}) than rows ({n})")
    Q, R = np.linalg.qr(X, mode="reduced")
    diag = np.abs(np.diag(R))
    if p > 0 and (not np.all(np.isfinite(diag)) or np.min(diag) <= _RANK_TOL * np.max(diag)):
        raise SingularMatrix(f"design matrix of shape {X.shape} is rank deficient")
    return Q, R


def qr_lstsq(
    X: NDArray[np.floating],
    y: NDArray[np.floating],
) -> tuple[NDArray[np.floating], float]:
    """Least-squares coefficients of ``y ~ X`` and the residual sum of squares.

    Raises
    ------
    SingularMatrix
        If ``X`` is rank deficient.
    """
    y = np.asarray(y, dtype=np.float64)
    Q, R = _qr(X)
    coef = linalg.solve_triangular(R, Q.T @ y)
    resid = y - np.asarray(X, dtype=np.float64).reshape(len(y), -1) @ coef
    return coef, float(resid @ resid)


def orthonormal_basis(X: NDArray[np.floating]) -> NDArray[np.floating]:
    """Orthonormal basis ``Q`` of the column space of ``X``."""
    Q, _ = _qr(X)
    return Q


def residualize(
    Q: NDArray[np.floating] | None,
    Y: NDArray[np.floating],
) -> NDArray[np.floating]:
    """Residuals of ``Y`` (vector or matrix) after projection onto ``span(Q)``.

    ``Q = None`` means no projection.
    """
    Y = np.asarray(Y, dtype=np.float64)
    if Q is None:
        return Y
    return Y - Q @ (Q.T @ Y)


def check_covariance(S: NDArray[np.floating], k: int | None = None) -> NDArray[np.floating]:
    """Validate shape and symmetry of a covariance matrix."""
    S = np.asarray(S, dtype=np.float64)
    if S.ndim != 2 or S.shape[0] != S.shape[1]:
        raise InvalidArgument(f"S must be a square matrix, got shape {S.shape}")
    if k is not None and S.shape[0] != k:
        raise InvalidArgument(f"S must be of shape ({k}, {k}), got {S.shape}")
    scale = max(float(np.max(np.abs(S))), 1.0)
    if np.max(np.abs(S - S.T)) > _SYMMETRY_TOL * scale:
        raise InvalidArgument("S must be symmetric")
    return S


def whitening_matrix(S: NDArray[np.floating]) -> NDArray[np.floating]:
    """Upper-triangular ``U`` with ``U.T @ U == inv(S)``.

    ``U @ r`` is the whitened version of a residual vector ``r`` with
    covariance ``S``: ``||U r||^2 = r' S^{-1} r``.

    Raises
    ------
    InvalidArgument
        If ``S`` is not square or not symmetric.
    SingularMatrix
        If ``S`` is not positive definite.
    """
    S = check_covariance(S)
    try:
        # cholesky first so a non-PD S is caught before inversion
        linalg.cholesky(S, lower=False)
        S_inv = linalg.inv(S)
        S_inv = (S_inv + S_inv.T) / 2.0
        return linalg.cholesky(S_inv, lower=False)
    except np.linalg.LinAlgError as exc:
        raise SingularMatrix(f"S is not positive definite: {exc}") from exc


def gls_lstsq(
    X: NDArray[np.floating],
    y: NDArray[np.floating],
    S: NDArray[np.floating],
) -> tuple[NDArray[np.floating], float]:
    """Generalized least squares with known covariance ``S``.

    Returns the coefficients and the generalized residual sum of squares
    ``(y - Xb)' S^{-1} (y - Xb)``.
    """
    U = whitening_matrix(S)
    return qr_lstsq(U @ np.asarray(X, dtype=np.float64), U @ np.asarray(y, dtype=np.float64))


def cov2cor(V: NDArray[np.floating]) -> NDArray[np.floating]:
    """Correlation matrix of a covariance matrix."""
    V = np.asarray(V, dtype=np.float64)
    sd = np.sqrt(np.diag(V))
    return V / np.outer(sd, sd)
