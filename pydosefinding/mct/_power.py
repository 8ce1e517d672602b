"""Power and sample size for the multiple contrast test.

Under an alternative mean vector ``mu`` the contrast statistics follow a
non-central multivariate t distribution with non-centrality vector

.. math::
    \\delta = \\frac{C'\\mu}{\\sqrt{\\mathrm{diag}(C' S C)}}

and ``df`` degrees of freedom, ``T = (Z + delta) / sqrt(chi2_df / df)``.  The
power is the probability that the maximum statistic exceeds the critical
value: ``1 - P(T <= critV)`` (one-sided) or ``1 - P(-critV <= T <= critV)``
(two-sided).  For ``df = inf`` this reduces to shifting a central normal
vector by ``delta``.

Validates against: R DoseFinding::powMCT(), DoseFinding::sampSizeMCT()
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import InvalidArgument
from pydosefinding.doseresponse._linalg import check_covariance, cov2cor
from pydosefinding.mct._candidates import Mods
from pydosefinding.mct._common import (
    ContrastMatrix,
    MCTPowerResult,
    MVTControl,
    SampleSizeResult,
    _check_alpha,
    _check_alternative,
)
from pydosefinding.mct._contrasts import check_contrasts, opt_contr
from pydosefinding.mct._mvt import MultivariateDistribution, ScipyMVT
from pydosefinding.mct._test import critical_value

logger = logging.getLogger(__name__)

_VALID_POWER_TYPES = ("min", "mean", "max")


def _alternatives(alt_models: Mods | NDArray, k: int) -> tuple[NDArray, tuple[str, ...]]:
    if isinstance(alt_models, Mods):
        mu, names = alt_models.resp, alt_models.names
    else:
        mu = np.asarray(alt_models, dtype=np.float64)
        if mu.ndim == 1:
            mu = mu[:, None]
        names = tuple(f"alt{j + 1}" for j in range(mu.shape[1]))
    if mu.shape[0] != k:
        raise InvalidArgument(f"alternative means need {k} rows (one per dose), got {mu.shape[0]}")
    return mu, names


def _power_covariance(n, sigma, S, df, k: int) -> tuple[NDArray, float]:
    if S is not None:
        if n is not None or sigma is not None:
            raise InvalidArgument("specify either S or (n, sigma), not both")
        S = check_covariance(S, k=k)
        return S, np.inf if df is None else float(df)
    if n is None or sigma is None:
        raise InvalidArgument("need S or both n and sigma")
    n = np.broadcast_to(np.asarray(n, dtype=np.float64), (k,)).copy()
    if np.any(n <= 0) or not sigma > 0:
        raise InvalidArgument("n and sigma must be positive")
    if df is None:
        df = float(np.sum(n) - k)
        if df <= 0:
            raise InvalidArgument(f"total sample size {np.sum(n)} too small for {k} dose groups")
    return sigma**2 * np.diag(1.0 / n), float(df)


def power_mct(
    cont_mat: ContrastMatrix | NDArray[np.floating],
    alt_models: Mods | NDArray[np.floating],
    *,
    n: NDArray[np.floating] | float | None = None,
    sigma: float | None = None,
    S: NDArray[np.floating] | None = None,
    df: float | None = None,
    alpha: float = 0.025,
    alternative: str = "one.sided",
    crit_v: float | None = None,
    control: MVTControl | None = None,
    distribution: MultivariateDistribution | None = None,
) -> MCTPowerResult:
    """Power of the multiple contrast test under each alternative shape.

    Parameters
    ----------
    cont_mat : ContrastMatrix or array
        Contrasts of the test, ``(n_doses, n_contrasts)``.
    alt_models : Mods or array
        Assumed true mean responses, one column per scenario.
    n : array or float or None
        Sample size per dose group (with ``sigma``).
    sigma : float or None
        Residual standard deviation; ``S = sigma^2 diag(1 / n)``.
    S : array or None
        Covariance of the dose-group estimates (instead of ``n``/``sigma``).
    df : float or None
        Degrees of freedom; defaults to ``sum(n) - n_doses`` when ``n`` is
        given, ``inf`` otherwise.
    alpha, alternative : as for :func:`mct_test`.
    crit_v : float or None
        Critical value; computed from the null distribution if ``None``.

    Returns
    -------
    MCTPowerResult
    """
    _check_alpha(alpha)
    _check_alternative(alternative)
    control = MVTControl() if control is None else control
    dist = ScipyMVT() if distribution is None else distribution

    C = cont_mat.cont_mat if isinstance(cont_mat, ContrastMatrix) else check_contrasts(cont_mat)
    k, m = C.shape
    mu, names = _alternatives(alt_models, k)
    S, df = _power_covariance(n, sigma, S, df, k)

    cov = C.T @ S @ C
    den = np.sqrt(np.diag(cov))
    corr = cov2cor(cov)
    if crit_v is None:
        crit_v = critical_value(
            corr, df, alpha=alpha, alternative=alternative, control=control, distribution=dist,
        )

    power: dict[str, float] = {}
    for j, name in enumerate(names):
        delta = (C.T @ mu[:, j]) / den
        lower = np.full(m, -crit_v if alternative == "two.sided" else -np.inf)
        upper = np.full(m, crit_v)
        prob, _ = dist.probability(lower, upper, corr, df, control, delta=delta)
        power[name] = float(min(max(1.0 - prob, 0.0), 1.0))
    logger.debug("power %s at critical value %.4f", power, crit_v)

    return MCTPowerResult(
        power=power, crit_value=float(crit_v), df=df, alpha=alpha, alternative=alternative,
    )


def sample_size_mct(
    models: Mods,
    *,
    sigma: float,
    target_power: float,
    alloc_ratio: NDArray[np.floating] | None = None,
    alpha: float = 0.025,
    alternative: str = "one.sided",
    power_type: str = "min",
    upper_n: int = 1000,
    control: MVTControl | None = None,
    distribution: MultivariateDistribution | None = None,
) -> SampleSizeResult:
    """Smallest total sample size whose power reaches *target_power*.

    Group sizes are ``n_total * alloc_ratio`` (normalised to sum to one,
    balanced by default).  For every candidate total the optimal contrasts
    are recomputed for the implied group sizes and the power is summarised
    over the candidate shapes by ``power_type`` (``'min'``, ``'mean'`` or
    ``'max'``).  The search is a bisection over integers in
    ``[n_doses + 1, upper_n]``.

    Raises
    ------
    InvalidArgument
        If the target is not reached at ``upper_n``.
    """
    if not (0.0 < target_power < 1.0):
        raise InvalidArgument(f"target_power must be in (0, 1), got {target_power}")
    if power_type not in _VALID_POWER_TYPES:
        raise InvalidArgument(f"power_type must be one of {_VALID_POWER_TYPES}, got {power_type!r}")
    k = len(models.doses)
    ratio = np.ones(k) if alloc_ratio is None else np.asarray(alloc_ratio, dtype=np.float64)
    if ratio.shape != (k,) or np.any(ratio <= 0):
        raise InvalidArgument(f"alloc_ratio must hold {k} positive values")
    ratio = ratio / ratio.sum()
    summarise = {"min": np.min, "mean": np.mean, "max": np.max}[power_type]

    def power_at(n_total: int) -> float:
        n = n_total * ratio
        contr = opt_contr(models, w=n)
        res = power_mct(
            contr, models, n=n, sigma=sigma, alpha=alpha, alternative=alternative,
            control=control, distribution=distribution,
        )
        return float(summarise(list(res.power.values())))

    lo, hi = k + 1, int(upper_n)
    if hi <= lo:
        raise InvalidArgument(f"upper_n must exceed {lo}")
    pow_hi = power_at(hi)
    if pow_hi < target_power:
        raise InvalidArgument(
            f"power {pow_hi:.4f} at upper_n={hi} is below the target {target_power}; increase upper_n"
        )
    pow_lo = power_at(lo)
    if pow_lo >= target_power:
        hi, pow_hi = lo, pow_lo
    while hi - lo > 1:
        mid = (lo + hi) // 2
        pow_mid = power_at(mid)
        if pow_mid >= target_power:
            hi, pow_hi = mid, pow_mid
        else:
            lo = mid

    return SampleSizeResult(
        n_total=hi,
        n_per_group=hi * ratio,
        power=pow_hi,
        target_power=target_power,
        power_type=power_type,
    )
