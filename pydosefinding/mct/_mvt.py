"""Multivariate normal / t probabilities and quantiles.

The test engine only needs two operations on the joint distribution of
the contrast statistics: the probability of a rectangle and the
equicoordinate quantile.  Both are reached through the
:class:`MultivariateDistribution` interface so that a deterministic
substitute can be injected; :class:`ScipyMVT` is the default backend.

``df = inf`` selects the multivariate normal distribution.  A non-centrality
vector ``delta`` turns the probability into that of the non-central
multivariate t (Kshirsagar type), the distribution of the contrast
statistics under an alternative.
"""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np
from numpy.typing import NDArray
from scipy import integrate, stats
from scipy.optimize import brentq

from pydosefinding._exceptions import IntegrationFailure, InvalidArgument
from pydosefinding.mct._common import MVTControl

logger = logging.getLogger(__name__)

_VALID_TAILS = ("lower.tail", "both.tails")
_TAIL_MASS = 1e-10
_MIN_RELEPS = 1.49e-8
_MIN_XTOL = 1e-12


class MultivariateDistribution(Protocol):
    """Joint distribution of correlated normal / t statistics."""

    def probability(
        self,
        lower: NDArray[np.floating],
        upper: NDArray[np.floating],
        corr: NDArray[np.floating],
        df: float,
        control: MVTControl,
        delta: NDArray[np.floating] | None = None,
    ) -> tuple[float, float]:
        """``P(lower <= T <= upper)`` and an error estimate.

        ``T = (Z + delta) / sqrt(chi2_df / df)`` with ``Z`` standard normal
        with correlation ``corr``; ``delta = None`` means zero.
        """
        ...

    def quantile(
        self,
        prob: float,
        corr: NDArray[np.floating],
        df: float,
        tail: str,
        control: MVTControl,
    ) -> tuple[float, float]:
        """``q`` with ``P(T_i <= q for all i) = prob`` (``'lower.tail'``) or
        ``P(|T_i| <= q for all i) = prob`` (``'both.tails'``), and an error
        estimate."""
        ...


def _univariate(df: float):
    return stats.norm if np.isinf(df) else stats.t(df)


def equicoordinate_quantile(
    dist: MultivariateDistribution,
    prob: float,
    corr: NDArray[np.floating],
    df: float,
    tail: str,
    control: MVTControl,
) -> float:
    """Invert ``dist.probability`` by Brent's method.

    The search interval defaults to the univariate quantile (a lower bound)
    and the Bonferroni quantile (an upper bound), each widened by 0.5.  The
    root is located to within ``control.abseps``.
    """
    m = corr.shape[0]
    uni = _univariate(df)
    two = tail == "both.tails"
    if control.interval is not None:
        lo, hi = control.interval
    elif two:
        lo = max(float(uni.ppf((1.0 + prob) / 2.0)) - 0.5, 0.0)
        hi = float(uni.ppf(1.0 - (1.0 - prob) / (2.0 * m))) + 0.5
    else:
        lo = float(uni.ppf(prob)) - 0.5
        hi = float(uni.ppf(1.0 - (1.0 - prob) / m)) + 0.5

    def f(q: float) -> float:
        lower = np.full(m, -q if two else -np.inf)
        upper = np.full(m, q)
        value, _ = dist.probability(lower, upper, corr, df, control)
        return value - prob

    f_lo, f_hi = f(lo), f(hi)
    if f_lo * f_hi > 0:
        raise IntegrationFailure(
            f"quantile search interval [{lo:.4f}, {hi:.4f}] does not bracket "
            f"probability {prob}; supply MVTControl(interval=...)",
            stage="critical value",
        )
    return float(brentq(f, lo, hi, xtol=max(control.abseps, _MIN_XTOL)))


class ScipyMVT:
    """Backend built on :mod:`scipy.stats` multivariate distributions.

    One-dimensional problems are solved exactly (``norm``, ``t`` or
    ``nct``).  Higher dimensions use ``multivariate_normal.cdf`` (Genz's
    algorithm, honouring ``maxpts``, ``abseps`` and ``releps``) or
    ``multivariate_t.cdf`` (randomized quasi-Monte-Carlo, honouring
    ``maxpts`` and ``seed``).  ``multivariate_t.cdf`` has no tolerance
    arguments, so ``abseps`` and ``releps`` have no effect on central t
    probabilities.  Neither routine reports an achieved error, so the
    returned error estimate is ``nan`` in that case.

    A non-zero ``delta`` selects the non-central distribution of
    ``(Z + delta) / s`` with ``s = sqrt(chi2_df / df)``.  For ``df = inf``
    this is a shifted normal; otherwise the normal probability of the
    scaled rectangle is integrated over the density of ``s`` with
    :func:`scipy.integrate.quad` (tolerances ``abseps`` / ``releps``).
    """

    def probability(
        self,
        lower: NDArray[np.floating],
        upper: NDArray[np.floating],
        corr: NDArray[np.floating],
        df: float,
        control: MVTControl,
        delta: NDArray[np.floating] | None = None,
    ) -> tuple[float, float]:
        lower = np.asarray(lower, dtype=np.float64)
        upper = np.asarray(upper, dtype=np.float64)
        corr = np.asarray(corr, dtype=np.float64)
        m = len(upper)
        delta = np.zeros(m) if delta is None else np.asarray(delta, dtype=np.float64)
        if lower.shape != (m,) or corr.shape != (m, m) or delta.shape != (m,):
            raise InvalidArgument("lower, upper, corr and delta have inconsistent dimensions")
        if not df > 0:
            raise InvalidArgument(f"df must be positive, got {df}")

        if np.isinf(df):
            lower, upper = lower - delta, upper - delta
            if m == 1:
                return float(stats.norm.cdf(upper[0]) - stats.norm.cdf(lower[0])), 0.0
            value = self._normal(lower, upper, corr, control)
        elif not np.any(delta):
            if m == 1:
                uni = stats.t(df)
                return float(uni.cdf(upper[0]) - uni.cdf(lower[0])), 0.0
            value = self._central_t(lower, upper, corr, df, control)
        elif m == 1:
            uni = stats.nct(df, delta[0])
            return float(uni.cdf(upper[0]) - uni.cdf(lower[0])), 0.0
        else:
            value = self._noncentral_t(lower, upper, corr, df, delta, control)
        return self._check_value(value, control), float("nan")

    # -- integration routines -----------------------------------------------

    @staticmethod
    def _check_value(value: float, control: MVTControl) -> float:
        value = float(value)
        if not np.isfinite(value) or value < -control.abseps or value > 1.0 + control.abseps:
            raise IntegrationFailure(
                f"multivariate integration returned {value} (maxpts={control.maxpts})",
                stage="probability",
            )
        return min(max(value, 0.0), 1.0)

    @staticmethod
    def _normal(lower, upper, corr, control: MVTControl) -> float:
        m = len(upper)
        try:
            value = stats.multivariate_normal.cdf(
                upper,
                mean=np.zeros(m),
                cov=corr,
                maxpts=control.maxpts,
                abseps=control.abseps,
                releps=control.releps,
                lower_limit=lower,
            )
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise IntegrationFailure(
                f"multivariate normal integration failed: {exc}", stage="probability",
            ) from exc
        return float(value)

    @staticmethod
    def _central_t(lower, upper, corr, df: float, control: MVTControl) -> float:
        m = len(upper)
        try:
            value = stats.multivariate_t.cdf(
                upper,
                loc=np.zeros(m),
                shape=corr,
                df=df,
                maxpts=control.maxpts,
                lower_limit=lower,
                random_state=control.seed,
            )
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise IntegrationFailure(
                f"multivariate t integration failed: {exc}", stage="probability",
            ) from exc
        return float(value)

    def _noncentral_t(self, lower, upper, corr, df: float, delta, control: MVTControl) -> float:
        # P(lower <= (Z + delta) / s <= upper) = E_s[P(s*lower - delta <= Z <= s*upper - delta)]
        scale = stats.chi(df, scale=1.0 / np.sqrt(df))
        a, b = float(scale.ppf(_TAIL_MASS)), float(scale.isf(_TAIL_MASS))

        def integrand(s: float) -> float:
            lo = np.where(np.isinf(lower), lower, s * lower) - delta
            hi = np.where(np.isinf(upper), upper, s * upper) - delta
            return self._normal(lo, hi, corr, control) * float(scale.pdf(s))

        value, err = integrate.quad(
            integrand, a, b,
            epsabs=control.abseps, epsrel=max(control.releps, _MIN_RELEPS), limit=50,
        )
        logger.debug("non-central t probability %.6f (quad error %.2g, df=%g)", value, err, df)
        return float(value)

    def quantile(
        self,
        prob: float,
        corr: NDArray[np.floating],
        df: float,
        tail: str,
        control: MVTControl,
    ) -> tuple[float, float]:
        if tail not in _VALID_TAILS:
            raise InvalidArgument(f"tail must be one of {_VALID_TAILS}, got {tail!r}")
        if not (0.0 < prob < 1.0):
            raise InvalidArgument(f"prob must be in (0, 1), got {prob}")
        corr = np.asarray(corr, dtype=np.float64)
        if corr.shape[0] == 1:
            uni = _univariate(df)
            p = (1.0 + prob) / 2.0 if tail == "both.tails" else prob
            return float(uni.ppf(p)), 0.0
        q = equicoordinate_quantile(self, prob, corr, df, tail, control)
        logger.debug("equicoordinate quantile %.5f for prob %.4f (m=%d)", q, prob, corr.shape[0])
        return q, float("nan")
