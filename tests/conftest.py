"""Shared fixtures."""

import numpy as np
import pytest
from scipy import stats


class IndependentMVT:
    """Exact joint distribution of independent statistics.

    Only valid for an identity correlation matrix, where the rectangle
    probability is a product of univariate probabilities and the
    equicoordinate quantile has a closed form.  Non-central probabilities
    are exact for ``df = inf``.
    """

    def _check(self, corr):
        corr = np.asarray(corr, dtype=float)
        assert np.allclose(corr, np.eye(corr.shape[0])), "statistics are not independent"

    def _uni(self, df):
        return stats.norm if np.isinf(df) else stats.t(df)

    def probability(self, lower, upper, corr, df, control, delta=None):
        self._check(corr)
        lower, upper = np.asarray(lower, dtype=float), np.asarray(upper, dtype=float)
        if delta is None or not np.any(delta):
            uni = self._uni(df)
            return float(np.prod(uni.cdf(upper) - uni.cdf(lower))), 0.0
        if np.isinf(df):
            return float(np.prod(stats.norm.cdf(upper - delta) - stats.norm.cdf(lower - delta))), 0.0
        uni = stats.nct(df, np.asarray(delta, dtype=float))
        return float(np.prod(uni.cdf(upper) - uni.cdf(lower))), 0.0

    def quantile(self, prob, corr, df, tail, control):
        self._check(corr)
        m = np.asarray(corr).shape[0]
        per = prob ** (1.0 / m)
        if tail == "both.tails":
            per = (1.0 + per) / 2.0
        return float(self._uni(df).ppf(per)), 0.0


class RecordingMVT(IndependentMVT):
    """:class:`IndependentMVT` that keeps the ``control`` of every call."""

    def __init__(self):
        self.probability_controls = []
        self.quantile_controls = []

    def probability(self, lower, upper, corr, df, control, delta=None):
        self.probability_controls.append(control)
        return super().probability(lower, upper, corr, df, control, delta=delta)

    def quantile(self, prob, corr, df, tail, control):
        self.quantile_controls.append(control)
        return super().quantile(prob, corr, df, tail, control)


@pytest.fixture
def independent_mvt():
    return IndependentMVT()


@pytest.fixture
def recording_mvt():
    return RecordingMVT()


@pytest.fixture
def orthogonal_contrasts():
    """Two uncorrelated contrasts for four doses under ``S = c * I``."""
    return np.array([
        [-1.0, -1.0],
        [1.0, -1.0],
        [-1.0, 1.0],
        [1.0, 1.0],
    ]) / 2.0
