"""Fitting a set of candidate dose-response models to one data set.

Each candidate is fitted independently with :func:`fit_mod`; nothing is
shared between fits, so the loop could be distributed over workers without
changing results.  The candidate with the smallest generalized AIC is
reported as the selected model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import InvalidArgument
from pydosefinding.doseresponse._common import DRMod
from pydosefinding.doseresponse._fit import fit_mod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateFitResult:
    """Fits of several candidate models to the same data."""

    fits: dict[str, DRMod]
    gaic: dict[str, float]
    selected: str

    @property
    def best(self) -> DRMod:
        """The fit with the smallest generalized AIC."""
        return self.fits[self.selected]

    def summary(self) -> str:
        lines = ["Candidate model fits", "", f"  {'model':>12s}  {'gAIC':>12s}"]
        for name, value in sorted(self.gaic.items(), key=lambda kv: kv[1]):
            mark = " *" if name == self.selected else ""
            lines.append(f"  {name:>12s}  {value:>12.4f}{mark}")
        return "\n".join(lines)


def fit_candidates(
    dose: NDArray[np.floating],
    resp: NDArray[np.floating],
    models: list[str] | tuple[str, ...],
    *,
    bounds: dict[str, NDArray[np.floating]] | None = None,
    k: float = 2.0,
    **fit_kwargs: Any,
) -> CandidateFitResult:
    """Fit every model in *models* and select by generalized AIC.

    Parameters
    ----------
    dose, resp : array
        Data, as for :func:`fit_mod`.
    models : sequence of str
        Model names; each may appear once.
    bounds : dict or None
        Per-model bounds for the nonlinear parameters.
    k : float
        Penalty per parameter in the generalized AIC (2 = AIC).
    **fit_kwargs
        Passed on to :func:`fit_mod` for every model (``type``, ``S``,
        ``covariates``, ``placebo_adjusted``, ``control``, ...).

    Returns
    -------
    CandidateFitResult

    Any failing fit propagates its exception; there is no partial result.
    """
    if len(models) == 0:
        raise InvalidArgument("need at least one candidate model")
    if len(set(models)) != len(models):
        raise InvalidArgument("candidate models must be unique")
    if "start" in fit_kwargs:
        raise InvalidArgument("start values cannot be shared between candidate models")
    bounds = bounds or {}

    fits: dict[str, DRMod] = {}
    for model in models:
        fits[model] = fit_mod(dose, resp, model=model, bounds=bounds.get(model), **fit_kwargs)

    gaic = {name: fit.gaic(k=k) for name, fit in fits.items()}
    selected = min(gaic, key=gaic.get)
    logger.debug("selected %s among %s", selected, list(models))
    return CandidateFitResult(fits=fits, gaic=gaic, selected=selected)
