"""Target dose and effective dose estimation from a fitted model.

The target dose (TD) is the smallest dose reaching a clinically relevant
effect ``delta`` over placebo; the effective dose (ED_p) is the smallest
dose reaching the fraction ``p`` of the maximum effect within the observed
dose range.  Both are located on a fine dose grid and refined by Brent's
method on the bracketing interval.

Validates against: R DoseFinding::TD(), DoseFinding::ED()
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq

from pydosefinding._exceptions import InvalidArgument
from pydosefinding.doseresponse._common import DRMod

_VALID_DIRECTIONS = ("increasing", "decreasing")


@dataclass(frozen=True)
class TargetDoseResult:
    """Estimated target or effective dose."""

    estimate: float  # nan if the target is not reached
    target: float  # effect on the effect-curve scale
    kind: str  # 'TD' or 'ED'
    model: str
    direction: str


def _sign(direction: str) -> float:
    if direction not in _VALID_DIRECTIONS:
        raise InvalidArgument(f"direction must be one of {_VALID_DIRECTIONS}, got {direction!r}")
    return 1.0 if direction == "increasing" else -1.0


def _first_crossing(fit: DRMod, sign: float, target: float, n_grid: int) -> float:
    grid = np.linspace(0.0, float(np.max(fit.dose)), n_grid)
    eff = sign * fit.predict(grid, pred_type="effect-curve")
    hit = np.nonzero(eff >= target)[0]
    if len(hit) == 0:
        return float("nan")
    i = int(hit[0])
    if i == 0 or eff[i] == target:
        return float(grid[i])

    def f(x: float) -> float:
        return float(sign * fit.predict(np.array([x]), pred_type="effect-curve")[0]) - target

    return float(brentq(f, grid[i - 1], grid[i], xtol=1e-10))


def target_dose(
    fit: DRMod,
    delta: float,
    *,
    direction: str = "increasing",
    n_grid: int = 1001,
) -> TargetDoseResult:
    """Smallest dose with an effect of at least *delta* over placebo.

    Parameters
    ----------
    fit : DRMod
        A fitted model.
    delta : float
        Clinically relevant effect (> 0).
    direction : str
        ``'increasing'`` (benefit = larger response) or ``'decreasing'``.
    n_grid : int
        Number of grid points over ``[0, max dose]`` for the initial search.

    Returns
    -------
    TargetDoseResult
        ``estimate`` is ``nan`` if the effect is not reached within the
        observed dose range.
    """
    if not delta > 0:
        raise InvalidArgument(f"delta must be positive, got {delta}")
    sign = _sign(direction)
    est = _first_crossing(fit, sign, delta, n_grid)
    return TargetDoseResult(
        estimate=est, target=float(delta), kind="TD", model=fit.model, direction=direction,
    )


def effective_dose(
    fit: DRMod,
    p: float,
    *,
    direction: str = "increasing",
    n_grid: int = 1001,
) -> TargetDoseResult:
    """Smallest dose achieving the fraction *p* of the maximum effect.

    The maximum effect is taken over the observed dose range, so ED_p is
    always defined when the curve has a positive effect in *direction*.
    """
    if not (0.0 < p < 1.0):
        raise InvalidArgument(f"p must be in (0, 1), got {p}")
    sign = _sign(direction)
    grid = np.linspace(0.0, float(np.max(fit.dose)), n_grid)
    max_eff = float(np.max(sign * fit.predict(grid, pred_type="effect-curve")))
    if max_eff <= 0:
        return TargetDoseResult(
            estimate=float("nan"), target=float("nan"), kind="ED",
            model=fit.model, direction=direction,
        )
    target = p * max_eff
    est = _first_crossing(fit, sign, target, n_grid)
    return TargetDoseResult(
        estimate=est, target=target, kind="ED", model=fit.model, direction=direction,
    )
