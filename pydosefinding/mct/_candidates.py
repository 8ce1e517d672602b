"""Candidate dose-response shapes for contrast construction and power.

A candidate set holds, for a fixed vector of doses, the mean response of
each guessed shape.  Shapes are given as ``{family: guesses}`` where the
guesses are the standardized nonlinear parameters: an ``ed50`` for
``emax``, ``(ed50, h)`` rows for ``sigEmax`` and so on.  Several guesses
per family yield several candidates.

Validates against: R DoseFinding::Mods(), DoseFinding::getResp()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import InvalidArgument
from pydosefinding.doseresponse import _models

_VALID_DIRECTIONS = ("increasing", "decreasing")


@dataclass(frozen=True)
class Mods:
    """A set of candidate dose-response shapes evaluated at ``doses``.

    ``resp`` has one column per candidate; every column starts at
    ``plac_eff`` and its largest absolute effect over placebo is
    ``|max_eff|``.
    """

    doses: NDArray[np.floating]
    resp: NDArray[np.floating]  # (n_doses, n_models)
    names: tuple[str, ...]
    families: tuple[str, ...]
    params: tuple[NDArray[np.floating] | None, ...]
    plac_eff: float
    max_eff: float
    direction: str
    off: float | None = None
    scal: float | None = None

    @property
    def n_models(self) -> int:
        return len(self.names)


def _guess_rows(family: str, guesses: Any) -> list[NDArray | None]:
    """Split the guesses for one family into one entry per candidate."""
    if family in ("linear", "linlog"):
        if guesses is not None:
            raise InvalidArgument(f"{family} candidate takes no parameters")
        return [None]
    arr = np.asarray(guesses, dtype=np.float64)
    if family in ("emax", "exponential", "quadratic"):
        return [np.array([v]) for v in np.atleast_1d(arr).ravel()]
    if family == "linInt":
        return list(np.atleast_2d(arr))
    # two nonlinear parameters per candidate
    arr = np.atleast_2d(arr)
    if arr.shape[1] != 2:
        raise InvalidArgument(f"{family} guesses need 2 values per candidate, got shape {arr.shape}")
    return list(arr)


def _shape(family: str, doses: NDArray, par: NDArray | None, off: float | None,
           scal: float | None) -> NDArray:
    if family == "linear":
        return doses.copy()
    if family == "linlog":
        return np.log(doses + off)
    if family == "quadratic":
        return _models.quadratic(doses, 0.0, 1.0, par[0])
    if family == "linInt":
        if len(par) != len(doses):
            raise InvalidArgument(
                f"linInt guess must have one value per dose ({len(doses)}), got {len(par)}"
            )
        return _models.lin_int(doses, par, doses)
    return _models.standardized_response(family, doses, par, scal)


def mods(
    doses: NDArray[np.floating],
    models: dict[str, Any],
    *,
    plac_eff: float = 0.0,
    max_eff: float | None = None,
    direction: str = "increasing",
    off: float | None = None,
    scal: float | None = None,
) -> Mods:
    """Build a candidate set.

    Parameters
    ----------
    doses : array
        Dose levels, including placebo (dose 0).
    models : dict
        ``{family: guesses}``.  ``linear`` and ``linlog`` take ``None``;
        ``emax`` (ed50), ``exponential`` (delta) and ``quadratic``
        (ratio ``b2/b1``) take a scalar or a vector of guesses;
        ``logistic`` (ed50, delta), ``sigEmax`` (ed50, h) and ``betaMod``
        (delta1, delta2) take a length-2 vector or a matrix of rows;
        ``linInt`` takes one response value per dose (or rows thereof).
    plac_eff : float
        Placebo response.
    max_eff : float or None
        Maximum effect over placebo within the dose range; defaults to
        ``1`` for ``direction='increasing'`` and ``-1`` otherwise.  Its
        sign must agree with ``direction``.
    direction : str
        ``'increasing'`` or ``'decreasing'``.
    off, scal : float or None
        Fixed constants of ``linlog`` (default ``0.01 * max(doses)``) and
        ``betaMod`` (default ``1.2 * max(doses)``).

    Returns
    -------
    Mods

    Examples
    --------
    >>> m = mods([0, 1, 2, 3, 4], {"emax": [0.5, 2.0], "linear": None})
    >>> m.names
    ('emax1', 'emax2', 'linear')
    """
    doses = np.asarray(doses, dtype=np.float64)
    if doses.ndim != 1 or len(doses) < 2:
        raise InvalidArgument("doses must be a 1-D array with at least 2 entries")
    if np.any(np.diff(doses) <= 0) or doses[0] != 0:
        raise InvalidArgument("doses must be strictly increasing and start at placebo (0)")
    if direction not in _VALID_DIRECTIONS:
        raise InvalidArgument(f"direction must be one of {_VALID_DIRECTIONS}, got {direction!r}")
    if not models:
        raise InvalidArgument("need at least one candidate model")
    if max_eff is None:
        max_eff = 1.0 if direction == "increasing" else -1.0
    if max_eff == 0:
        raise InvalidArgument("max_eff must be non-zero")
    if (max_eff > 0) != (direction == "increasing"):
        raise InvalidArgument(
            f"max_eff={max_eff} contradicts direction='{direction}'; "
            "use a positive value for increasing and a negative one for decreasing"
        )

    max_dose = float(doses[-1])
    off = 0.01 * max_dose if off is None else float(off)
    scal = 1.2 * max_dose if scal is None else float(scal)

    columns, names, families, params = [], [], [], []
    for family, guesses in models.items():
        _models.check_model(family)
        rows = _guess_rows(family, guesses)
        for i, par in enumerate(rows):
            f0 = _shape(family, doses, par, off, scal)
            effect = f0 - f0[0]
            peak = effect[np.argmax(np.abs(effect))]
            if peak == 0:
                raise InvalidArgument(f"candidate {family} with parameters {par} is flat")
            columns.append(plac_eff + max_eff * effect / peak)
            names.append(family if len(rows) == 1 else f"{family}{i + 1}")
            families.append(family)
            params.append(par)

    return Mods(
        doses=doses,
        resp=np.column_stack(columns),
        names=tuple(names),
        families=tuple(families),
        params=tuple(params),
        plac_eff=float(plac_eff),
        max_eff=float(max_eff),
        direction=direction,
        off=off,
        scal=scal,
    )
