"""Deterministic search grids over the nonlinear-parameter bounds.

One nonlinear parameter: equally spaced midpoints of the bound interval.
Two nonlinear parameters: a generalized lattice point (glp) set built from
consecutive Fibonacci numbers, which covers the rectangle more evenly than
a tensor grid of the same size and needs no random numbers.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import InvalidArgument

# admissible glp set sizes (Fibonacci numbers from 3)
_GLP_SIZES = (
    3, 5, 8, 13, 21, 34, 55, 89, 144, 233, 377, 610, 987, 1597, 2584,
    4181, 6765, 10946, 17711, 28657, 46368, 75025,
)
MAX_GLP_SIZE = _GLP_SIZES[-1]


def get_grid(
    n_grid: int,
    bounds: NDArray[np.floating],
    dim: int,
) -> NDArray[np.floating]:
    """Grid nodes for the concentrated grid search.

    Parameters
    ----------
    n_grid : int
        Requested number of nodes.  In two dimensions the smallest glp size
        ``>= n_grid`` is used (after clamping ``n_grid`` to ``[5, 75025]``).
    bounds : array
        ``(lower, upper)`` for ``dim = 1``; ``(2, 2)`` array with one
        ``(lower, upper)`` row per parameter for ``dim = 2``.
    dim : int
        Number of nonlinear parameters, 1 or 2.

    Returns
    -------
    NDArray
        Nodes of shape ``(N, dim)``.

    Validates against: R DoseFinding:::getGrid()
    """
    if n_grid < 1:
        raise InvalidArgument(f"grid size must be >= 1, got {n_grid}")
    bounds = np.asarray(bounds, dtype=np.float64)

    if dim == 1:
        lo, hi = bounds.reshape(-1)[:2]
        if lo > hi:
            raise InvalidArgument(f"lower bound {lo} exceeds upper bound {hi}")
        k = np.arange(1, n_grid + 1)
        nodes = (2 * k - 1) / (2 * n_grid)
        return (nodes * (hi - lo) + lo)[:, None]

    if dim != 2:
        raise InvalidArgument(f"dim must be 1 or 2, got {dim}")
    if bounds.shape != (2, 2):
        raise InvalidArgument(f"bounds must have shape (2, 2) for dim=2, got {bounds.shape}")
    if np.any(bounds[:, 0] > bounds[:, 1]):
        raise InvalidArgument("lower bounds must not exceed upper bounds")

    n_grid = min(max(n_grid, 5), MAX_GLP_SIZE)
    ind = next(i for i, size in enumerate(_GLP_SIZES) if size >= n_grid)
    N = _GLP_SIZES[ind]
    k = np.arange(1, N + 1)
    mat = np.column_stack([
        (k - 0.5) / N,
        np.mod((_GLP_SIZES[ind - 1] * k - 0.5) / N, 1.0),
    ])
    span = bounds[:, 1] - bounds[:, 0]
    return mat * span + bounds[:, 0]
