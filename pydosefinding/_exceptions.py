"""Exception hierarchy shared by the fitting and testing engines.

Value-type problems subclass :class:`ValueError` so callers that only
catch ``ValueError`` keep working.  Nothing in the package retries or
substitutes a default result after one of these is raised.
"""

from __future__ import annotations

import numpy as np


class DoseFindingError(Exception):
    """Base class for all errors raised by pydosefinding."""


class InvalidArgument(DoseFindingError, ValueError):
    """Malformed input: shapes, lengths, option strings, contrast matrices."""


class UnsupportedConfiguration(InvalidArgument):
    """A valid option that cannot be combined with the requested model."""


class DomainError(DoseFindingError, ValueError):
    """Dose outside the support of a dose-response shape."""


class SingularMatrix(DoseFindingError, np.linalg.LinAlgError):
    """Rank-deficient design or covariance that is not positive definite."""


class FitFailure(DoseFindingError, RuntimeError):
    """The local optimiser did not converge.

    ``best_params`` and ``best_value`` hold the best nonlinear parameters
    and concentrated criterion seen before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        model: str | None = None,
        stage: str | None = None,
        best_params: np.ndarray | None = None,
        best_value: float | None = None,
    ) -> None:
        super().__init__(message)
        self.model = model
        self.stage = stage
        self.best_params = best_params
        self.best_value = best_value


class IntegrationFailure(DoseFindingError, RuntimeError):
    """The multivariate distribution service failed or did not converge."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage
