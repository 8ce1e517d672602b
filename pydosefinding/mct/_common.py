"""Shared control and result types for multiple contrast tests."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pydosefinding._exceptions import InvalidArgument

_VALID_ALTERNATIVES = ("one.sided", "two.sided")


def _check_alternative(alternative: str) -> None:
    if alternative not in _VALID_ALTERNATIVES:
        raise InvalidArgument(
            f"alternative must be one of {_VALID_ALTERNATIVES}, got {alternative!r}"
        )


def _check_alpha(alpha: float) -> None:
    if not (0.0 < alpha < 1.0):
        raise InvalidArgument(f"alpha must be in (0, 1), got {alpha}")


@dataclass(frozen=True)
class MVTControl:
    """Settings passed to the multivariate normal / t integration.

    ``maxpts`` caps the number of integrand evaluations, ``abseps`` and
    ``releps`` are the absolute and relative error tolerances, ``interval``
    optionally fixes the search interval for quantile inversion and
    ``seed`` makes the quasi-Monte-Carlo integration reproducible.
    """

    maxpts: int = 25000
    abseps: float = 0.001
    releps: float = 0.0
    interval: tuple[float, float] | None = None
    seed: int | None = 12345

    def __post_init__(self) -> None:
        if self.maxpts < 1:
            raise InvalidArgument(f"maxpts must be >= 1, got {self.maxpts}")
        if self.abseps < 0 or self.releps < 0:
            raise InvalidArgument("abseps and releps must be non-negative")
        if self.interval is not None and not self.interval[0] < self.interval[1]:
            raise InvalidArgument(f"interval must be increasing, got {self.interval}")


@dataclass(frozen=True)
class ContrastMatrix:
    """Optimal contrasts, one column per candidate shape.

    Each column sums to zero and has unit Euclidean norm.  ``cor_mat`` is
    the correlation of the contrast statistics under the covariance the
    contrasts were built with.
    """

    cont_mat: NDArray[np.floating]  # (n_doses, n_models)
    names: tuple[str, ...]
    doses: NDArray[np.floating]
    cor_mat: NDArray[np.floating]

    def summary(self) -> str:
        lines = ["Optimal contrasts", ""]
        header = "  " + f"{'dose':>8s}" + "".join(f"{n:>12s}" for n in self.names)
        lines.append(header)
        for d, row in zip(self.doses, self.cont_mat):
            lines.append("  " + f"{d:>8g}" + "".join(f"{v:>12.4f}" for v in row))
        return "\n".join(lines)


@dataclass(frozen=True)
class MCTResult:
    """Result of a multiple contrast test.

    ``p_values`` are adjusted for multiplicity through the joint
    distribution of all contrast statistics; the p-value of the test as a
    whole is the one belonging to the maximum statistic.
    """

    t_stats: NDArray[np.floating]
    p_values: NDArray[np.floating]
    names: tuple[str, ...]
    cont_mat: NDArray[np.floating]
    cor_mat: NDArray[np.floating]
    alternative: str
    alpha: float
    df: float
    crit_value: float | None = None

    @property
    def max_t(self) -> float:
        """Test statistic of the global test (``max t`` or ``max |t|``)."""
        if self.alternative == "two.sided":
            return float(np.max(np.abs(self.t_stats)))
        return float(np.max(self.t_stats))

    @property
    def p_value(self) -> float:
        """Multiplicity-adjusted p-value of the global test."""
        return float(np.min(self.p_values))

    @property
    def rejected(self) -> bool:
        """Whether the null hypothesis of a flat dose-response is rejected."""
        if self.crit_value is not None:
            return self.max_t > self.crit_value
        return self.p_value < self.alpha

    def summary(self) -> str:
        """Human-readable summary, similar to R DoseFinding's print.MCTtest()."""
        lines = [
            "Multiple Contrast Test",
            "",
            f"  {'model':>12s}  {'t-Stat':>10s}  {'adj-p':>10s}",
        ]
        order = np.argsort(-self.t_stats if self.alternative == "one.sided" else -np.abs(self.t_stats))
        for i in order:
            lines.append(f"  {self.names[i]:>12s}  {self.t_stats[i]:>10.4f}  {self.p_values[i]:>10.4f}")
        lines.append("")
        lines.append(f"  alternative = {self.alternative}")
        lines.append(f"  df          = {self.df}")
        if self.crit_value is not None:
            lines.append(f"  Critical value: {self.crit_value:.4f} (alpha = {self.alpha})")
        return "\n".join(lines)


@dataclass(frozen=True)
class MCTPowerResult:
    """Power of the multiple contrast test under alternative shapes."""

    power: dict[str, float]
    crit_value: float
    df: float
    alpha: float
    alternative: str

    def summary(self) -> str:
        lines = ["Power of the multiple contrast test", ""]
        for name, value in self.power.items():
            lines.append(f"  {name:>12s} = {value:.6f}")
        lines.append("")
        lines.append(f"  critical value = {self.crit_value:.4f}")
        lines.append(f"          alpha = {self.alpha}")
        lines.append(f"    alternative = {self.alternative}")
        return "\n".join(lines)


@dataclass(frozen=True)
class SampleSizeResult:
    """Smallest total sample size reaching a target power."""

    n_total: int
    n_per_group: NDArray[np.floating]
    power: float
    target_power: float
    power_type: str
