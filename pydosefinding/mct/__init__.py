"""
Multiple contrast tests for dose-finding studies (the MCP step of MCP-Mod).

Builds power-optimal contrasts from a set of candidate dose-response
shapes, tests for a non-flat dose-response relationship with the maximum
contrast statistic, and computes critical values, power and sample sizes
from the joint multivariate t / normal distribution of the statistics.

Validates against: R package DoseFinding.
"""

from pydosefinding.mct._common import (
    MVTControl,
    ContrastMatrix,
    MCTResult,
    MCTPowerResult,
    SampleSizeResult,
)
from pydosefinding.mct._candidates import Mods, mods
from pydosefinding.mct._contrasts import opt_contr, check_contrasts
from pydosefinding.mct._mvt import MultivariateDistribution, ScipyMVT
from pydosefinding.mct._test import mct_test, mct_pvalues, critical_value
from pydosefinding.mct._power import power_mct, sample_size_mct

__all__ = [
    "MVTControl",
    "ContrastMatrix",
    "MCTResult",
    "MCTPowerResult",
    "SampleSizeResult",
    "Mods",
    "mods",
    "opt_contr",
    "check_contrasts",
    "MultivariateDistribution",
    "ScipyMVT",
    "mct_test",
    "mct_pvalues",
    "critical_value",
    "power_mct",
    "sample_size_mct",
]
