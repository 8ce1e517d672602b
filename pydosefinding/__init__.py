"""
PyDoseFinding: model-based analysis of dose-finding studies for Python.

Implements the two statistical engines of MCP-Mod: fitting parametric
dose-response models to data observed at a few dose levels, and testing
for a dose-response signal with a maximum contrast test built from several
candidate shapes at once.

Usage:
    from pydosefinding import doseresponse, mct
"""

__version__ = "0.1.0"
__author__ = "Hai-Shuo"
__email__ = "contact@sgcx.org"

from pydosefinding._exceptions import (
    DoseFindingError,
    InvalidArgument,
    UnsupportedConfiguration,
    DomainError,
    SingularMatrix,
    FitFailure,
    IntegrationFailure,
)
from pydosefinding import doseresponse
from pydosefinding import mct

__all__ = [
    "__version__",
    "doseresponse",
    "mct",
    "DoseFindingError",
    "InvalidArgument",
    "UnsupportedConfiguration",
    "DomainError",
    "SingularMatrix",
    "FitFailure",
    "IntegrationFailure",
]
