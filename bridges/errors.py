"""
Error taxonomy for the guided projection solver.

Configuration errors are programming mistakes (bad references, wrong
dimensions, registration after sealing) and are always raised immediately.
Numerical degeneracies are raised from inside constraint / energy types and
carry the identity of the offending term so the caller can locate it.

Convergence failure is *not* an exception — see ``SolveResult.converged``.
"""

from __future__ import annotations

from typing import Optional


class BridgesError(Exception):
    """Base class for every error raised by the package."""


class ConfigurationError(BridgesError, ValueError):
    """The problem was set up incorrectly."""


class OutOfRangeError(ConfigurationError, IndexError):
    """An index is outside its valid range, or the registry is sealed."""


class UnregisteredVariableError(ConfigurationError):
    """A variable reference points to a set this solver does not own."""


class DimensionMismatchError(ConfigurationError):
    """A reduced vector or a variable value has the wrong size."""


class NumericalDegeneracyError(BridgesError, ArithmeticError):
    """
    A local form could not be computed (zero direction, degenerate
    linearisation, non-finite values).

    ``source`` names the constraint / energy that failed, when known.
    """

    def __init__(self, message: str, source: Optional[str] = None):
        self.source = source
        if source:
            message = f"{message} ({source})"
        super().__init__(message)
