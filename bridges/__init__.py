"""
bridges — guided projection solver for constrained form-finding.

Geometric constraints are written as quadratic forms on small reduced
vectors, soft objectives as linear energies, and the solver projects the
global vector of unknowns onto the constraint set one weighted
least-squares step at a time.
"""

import logging

from .errors import (
    BridgesError,
    ConfigurationError,
    DimensionMismatchError,
    NumericalDegeneracyError,
    OutOfRangeError,
    UnregisteredVariableError,
)
from .guided_projection import (
    Diagnostic,
    GuidedProjectionAlgorithm,
    IterationReport,
    SolveResult,
    SolverState,
)
from .kernel import (
    ConstraintKind,
    EnergyType,
    LinearisedConstraintType,
    QuadraticConstraintType,
    VariableReference,
    VariableSet,
)
from .settings import SolverSettings

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())
