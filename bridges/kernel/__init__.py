"""
Solver kernel: variable layout, constraint/energy plumbing, assembly and
the least-squares backend.  Everything here is independent of the
concrete constraint catalog.
"""

from .assembler import AssembledSystem, Assembler, TripletBuilder, accumulate_hi, constraint_merit
from .constraint import Constraint, ConstraintSet
from .constraint_types import (
    ConstraintKind,
    LinearisedConstraintType,
    LocalQuadraticForm,
    QuadraticConstraintType,
)
from .converter import Converter, GlobalLinearForm, GlobalQuadraticForm
from .energy import Energy, EnergySet
from .energy_types import EnergyType, LocalLinearForm
from .qr_solver import QRFactorization, LeastSquaresSolver
from .variable_set import GlobalVector, VariableReference, VariableRegistry, VariableSet
