"""
Guided Projection solver — pure-Python, scipy-based.

Implements the guided projection scheme (Tang et al., "Form-finding with
Polyhedral Meshes Made Simple", https://doi.org/10.1145/2601097.2601213):
hard quadratic constraints and soft linear energies are linearised about
the current iterate and one weighted least-squares system is solved per
iteration.

Architecture
------------
* Unknowns live in variable sets registered on the solver; together they
  form the global vector X (see :mod:`bridges.kernel.variable_set`).
* Constraints and energies are grouped in sets sharing one type strategy
  and are globalised into X's index space.
* Each iteration: globalise → assemble ``A x = b`` → QR least squares →
  replace X → evaluate the merit at the new X.

Usage::

    gpa = GuidedProjectionAlgorithm(epsilon=1e-3)
    points = gpa.register_variable_set(2, 3, values=[[0, 0, 0], [1, 0, 0]])
    lengths = gpa.register_variable_set(1, 1, values=[[2.0]])
    gpa.add_constraint(CoherentLength(), [points[0], points[1], lengths[0]])
    result = gpa.iterate(max_iterations=50, tolerance=1e-12)
    l, = gpa.get_variable_value(lengths, 0)
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.sparse as sp

from .errors import ConfigurationError, NumericalDegeneracyError
from .kernel.assembler import Assembler, AssembledSystem, accumulate_hi, constraint_merit
from .kernel.constraint import Constraint, ConstraintSet, ConstraintTypeLike
from .kernel.energy import Energy, EnergySet
from .kernel.energy_types import EnergyType
from .kernel.qr_solver import LeastSquaresSolver, QRFactorization
from .kernel.variable_set import GlobalVector, VariableRegistry, VariableSet
from .settings import SolverSettings

logger = logging.getLogger(__name__)


class SolverState(Enum):
    IDLE = auto()
    ASSEMBLING = auto()
    SOLVING = auto()
    CONVERGED = auto()
    MAX_ITERATIONS_REACHED = auto()
    DIVERGED = auto()
    STOPPED = auto()


@dataclass
class Diagnostic:
    """Non-fatal finding reported alongside a solve."""
    kind: str
    message: str
    source: Optional[str] = None
    iteration: Optional[int] = None


@dataclass
class IterationReport:
    iteration: int
    merit: float
    step_norm: float
    n_rows: int
    rank: Optional[int]
    backend: str


@dataclass
class SolveResult:
    """Outcome of :meth:`GuidedProjectionAlgorithm.iterate`."""
    x: np.ndarray
    converged: bool
    iterations: int
    merit: float
    state: SolverState
    history: List[IterationReport] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class GuidedProjectionAlgorithm:
    """
    Orchestrates variable, constraint and energy sets and runs the
    assemble → solve → update → converge loop.

    Variable sets must all be registered before the first solve; the
    first call to :meth:`initialise` (implicit in :meth:`iterate` and
    :meth:`do_one_iteration`) seals the layout.  Constraints and energies
    may still be added afterwards.
    """

    def __init__(
        self,
        epsilon: Optional[float] = None,
        max_iterations: Optional[int] = None,
        settings: Optional[SolverSettings] = None,
    ):
        settings = settings or SolverSettings()
        changes = {}
        if epsilon is not None:
            changes["epsilon"] = epsilon
        if max_iterations is not None:
            changes["max_iterations"] = max_iterations
        self._settings = settings.replace(**changes) if changes else settings

        self._registry = VariableRegistry()
        self._constraint_sets: List[ConstraintSet] = []
        self._energy_sets: List[EnergySet] = []
        self._sets_by_type: Dict[int, Union[ConstraintSet, EnergySet]] = {}

        self._assembler = Assembler(self._settings.epsilon)
        self._qr = LeastSquaresSolver.from_settings(self._settings)

        self._state = SolverState.IDLE
        self._iteration_count = 0
        self._stop_requested = False
        self._diagnostics: List[Diagnostic] = []

    # -- State queries -------------------------------------------------------

    @property
    def settings(self) -> SolverSettings:
        return self._settings

    @property
    def state(self) -> SolverState:
        return self._state

    @property
    def iteration_count(self) -> int:
        """Total iterations executed since creation."""
        return self._iteration_count

    @property
    def initialised(self) -> bool:
        return self._registry.sealed

    @property
    def total_dof(self) -> int:
        return self._registry.total_dof

    @property
    def x(self) -> np.ndarray:
        """Copy of the global vector (initial values before sealing)."""
        if self._registry.sealed:
            return self._registry.vector.copy()
        values = [self._registry.get_value(s[i]) for s in self._registry.sets for i in range(s.count)]
        return np.concatenate(values) if values else np.zeros(0)

    @property
    def variable_sets(self) -> List[VariableSet]:
        return self._registry.sets

    @property
    def constraint_sets(self) -> List[ConstraintSet]:
        return list(self._constraint_sets)

    @property
    def energy_sets(self) -> List[EnergySet]:
        return list(self._energy_sets)

    @property
    def constraint_count(self) -> int:
        return sum(len(s) for s in self._constraint_sets)

    @property
    def energy_count(self) -> int:
        return sum(len(s) for s in self._energy_sets)

    # -- Variables -------------------------------------------------------------

    def register_variable_set(self, count: int, dimension: int, values=None) -> VariableSet:
        """
        Reserve *count* variables of *dimension* components.

        Raises:
            OutOfRangeError: after the solver has been initialised.
        """
        variable_set = self._registry.register(count, dimension, values)
        logger.debug("Registered %r", variable_set)
        return variable_set

    def get_variable_value(self, variable_set: VariableSet, index: int) -> np.ndarray:
        """Current components of the *index*-th variable of *variable_set*."""
        reference, = self._registry.resolve([(variable_set, index)])
        return self._registry.get_value(reference)

    def set_variable_value(self, variable_set: VariableSet, index: int, values: Sequence[float]):
        """Overwrite a variable (initial guess, or between iterations)."""
        reference, = self._registry.resolve([(variable_set, index)])
        self._registry.set_value(reference, values)

    def locate(self, global_index: int) -> Tuple[VariableSet, int, int]:
        """``(variable set, instance, component)`` of a global index."""
        return self._registry.locate(global_index)

    # -- Constraints and energies ------------------------------------------------

    def add_constraint_set(self, constraint_type: ConstraintTypeLike) -> ConstraintSet:
        """Create a new, empty set sharing *constraint_type*."""
        constraint_set = ConstraintSet(constraint_type, len(self._constraint_sets), self._registry)
        self._constraint_sets.append(constraint_set)
        self._sets_by_type.setdefault(id(constraint_type), constraint_set)
        return constraint_set

    def add_constraint(
        self,
        constraint_type: ConstraintTypeLike,
        variables: Sequence,
        ci: Optional[float] = None,
        weight: float = 1.0,
    ) -> Constraint:
        """
        Add one constraint, reusing the set already holding *constraint_type*
        (same instance) or creating it.
        """
        constraint_set = self._sets_by_type.get(id(constraint_type))
        if not isinstance(constraint_set, ConstraintSet) or constraint_set.constraint_type is not constraint_type:
            constraint_set = self.add_constraint_set(constraint_type)
            self._sets_by_type[id(constraint_type)] = constraint_set
        return constraint_set.add_constraint(variables, ci=ci, weight=weight)

    def add_energy_set(self, energy_type: EnergyType) -> EnergySet:
        energy_set = EnergySet(energy_type, len(self._energy_sets), self._registry)
        self._energy_sets.append(energy_set)
        self._sets_by_type.setdefault(id(energy_type), energy_set)
        return energy_set

    def add_energy(self, energy_type: EnergyType, variables: Sequence, weight: float = 1.0) -> Energy:
        """Add one energy, reusing the set already holding *energy_type*."""
        energy_set = self._sets_by_type.get(id(energy_type))
        if not isinstance(energy_set, EnergySet) or energy_set.energy_type is not energy_type:
            energy_set = self.add_energy_set(energy_type)
            self._sets_by_type[id(energy_type)] = energy_set
        return energy_set.add_energy(variables, weight=weight)

    # -- Solving -------------------------------------------------------------------

    def initialise(self) -> GlobalVector:
        """Seal the variable layout, build X and globalise every term.  Idempotent."""
        first_time = not self._registry.sealed
        x = self._registry.seal()
        if first_time:
            logger.info(
                "Initialised solver: %d unknowns in %d variable sets, %d constraints, %d energies",
                x.size, len(self._registry.sets), self.constraint_count, self.energy_count,
            )
        self._globalise(x)
        return x

    def request_stop(self):
        """Ask a running :meth:`iterate` to stop after the current iteration."""
        self._stop_requested = True

    def merit(self) -> float:
        """Sum of squared constraint values at the current X."""
        x = self.initialise()
        return constraint_merit(self._constraint_sets, x)

    def constraint_residuals(self) -> List[Tuple[str, float]]:
        """``(source, value)`` for every constraint at the current X."""
        x = self.initialise()
        return [(c.source, c.residual(x)) for s in self._constraint_sets for c in s]

    def energy_residuals(self) -> List[Tuple[str, float]]:
        x = self.initialise()
        return [(e.source, e.residual(x)) for s in self._energy_sets for e in s]

    def constraint_hessian(self, weighted: bool = True) -> sp.csr_matrix:
        """Sum of the globalised Hi of all constraints at the current X."""
        x = self.initialise()
        return accumulate_hi(self._constraint_sets, x.size, weighted=weighted)

    def assemble(self) -> AssembledSystem:
        """The least-squares system the next iteration would solve."""
        x = self.initialise()
        return self._assembler.assemble(self._constraint_sets, self._energy_sets, x)

    def do_one_iteration(self) -> IterationReport:
        """
        Run exactly one assemble → solve → update step.

        Local computation errors (e.g. a degenerate linearisation) propagate
        and leave X at the last accepted iterate.
        """
        x = self.initialise()
        iteration = self._iteration_count + 1

        self._state = SolverState.ASSEMBLING
        system = self._assembler.assemble(self._constraint_sets, self._energy_sets, x)

        self._state = SolverState.SOLVING
        handle = self._qr.factor(system.matrix)
        x_new = self._qr.solve(handle, system.rhs)
        self._check_rank(handle, iteration)

        old = x.copy()
        if not np.all(np.isfinite(x_new)):
            self._state = SolverState.DIVERGED
            self._iteration_count = iteration
            logger.warning("Iteration %d produced a non-finite iterate; X left unchanged", iteration)
            return IterationReport(iteration, math.inf, math.inf, system.shape[0], handle.rank, handle.backend)

        x.replace(x_new)
        try:
            self._globalise(x)
        except NumericalDegeneracyError:
            # Roll back to the last iterate every form could be computed at
            x.replace(old)
            self._globalise(x)
            self._state = SolverState.IDLE
            raise
        self._iteration_count = iteration
        merit = constraint_merit(self._constraint_sets, x)
        step = float(np.max(np.abs(x_new - old))) if x.size else 0.0
        self._state = SolverState.IDLE

        logger.debug(
            "Iteration %d: merit=%.3e step=%.3e rows=%d rank=%s backend=%s",
            iteration, merit, step, system.shape[0], handle.rank, handle.backend,
        )
        return IterationReport(iteration, merit, step, system.shape[0], handle.rank, handle.backend)

    def iterate(
        self,
        max_iterations: Optional[int] = None,
        tolerance: Optional[float] = None,
        callback: Optional[Callable[[IterationReport], Optional[bool]]] = None,
    ) -> SolveResult:
        """
        Iterate until convergence, the iteration cap, or a stop request.

        Args:
            max_iterations: Overrides ``settings.max_iterations`` for this call.
            tolerance: Overrides ``settings.tolerance`` for this call.
            callback: Called after every iteration with its report; returning
                      ``True`` stops the run.

        Returns:
            A :class:`SolveResult`.  Reaching the cap is not an error:
            ``converged`` is ``False`` and X holds the last iterate.
        """
        max_iterations = self._settings.max_iterations if max_iterations is None else int(max_iterations)
        tolerance = self._settings.tolerance if tolerance is None else float(tolerance)
        if max_iterations < 0:
            raise ConfigurationError(f"max_iterations must be >= 0, got {max_iterations}")
        if not tolerance > 0.0:
            raise ConfigurationError(f"tolerance must be > 0, got {tolerance}")

        x = self.initialise()
        self._stop_requested = False
        self._diagnostics = []
        history: List[IterationReport] = []
        has_energies = self.energy_count > 0

        merit = constraint_merit(self._constraint_sets, x)
        logger.info(
            "Guided projection: %d unknowns, %d constraints, %d energies, initial merit %.3e",
            x.size, self.constraint_count, self.energy_count, merit,
        )

        if self.constraint_count == 0 and not has_energies:
            return self._finish(SolverState.CONVERGED, 0, merit, history)
        if not has_energies and merit <= tolerance:
            return self._finish(SolverState.CONVERGED, 0, merit, history)

        iterations = 0
        state = SolverState.MAX_ITERATIONS_REACHED
        while iterations < max_iterations:
            report = self.do_one_iteration()
            iterations += 1
            history.append(report)
            merit = report.merit

            if not math.isfinite(merit):
                state = SolverState.DIVERGED
                break
            if merit <= tolerance and (not has_energies or report.step_norm <= self._settings.step_tolerance):
                state = SolverState.CONVERGED
                break
            if callback is not None and callback(report):
                self._stop_requested = True
            if self._stop_requested:
                state = SolverState.STOPPED
                break

        if state is SolverState.MAX_ITERATIONS_REACHED:
            logger.warning(
                "Guided projection did not converge in %d iterations (merit %.3e > %.3e)",
                iterations, merit, tolerance,
            )
            self._diagnostics.append(Diagnostic(
                "max_iterations",
                f"Iteration cap of {max_iterations} reached with merit {merit:.3e}",
                iteration=iterations,
            ))
        elif state is SolverState.DIVERGED:
            self._diagnostics.append(Diagnostic(
                "diverged", "The iterate or its merit became non-finite", iteration=iterations,
            ))
        return self._finish(state, iterations, merit, history)

    # -- Internals -------------------------------------------------------------------

    def _globalise(self, x: GlobalVector):
        """Bring every set up to date with *x*, across threads when configured."""
        sets = list(self._constraint_sets) + list(self._energy_sets)
        workers = min(self._settings.workers, len(sets))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                # list() re-raises the first error of any worker
                list(pool.map(lambda s: s.compute_and_globalise(x), sets))
        else:
            for s in sets:
                s.compute_and_globalise(x)

    def _check_rank(self, handle: QRFactorization, iteration: int):
        """Record a diagnostic when the update of this iteration is not unique."""
        n = handle.shape[1]
        if handle.rank_deficient:
            if handle.rank is not None:
                detail = f"rank {handle.rank}"
            else:
                detail = f"structural rank {handle.structural_rank}"
            message = (
                f"Assembled system is rank deficient ({detail} for {n} unknowns); "
                "the problem is under-constrained and the update is not unique"
            )
            logger.warning("Iteration %d: %s", iteration, message)
            self._diagnostics.append(Diagnostic("rank_deficient", message, iteration=iteration))
        elif handle.rank is None and self._settings.epsilon == 0.0 and n > 0:
            # Without damping rows LSMR can hide a numerically deficient system
            if not any(d.kind == "rank_unknown" for d in self._diagnostics):
                message = (
                    "The lsmr backend cannot detect numerical rank deficiency and epsilon is 0; "
                    "the update may not be unique"
                )
                logger.warning("Iteration %d: %s", iteration, message)
                self._diagnostics.append(Diagnostic("rank_unknown", message, iteration=iteration))

    def _finish(self, state: SolverState, iterations: int, merit: float,
                history: List[IterationReport]) -> SolveResult:
        self._state = state
        converged = state is SolverState.CONVERGED
        logger.info(
            "Guided projection finished: %s after %d iterations (merit %.3e)",
            state.name.lower(), iterations, merit,
        )
        return SolveResult(
            x=self._registry.vector.copy(),
            converged=converged,
            iterations=iterations,
            merit=merit,
            state=state,
            history=history,
            diagnostics=list(self._diagnostics),
        )

    def __repr__(self) -> str:
        return (
            f"GuidedProjectionAlgorithm(unknowns={self.total_dof}, "
            f"constraints={self.constraint_count}, energies={self.energy_count}, "
            f"state={self._state.name})"
        )
