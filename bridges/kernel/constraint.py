"""
Constraints and constraint sets.

A :class:`ConstraintSet` shares one constraint-type strategy between many
:class:`Constraint` instances; each constraint binds the type to concrete
variables and carries its own weight and (optionally) its own Ci.

``compute_and_globalise(x)`` produces, for every constraint of the set, a
:class:`~bridges.kernel.converter.GlobalQuadraticForm` in the global index
space.  Quadratic types are globalised once and cached; linearised types
are re-evaluated whenever the global vector has changed.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np

from ..errors import ConfigurationError, DimensionMismatchError, NumericalDegeneracyError
from .constraint_types import (
    ConstraintKind,
    LinearisedConstraintType,
    LocalQuadraticForm,
    QuadraticConstraintType,
)
from .converter import Converter, GlobalQuadraticForm
from .variable_set import GlobalVector, VariableReference, VariableRegistry

logger = logging.getLogger(__name__)

ConstraintTypeLike = Union[QuadraticConstraintType, LinearisedConstraintType]


def check_weight(weight: float) -> float:
    weight = float(weight)
    if not np.isfinite(weight) or weight < 0.0:
        raise ConfigurationError(f"Weights must be finite and >= 0, got {weight!r}")
    return weight


class Constraint:
    """One constraint of a :class:`ConstraintSet`, bound to concrete variables."""

    def __init__(
        self,
        constraint_set: "ConstraintSet",
        index: int,
        references: List[VariableReference],
        ci: Optional[float],
        weight: float,
    ):
        self._set = constraint_set
        self._index = index
        self._references = references
        self._ci = None if ci is None else float(ci)
        self._weight = check_weight(weight)
        self._converter = Converter(references)
        self._global: Optional[GlobalQuadraticForm] = None
        self._version: Optional[int] = None

    # -- Properties --------------------------------------------------------------

    @property
    def index(self) -> int:
        return self._index

    @property
    def constraint_set(self) -> "ConstraintSet":
        return self._set

    @property
    def references(self) -> List[VariableReference]:
        return list(self._references)

    @property
    def converter(self) -> Converter:
        return self._converter

    @property
    def weight(self) -> float:
        return self._weight

    @weight.setter
    def weight(self, value: float):
        self._weight = check_weight(value)

    @property
    def ci(self) -> Optional[float]:
        """Per-constraint Ci, falling back to the type's Ci."""
        return self._ci if self._ci is not None else self._set.constraint_type.ci

    @property
    def global_form(self) -> Optional[GlobalQuadraticForm]:
        """Globalised form, ``None`` until the set has been globalised."""
        return self._global

    @property
    def global_hi(self) -> dict:
        return self._global.hi_entries() if self._global is not None else {}

    @property
    def global_bi(self) -> dict:
        return self._global.bi_entries() if self._global is not None else {}

    @property
    def source(self) -> str:
        """Human-readable identity used in diagnostics."""
        return (
            f"constraint set {self._set.set_index} "
            f"[{type(self._set.constraint_type).__name__}], constraint {self._index}"
        )

    # -- Evaluation --------------------------------------------------------------

    def reduced(self, x: GlobalVector) -> np.ndarray:
        """Current values of the bound variables, concatenated."""
        return x.take(self._converter.local_to_global)

    def residual(self, x: GlobalVector) -> float:
        """Value of ``½ xᵀHx + B·x + C`` at *x* (requires a globalised form)."""
        if self._global is None:
            raise ConfigurationError(f"{self.source} has not been globalised yet")
        return self._global.value(x.values)

    def globalise(self, form: LocalQuadraticForm, version: Optional[int]):
        converter = self._converter
        hi = converter.globalise_matrix(form.hi) if form.hi is not None else None
        bi = converter.globalise_vector(form.bi) if form.bi is not None else None
        self._global = GlobalQuadraticForm(converter.indices, hi, bi, self.ci)
        self._version = version

    def is_current(self, x: GlobalVector) -> bool:
        if self._global is None:
            return False
        return self._version is None or self._version == x.version

    def __repr__(self) -> str:
        return f"Constraint({self.source}, weight={self._weight})"


class ConstraintSet:
    """
    All constraints sharing one constraint-type instance.

    Created by :meth:`~bridges.GuidedProjectionAlgorithm.add_constraint_set`.
    """

    def __init__(self, constraint_type: ConstraintTypeLike, set_index: int, registry: VariableRegistry):
        if not isinstance(constraint_type, (QuadraticConstraintType, LinearisedConstraintType)):
            raise ConfigurationError(
                f"Expected a quadratic or linearised constraint type, got {type(constraint_type).__name__}"
            )
        self._type = constraint_type
        self._set_index = set_index
        self._registry = registry
        self._constraints: List[Constraint] = []

    @property
    def constraint_type(self) -> ConstraintTypeLike:
        return self._type

    @property
    def kind(self) -> ConstraintKind:
        return self._type.kind

    @property
    def set_index(self) -> int:
        return self._set_index

    @property
    def constraint_count(self) -> int:
        return len(self._constraints)

    @property
    def constraints(self) -> List[Constraint]:
        return list(self._constraints)

    def __getitem__(self, index: int) -> Constraint:
        return self._constraints[index]

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self._constraints)

    def __len__(self) -> int:
        return len(self._constraints)

    # -- Authoring ----------------------------------------------------------------

    def add_constraint(self, variables: Sequence, ci: Optional[float] = None, weight: float = 1.0) -> Constraint:
        """
        Bind the set's constraint type to *variables*.

        Args:
            variables: ``VariableReference`` objects or ``(variable_set, index)``
                       pairs, in the order the type's reduced vector expects.
            ci: Overrides the type's Ci for this constraint.
            weight: Relative importance in the least-squares system.

        Raises:
            UnregisteredVariableError, OutOfRangeError: bad references.
            DimensionMismatchError: the variables do not add up to the
                                    type's reduced dimension.
        """
        references = self._registry.resolve(variables)
        size = sum(r.dimension for r in references)
        if size != self._type.dimension:
            raise DimensionMismatchError(
                f"{type(self._type).__name__} expects a reduced vector of {self._type.dimension} "
                f"components, the given variables provide {size}"
            )
        if ci is not None and not np.isfinite(ci):
            raise ConfigurationError(f"Ci must be finite, got {ci!r}")
        constraint = Constraint(self, len(self._constraints), references, ci, weight)
        self._constraints.append(constraint)
        return constraint

    # -- Globalisation -------------------------------------------------------------

    def compute_and_globalise(self, x: GlobalVector):
        """
        Bring every constraint's global form up to date with *x*.

        Reads *x* only and writes only this set's constraints, so distinct
        sets may be processed concurrently.
        """
        if self.kind is ConstraintKind.QUADRATIC:
            form = self._type.local_form
            for constraint in self._constraints:
                if constraint.global_form is None:
                    constraint.globalise(form, None)
        elif self.kind is ConstraintKind.LINEARISED:
            updated = 0
            for constraint in self._constraints:
                if constraint.is_current(x):
                    continue
                try:
                    form = self._type.local_form(constraint.reduced(x), constraint.source)
                except NumericalDegeneracyError as exc:
                    if exc.source == constraint.source:
                        raise
                    raise NumericalDegeneracyError(str(exc), constraint.source) from exc
                constraint.globalise(form, x.version)
                updated += 1
            logger.debug("Re-centred %d constraints of %r", updated, self)
        else:
            raise ConfigurationError(f"Unknown constraint kind {self.kind!r}")

    def __repr__(self) -> str:
        return (
            f"ConstraintSet(index={self._set_index}, type={type(self._type).__name__}, "
            f"constraints={len(self._constraints)})"
        )
