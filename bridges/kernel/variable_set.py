"""
Variable sets and the global unknown vector.

Architecture
------------
* A :class:`VariableSet` is a block of ``count`` variables that all have
  the same number of scalar components (``dimension``): 3D points,
  vectors, scalar lengths, dummy bound variables...
* The :class:`VariableRegistry` hands every new set the next free slot
  (``first_rank``) of the global vector, so the sets partition
  ``[0, total_dof)`` in registration order.
* Sealing the registry builds the :class:`GlobalVector` X, the only
  mutable numeric state of a solve.  After sealing no set can be added.
"""

from __future__ import annotations

from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..errors import (
    ConfigurationError,
    DimensionMismatchError,
    OutOfRangeError,
    UnregisteredVariableError,
)


class VariableSet:
    """
    A contiguous, fixed-size block of the global vector.

    Instances are created by :meth:`VariableRegistry.register` and never
    change afterwards.  ``variable_set[i]`` returns a
    :class:`VariableReference` to the *i*-th variable of the set.
    """

    __slots__ = ("_set_index", "_first_rank", "_dimension", "_count", "_registry")

    def __init__(self, set_index: int, first_rank: int, dimension: int, count: int,
                 registry: "VariableRegistry"):
        self._set_index = set_index
        self._first_rank = first_rank
        self._dimension = dimension
        self._count = count
        self._registry = registry

    @property
    def set_index(self) -> int:
        """Index of the set in its registry."""
        return self._set_index

    @property
    def first_rank(self) -> int:
        """Global index of the first component of the first variable."""
        return self._first_rank

    @property
    def dimension(self) -> int:
        """Number of scalar components per variable."""
        return self._dimension

    @property
    def count(self) -> int:
        """Number of variables in the set."""
        return self._count

    @property
    def size(self) -> int:
        """Number of global slots reserved by the set."""
        return self._dimension * self._count

    @property
    def registry(self) -> "VariableRegistry":
        return self._registry

    def get_range(self, index: int) -> Tuple[int, int]:
        """Half-open global range ``[start, stop)`` of variable *index*."""
        self._check_index(index)
        start = self._first_rank + self._dimension * index
        return start, start + self._dimension

    def global_index(self, index: int, component: int) -> int:
        """Global index of *component* of variable *index*."""
        self._check_index(index)
        if not 0 <= component < self._dimension:
            raise OutOfRangeError(
                f"Component {component} out of range for variable set {self._set_index} "
                f"of dimension {self._dimension}"
            )
        return self._first_rank + self._dimension * index + component

    def contains(self, global_index: int) -> bool:
        return self._first_rank <= global_index < self._first_rank + self.size

    def _check_index(self, index: int):
        if not 0 <= index < self._count:
            raise OutOfRangeError(
                f"Variable index {index} out of range for variable set {self._set_index} "
                f"holding {self._count} variables"
            )

    def __getitem__(self, index: int) -> "VariableReference":
        self._check_index(index)
        return VariableReference(self, index)

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        return (
            f"VariableSet(index={self._set_index}, first_rank={self._first_rank}, "
            f"dimension={self._dimension}, count={self._count})"
        )


class VariableReference(NamedTuple):
    """Addressing token: the *index*-th variable of *variable_set*."""
    variable_set: VariableSet
    index: int

    @property
    def dimension(self) -> int:
        return self.variable_set.dimension

    def global_range(self) -> Tuple[int, int]:
        return self.variable_set.get_range(self.index)


# =========================================================================
# Global vector
# =========================================================================

class GlobalVector:
    """
    Versioned buffer holding every scalar unknown.

    The orchestrator owns exactly one instance per solve session and passes
    it explicitly to the globalisation and assembly routines.  ``version``
    is bumped on every :meth:`replace` so cached forms can tell which
    iterate they were computed at.
    """

    def __init__(self, values: np.ndarray):
        self._values = np.array(values, dtype=np.float64)
        self._version = 0

    @property
    def values(self) -> np.ndarray:
        """Read-only view of the current iterate."""
        view = self._values.view()
        view.flags.writeable = False
        return view

    @property
    def version(self) -> int:
        return self._version

    @property
    def size(self) -> int:
        return self._values.size

    def copy(self) -> np.ndarray:
        return self._values.copy()

    def take(self, indices: np.ndarray) -> np.ndarray:
        """Values at the given global indices (the reduced vector)."""
        return self._values[indices]

    def get(self, reference: VariableReference) -> np.ndarray:
        start, stop = reference.global_range()
        return self._values[start:stop].copy()

    def set(self, reference: VariableReference, components: Sequence[float]):
        start, stop = reference.global_range()
        components = np.asarray(components, dtype=np.float64).ravel()
        if components.size != stop - start:
            raise DimensionMismatchError(
                f"Expected {stop - start} components for variable {reference.index} "
                f"of set {reference.variable_set.set_index}, got {components.size}"
            )
        self._values[start:stop] = components
        self._version += 1

    def replace(self, new_values: np.ndarray):
        """Swap in a whole new iterate."""
        new_values = np.asarray(new_values, dtype=np.float64)
        if new_values.shape != self._values.shape:
            raise DimensionMismatchError(
                f"New iterate has shape {new_values.shape}, expected {self._values.shape}"
            )
        self._values = new_values.copy()
        self._version += 1

    def __len__(self) -> int:
        return self._values.size

    def __repr__(self) -> str:
        return f"GlobalVector(size={self.size}, version={self._version})"


# =========================================================================
# Registry
# =========================================================================

class VariableRegistry:
    """
    Owns the variable sets of one solver session and their initial values.

    Usage::

        registry = VariableRegistry()
        points = registry.register(count=2, dimension=3, values=[[0, 0, 0], [1, 0, 0]])
        lengths = registry.register(count=1, dimension=1, values=[[2.0]])
        x = registry.seal()            # GlobalVector of size 7
        registry.register(1, 1)        # -> OutOfRangeError
    """

    def __init__(self):
        self._sets: List[VariableSet] = []
        self._initial: List[np.ndarray] = []
        self._total: int = 0
        self._vector: Optional[GlobalVector] = None

    # -- State queries -------------------------------------------------------

    @property
    def sets(self) -> List[VariableSet]:
        return list(self._sets)

    @property
    def total_dof(self) -> int:
        return self._total

    @property
    def sealed(self) -> bool:
        return self._vector is not None

    @property
    def vector(self) -> Optional[GlobalVector]:
        """The global vector, or ``None`` before sealing."""
        return self._vector

    def owns(self, variable_set: VariableSet) -> bool:
        return variable_set.registry is self and \
            variable_set.set_index < len(self._sets) and \
            self._sets[variable_set.set_index] is variable_set

    # -- Registration ----------------------------------------------------------

    def register(self, count: int, dimension: int,
                 values: Optional[Iterable[Sequence[float]]] = None) -> VariableSet:
        """
        Reserve ``count * dimension`` slots at the end of the global vector.

        Args:
            count: Number of variables in the new set.
            dimension: Components per variable (3 for a 3D point, 1 for a scalar).
            values: Optional initial values, one row of *dimension*
                    components per variable.  Defaults to zeros.

        Raises:
            OutOfRangeError: if the registry is already sealed, or
                             *count* / *dimension* is invalid.
        """
        if self.sealed:
            raise OutOfRangeError("Cannot register a variable set after the solver has been initialised")
        if dimension < 1:
            raise OutOfRangeError(f"Variable dimension must be >= 1, got {dimension}")
        if count < 0:
            raise OutOfRangeError(f"Variable count must be >= 0, got {count}")

        if values is None:
            initial = np.zeros((count, dimension), dtype=np.float64)
        else:
            initial = np.array(values, dtype=np.float64)
            if initial.ndim == 1 and dimension == 1:
                initial = initial.reshape(-1, 1)
            elif initial.size == 0 and count == 0:
                initial = initial.reshape(0, dimension)
            if initial.shape != (count, dimension):
                raise DimensionMismatchError(
                    f"Initial values have shape {initial.shape}, expected ({count}, {dimension})"
                )

        variable_set = VariableSet(len(self._sets), self._total, dimension, count, self)
        self._sets.append(variable_set)
        self._initial.append(initial)
        self._total += dimension * count
        return variable_set

    def seal(self) -> GlobalVector:
        """Freeze the layout and build X from the initial values.  Idempotent."""
        if self._vector is None:
            if self._initial:
                flat = np.concatenate([block.ravel() for block in self._initial])
            else:
                flat = np.zeros(0, dtype=np.float64)
            self._vector = GlobalVector(flat)
            self._initial = []
        return self._vector

    def resolve(self, variables: Iterable) -> List[VariableReference]:
        """
        Turn ``VariableReference`` objects or ``(variable_set, index)``
        pairs into validated references.

        Raises:
            UnregisteredVariableError: a set is not owned by this registry.
            OutOfRangeError: an index is outside its set.
        """
        references = []
        for item in variables:
            if isinstance(item, VariableReference):
                reference = item
            else:
                try:
                    variable_set, index = item
                except (TypeError, ValueError):
                    raise ConfigurationError(
                        f"Expected a VariableReference or a (VariableSet, index) pair, got {item!r}"
                    ) from None
                if not isinstance(variable_set, VariableSet):
                    raise ConfigurationError(f"Expected a VariableSet, got {variable_set!r}")
                reference = VariableReference(variable_set, int(index))
            if not self.owns(reference.variable_set):
                raise UnregisteredVariableError(
                    f"{reference.variable_set!r} is not registered with this solver"
                )
            reference.variable_set._check_index(reference.index)
            references.append(reference)
        return references

    # -- Values ----------------------------------------------------------------

    def get_value(self, reference: VariableReference) -> np.ndarray:
        if self._vector is not None:
            return self._vector.get(reference)
        reference.variable_set._check_index(reference.index)
        return self._initial[reference.variable_set.set_index][reference.index].copy()

    def set_value(self, reference: VariableReference, components: Sequence[float]):
        if self._vector is not None:
            self._vector.set(reference, components)
            return
        reference.variable_set._check_index(reference.index)
        components = np.asarray(components, dtype=np.float64).ravel()
        dimension = reference.variable_set.dimension
        if components.size != dimension:
            raise DimensionMismatchError(
                f"Expected {dimension} components for variable {reference.index} "
                f"of set {reference.variable_set.set_index}, got {components.size}"
            )
        self._initial[reference.variable_set.set_index][reference.index] = components

    # -- Index lookup ------------------------------------------------------------

    def locate(self, global_index: int) -> Tuple[VariableSet, int, int]:
        """
        Inverse of the converter: ``(variable set, instance, component)``
        owning *global_index*.
        """
        if not 0 <= global_index < self._total:
            raise OutOfRangeError(f"Global index {global_index} outside [0, {self._total})")
        # Sets are sorted by first_rank; empty sets own no index
        lo, hi = 0, len(self._sets) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._sets[mid].first_rank <= global_index:
                lo = mid
            else:
                hi = mid - 1
        while self._sets[lo].size == 0 or not self._sets[lo].contains(global_index):
            lo -= 1
        variable_set = self._sets[lo]
        offset = global_index - variable_set.first_rank
        return variable_set, offset // variable_set.dimension, offset % variable_set.dimension

    def __repr__(self) -> str:
        return f"VariableRegistry(sets={len(self._sets)}, dof={self._total}, sealed={self.sealed})"
