"""
Constraint type strategies.

A constraint type describes one *kind* of geometric relation as a local
quadratic form on its reduced vector ``x``::

    ½ xᵀ Hi x + Bi·x + Ci = 0

Two strategies exist and the constraint sets dispatch on
:attr:`ConstraintKind`:

* :class:`QuadraticConstraintType` — Hi, Bi and Ci are fixed at
  construction from structural parameters only (lengths, bounds, space
  dimension).  The form is globalised once and reused every iteration.
* :class:`LinearisedConstraintType` — :meth:`calculate_constraint` rebuilds
  Hi and Bi from the current reduced vector every iteration (first-order
  re-centring of a non-quadratic relation).  Ci stays fixed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple

import numpy as np

from ..errors import ConfigurationError, DimensionMismatchError, NumericalDegeneracyError


class ConstraintKind(Enum):
    QUADRATIC = auto()
    LINEARISED = auto()


@dataclass(frozen=True)
class LocalQuadraticForm:
    """Hi / Bi / Ci of a constraint on its reduced vector."""
    hi: Optional[np.ndarray]
    bi: Optional[np.ndarray]
    ci: Optional[float] = None

    def check(self, dimension: int, source: Optional[str] = None) -> "LocalQuadraticForm":
        """Validate shapes, symmetry and finiteness; returns ``self``."""
        if self.hi is not None:
            if self.hi.shape != (dimension, dimension):
                raise DimensionMismatchError(
                    f"Local Hi has shape {self.hi.shape}, expected ({dimension}, {dimension})"
                    + (f" ({source})" if source else "")
                )
            if not np.all(np.isfinite(self.hi)):
                raise NumericalDegeneracyError("Local Hi contains non-finite values", source)
            if not np.allclose(self.hi, self.hi.T, rtol=0.0, atol=1e-12):
                raise ConfigurationError(
                    "Local Hi must be symmetric" + (f" ({source})" if source else "")
                )
        if self.bi is not None:
            if self.bi.shape != (dimension,):
                raise DimensionMismatchError(
                    f"Local Bi has shape {self.bi.shape}, expected ({dimension},)"
                    + (f" ({source})" if source else "")
                )
            if not np.all(np.isfinite(self.bi)):
                raise NumericalDegeneracyError("Local Bi contains non-finite values", source)
        if self.ci is not None and not np.isfinite(self.ci):
            raise NumericalDegeneracyError("Ci is not finite", source)
        return self


def _as_matrix(values) -> Optional[np.ndarray]:
    if values is None:
        return None
    matrix = np.array(values, dtype=np.float64)
    if matrix.ndim != 2:
        raise DimensionMismatchError(f"Local Hi must be a 2D array, got {matrix.ndim}D")
    return matrix if np.any(matrix) else None


def _as_vector(values) -> Optional[np.ndarray]:
    if values is None:
        return None
    vector = np.array(values, dtype=np.float64).ravel()
    return vector if np.any(vector) else None


# =========================================================================
# Quadratic strategy
# =========================================================================

class QuadraticConstraintType:
    """
    Constant quadratic form.

    Subclasses (see :mod:`bridges.catalog.quadratic`) build the arrays in
    their constructor and call ``super().__init__``.  All-zero Hi or Bi are
    stored as ``None``.
    """

    kind = ConstraintKind.QUADRATIC

    def __init__(self, local_hi=None, local_bi=None, ci: Optional[float] = None,
                 dimension: Optional[int] = None):
        hi = _as_matrix(local_hi)
        bi = _as_vector(local_bi)
        if dimension is None:
            if local_hi is not None:
                dimension = np.shape(local_hi)[0]
            elif local_bi is not None:
                dimension = np.size(local_bi)
            else:
                raise ConfigurationError("A quadratic constraint type needs Hi, Bi or an explicit dimension")
        self._dimension = int(dimension)
        self._form = LocalQuadraticForm(hi, bi, None if ci is None else float(ci)).check(
            self._dimension, type(self).__name__
        )

    @property
    def dimension(self) -> int:
        """Size of the reduced vector."""
        return self._dimension

    @property
    def local_hi(self) -> Optional[np.ndarray]:
        return self._form.hi

    @property
    def local_bi(self) -> Optional[np.ndarray]:
        return self._form.bi

    @property
    def ci(self) -> Optional[float]:
        return self._form.ci

    @property
    def local_form(self) -> LocalQuadraticForm:
        return self._form

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimension={self._dimension})"


# =========================================================================
# Linearised strategy
# =========================================================================

class LinearisedConstraintType(ABC):
    """
    Form re-centred at every iterate.

    Subclasses set :attr:`dimension` (and optionally :attr:`ci`) and
    implement :meth:`calculate_constraint`.  Raise
    :class:`~bridges.errors.NumericalDegeneracyError` when the form cannot
    be computed at the given point; the iteration is then aborted.
    """

    kind = ConstraintKind.LINEARISED

    def __init__(self, dimension: int, ci: Optional[float] = None):
        if dimension < 1:
            raise ConfigurationError(f"Reduced dimension must be >= 1, got {dimension}")
        self._dimension = int(dimension)
        self._ci = None if ci is None else float(ci)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def ci(self) -> Optional[float]:
        return self._ci

    @abstractmethod
    def calculate_constraint(self, x_reduced: np.ndarray) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """Return ``(Hi, Bi)`` centred at *x_reduced*; either may be ``None``."""

    def local_form(self, x_reduced: np.ndarray, source: Optional[str] = None) -> LocalQuadraticForm:
        """Run :meth:`calculate_constraint` and validate the result."""
        hi, bi = self.calculate_constraint(np.asarray(x_reduced, dtype=np.float64))
        return LocalQuadraticForm(_as_matrix(hi), _as_vector(bi), self._ci).check(self._dimension, source)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimension={self._dimension})"
