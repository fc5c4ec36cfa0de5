"""
Quadratic constraint types — constant forms ``½ xᵀHx + B·x + C = 0``.

Each class documents the layout of its reduced vector; bind variables in
that order when adding constraints.
"""

from __future__ import annotations

import math

import numpy as np

from ..errors import ConfigurationError
from ..kernel.constraint_types import QuadraticConstraintType


def _check_space_dimension(space_dimension: int) -> int:
    if space_dimension < 1:
        raise ConfigurationError(f"space_dimension must be >= 1, got {space_dimension}")
    return int(space_dimension)


class CoherentLength(QuadraticConstraintType):
    """
    Scalar variable *l* equals the distance between points *pi* and *pj*::

        ‖pi − pj‖² − l² = 0

    Reduced vector: ``[pi, pj, l]``.
    """

    def __init__(self, space_dimension: int = 3):
        d = _check_space_dimension(space_dimension)
        hi = np.zeros((2 * d + 1, 2 * d + 1))
        for i in range(d):
            hi[i, i] = 2.0
            hi[d + i, d + i] = 2.0
            hi[i, d + i] = -2.0
            hi[d + i, i] = -2.0
        hi[2 * d, 2 * d] = -2.0
        super().__init__(local_hi=hi, local_bi=None, ci=0.0)
        self.space_dimension = d


class LowerBound(QuadraticConstraintType):
    """
    Scalar *l* stays above *σ* through a dummy scalar *λ*::

        λ² − l + σ = 0        (so l = σ + λ² ≥ σ)

    Reduced vector: ``[l, λ]``.
    """

    def __init__(self, lower_bound: float):
        if not math.isfinite(lower_bound):
            raise ConfigurationError(f"lower_bound must be finite, got {lower_bound!r}")
        hi = np.zeros((2, 2))
        hi[1, 1] = 2.0
        super().__init__(local_hi=hi, local_bi=[-1.0, 0.0], ci=lower_bound)
        self.bound = float(lower_bound)

    def dummy_value(self, value: float) -> float:
        """λ satisfying the constraint at *value* (0 if the bound is violated)."""
        return math.sqrt(max(value - self.bound, 0.0))


class UpperBound(QuadraticConstraintType):
    """
    Scalar *l* stays below *σ* through a dummy scalar *λ*::

        −λ² − l + σ = 0       (so l = σ − λ² ≤ σ)

    Reduced vector: ``[l, λ]``.
    """

    def __init__(self, upper_bound: float):
        if not math.isfinite(upper_bound):
            raise ConfigurationError(f"upper_bound must be finite, got {upper_bound!r}")
        hi = np.zeros((2, 2))
        hi[1, 1] = -2.0
        super().__init__(local_hi=hi, local_bi=[-1.0, 0.0], ci=upper_bound)
        self.bound = float(upper_bound)

    def dummy_value(self, value: float) -> float:
        return math.sqrt(max(self.bound - value, 0.0))


class VectorLength(QuadraticConstraintType):
    """
    Vector variable *v* has Euclidean length *L*::

        ‖v‖² − L² = 0

    Reduced vector: ``[v]``.
    """

    def __init__(self, target_length: float, space_dimension: int = 3):
        d = _check_space_dimension(space_dimension)
        if not math.isfinite(target_length) or target_length < 0.0:
            raise ConfigurationError(f"target_length must be finite and >= 0, got {target_length!r}")
        super().__init__(local_hi=2.0 * np.eye(d), local_bi=None, ci=-target_length * target_length)
        self.target_length = float(target_length)
        self.space_dimension = d


class SegmentOrthogonality(QuadraticConstraintType):
    """
    Segment ``pj − pi`` is orthogonal to the vector variable *v*::

        (pj − pi)·v = 0

    Reduced vector: ``[pi, pj, v]``.  Already centred (no Ci).
    """

    def __init__(self, space_dimension: int = 3):
        d = _check_space_dimension(space_dimension)
        hi = np.zeros((3 * d, 3 * d))
        for i in range(d):
            hi[i, 2 * d + i] = hi[2 * d + i, i] = -1.0
            hi[d + i, 2 * d + i] = hi[2 * d + i, d + i] = 1.0
        super().__init__(local_hi=hi, local_bi=None, ci=None)
        self.space_dimension = d
