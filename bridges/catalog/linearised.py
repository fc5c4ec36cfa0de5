"""
Linearised constraint types — forms re-centred at every iterate.
"""

from __future__ import annotations

import math

import numpy as np

from ..errors import ConfigurationError, NumericalDegeneracyError
from ..kernel.constraint_types import LinearisedConstraintType


class SegmentLength(LinearisedConstraintType):
    """
    Distance between points *pi* and *pj* equals a fixed *L*::

        ‖pj − pi‖ − L = 0

    Reduced vector: ``[pi, pj]``.  Around the current segment direction
    ``u`` the relation is ``(pj − pi)·u − L``, i.e. ``Bi = [−u, u]`` and
    ``Ci = −L``.  A zero-length segment has no direction and cannot be
    linearised.
    """

    min_length = 1e-12

    def __init__(self, length: float, space_dimension: int = 3):
        if space_dimension < 1:
            raise ConfigurationError(f"space_dimension must be >= 1, got {space_dimension}")
        if not math.isfinite(length) or length < 0.0:
            raise ConfigurationError(f"length must be finite and >= 0, got {length!r}")
        super().__init__(dimension=2 * space_dimension, ci=-float(length))
        self.length = float(length)
        self.space_dimension = int(space_dimension)

    def calculate_constraint(self, x_reduced: np.ndarray):
        d = self.space_dimension
        segment = x_reduced[d:2 * d] - x_reduced[:d]
        norm = float(np.linalg.norm(segment))
        if not norm > self.min_length:
            raise NumericalDegeneracyError("Cannot linearise the length of a zero-length segment")
        u = segment / norm
        return None, np.concatenate([-u, u])
