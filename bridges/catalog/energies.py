"""
Energy types — soft linear relations ``Ki·x = Si``.

Target directions are normalised on construction; a zero direction raises
:class:`~bridges.errors.NumericalDegeneracyError`.
"""

from __future__ import annotations

import numpy as np

from ..kernel.energy_types import EnergyType, unit_direction


class SegmentOrthogonality(EnergyType):
    """
    Segment ``pj − pi`` orthogonal to a constant direction *u*::

        (pj − pi)·u = 0

    Reduced vector: ``[pi, pj]``.
    """

    def __init__(self, coordinates):
        u = unit_direction(coordinates, type(self).__name__)
        super().__init__(np.concatenate([-u, u]), 0.0)
        self.direction = u


class SegmentParallelity(EnergyType):
    """
    Segment ``pj − pi`` parallel to a constant direction *u*::

        (pj − pi)·u − l = 0

    where *l* is a scalar variable holding the segment length (pair it with
    a :class:`~bridges.catalog.quadratic.CoherentLength` constraint).

    Reduced vector: ``[pi, pj, l]``.
    """

    def __init__(self, coordinates):
        u = unit_direction(coordinates, type(self).__name__)
        super().__init__(np.concatenate([-u, u, [-1.0]]), 0.0)
        self.direction = u
