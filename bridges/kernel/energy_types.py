"""
Energy type strategy.

An energy is a *soft* linear relation ``Ki·x = Si`` on a reduced vector,
entering the least-squares objective as ``weight * (Ki·x − Si)²``.  Energy
types are constant: Ki and Si are fixed at construction.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..errors import ConfigurationError, NumericalDegeneracyError


@dataclass(frozen=True)
class LocalLinearForm:
    ki: np.ndarray
    si: float


class EnergyType:
    """
    Constant linear form on a reduced vector of ``len(local_ki)`` components.

    Subclasses (see :mod:`bridges.catalog.energies`) build Ki in their
    constructor and call ``super().__init__``.
    """

    def __init__(self, local_ki, si: float = 0.0):
        ki = np.array(local_ki, dtype=np.float64).ravel()
        if ki.size == 0:
            raise ConfigurationError(f"{type(self).__name__}: Ki must have at least one component")
        if not np.all(np.isfinite(ki)) or not np.isfinite(si):
            raise NumericalDegeneracyError("Energy form contains non-finite values", type(self).__name__)
        self._form = LocalLinearForm(ki, float(si))

    @property
    def dimension(self) -> int:
        return self._form.ki.size

    @property
    def local_ki(self) -> np.ndarray:
        return self._form.ki

    @property
    def si(self) -> float:
        return self._form.si

    @property
    def local_form(self) -> LocalLinearForm:
        return self._form

    def __repr__(self) -> str:
        return f"{type(self).__name__}(dimension={self.dimension})"


def unit_direction(coordinates, owner: str) -> np.ndarray:
    """Normalise a direction vector; a zero vector is a numerical degeneracy."""
    direction = np.array(coordinates, dtype=np.float64).ravel()
    if direction.size == 0:
        raise ConfigurationError(f"{owner}: the direction vector needs at least one component")
    length = float(np.linalg.norm(direction))
    if length == 0.0 or not np.isfinite(length):
        raise NumericalDegeneracyError(
            "The length of the target direction vector must be different than zero", owner
        )
    return direction / length
