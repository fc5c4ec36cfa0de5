"""
Local → global index translation.

A constraint or energy is written on a small *reduced* vector: the
concatenation of the components of the variables it references.  The
:class:`Converter` maps position ``k`` of that reduced vector to its global
index ``first_rank + dimension * instance + component``.

Globalised forms are stored compactly: the sorted unique global indices
touched by the term plus a small dense block over those indices.  Two
local entries that land on the same global cell (the same variable
referenced twice) are summed, never overwritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from .variable_set import VariableReference


class Converter:
    """Reduced-vector position → global index map of one constraint / energy."""

    __slots__ = ("_local_to_global", "_indices", "_inverse")

    def __init__(self, references: Sequence[VariableReference]):
        ranks = []
        for reference in references:
            start, stop = reference.global_range()
            ranks.extend(range(start, stop))
        self._local_to_global = np.array(ranks, dtype=np.int64)
        self._indices, self._inverse = np.unique(self._local_to_global, return_inverse=True)
        self._inverse = self._inverse.ravel()

    @property
    def local_to_global(self) -> np.ndarray:
        return self._local_to_global

    @property
    def indices(self) -> np.ndarray:
        """Sorted unique global indices touched by the term."""
        return self._indices

    @property
    def reduced_size(self) -> int:
        return self._local_to_global.size

    def __getitem__(self, local_index: int) -> int:
        return int(self._local_to_global[local_index])

    def __len__(self) -> int:
        return self._local_to_global.size

    def globalise_matrix(self, local: np.ndarray) -> np.ndarray:
        """Accumulate a reduced-size square matrix onto :attr:`indices`."""
        size = self._indices.size
        block = np.zeros((size, size), dtype=np.float64)
        np.add.at(block, (self._inverse[:, None], self._inverse[None, :]), local)
        return block

    def globalise_vector(self, local: np.ndarray) -> np.ndarray:
        """Accumulate a reduced-size vector onto :attr:`indices`."""
        block = np.zeros(self._indices.size, dtype=np.float64)
        np.add.at(block, self._inverse, local)
        return block


# =========================================================================
# Globalised forms
# =========================================================================

@dataclass(frozen=True)
class GlobalQuadraticForm:
    """
    ``½ xᵀ H x + B·x + C`` restricted to the global indices ``indices``.

    ``hi`` / ``bi`` are ``None`` when the local form has no such term and
    ``ci`` is ``None`` for constraints that are already centred.
    """
    indices: np.ndarray
    hi: Optional[np.ndarray]
    bi: Optional[np.ndarray]
    ci: Optional[float]

    def value(self, x: np.ndarray) -> float:
        """Constraint value at the full global vector *x* (zero when satisfied)."""
        xg = x[self.indices]
        total = 0.0
        if self.hi is not None:
            total += 0.5 * float(xg @ self.hi @ xg)
        if self.bi is not None:
            total += float(self.bi @ xg)
        if self.ci is not None:
            total += self.ci
        return total

    def gradient(self, x: np.ndarray) -> np.ndarray:
        """``H x + B`` over :attr:`indices`."""
        xg = x[self.indices]
        grad = np.zeros(self.indices.size, dtype=np.float64)
        if self.hi is not None:
            grad += self.hi @ xg
        if self.bi is not None:
            grad += self.bi
        return grad

    def hi_entries(self) -> Dict[Tuple[int, int], float]:
        """Non-zero entries of the global Hi keyed by ``(row, column)``."""
        if self.hi is None:
            return {}
        rows, cols = np.nonzero(self.hi)
        return {
            (int(self.indices[r]), int(self.indices[c])): float(self.hi[r, c])
            for r, c in zip(rows, cols)
        }

    def bi_entries(self) -> Dict[int, float]:
        """Non-zero entries of the global Bi keyed by row."""
        if self.bi is None:
            return {}
        return {int(self.indices[r]): float(self.bi[r]) for r in np.nonzero(self.bi)[0]}


@dataclass(frozen=True)
class GlobalLinearForm:
    """``K·x − S`` restricted to the global indices ``indices``."""
    indices: np.ndarray
    ki: np.ndarray
    si: float

    def residual(self, x: np.ndarray) -> float:
        return float(self.ki @ x[self.indices]) - self.si

    def ki_entries(self) -> Dict[int, float]:
        return {int(self.indices[r]): float(self.ki[r]) for r in np.nonzero(self.ki)[0]}
