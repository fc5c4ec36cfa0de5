"""
Per-iteration assembly of the guided projection least-squares system.

For the current iterate ``x_k`` every term contributes one row of the
rectangular system ``A x = b``:

* **constraint** ``f(x) = ½ xᵀHx + B·x + C`` — tangent equation at ``x_k``::

      row    = H x_k + B
      target = row·x_k − f(x_k)          ( = ½ x_kᵀH x_k − C )

* **energy** — ``row = K``, ``target = S``;
* **damping** — ``ε e_i`` with target ``ε x_k[i]`` for every unknown,
  so the update stays close to the previous iterate.

Constraint and energy rows are scaled by ``sqrt(weight)`` so the
least-squares objective is the declared weighted sum of squares.  The
matrix is built from (row, column, value) triplets and converted to CSR
once per iteration; it is rebuilt from scratch every time because the
rows depend on ``x_k``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from .constraint import ConstraintSet
from .energy import EnergySet
from .variable_set import GlobalVector

logger = logging.getLogger(__name__)


class TripletBuilder:
    """
    Collects sparse entries as (row, column, value) triplets.

    Entries added twice at the same cell are summed when the matrix is
    built, so contributions accumulate instead of overwriting each other.
    """

    def __init__(self, n_columns: int):
        self._n_columns = n_columns
        self._n_rows = 0
        self._rows: List[np.ndarray] = []
        self._cols: List[np.ndarray] = []
        self._data: List[np.ndarray] = []

    @property
    def n_rows(self) -> int:
        return self._n_rows

    @property
    def n_columns(self) -> int:
        return self._n_columns

    def add_row(self, columns: np.ndarray, values: np.ndarray) -> int:
        """Append a new row; returns its index."""
        row = self._n_rows
        self._rows.append(np.full(columns.size, row, dtype=np.int64))
        self._cols.append(np.asarray(columns, dtype=np.int64))
        self._data.append(np.asarray(values, dtype=np.float64))
        self._n_rows += 1
        return row

    def add_diagonal(self, value: float) -> Tuple[int, int]:
        """Append ``value * I``; returns the half-open range of new rows."""
        first = self._n_rows
        n = self._n_columns
        self._rows.append(np.arange(first, first + n, dtype=np.int64))
        self._cols.append(np.arange(n, dtype=np.int64))
        self._data.append(np.full(n, value, dtype=np.float64))
        self._n_rows += n
        return first, self._n_rows

    def add_block(self, row_indices: np.ndarray, col_indices: np.ndarray, block: np.ndarray):
        """Add a dense block at existing global ``rows × cols`` (accumulating)."""
        rows, cols = np.meshgrid(row_indices, col_indices, indexing="ij")
        self._rows.append(rows.ravel().astype(np.int64))
        self._cols.append(cols.ravel().astype(np.int64))
        self._data.append(np.asarray(block, dtype=np.float64).ravel())
        self._n_rows = max(self._n_rows, int(row_indices.max()) + 1 if row_indices.size else 0)

    def to_csr(self, n_rows: Optional[int] = None) -> sp.csr_matrix:
        n_rows = self._n_rows if n_rows is None else n_rows
        if self._data:
            rows = np.concatenate(self._rows)
            cols = np.concatenate(self._cols)
            data = np.concatenate(self._data)
        else:
            rows = cols = np.zeros(0, dtype=np.int64)
            data = np.zeros(0, dtype=np.float64)
        # COO → CSR sums duplicate entries
        return sp.coo_matrix((data, (rows, cols)), shape=(n_rows, self._n_columns)).tocsr()


@dataclass
class AssembledSystem:
    """The stacked system ``A x = b`` of one iteration."""
    matrix: sp.csr_matrix
    rhs: np.ndarray
    n_constraint_rows: int = 0
    n_energy_rows: int = 0
    n_damping_rows: int = 0
    # Identity of the term behind each constraint / energy row
    row_sources: List[str] = field(default_factory=list)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape


class Assembler:
    """Builds :class:`AssembledSystem` instances for a fixed damping weight."""

    def __init__(self, epsilon: float = 1e-3):
        self.epsilon = float(epsilon)

    def assemble(
        self,
        constraint_sets: Sequence[ConstraintSet],
        energy_sets: Sequence[EnergySet],
        x: GlobalVector,
    ) -> AssembledSystem:
        """
        Stack constraint, energy and damping rows at the current iterate.

        Every set must have been globalised at *x* beforehand.  Terms with
        zero weight are skipped.
        """
        values = x.values
        builder = TripletBuilder(x.size)
        rhs: List[float] = []
        sources: List[str] = []

        for constraint_set in constraint_sets:
            for constraint in constraint_set:
                form = constraint.global_form
                if form is None or constraint.weight == 0.0:
                    continue
                scale = math.sqrt(constraint.weight)
                xg = values[form.indices]
                row = form.gradient(values)
                target = float(row @ xg) - form.value(values)
                builder.add_row(form.indices, scale * row)
                rhs.append(scale * target)
                sources.append(constraint.source)
        n_constraint_rows = len(rhs)

        for energy_set in energy_sets:
            for energy in energy_set:
                form = energy.global_form
                if form is None or energy.weight == 0.0:
                    continue
                scale = math.sqrt(energy.weight)
                builder.add_row(form.indices, scale * form.ki)
                rhs.append(scale * form.si)
                sources.append(energy.source)
        n_energy_rows = len(rhs) - n_constraint_rows

        n_damping_rows = 0
        if self.epsilon > 0.0 and x.size > 0:
            builder.add_diagonal(self.epsilon)
            rhs.extend(self.epsilon * values)
            n_damping_rows = x.size

        matrix = builder.to_csr()
        logger.debug(
            "Assembled %d x %d system (%d constraint, %d energy, %d damping rows, nnz=%d)",
            matrix.shape[0], matrix.shape[1], n_constraint_rows, n_energy_rows,
            n_damping_rows, matrix.nnz,
        )
        return AssembledSystem(
            matrix=matrix,
            rhs=np.asarray(rhs, dtype=np.float64),
            n_constraint_rows=n_constraint_rows,
            n_energy_rows=n_energy_rows,
            n_damping_rows=n_damping_rows,
            row_sources=sources,
        )


def constraint_merit(constraint_sets: Sequence[ConstraintSet], x: GlobalVector) -> float:
    """Sum of squared constraint values at *x* (forms must be current)."""
    values = x.values
    total = 0.0
    for constraint_set in constraint_sets:
        for constraint in constraint_set:
            form = constraint.global_form
            if form is None:
                continue
            r = form.value(values)
            total += r * r
    return total


def accumulate_hi(constraint_sets: Sequence[ConstraintSet], size: int, weighted: bool = True) -> sp.csr_matrix:
    """
    Sum of the globalised Hi of all constraints as one ``size × size`` matrix.

    Cells touched by several constraints receive the sum of their
    contributions.
    """
    builder = TripletBuilder(size)
    for constraint_set in constraint_sets:
        for constraint in constraint_set:
            form = constraint.global_form
            if form is None or form.hi is None:
                continue
            factor = constraint.weight if weighted else 1.0
            builder.add_block(form.indices, form.indices, factor * form.hi)
    return builder.to_csr(size)
