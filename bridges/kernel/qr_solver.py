"""
Least-squares "factor then solve" adapter.

The assembled system is rectangular (more rows than unknowns once the
damping rows are in) and is solved in the least-squares sense without
forming the normal equations.  Two backends are available:

``dense``
    Column-pivoted Householder QR (``scipy.linalg.qr``) of the densified
    matrix.  Rank-revealing: the numerical rank is read off the diagonal of
    R, and a rank-deficient system gets the *basic* solution (free columns
    set to zero) instead of failing.
``lsmr``
    ``scipy.sparse.linalg.lsmr`` on the CSR matrix, with no factorisation and
    no fill-in, for systems too large to densify.  The numerical rank is
    unknown; the structural rank of the sparsity pattern
    (``scipy.sparse.csgraph.structural_rank``) is an upper bound on it, so
    a structurally deficient system is still reported.

``auto`` picks ``dense`` up to ``dense_limit`` unknowns.  The dense path
holds the full ``m × n`` matrix and its Q factor, about 256 MB per array
at the default limit of 4000 unknowns.

A new factorisation is computed every iteration; the sparsity pattern of
the system changes with the iterate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import scipy.linalg
import scipy.sparse as sp
from scipy.sparse.csgraph import structural_rank
from scipy.sparse.linalg import lsmr

from ..errors import ConfigurationError, DimensionMismatchError
from ..settings import QR_BACKENDS

logger = logging.getLogger(__name__)


@dataclass
class QRFactorization:
    """Opaque handle returned by :meth:`LeastSquaresSolver.factor`."""
    backend: str
    shape: tuple
    # dense backend
    q: Optional[np.ndarray] = None
    r: Optional[np.ndarray] = None
    permutation: Optional[np.ndarray] = None
    rank: Optional[int] = None
    # lsmr backend
    matrix: Optional[sp.csr_matrix] = None
    structural_rank: Optional[int] = None

    @property
    def rank_deficient(self) -> bool:
        if self.rank is not None:
            return self.rank < self.shape[1]
        return self.structural_rank is not None and self.structural_rank < self.shape[1]


class LeastSquaresSolver:
    """
    Solves ``min ‖A x − b‖`` for sparse rectangular ``A``.

    Usage::

        solver = LeastSquaresSolver(backend="dense")
        handle = solver.factor(A)
        x = solver.solve(handle, b)
    """

    def __init__(
        self,
        backend: str = "auto",
        dense_limit: int = 4000,
        rank_tolerance: float = 1e-10,
        atol: float = 1e-12,
        btol: float = 1e-12,
        max_iterations: Optional[int] = None,
    ):
        if backend not in QR_BACKENDS:
            raise ConfigurationError(f"Unknown least-squares backend {backend!r}")
        self.backend = backend
        self.dense_limit = dense_limit
        self.rank_tolerance = rank_tolerance
        self.atol = atol
        self.btol = btol
        self.max_iterations = max_iterations

    @classmethod
    def from_settings(cls, settings) -> "LeastSquaresSolver":
        return cls(
            backend=settings.qr_backend,
            dense_limit=settings.dense_limit,
            rank_tolerance=settings.rank_tolerance,
            atol=settings.lsmr_atol,
            btol=settings.lsmr_btol,
            max_iterations=settings.lsmr_max_iterations,
        )

    def backend_for(self, n_unknowns: int) -> str:
        if self.backend != "auto":
            return self.backend
        return "dense" if n_unknowns <= self.dense_limit else "lsmr"

    # -- Factor ----------------------------------------------------------------

    def factor(self, matrix) -> QRFactorization:
        """Factorise *matrix* (any scipy sparse matrix or dense array)."""
        matrix = sp.csr_matrix(matrix)
        m, n = matrix.shape
        backend = self.backend_for(n)

        if backend == "lsmr":
            return QRFactorization(
                backend="lsmr", shape=(m, n), matrix=matrix,
                structural_rank=self._structural_rank(matrix),
            )

        if m == 0 or n == 0:
            return QRFactorization(
                backend="dense", shape=(m, n),
                q=np.zeros((m, 0)), r=np.zeros((0, n)),
                permutation=np.arange(n), rank=0,
            )

        q, r, permutation = scipy.linalg.qr(matrix.toarray(), mode="economic", pivoting=True)
        diagonal = np.abs(np.diag(r))
        if diagonal.size == 0 or diagonal[0] == 0.0:
            rank = 0
        else:
            # Pivoting sorts |R_ii| in decreasing order
            rank = int(np.count_nonzero(diagonal > self.rank_tolerance * diagonal[0]))
        return QRFactorization(backend="dense", shape=(m, n), q=q, r=r, permutation=permutation, rank=rank)

    @staticmethod
    def _structural_rank(matrix: sp.csr_matrix) -> int:
        if matrix.shape[0] == 0 or matrix.shape[1] == 0:
            return 0
        pattern = matrix.copy()
        pattern.eliminate_zeros()
        return int(structural_rank(pattern))

    # -- Solve -----------------------------------------------------------------

    def solve(self, handle: QRFactorization, rhs: np.ndarray) -> np.ndarray:
        """Least-squares solution for right-hand side *rhs*."""
        rhs = np.asarray(rhs, dtype=np.float64).ravel()
        m, n = handle.shape
        if rhs.size != m:
            raise DimensionMismatchError(f"Right-hand side has {rhs.size} entries, the system has {m} rows")

        if handle.backend == "lsmr":
            if m == 0 or n == 0:
                return np.zeros(n)
            kwargs = {"atol": self.atol, "btol": self.btol}
            if self.max_iterations is not None:
                kwargs["maxiter"] = self.max_iterations
            result = lsmr(handle.matrix, rhs, **kwargs)
            x, istop, itn = result[0], result[1], result[2]
            if istop == 7:
                logger.warning("LSMR stopped at its iteration limit (%d iterations)", itn)
            return x

        x = np.zeros(n)
        rank = handle.rank
        if rank == 0:
            return x
        y = handle.q[:, :rank].T @ rhs
        z = scipy.linalg.solve_triangular(handle.r[:rank, :rank], y, lower=False, check_finite=False)
        x[handle.permutation[:rank]] = z
        return x

    def solve_least_squares(self, matrix, rhs: np.ndarray):
        """Factor and solve in one call; returns ``(x, handle)``."""
        handle = self.factor(matrix)
        return self.solve(handle, rhs), handle
