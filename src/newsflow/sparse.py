"""
Immutable compressed-column sparse matrix.

Rows are documents (or terms, for term-level computations) and columns are
features. Nonzeros are kept per column with sorted row indices, without
duplicates and without explicit zeros. The storage is a scipy ``csc_matrix``
whose arrays are flagged read-only, so a SparseMatrix can be shared between
worker threads without copying.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterator

import numpy as np
from scipy.sparse import coo_matrix, csc_matrix, csr_matrix, issparse

from newsflow.errors import ValidationError

if TYPE_CHECKING:
    from numpy.typing import NDArray


def _freeze(m: csc_matrix) -> csc_matrix:
    for arr in (m.data, m.indices, m.indptr):
        arr.flags.writeable = False
    return m


def _canonical(m) -> csc_matrix:
    m = csc_matrix(m, dtype=np.float64, copy=True)
    m.sum_duplicates()
    m.eliminate_zeros()
    m.sort_indices()
    return m


class SparseMatrix:
    """Read-only row x feature matrix in compressed-column form."""

    __slots__ = ("_csc", "_csr")

    def __init__(self, matrix):
        if isinstance(matrix, SparseMatrix):
            self._csc = matrix._csc
        elif issparse(matrix):
            self._csc = _freeze(_canonical(matrix))
        else:
            arr = np.asarray(matrix, dtype=np.float64)
            if arr.ndim != 2:
                raise ValidationError(f"Expected a 2-D matrix, got {arr.ndim} dimensions")
            self._csc = _freeze(_canonical(arr))
        self._csr: csr_matrix | None = None

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------

    @classmethod
    def from_dense(cls, values) -> SparseMatrix:
        return cls(np.asarray(values, dtype=np.float64))

    @classmethod
    def from_triplets(
        cls,
        rows,
        cols,
        values,
        shape: tuple[int, int],
    ) -> SparseMatrix:
        """Build from (row, col, value) triplets; duplicate cells are summed."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        values = np.asarray(values, dtype=np.float64)
        if not (len(rows) == len(cols) == len(values)):
            raise ValidationError("rows, cols and values must have the same length")
        return cls(coo_matrix((values, (rows, cols)), shape=shape))

    @classmethod
    def empty(cls, rows: int, cols: int) -> SparseMatrix:
        return cls(csc_matrix((rows, cols), dtype=np.float64))

    # -------------------------------------------------------------------------
    # Shape and storage
    # -------------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self._csc.shape[0]

    @property
    def cols(self) -> int:
        return self._csc.shape[1]

    @property
    def shape(self) -> tuple[int, int]:
        return self._csc.shape

    @property
    def nnz(self) -> int:
        return self._csc.nnz

    @property
    def indptr(self) -> NDArray[np.int32]:
        return self._csc.indptr

    @property
    def indices(self) -> NDArray[np.int32]:
        return self._csc.indices

    @property
    def data(self) -> NDArray[np.float64]:
        return self._csc.data

    def to_scipy(self) -> csc_matrix:
        """Return a writable scipy copy."""
        return self._csc.copy()

    def tocsr(self) -> csr_matrix:
        """Row-compressed view, cached. Callers must not modify it."""
        if self._csr is None:
            csr = self._csc.tocsr()
            csr.sort_indices()
            self._csr = csr
        return self._csr

    def toarray(self) -> NDArray[np.float64]:
        return self._csc.toarray()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    def column(self, j: int) -> tuple[NDArray[np.int32], NDArray[np.float64]]:
        start, end = self._csc.indptr[j], self._csc.indptr[j + 1]
        return self._csc.indices[start:end], self._csc.data[start:end]

    def row(self, i: int) -> tuple[NDArray[np.int32], NDArray[np.float64]]:
        """Feature indices and values of row ``i``."""
        csr = self.tocsr()
        start, end = csr.indptr[i], csr.indptr[i + 1]
        return csr.indices[start:end], csr.data[start:end]

    def get(self, i: int, j: int) -> float:
        rows, values = self.column(j)
        pos = np.searchsorted(rows, i)
        if pos < len(rows) and rows[pos] == i:
            return float(values[pos])
        return 0.0

    def rowsum(self) -> NDArray[np.float64]:
        return np.asarray(self._csc.sum(axis=1)).ravel()

    def colsum(self) -> NDArray[np.float64]:
        return np.asarray(self._csc.sum(axis=0)).ravel()

    def row_nnz(self) -> NDArray[np.int64]:
        return np.diff(self.tocsr().indptr).astype(np.int64)

    def col_nnz(self) -> NDArray[np.int64]:
        return np.diff(self._csc.indptr).astype(np.int64)

    def select_rows(self, rows) -> csr_matrix:
        """Row subset as a (new) csr_matrix, in the given order."""
        return self.tocsr()[np.asarray(rows, dtype=np.int64)]

    def select_cols(self, cols) -> SparseMatrix:
        return SparseMatrix(self._csc[:, np.asarray(cols, dtype=np.int64)])

    def transpose(self) -> SparseMatrix:
        return SparseMatrix(self._csc.T)

    @property
    def T(self) -> SparseMatrix:
        return self.transpose()

    def binary(self) -> SparseMatrix:
        """Same sparsity pattern with every nonzero set to 1."""
        m = self._csc.copy()
        m.data = np.ones_like(m.data)
        return SparseMatrix(m)

    def entries(self) -> Iterator[tuple[int, int, float]]:
        """(row, col, value) triplets in column-major, row-ascending order."""
        for j in range(self.cols):
            rows, values = self.column(j)
            for i, v in zip(rows.tolist(), values.tolist()):
                yield i, j, v

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseMatrix):
            return NotImplemented
        return (
            self.shape == other.shape
            and np.array_equal(self.indptr, other.indptr)
            and np.array_equal(self.indices, other.indices)
            and np.array_equal(self.data, other.data)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"SparseMatrix(rows={self.rows}, cols={self.cols}, nnz={self.nnz})"


def as_sparse_matrix(x) -> SparseMatrix:
    """Coerce a SparseMatrix, scipy sparse matrix or 2-D array."""
    if isinstance(x, SparseMatrix):
        return x
    return SparseMatrix(x)


__all__ = ["SparseMatrix", "as_sparse_matrix"]
