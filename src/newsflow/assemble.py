"""Collect per-batch triplets into the final score matrix."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import coo_matrix

from newsflow.sparse import SparseMatrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

Triplets = tuple["NDArray[np.int64]", "NDArray[np.int64]", "NDArray[np.float64]"]


class ResultAssembler:
    """Append-only accumulator of (row, col, value) triplets."""

    def __init__(self, n_rows: int, n_cols: int):
        self.shape = (n_rows, n_cols)
        self._rows: list[NDArray[np.int64]] = []
        self._cols: list[NDArray[np.int64]] = []
        self._values: list[NDArray[np.float64]] = []

    def add(self, triplets: Triplets) -> None:
        rows, cols, values = triplets
        self._rows.append(np.asarray(rows, dtype=np.int64))
        self._cols.append(np.asarray(cols, dtype=np.int64))
        self._values.append(np.asarray(values, dtype=np.float64))

    @property
    def nnz(self) -> int:
        return sum(len(v) for v in self._values)

    def build(self) -> SparseMatrix:
        """Score matrix in column-major, row-ascending order without explicit zeros."""
        if not self._values:
            return SparseMatrix.empty(*self.shape)
        rows = np.concatenate(self._rows)
        cols = np.concatenate(self._cols)
        values = np.concatenate(self._values)
        nonzero = values != 0
        # every (row, col) comes from exactly one batch, so nothing is summed
        m = coo_matrix((values[nonzero], (rows[nonzero], cols[nonzero])), shape=self.shape)
        return SparseMatrix(m)


__all__ = ["ResultAssembler"]
