"""
Row normalization applied before scoring.

Modes:
    none:   identity
    l2:     v / ||v||_2                  (with crossfun="prod": cosine similarity)
    softl2: v / sqrt(v S v^T)            (with crossfun="softprod": soft cosine)

Rows whose norm is zero (or, for softl2, non-positive) become all-zero, so
every score involving them is 0.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csc_matrix, diags

from newsflow.errors import ConfigurationError, ValidationError
from newsflow.sparse import SparseMatrix, as_sparse_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray


class NormMode(str, Enum):
    NONE = "none"
    L2 = "l2"
    SOFTL2 = "softl2"

    @classmethod
    def parse(cls, value: str | NormMode) -> NormMode:
        try:
            return cls(value)
        except ValueError:
            options = ", ".join(m.value for m in cls)
            raise ConfigurationError(
                f"Unknown normalize mode {value!r} (expected one of: {options})"
            ) from None


def prune_adjacency(simmat, threshold: float | None = None) -> SparseMatrix:
    """Zero out adjacency entries outside [0, 1] or below ``threshold``."""
    m = as_sparse_matrix(simmat).to_scipy()
    keep = (m.data >= 0.0) & (m.data <= 1.0)
    if threshold is not None:
        keep &= m.data >= threshold
    m.data[~keep] = 0.0
    m.eliminate_zeros()
    return SparseMatrix(m)


def _scale_rows(m: SparseMatrix, norms: NDArray[np.float64]) -> SparseMatrix:
    scale = np.zeros_like(norms)
    positive = norms > 0
    scale[positive] = 1.0 / norms[positive]
    return SparseMatrix(csc_matrix(diags(scale) @ m.to_scipy()))


def l2_norms(m: SparseMatrix) -> NDArray[np.float64]:
    sq = m.to_scipy()
    sq.data **= 2
    return np.sqrt(np.asarray(sq.sum(axis=1)).ravel())


def soft_norms(m: SparseMatrix, simmat: SparseMatrix) -> NDArray[np.float64]:
    """sqrt(v S v^T) per row; non-positive quadratic forms give 0."""
    csr = m.tocsr()
    quad = np.asarray(csr.multiply(csr @ simmat.to_scipy()).sum(axis=1)).ravel()
    return np.sqrt(np.clip(quad, 0.0, None))


def normalize_rows(
    m: SparseMatrix,
    mode: str | NormMode = NormMode.NONE,
    simmat: SparseMatrix | None = None,
) -> SparseMatrix:
    """
    Rescale every row of ``m`` by the selected norm.

    Args:
        m: Input matrix (never modified)
        mode: "none", "l2" or "softl2"
        simmat: Feature adjacency matrix, required for "softl2"

    Returns:
        A new SparseMatrix (or ``m`` itself for "none")
    """
    mode = NormMode.parse(mode)
    if mode is NormMode.NONE:
        return m
    if mode is NormMode.L2:
        return _scale_rows(m, l2_norms(m))
    if simmat is None:
        raise ValidationError("normalize='softl2' requires simmat")
    if simmat.shape != (m.cols, m.cols):
        raise ValidationError(
            f"simmat must be {m.cols} x {m.cols} to match the feature count, got {simmat.shape}"
        )
    return _scale_rows(m, soft_norms(m, simmat))


__all__ = ["NormMode", "normalize_rows", "prune_adjacency", "l2_norms", "soft_norms"]
