"""
Pairwise scoring kernels.

For a batch of primary rows (B) and its candidate secondary rows (C) a kernel
returns the dense raw-score block of shape (len(B), len(C)) and a boolean
"computed" mask marking the pairs that actually share support:

    prod:       sum_k v1_k * v2_k
    min:        sum_k min(v1_k, v2_k)      over features nonzero in both rows
    softprod:   v1^T S v2                  (S = feature adjacency matrix)
    maxproduct: max_k v1_k * v2_k          over features nonzero in both rows

Only nonzero feature intersections are visited. For a given pair, per-feature
contributions are accumulated in ascending feature order, so a score does not
depend on how rows were grouped into batches.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

import numpy as np
from scipy.sparse import csc_matrix, csr_matrix

from newsflow.errors import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from numpy.typing import NDArray


class CrossFun(str, Enum):
    PROD = "prod"
    MIN = "min"
    SOFTPROD = "softprod"
    MAXPRODUCT = "maxproduct"

    @classmethod
    def parse(cls, value: str | CrossFun) -> CrossFun:
        try:
            return cls(value)
        except ValueError:
            options = ", ".join(c.value for c in cls)
            raise ConfigurationError(
                f"Unknown crossfun {value!r} (expected one of: {options})"
            ) from None


def _pattern(m: csr_matrix | csc_matrix):
    b = m.copy()
    b.data = np.ones_like(b.data)
    return b


def _shared_support(left: csr_matrix, right: csr_matrix) -> NDArray[np.bool_]:
    return (_pattern(left) @ _pattern(right).T).toarray() > 0


def score_prod(left: csr_matrix, right: csr_matrix) -> tuple[NDArray, NDArray]:
    scores = (left @ right.T).toarray()
    return scores, _shared_support(left, right)


def score_softprod(
    left: csr_matrix,
    right: csr_matrix,
    simmat: csc_matrix,
) -> tuple[NDArray, NDArray]:
    scores = (left @ simmat @ right.T).toarray()
    computed = (_pattern(left) @ _pattern(simmat) @ _pattern(right).T).toarray() > 0
    return scores, computed


def _elementwise(
    left: csr_matrix,
    right: csr_matrix,
    maximum: bool,
) -> tuple[NDArray, NDArray]:
    """Per-feature outer updates over the features both sides use."""
    lc = csc_matrix(left)
    rc = csc_matrix(right)
    lc.sort_indices()
    rc.sort_indices()
    shape = (left.shape[0], right.shape[0])
    computed = np.zeros(shape, dtype=bool)
    scores = np.full(shape, -np.inf) if maximum else np.zeros(shape)

    shared = np.flatnonzero((np.diff(lc.indptr) > 0) & (np.diff(rc.indptr) > 0))
    for k in shared:
        li = lc.indices[lc.indptr[k]:lc.indptr[k + 1]]
        lv = lc.data[lc.indptr[k]:lc.indptr[k + 1]]
        ri = rc.indices[rc.indptr[k]:rc.indptr[k + 1]]
        rv = rc.data[rc.indptr[k]:rc.indptr[k + 1]]
        cell = np.ix_(li, ri)
        if maximum:
            scores[cell] = np.maximum(scores[cell], np.multiply.outer(lv, rv))
        else:
            scores[cell] += np.minimum.outer(lv, rv)
        computed[cell] = True

    if maximum:
        scores[~computed] = 0.0
    return scores, computed


def score_min(left: csr_matrix, right: csr_matrix) -> tuple[NDArray, NDArray]:
    return _elementwise(left, right, maximum=False)


def score_maxproduct(left: csr_matrix, right: csr_matrix) -> tuple[NDArray, NDArray]:
    return _elementwise(left, right, maximum=True)


def score_block(
    crossfun: CrossFun,
    left: csr_matrix,
    right: csr_matrix,
    simmat: csc_matrix | None = None,
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """
    Raw scores for every (left row, right row) pair.

    Args:
        crossfun: Scoring rule
        left: Batch rows of the primary matrix (n_batch, n_features)
        right: Candidate rows of the secondary matrix (n_candidates, n_features)
        simmat: Feature adjacency matrix, required for softprod

    Returns:
        (scores, computed), both of shape (n_batch, n_candidates)
    """
    if crossfun is CrossFun.PROD:
        return score_prod(left, right)
    if crossfun is CrossFun.MIN:
        return score_min(left, right)
    if crossfun is CrossFun.MAXPRODUCT:
        return score_maxproduct(left, right)
    if simmat is None:
        raise ValidationError("crossfun='softprod' requires simmat")
    return score_softprod(left, right, simmat)


def score_pair(
    crossfun: CrossFun,
    v1: NDArray[np.float64],
    v2: NDArray[np.float64],
    simmat: NDArray[np.float64] | None = None,
) -> float:
    """Score of two dense row vectors (reference for a single pair)."""
    crossfun = CrossFun.parse(crossfun)
    v1 = np.asarray(v1, dtype=np.float64)
    v2 = np.asarray(v2, dtype=np.float64)
    shared = (v1 != 0) & (v2 != 0)
    if crossfun is CrossFun.PROD:
        return float(v1 @ v2)
    if crossfun is CrossFun.MIN:
        return float(np.minimum(v1[shared], v2[shared]).sum())
    if crossfun is CrossFun.MAXPRODUCT:
        return float((v1[shared] * v2[shared]).max()) if shared.any() else 0.0
    if simmat is None:
        raise ValidationError("crossfun='softprod' requires simmat")
    return float(v1 @ np.asarray(simmat, dtype=np.float64) @ v2)


__all__ = [
    "CrossFun",
    "score_block",
    "score_pair",
    "score_prod",
    "score_min",
    "score_softprod",
    "score_maxproduct",
]
