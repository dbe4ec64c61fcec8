"""
Per-batch post-filtering of raw scores.

Steps, in order:
    1. zscore      row-wise standardization over the row's computed entries
    2. threshold   min_value <= score <= max_value (None = unbounded)
    3. only_upper  drop entries below the diagonal
    4. diag        drop entries on the diagonal when diag=False
    5. top_n       keep the top_n highest entries per row (ties: lower column first)

Exact zeros are dropped before top_n, since they are never stored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


def zscore_rows(
    scores: NDArray[np.float64],
    computed: NDArray[np.bool_],
) -> tuple[NDArray[np.float64], NDArray[np.bool_]]:
    """
    Standardize each row over its computed entries.

    Uses the sample standard deviation. Rows with fewer than two computed
    entries, or with zero spread, have no defined z-score and lose all entries.
    Sums are exactly rounded (math.fsum), so the statistics of a row do not
    depend on which other candidates share its batch.
    """
    z = np.zeros_like(scores)
    out = np.zeros_like(computed)
    for r in range(scores.shape[0]):
        cols = np.flatnonzero(computed[r])
        if len(cols) < 2:
            continue
        values = scores[r, cols]
        mean = math.fsum(values) / len(values)
        sd = math.sqrt(math.fsum((values - mean) ** 2) / (len(values) - 1))
        if sd == 0:
            continue
        z[r, cols] = (values - mean) / sd
        out[r, cols] = True
    return z, out


def top_n_mask(
    local_rows: NDArray[np.int64],
    cols: NDArray[np.int64],
    values: NDArray[np.float64],
    top_n: int,
) -> NDArray[np.bool_]:
    """Keep the ``top_n`` highest values per row; ties go to the lower column."""
    if len(values) == 0:
        return np.zeros(0, dtype=bool)
    order = np.lexsort((cols, -values, local_rows))
    sorted_rows = local_rows[order]
    starts = np.r_[0, np.flatnonzero(np.diff(sorted_rows)) + 1]
    lengths = np.diff(np.r_[starts, len(sorted_rows)])
    rank = np.arange(len(sorted_rows)) - np.repeat(starts, lengths)
    keep = np.zeros(len(values), dtype=bool)
    keep[order[rank < top_n]] = True
    return keep


@dataclass(frozen=True)
class PostFilter:
    min_value: float | None = None
    max_value: float | None = None
    only_upper: bool = False
    diag: bool = True
    top_n: int | None = None
    zscore: bool = False

    def apply(
        self,
        rows: NDArray[np.int64],
        cols: NDArray[np.int64],
        scores: NDArray[np.float64],
        computed: NDArray[np.bool_],
    ) -> tuple[NDArray[np.int64], NDArray[np.int64], NDArray[np.float64]]:
        """
        Filter one batch's score block.

        Args:
            rows: Global primary row indices of the block rows
            cols: Global secondary row indices of the block columns (ascending)
            scores: Raw scores (len(rows), len(cols))
            computed: Pairs that were eligible and scored

        Returns:
            (row, col, value) triplets of the surviving entries
        """
        if self.zscore:
            scores, computed = zscore_rows(scores, computed)

        keep = computed.copy()
        if self.min_value is not None:
            keep &= scores >= self.min_value
        if self.max_value is not None:
            keep &= scores <= self.max_value
        if self.only_upper:
            keep &= cols[None, :] >= rows[:, None]
        if not self.diag:
            keep &= cols[None, :] != rows[:, None]
        keep &= scores != 0

        local_r, local_c = np.nonzero(keep)
        values = scores[local_r, local_c]
        out_rows = rows[local_r]
        out_cols = cols[local_c]

        if self.top_n is not None:
            sel = top_n_mask(local_r, out_cols, values, self.top_n)
            out_rows, out_cols, values = out_rows[sel], out_cols[sel], values[sel]
        return out_rows, out_cols, values


__all__ = ["PostFilter", "zscore_rows", "top_n_mask"]
