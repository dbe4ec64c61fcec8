"""Partition primary rows into batches and narrow each batch's candidates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

import numpy as np

from newsflow.errors import ValidationError
from newsflow.window import WindowIndex

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass(frozen=True)
class Batch:
    """Consecutive primary rows and the secondary rows they may be paired with."""

    number: int
    rows: NDArray[np.int64]
    candidates: NDArray[np.int64]

    @property
    def block_size(self) -> int:
        return len(self.rows) * len(self.candidates)


class BatchScheduler:
    """Yields fixed-size batches over ``range(n_rows)``; the last may be smaller."""

    def __init__(self, n_rows: int, batchsize: int, index: WindowIndex):
        if batchsize < 1:
            raise ValidationError(f"batchsize must be a positive integer, got {batchsize}")
        self.n_rows = n_rows
        self.batchsize = int(batchsize)
        self.index = index

    def __len__(self) -> int:
        return (self.n_rows + self.batchsize - 1) // self.batchsize

    def batches(self) -> Iterator[Batch]:
        for number, start in enumerate(range(0, self.n_rows, self.batchsize)):
            rows = np.arange(start, min(start + self.batchsize, self.n_rows), dtype=np.int64)
            yield Batch(number, rows, self.index.candidates(rows))

    def __iter__(self) -> Iterator[Batch]:
        return self.batches()


__all__ = ["Batch", "BatchScheduler"]
