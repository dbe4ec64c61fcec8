"""
Windowed sparse cross product.

Computes scores between the rows of a primary matrix M and a secondary
matrix M2 (M itself when omitted), restricted to row pairs allowed by group
and date-window constraints, and keeps only entries that survive the value
filters. The result is a sparse (M.rows x M2.rows) matrix.

Pipeline per call:
    validate -> normalize -> build window index
    -> for each batch: candidates -> score -> post-filter -> accumulate
    -> assemble

Batches are independent. With ``workers > 1`` they are scored in a thread
pool (scipy/numpy release the GIL in the heavy parts) and collected in batch
order, so the result is identical for any worker count or batch size.

Usage:
    from newsflow.crossprod import cross_similarity

    # cosine similarity between documents published within 24 hours
    scores = cross_similarity(
        dtm, normalize="l2", min_value=0.3, only_upper=True, diag=False,
        date=dates, lwindow=0, rwindow=24, date_unit="hours",
    )
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Hashable, Sequence

import numpy as np
from tqdm import tqdm

from newsflow.assemble import ResultAssembler, Triplets
from newsflow.batching import Batch, BatchScheduler
from newsflow.config import (
    DEFAULT_BATCHSIZE,
    DEFAULT_WORKERS,
    MAX_PENDING_PER_WORKER,
    MIN_BATCHES_FOR_PARALLEL,
)
from newsflow.errors import CrossprodCancelled, ValidationError
from newsflow.filters import PostFilter
from newsflow.kernels import CrossFun, score_block
from newsflow.normalize import NormMode, normalize_rows, prune_adjacency
from newsflow.sparse import SparseMatrix, as_sparse_matrix
from newsflow.window import DateUnit, WindowIndex, WindowSpec

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass
class CrossprodOptions:
    """Options of a cross_similarity call."""
    min_value: float | None = None
    max_value: float | None = None
    only_upper: bool = False
    diag: bool = True
    top_n: int | None = None
    rowsum_div: bool = False
    zscore: bool = False
    normalize: str = "none"
    crossfun: str = "prod"
    # Row metadata
    group: Sequence[Hashable] | None = None
    group2: Sequence[Hashable] | None = None
    date: Sequence[Any] | None = None
    date2: Sequence[Any] | None = None
    lwindow: float = -1.0
    rwindow: float = 1.0
    date_unit: str = "days"
    # Feature adjacency for softprod / softl2
    simmat: Any = None
    simmat_thres: float | None = None
    # Execution
    batchsize: int = DEFAULT_BATCHSIZE
    workers: int = DEFAULT_WORKERS
    verbose: bool = False
    should_stop: Callable[[], bool] | None = None


@dataclass
class _Plan:
    """Validated, normalized inputs shared read-only by all batches."""
    m: SparseMatrix
    m2: SparseMatrix
    rowsum: NDArray[np.float64] | None
    simmat: Any
    crossfun: CrossFun
    index: WindowIndex
    post: PostFilter


# =============================================================================
# Validation
# =============================================================================


def _validate(m: SparseMatrix, m2: SparseMatrix | None, opts: CrossprodOptions) -> _Plan:
    crossfun = CrossFun.parse(opts.crossfun)
    norm = NormMode.parse(opts.normalize)
    unit = DateUnit.parse(opts.date_unit)

    symmetric = m2 is None
    other = m if symmetric else m2
    if other.cols != m.cols:
        raise ValidationError(
            f"M and M2 must have the same number of columns ({m.cols} != {other.cols})"
        )
    if m.rows != other.rows:
        for name, requested in (
            ("only_upper", opts.only_upper),
            ("diag=False", not opts.diag),
            ("zscore", opts.zscore),
        ):
            if requested:
                raise ValidationError(
                    f"{name} requires M and M2 to have the same number of rows "
                    f"({m.rows} != {other.rows})"
                )
    if opts.min_value is not None and opts.max_value is not None and opts.max_value < opts.min_value:
        raise ValidationError(
            f"max_value ({opts.max_value}) must not be smaller than min_value ({opts.min_value})"
        )
    if opts.top_n is not None and (int(opts.top_n) != opts.top_n or opts.top_n < 1):
        raise ValidationError(f"top_n must be a positive integer, got {opts.top_n}")
    if opts.batchsize is None or int(opts.batchsize) != opts.batchsize or opts.batchsize < 1:
        raise ValidationError(f"batchsize must be a positive integer, got {opts.batchsize}")

    simmat = None
    if crossfun is CrossFun.SOFTPROD or norm is NormMode.SOFTL2:
        if opts.simmat is None:
            raise ValidationError(
                f"crossfun={crossfun.value!r} with normalize={norm.value!r} requires simmat"
            )
        simmat = prune_adjacency(opts.simmat, opts.simmat_thres)
        if simmat.shape != (m.cols, m.cols):
            raise ValidationError(
                f"simmat must be {m.cols} x {m.cols} to match the feature count, got {simmat.shape}"
            )

    # the window only constrains pairs when dates are given
    has_dates = opts.date is not None or opts.date2 is not None
    index = WindowIndex.build(
        m.rows,
        other.rows,
        group=opts.group,
        group2=opts.group2,
        date=opts.date,
        date2=opts.date2,
        window=WindowSpec(opts.lwindow, opts.rwindow, unit) if has_dates else None,
        symmetric=symmetric,
    )

    rowsum = m.rowsum() if opts.rowsum_div else None
    mn = normalize_rows(m, norm, simmat)
    m2n = mn if symmetric else normalize_rows(m2, norm, simmat)

    post = PostFilter(
        min_value=opts.min_value,
        max_value=opts.max_value,
        only_upper=opts.only_upper,
        diag=opts.diag,
        top_n=None if opts.top_n is None else int(opts.top_n),
        zscore=opts.zscore,
    )
    return _Plan(
        m=mn,
        m2=m2n,
        rowsum=rowsum,
        simmat=None if simmat is None else simmat.to_scipy(),
        crossfun=crossfun,
        index=index,
        post=post,
    )


# =============================================================================
# Batch scoring
# =============================================================================


_EMPTY: Triplets = (
    np.array([], dtype=np.int64),
    np.array([], dtype=np.int64),
    np.array([], dtype=np.float64),
)


def _score_batch(plan: _Plan, batch: Batch) -> Triplets:
    if len(batch.candidates) == 0:
        return _EMPTY
    left = plan.m.select_rows(batch.rows)
    right = plan.m2.select_rows(batch.candidates)
    scores, computed = score_block(plan.crossfun, left, right, plan.simmat)

    if plan.index.constrained:
        computed &= plan.index.eligible_block(batch.rows, batch.candidates)
    if plan.rowsum is not None:
        rowsum = plan.rowsum[batch.rows]
        positive = rowsum != 0
        scores[positive] /= rowsum[positive, None]
        computed[~positive] = False

    triplets = plan.post.apply(batch.rows, batch.candidates, scores, computed)
    logger.debug(
        "Batch %d: %d rows x %d candidates, %d kept",
        batch.number, len(batch.rows), len(batch.candidates), len(triplets[2]),
    )
    return triplets


def _run_batches(
    plan: _Plan,
    scheduler: BatchScheduler,
    workers: int,
    verbose: bool,
    should_stop: Callable[[], bool] | None,
) -> ResultAssembler:
    assembler = ResultAssembler(plan.m.rows, plan.m2.rows)
    progress = tqdm(total=len(scheduler), desc="Batches", disable=not verbose)

    def check_stop() -> None:
        if should_stop is not None and should_stop():
            raise CrossprodCancelled("cross_similarity was cancelled between batches")

    try:
        if workers <= 1 or len(scheduler) < MIN_BATCHES_FOR_PARALLEL:
            for batch in scheduler:
                check_stop()
                assembler.add(_score_batch(plan, batch))
                progress.update(1)
        else:
            ex = ThreadPoolExecutor(max_workers=workers)
            batches = iter(scheduler)
            pending: deque = deque()
            try:
                while True:
                    while len(pending) < workers * MAX_PENDING_PER_WORKER:
                        check_stop()
                        batch = next(batches, None)
                        if batch is None:
                            break
                        pending.append(ex.submit(_score_batch, plan, batch))
                    if not pending:
                        break
                    # oldest first, so results arrive in batch order
                    assembler.add(pending.popleft().result())
                    progress.update(1)
            finally:
                ex.shutdown(wait=True, cancel_futures=True)
    finally:
        progress.close()
    return assembler


# =============================================================================
# Entry point
# =============================================================================


def cross_similarity(
    m,
    m2=None,
    options: CrossprodOptions | None = None,
    **kwargs,
) -> SparseMatrix:
    """
    Score row pairs of ``m`` against ``m2`` (or against ``m`` itself).

    Args:
        m: Primary matrix (SparseMatrix, scipy sparse matrix or 2-D array)
        m2: Optional secondary matrix with the same columns
        options: CrossprodOptions; keyword arguments override its fields
        **kwargs: Any CrossprodOptions field (min_value, top_n, crossfun, ...)

    Returns:
        SparseMatrix of shape (m.rows, m2.rows) holding the surviving scores

    Raises:
        ValidationError: inconsistent inputs, detected before scoring
        ConfigurationError: unknown crossfun, normalize or date_unit
        CrossprodCancelled: ``should_stop`` returned True between batches
    """
    if options is None:
        opts = CrossprodOptions(**kwargs)
    else:
        opts = dataclasses.replace(options, **kwargs)

    start = time.perf_counter()
    m = as_sparse_matrix(m)
    m2 = None if m2 is None else as_sparse_matrix(m2)
    plan = _validate(m, m2, opts)
    scheduler = BatchScheduler(plan.m.rows, opts.batchsize, plan.index)
    workers = DEFAULT_WORKERS if opts.workers is None else int(opts.workers)

    assembler = _run_batches(plan, scheduler, workers, opts.verbose, opts.should_stop)
    result = assembler.build()
    logger.info(
        "cross_similarity(%s, %s): %d x %d, %d batches, %d entries in %.1fms",
        plan.crossfun.value, opts.normalize, result.rows, result.cols,
        len(scheduler), result.nnz, (time.perf_counter() - start) * 1000,
    )
    return result


def cross_similarity_options(m, m2=None, options: CrossprodOptions | None = None) -> SparseMatrix:
    return cross_similarity(m, m2, options or CrossprodOptions())


__all__ = ["CrossprodOptions", "cross_similarity", "cross_similarity_options"]
