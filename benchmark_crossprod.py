"""
Benchmark cross_similarity execution modes.

Compares:
- sequential: batches scored one after another (workers=1)
- parallel: batches scored in a ThreadPoolExecutor

on a random sparse document x term matrix with dates, and checks that both
modes return the identical score matrix.

Usage:
    uv run python benchmark_crossprod.py
    uv run python benchmark_crossprod.py --num-docs 20000 --crossfun min --window-hours 48
"""

import argparse
import time

import numpy as np

from newsflow.crossprod import cross_similarity
from newsflow.sparse import SparseMatrix


def make_corpus(
    num_docs: int,
    num_terms: int,
    density: float,
    span_days: float,
    seed: int,
) -> tuple[SparseMatrix, np.ndarray]:
    """Random count matrix and uniformly spread publication times (seconds)."""
    rng = np.random.default_rng(seed)
    nnz = int(density * num_docs * num_terms)
    m = SparseMatrix.from_triplets(
        rng.integers(0, num_docs, size=nnz),
        rng.integers(0, num_terms, size=nnz),
        rng.integers(1, 5, size=nnz),
        shape=(num_docs, num_terms),
    )
    dates = np.sort(rng.uniform(0, span_days * 86400, size=num_docs))
    return m, dates


def benchmark_mode(
    m: SparseMatrix,
    dates: np.ndarray,
    args: argparse.Namespace,
    workers: int,
) -> tuple[float, float, SparseMatrix]:
    """
    Time repeated runs of one execution mode.

    Returns:
        (mean_time, std_time, result)
    """
    times = []
    result = None
    for _ in range(args.num_runs):
        start = time.perf_counter()
        result = cross_similarity(
            m,
            normalize="l2",
            crossfun=args.crossfun,
            min_value=args.min_value,
            only_upper=True,
            diag=False,
            date=dates,
            lwindow=-args.window_hours,
            rwindow=args.window_hours,
            date_unit="hours",
            batchsize=args.batchsize,
            workers=workers,
        )
        times.append(time.perf_counter() - start)
    return float(np.mean(times)), float(np.std(times)), result


def main():
    parser = argparse.ArgumentParser(description="Benchmark windowed cross products")
    parser.add_argument("--num-docs", type=int, default=5000, help="Number of documents (default: 5000)")
    parser.add_argument("--num-terms", type=int, default=20000, help="Vocabulary size (default: 20000)")
    parser.add_argument("--density", type=float, default=0.002, help="Nonzero density (default: 0.002)")
    parser.add_argument("--span-days", type=float, default=30.0, help="Days covered by the corpus (default: 30)")
    parser.add_argument("--window-hours", type=float, default=24.0, help="Half window width in hours (default: 24)")
    parser.add_argument("--crossfun", type=str, default="prod", help="prod, min or maxproduct (default: prod)")
    parser.add_argument("--min-value", type=float, default=0.1, help="Score threshold (default: 0.1)")
    parser.add_argument("--batchsize", type=int, default=500, help="Rows per batch (default: 500)")
    parser.add_argument("--workers", type=int, default=8, help="Threads for the parallel run (default: 8)")
    parser.add_argument("--num-runs", type=int, default=3, help="Number of runs for averaging (default: 3)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    print("Generating corpus...")
    m, dates = make_corpus(args.num_docs, args.num_terms, args.density, args.span_days, args.seed)

    print(f"\n{'='*60}")
    print("Benchmark Configuration:")
    print(f"  Documents: {m.rows:,}")
    print(f"  Vocabulary: {m.cols:,}")
    print(f"  Nonzeros: {m.nnz:,}")
    print(f"  Crossfun: {args.crossfun}")
    print(f"  Window: +/- {args.window_hours} hours")
    print(f"  Batch size: {args.batchsize}")
    print(f"  Runs: {args.num_runs}")
    print(f"{'='*60}\n")

    print("Benchmarking sequential (workers=1)...")
    mean1, std1, result1 = benchmark_mode(m, dates, args, workers=1)
    print(f"  Time: {mean1:.3f}s ± {std1:.3f}s")
    print(f"  Entries: {result1.nnz:,}")

    print(f"\nBenchmarking parallel (workers={args.workers})...")
    mean2, std2, result2 = benchmark_mode(m, dates, args, workers=args.workers)
    print(f"  Time: {mean2:.3f}s ± {std2:.3f}s")

    is_identical = result1 == result2

    print(f"\n{'='*60}")
    print("Summary:")
    print(f"{'='*60}")
    speedup = mean1 / mean2 if mean2 > 0 else float("inf")
    print(f"  Speedup: {speedup:.2f}x")
    print(f"  Identical output: {'PASS' if is_identical else 'FAIL'}")
    print(f"{'='*60}")


if __name__ == "__main__":
    main()
