import numpy as np

from newsflow.assemble import ResultAssembler
from newsflow.filters import PostFilter, top_n_mask, zscore_rows


def _apply(post, scores, computed=None, rows=None, cols=None):
    scores = np.asarray(scores, dtype=np.float64)
    if computed is None:
        computed = scores != 0
    rows = np.arange(scores.shape[0]) if rows is None else np.asarray(rows)
    cols = np.arange(scores.shape[1]) if cols is None else np.asarray(cols)
    r, c, v = post.apply(rows, cols, scores, computed)
    return sorted(zip(r.tolist(), c.tolist(), v.tolist()))


def test_threshold_bounds_are_inclusive():
    scores = [[0.1, 0.5, 0.9], [0.2, 0.7, 1.0]]

    kept = _apply(PostFilter(min_value=0.5, max_value=0.9), scores)

    assert kept == [(0, 1, 0.5), (0, 2, 0.9), (1, 1, 0.7)]


def test_only_upper_and_diag_use_global_indices():
    scores = np.ones((2, 4))

    kept = _apply(PostFilter(only_upper=True, diag=False), scores, rows=[2, 3])

    assert [(r, c) for r, c, _ in kept] == [(2, 3)]


def test_uncomputed_and_zero_entries_are_dropped():
    scores = np.array([[0.0, 0.4, 0.3]])
    computed = np.array([[True, True, False]])

    assert _apply(PostFilter(), scores, computed) == [(0, 1, 0.4)]


def test_top_n_breaks_ties_by_lower_column():
    scores = [[0.5, 0.9, 0.5, 0.5], [0.1, 0.2, 0.3, 0.4]]

    kept = _apply(PostFilter(top_n=2), scores)

    assert kept == [(0, 0, 0.5), (0, 1, 0.9), (1, 2, 0.3), (1, 3, 0.4)]


def test_top_n_mask_on_flat_triplets():
    local_rows = np.array([0, 0, 0, 1])
    cols = np.array([5, 3, 9, 1])
    values = np.array([1.0, 1.0, 2.0, 0.5])

    keep = top_n_mask(local_rows, cols, values, 2)

    assert keep.tolist() == [False, True, True, True]


def test_zscore_is_computed_over_computed_entries_only():
    scores = np.array([[1.0, 2.0, 3.0, 100.0], [5.0, 0.0, 0.0, 0.0], [2.0, 2.0, 0.0, 0.0]])
    computed = np.array(
        [[True, True, True, False], [True, False, False, False], [True, True, False, False]]
    )

    z, z_computed = zscore_rows(scores, computed)

    assert np.allclose(z[0, :3], [-1.0, 0.0, 1.0])
    assert z_computed[0].tolist() == [True, True, True, False]
    # a single entry or zero spread has no z-score
    assert not z_computed[1].any()
    assert not z_computed[2].any()


def test_zscore_applies_before_threshold():
    scores = [[1.0, 2.0, 3.0]]

    kept = _apply(PostFilter(zscore=True, min_value=0.5), scores)

    assert kept == [(0, 2, 1.0)]


def test_assembler_orders_column_major_and_drops_zeros():
    assembler = ResultAssembler(3, 3)
    assembler.add((np.array([2, 0]), np.array([1, 1]), np.array([0.5, 0.25])))
    assembler.add((np.array([1, 0]), np.array([0, 2]), np.array([0.0, 0.75])))

    result = assembler.build()

    assert list(result.entries()) == [(0, 1, 0.25), (2, 1, 0.5), (0, 2, 0.75)]


def test_assembler_without_batches_is_empty():
    result = ResultAssembler(2, 5).build()

    assert result.shape == (2, 5)
    assert result.nnz == 0
