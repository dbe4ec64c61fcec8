import numpy as np
import pytest

from newsflow.crossprod import CrossprodOptions, cross_similarity, cross_similarity_options
from newsflow.errors import ConfigurationError, CrossprodCancelled, ValidationError
from newsflow.sparse import SparseMatrix
from newsflow.window import WindowIndex

HOUR = 3600.0


@pytest.fixture
def dtm():
    rng = np.random.default_rng(42)
    m = rng.integers(1, 4, size=(40, 25)) * (rng.random((40, 25)) < 0.2)
    dates = rng.uniform(0, 72 * HOUR, size=40)
    groups = rng.choice(["a", "b", "c"], size=40).tolist()
    return SparseMatrix(m), dates, groups


def _cosine(dense):
    norms = np.linalg.norm(dense, axis=1)
    norms[norms == 0] = 1.0
    unit = dense / norms[:, None]
    return unit @ unit.T


# =============================================================================
# Scenarios
# =============================================================================


def test_cosine_single_upper_entry():
    m = [[1, 1, 0], [0, 1, 1]]

    result = cross_similarity(
        m, normalize="l2", crossfun="prod", min_value=0, only_upper=True, diag=False
    )

    entries = list(result.entries())
    assert len(entries) == 1
    i, j, value = entries[0]
    assert (i, j) == (0, 1)
    assert np.isclose(value, 0.5)


def test_min_overlap_divided_by_rowsum():
    m = [[1, 1, 0], [0, 1, 1]]

    result = cross_similarity(m, crossfun="min", rowsum_div=True)

    assert np.isclose(result.get(0, 1), 0.5)
    assert np.isclose(result.get(1, 0), 0.5)
    assert np.isclose(result.get(0, 0), 1.0)


def test_rowsum_div_uses_unnormalized_rows():
    m = [[2, 2, 0], [0, 1, 1]]

    result = cross_similarity(m, normalize="l2", crossfun="prod", rowsum_div=True, diag=False)

    # cosine 0.5 divided by the raw row sums 4 and 2
    assert np.isclose(result.get(0, 1), 0.5 / 4)
    assert np.isclose(result.get(1, 0), 0.5 / 2)


def test_top_n_one_keeps_each_rows_best_off_diagonal():
    dense = np.array([[1.0, 2.0, 3.0], [3.0, 1.0, 2.0], [1.0, 1.0, 5.0]])

    result = cross_similarity(dense, top_n=1, diag=False)

    full = dense @ dense.T
    np.fill_diagonal(full, -np.inf)
    out = result.toarray()
    for i in range(3):
        assert np.count_nonzero(out[i]) == 1
        j = int(np.argmax(full[i]))
        assert out[i, j] == full[i, j]


def test_rowsum_div_zero_sum_row_scores_zero():
    m = [[1, -1], [1, 0]]

    result = cross_similarity(m, rowsum_div=True)

    # row 0 has products 2 and 1 but sums to 0
    assert result.toarray().tolist() == [[0.0, 0.0], [1.0, 1.0]]


@pytest.mark.parametrize("offset_hours, included", [(24, True), (25, False)])
def test_hours_window_has_inclusive_right_bound(offset_hours, included):
    m = [[1, 0], [1, 0]]

    result = cross_similarity(
        m,
        diag=False,
        date=[0.0, offset_hours * HOUR],
        lwindow=0,
        rwindow=24,
        date_unit="hours",
    )

    assert (result.get(0, 1) == 1.0) is included
    assert result.get(1, 0) == 0.0


def test_dates_as_datetime64():
    m = [[1, 0], [1, 0]]
    dates = np.array(["2024-01-01T00:00", "2024-01-02T00:00"], dtype="datetime64[m]")

    result = cross_similarity(m, m, date=dates, date2=dates, lwindow=0, rwindow=1)

    assert list(result.entries()) == [(0, 0, 1.0), (0, 1, 1.0), (1, 1, 1.0)]


def test_maxproduct_query_lookup():
    query = [[0.5, 3.0, 0.0], [1.0, 1.0, 1.0]]
    lookup = [[1, 1, 0], [0, 0, 1], [0, 0, 0]]

    result = cross_similarity(query, lookup, crossfun="maxproduct")

    assert result.toarray().tolist() == [[3.0, 0.0, 0.0], [1.0, 1.0, 0.0]]


def test_soft_cosine_between_related_terms():
    m = [[1, 0], [0, 1]]
    simmat = [[1.0, 0.5], [0.5, 1.0]]

    result = cross_similarity(m, normalize="softl2", crossfun="softprod", simmat=simmat, diag=False)

    assert np.isclose(result.get(0, 1), 0.5)


def test_simmat_threshold_prunes_weak_links():
    m = [[1, 0], [0, 1]]
    simmat = [[1.0, 0.3], [0.3, 1.0]]

    result = cross_similarity(m, crossfun="softprod", simmat=simmat, simmat_thres=0.5, diag=False)

    assert result.nnz == 0


# =============================================================================
# Properties
# =============================================================================


def test_upper_without_diag_mirrors_to_full_matrix(dtm):
    m, _, _ = dtm

    upper = cross_similarity(m, normalize="l2", only_upper=True, diag=False).toarray()
    full = cross_similarity(m, normalize="l2", diag=False).toarray()

    assert np.allclose(upper + upper.T, full)
    assert np.allclose(np.tril(upper), 0.0)


def test_cosine_bounds(dtm):
    m, _, _ = dtm
    rng = np.random.default_rng(3)
    signed = m.toarray() * rng.choice([-1.0, 1.0], size=m.shape)

    positive = cross_similarity(m, normalize="l2").data
    general = cross_similarity(signed, normalize="l2").data

    assert positive.min() >= 0 and positive.max() <= 1 + 1e-12
    assert general.min() >= -1 - 1e-12 and general.max() <= 1 + 1e-12
    assert np.allclose(cross_similarity(m, normalize="l2").toarray(), _cosine(m.toarray()))


@pytest.mark.parametrize("top_n", [1, 3])
def test_top_n_cap(dtm, top_n):
    m, _, _ = dtm

    result = cross_similarity(m, normalize="l2", top_n=top_n)

    assert (result.row_nnz() <= top_n).all()


def test_window_and_group_correctness(dtm):
    m, dates, groups = dtm

    result = cross_similarity(
        m, group=groups, date=dates, lwindow=-6, rwindow=12, date_unit="hours", batchsize=7
    )

    assert result.nnz > 0
    for i, j, _ in result.entries():
        assert groups[i] == groups[j]
        assert -6 * HOUR <= dates[j] - dates[i] <= 12 * HOUR

    # everything eligible and sharing a term is present
    dense = m.toarray() @ m.toarray().T
    out = result.toarray()
    for i in range(m.rows):
        for j in range(m.rows):
            eligible = groups[i] == groups[j] and -6 * HOUR <= dates[j] - dates[i] <= 12 * HOUR
            assert out[i, j] == (dense[i, j] if eligible else 0.0)


def test_threshold_correctness(dtm):
    m, _, _ = dtm

    result = cross_similarity(m, normalize="l2", min_value=0.2, max_value=0.6)

    assert result.nnz > 0
    assert (result.data >= 0.2).all() and (result.data <= 0.6).all()


@pytest.mark.parametrize("crossfun", ["prod", "min", "maxproduct"])
@pytest.mark.parametrize("zscore", [False, True])
def test_output_independent_of_batching_and_workers(dtm, crossfun, zscore):
    m, dates, groups = dtm
    kwargs = dict(
        crossfun=crossfun,
        normalize="l2",
        zscore=zscore,
        top_n=4,
        group=groups,
        date=dates,
        lwindow=-24,
        rwindow=24,
        date_unit="hours",
    )

    reference = cross_similarity(m, batchsize=1000, workers=1, **kwargs)
    for batchsize, workers in [(1, 1), (3, 4), (16, 8)]:
        assert cross_similarity(m, batchsize=batchsize, workers=workers, **kwargs) == reference


@pytest.mark.parametrize("zscore", [False, True])
def test_soft_cosine_independent_of_batching_and_workers(dtm, zscore):
    m, dates, groups = dtm
    rng = np.random.default_rng(7)
    linked = rng.random((25, 25)) < 0.1
    simmat = 0.5 * (linked | linked.T)
    np.fill_diagonal(simmat, 1.0)
    kwargs = dict(
        crossfun="softprod",
        normalize="softl2",
        simmat=simmat,
        zscore=zscore,
        top_n=4,
        group=groups,
        date=dates,
        lwindow=-24,
        rwindow=24,
        date_unit="hours",
    )

    reference = cross_similarity(m, batchsize=1000, workers=1, **kwargs)
    assert reference.nnz > 0
    for batchsize, workers in [(1, 1), (3, 4), (16, 8)]:
        assert cross_similarity(m, batchsize=batchsize, workers=workers, **kwargs) == reference


def test_window_order_ignored_without_dates():
    result = cross_similarity([[1, 0], [0, 1]], lwindow=5, rwindow=1)

    assert result.toarray().tolist() == [[1.0, 0.0], [0.0, 1.0]]


def test_window_order_checked_with_dates():
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0], [0, 1]], date=[0.0, 1.0], lwindow=5, rwindow=1)


def test_two_matrix_comparison_shape(dtm):
    m, dates, _ = dtm
    m2 = SparseMatrix(m.to_scipy()[:10])

    result = cross_similarity(m, m2, date=dates, date2=dates[:10], lwindow=-1, rwindow=1)

    assert result.shape == (40, 10)


def test_empty_result_is_not_an_error():
    result = cross_similarity([[1, 0], [0, 1]], diag=False)

    assert result.shape == (2, 2)
    assert result.nnz == 0


def test_options_object_and_keyword_override():
    m = [[1, 1, 0], [0, 1, 1]]
    options = CrossprodOptions(normalize="l2", diag=False)

    assert cross_similarity_options(m, options=options).nnz == 2
    assert cross_similarity(m, options=options, only_upper=True).nnz == 1


def test_cancellation_between_batches(dtm):
    m, _, _ = dtm
    calls = []

    def should_stop():
        calls.append(1)
        return len(calls) > 2

    with pytest.raises(CrossprodCancelled):
        cross_similarity(m, batchsize=5, workers=1, should_stop=should_stop)


@pytest.mark.parametrize("stop_after", [0, 5])
def test_parallel_cancellation_bounds_queued_batches(dtm, monkeypatch, stop_after):
    m, _, _ = dtm
    built = []
    polls = []
    candidates = WindowIndex.candidates

    def counting_candidates(self, rows):
        built.append(len(rows))
        return candidates(self, rows)

    def should_stop():
        polls.append(1)
        return len(polls) > stop_after

    monkeypatch.setattr(WindowIndex, "candidates", counting_candidates)

    with pytest.raises(CrossprodCancelled):
        cross_similarity(m, batchsize=1, workers=2, should_stop=should_stop)

    # one batch is built per poll that let the run continue
    assert len(built) == stop_after
    assert len(built) < m.rows


# =============================================================================
# Validation
# =============================================================================


@pytest.mark.parametrize(
    "kwargs",
    [
        {"only_upper": True},
        {"diag": False},
        {"zscore": True},
    ],
)
def test_symmetric_only_options_need_equal_rows(kwargs):
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0], [0, 1]], [[1, 1]], **kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"crossfun": "softprod"},
        {"normalize": "softl2"},
        {"min_value": 1.0, "max_value": 0.5},
        {"top_n": 0},
        {"batchsize": 0},
        {"group": ["a"]},
        {"date": [0.0, 1.0, 2.0]},
        {"crossfun": "softprod", "simmat": [[1.0]]},
    ],
)
def test_invalid_inputs(kwargs):
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0], [0, 1]], **kwargs)


def test_two_matrices_need_metadata_for_both_sides():
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0]], [[1, 0]], group=["a"])
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0]], [[1, 0]], date=[0.0])


def test_column_mismatch():
    with pytest.raises(ValidationError):
        cross_similarity([[1, 0]], [[1, 0, 0]])


@pytest.mark.parametrize(
    "kwargs",
    [{"crossfun": "cosine"}, {"normalize": "l1"}, {"date_unit": "weeks"}],
)
def test_unknown_tokens(kwargs):
    with pytest.raises(ConfigurationError):
        cross_similarity([[1, 0], [0, 1]], **kwargs)
