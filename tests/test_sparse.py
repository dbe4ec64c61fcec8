import numpy as np
import pytest
from scipy.sparse import csr_matrix

from newsflow.errors import ValidationError
from newsflow.sparse import SparseMatrix, as_sparse_matrix


def test_from_dense_drops_zeros_and_sorts():
    m = SparseMatrix.from_dense([[0, 2, 0], [1, 0, 3], [4, 0, 0]])

    assert m.shape == (3, 3)
    assert m.nnz == 4
    assert list(m.entries()) == [(1, 0, 1.0), (2, 0, 4.0), (0, 1, 2.0), (1, 2, 3.0)]


def test_from_triplets_sums_duplicates():
    m = SparseMatrix.from_triplets([0, 0, 1], [1, 1, 0], [1.0, 2.0, 5.0], shape=(2, 2))

    assert m.get(0, 1) == 3.0
    assert m.get(1, 0) == 5.0
    assert m.get(1, 1) == 0.0
    assert m.nnz == 2


def test_row_access_and_sums():
    m = SparseMatrix(csr_matrix(np.array([[1.0, 0.0, 2.0], [0.0, 3.0, 0.0]])))

    idx, values = m.row(0)
    assert idx.tolist() == [0, 2]
    assert values.tolist() == [1.0, 2.0]
    assert m.rowsum().tolist() == [3.0, 3.0]
    assert m.colsum().tolist() == [1.0, 3.0, 2.0]
    assert m.row_nnz().tolist() == [2, 1]


def test_storage_is_read_only():
    m = SparseMatrix.from_dense([[1, 2], [3, 4]])

    with pytest.raises(ValueError):
        m.data[0] = 10.0


def test_to_scipy_returns_independent_copy():
    m = SparseMatrix.from_dense([[1, 2], [3, 4]])
    copy = m.to_scipy()
    copy.data[:] = 0

    assert m.toarray().tolist() == [[1.0, 2.0], [3.0, 4.0]]


def test_transpose_binary_and_equality():
    m = SparseMatrix.from_dense([[0, 2.5], [1, 0]])

    assert m.T.toarray().tolist() == [[0.0, 1.0], [2.5, 0.0]]
    assert m.binary().toarray().tolist() == [[0.0, 1.0], [1.0, 0.0]]
    assert m == SparseMatrix.from_dense([[0, 2.5], [1, 0]])
    assert m != m.binary()


def test_as_sparse_matrix_passthrough_and_validation():
    m = SparseMatrix.from_dense([[1]])
    assert as_sparse_matrix(m) is m

    with pytest.raises(ValidationError):
        as_sparse_matrix(np.array([1, 2, 3]))
