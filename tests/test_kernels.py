import numpy as np
import pytest
from scipy.sparse import csr_matrix

from newsflow.errors import ConfigurationError, ValidationError
from newsflow.kernels import CrossFun, score_block, score_pair


@pytest.fixture
def random_rows():
    rng = np.random.default_rng(7)
    left = rng.normal(size=(6, 12)) * (rng.random((6, 12)) < 0.4)
    right = rng.normal(size=(5, 12)) * (rng.random((5, 12)) < 0.4)
    right[4] = 0.0
    simmat = rng.random((12, 12)) * (rng.random((12, 12)) < 0.3)
    simmat = (simmat + simmat.T) / 2
    np.fill_diagonal(simmat, 1.0)
    return left, right, simmat


@pytest.mark.parametrize("crossfun", list(CrossFun))
def test_block_matches_pairwise_reference(random_rows, crossfun):
    left, right, simmat = random_rows

    scores, computed = score_block(
        crossfun, csr_matrix(left), csr_matrix(right), csr_matrix(simmat).tocsc()
    )

    assert scores.shape == (6, 5)
    for i in range(6):
        for j in range(5):
            expected = score_pair(crossfun, left[i], right[j], simmat)
            assert np.isclose(scores[i, j], expected), (crossfun, i, j)
    # the all-zero candidate row is never computed
    assert not computed[:, 4].any()


@pytest.mark.parametrize(
    "crossfun, expected",
    [
        ("prod", 1 * 3 + 2 * 1),
        ("min", 1 + 1),
        ("maxproduct", 3),
    ],
)
def test_known_values(crossfun, expected):
    left = csr_matrix(np.array([[1.0, 2.0, 0.0, 4.0]]))
    right = csr_matrix(np.array([[3.0, 1.0, 5.0, 0.0]]))

    scores, computed = score_block(CrossFun.parse(crossfun), left, right)

    assert scores[0, 0] == expected
    assert computed[0, 0]


def test_softprod_credits_related_features():
    left = csr_matrix(np.array([[1.0, 0.0]]))
    right = csr_matrix(np.array([[0.0, 1.0]]))
    simmat = csr_matrix(np.array([[1.0, 0.5], [0.5, 1.0]])).tocsc()

    plain, plain_computed = score_block(CrossFun.PROD, left, right)
    soft, soft_computed = score_block(CrossFun.SOFTPROD, left, right, simmat)

    assert plain[0, 0] == 0.0 and not plain_computed[0, 0]
    assert soft[0, 0] == 0.5 and soft_computed[0, 0]


def test_softprod_requires_simmat():
    m = csr_matrix(np.eye(2))
    with pytest.raises(ValidationError):
        score_block(CrossFun.SOFTPROD, m, m)


def test_unknown_crossfun():
    with pytest.raises(ConfigurationError):
        CrossFun.parse("cosine")
