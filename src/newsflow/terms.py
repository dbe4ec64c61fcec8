"""
Term-combination utilities built on the cross-product engine.

These operate on a document x term matrix together with its list of term
names, and return new matrices with new term names:

    term_union       OR-merge clusters of similar terms ("a|b")
    term_intersect   AND-combine co-occurring terms ("a&b")
    create_queries   derive sparse query terms and a binary lookup matrix,
                     to be compared with crossfun="maxproduct"

Names that already contain "&" or "|" are wrapped in parentheses when they
are combined again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy.sparse import csc_matrix, diags, triu

from newsflow.crossprod import cross_similarity
from newsflow.errors import ConfigurationError, ValidationError
from newsflow.sparse import SparseMatrix, as_sparse_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

WEIGHTS = ("binary", "docprob", "tfidf")


@dataclass(frozen=True)
class QuerySet:
    """Weighted query matrix, binary lookup matrix and their shared term names."""

    query: SparseMatrix
    lookup: SparseMatrix
    terms: list[str]


def _wrap(term: str) -> str:
    return f"({term})" if ("&" in term or "|" in term) else term


def _check_terms(m: SparseMatrix, terms: Sequence[str]) -> list[str]:
    terms = list(terms)
    if len(terms) != m.cols:
        raise ValidationError(f"Got {len(terms)} term names for a matrix with {m.cols} columns")
    return terms


def _check_simmat(m: SparseMatrix, simmat) -> SparseMatrix:
    simmat = as_sparse_matrix(simmat)
    if simmat.shape != (m.cols, m.cols):
        raise ValidationError(
            f"simmat must be {m.cols} x {m.cols} to match the term count, got {simmat.shape}"
        )
    return simmat


def _drop_empty(
    m: SparseMatrix, terms: list[str]
) -> tuple[SparseMatrix, list[str]]:
    keep = np.flatnonzero(m.col_nnz() > 0)
    if len(keep) == m.cols:
        return m, terms
    return m.select_cols(keep), [terms[k] for k in keep]


def docfreq(m: SparseMatrix) -> NDArray[np.int64]:
    """Number of rows in which each column is nonzero."""
    return m.col_nnz()


# =============================================================================
# Term similarity matrices
# =============================================================================


def term_occur_sim(m, min_cos: float, verbose: bool = False) -> SparseMatrix:
    """Binary term x term adjacency of terms whose column cosine is >= ``min_cos``."""
    m = as_sparse_matrix(m)
    sim = cross_similarity(m.T, normalize="l2", min_value=min_cos, verbose=verbose)
    return sim.binary()


def term_cooccurence_docprob(
    m,
    max_docfreq: float,
    min_docfreq: float | None = None,
    min_obs_exp: float | None = None,
    verbose: bool = False,
) -> SparseMatrix:
    """
    Term x term co-occurrence document frequencies.

    Cell (a, b) counts the rows where both terms occur, kept only if it lies
    within [min_docfreq, max_docfreq]. With ``min_obs_exp``, cells whose
    observed/expected ratio (expected = p_a * p_b * n_rows) is below the
    threshold are dropped.
    """
    m = as_sparse_matrix(m)
    occur = m.binary()
    sim = cross_similarity(
        occur.T, min_value=min_docfreq, max_value=max_docfreq, verbose=verbose
    )
    if min_obs_exp is None or sim.nnz == 0:
        return sim

    coo = sim.to_scipy().tocoo()
    prob = occur.colsum() / max(m.rows, 1)
    expected = prob[coo.row] * prob[coo.col] * m.rows
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = coo.data / expected
    keep = ratio >= min_obs_exp
    return SparseMatrix.from_triplets(
        coo.row[keep], coo.col[keep], coo.data[keep], shape=sim.shape
    )


def rm_comb_if_diag(simmat) -> SparseMatrix:
    """
    Remove combinations for terms that already qualify on their own.

    Terms with a nonzero diagonal (their own document frequency passed the
    filters) lose all off-diagonal combinations; the diagonal is kept.
    """
    simmat = as_sparse_matrix(simmat)
    d = simmat.to_scipy().diagonal()
    has_diag = d > 0
    if not has_diag.any():
        return simmat
    keep = diags((~has_diag).astype(np.float64))
    s = keep @ simmat.to_scipy() @ keep + diags(np.where(has_diag, d, 0.0))
    return SparseMatrix(s)


# =============================================================================
# Combining columns
# =============================================================================


def term_union(
    m,
    terms: Sequence[str],
    simmat,
) -> tuple[SparseMatrix, list[str]]:
    """
    Merge each term with its neighbours in ``simmat`` into one OR-column.

    A term without neighbours keeps its own column. Identical clusters are
    emitted once, and columns without any occurrence are dropped. Values
    are binary.

    Returns:
        (matrix, term names)
    """
    m = as_sparse_matrix(m)
    terms = _check_terms(m, terms)
    adj = _check_simmat(m, simmat)

    seen: set[tuple[int, ...]] = set()
    members: list[tuple[int, ...]] = []
    for j in range(adj.cols):
        rows, _ = adj.column(j)
        cluster = tuple(sorted(set(rows.tolist()) | {j}))
        if cluster not in seen:
            seen.add(cluster)
            members.append(cluster)

    g_rows = np.concatenate([np.array(c, dtype=np.int64) for c in members]) if members else []
    g_cols = np.repeat(np.arange(len(members)), [len(c) for c in members])
    grouping = csc_matrix(
        (np.ones(len(g_rows)), (g_rows, g_cols)), shape=(m.cols, len(members))
    )
    merged = SparseMatrix(m.binary().to_scipy() @ grouping).binary()
    names = [
        terms[c[0]] if len(c) == 1 else "|".join(_wrap(terms[k]) for k in c)
        for c in members
    ]
    logger.debug("term_union: %d terms -> %d columns", len(terms), len(names))
    return _drop_empty(merged, names)


def term_intersect(
    m,
    terms: Sequence[str],
    simmat,
    drop_empty: bool = True,
) -> tuple[SparseMatrix, list[str]]:
    """
    One column per nonzero upper-triangular cell of ``simmat``.

    Diagonal cells keep the term itself; a cell (a, b) with a < b becomes the
    AND-column "a&b", nonzero where both terms occur. Values are binary.

    Returns:
        (matrix, term names)
    """
    m = as_sparse_matrix(m)
    terms = _check_terms(m, terms)
    adj = _check_simmat(m, simmat)

    upper = triu(adj.to_scipy(), k=0).tocsc()
    upper.eliminate_zeros()
    coo = upper.tocoo()
    order = np.lexsort((coo.row, coo.col))
    a = coo.row[order].astype(np.int64)
    b = coo.col[order].astype(np.int64)

    occur = m.binary().to_scipy()
    combined = SparseMatrix(occur[:, a].multiply(occur[:, b]))
    names = [
        terms[i] if i == j else f"{_wrap(terms[i])}&{_wrap(terms[j])}"
        for i, j in zip(a.tolist(), b.tolist())
    ]
    logger.debug("term_intersect: %d terms -> %d columns", len(terms), len(names))
    if drop_empty:
        return _drop_empty(combined, names)
    return combined, names


# =============================================================================
# Queries
# =============================================================================


def weight_queries(m, weight: str = "tfidf", ref=None) -> SparseMatrix:
    """
    Weight the occurrence pattern of ``m``.

    binary:  1 where the term occurs
    docprob: docfreq / n_rows of ``ref`` (rare terms get low values)
    tfidf:   log(1 + n_rows / (docfreq + 1)) of ``ref``

    ``ref`` defaults to ``m`` and must have the same columns.
    """
    if weight not in WEIGHTS:
        raise ConfigurationError(
            f"Unknown weight {weight!r} (expected one of: {', '.join(WEIGHTS)})"
        )
    m = as_sparse_matrix(m)
    occur = m.binary()
    if weight == "binary":
        return occur
    ref = m if ref is None else as_sparse_matrix(ref)
    if ref.cols != m.cols:
        raise ValidationError(f"ref has {ref.cols} columns, expected {m.cols}")

    df = docfreq(ref).astype(np.float64)
    n = ref.rows
    if weight == "docprob":
        w = df / n if n > 0 else np.zeros_like(df)
    else:
        w = np.log(1.0 + n / (df + 1.0))
    return SparseMatrix(occur.to_scipy() @ diags(w))


def create_queries(
    m,
    terms: Sequence[str],
    ref=None,
    ref_terms: Sequence[str] | None = None,
    min_docfreq: int = 2,
    max_docprob: float = 0.001,
    weight: str = "tfidf",
    min_obs_exp: float | None = None,
    union_sim_thres: float | None = None,
    combine_all: bool = True,
    only_dtm_combs: bool = True,
    verbose: bool = False,
) -> QuerySet:
    """
    Derive sparse query terms from single terms and term combinations.

    Terms (and AND-combinations of terms) are kept when their document
    frequency lies within [min_docfreq, max_docprob * n_rows], so that each
    query term is rare enough to be informative. Frequencies and weights come
    from ``ref`` when it is given, otherwise from ``m``.

    Args:
        m: Document x term matrix the queries are built for
        terms: Term names of ``m``
        ref: Optional reference (lookup) matrix
        ref_terms: Term names of ``ref``
        min_docfreq: Minimum document frequency of terms and combinations
        max_docprob: Maximum document probability of terms and combinations
        weight: "tfidf", "binary" or "docprob"
        min_obs_exp: Minimum observed/expected ratio for combinations
        union_sim_thres: If given, first OR-merge terms with cosine >= this value
        combine_all: If False, terms that qualify on their own are not combined
        only_dtm_combs: With ``ref``, keep only combinations occurring in ``m``
        verbose: Show progress bars

    Returns:
        QuerySet with the weighted query matrix (rows of ``m``), the binary
        lookup matrix (rows of ``ref``, or of ``m``) and the shared term names
    """
    m = as_sparse_matrix(m)
    terms = _check_terms(m, terms)
    if weight not in WEIGHTS:
        raise ConfigurationError(
            f"Unknown weight {weight!r} (expected one of: {', '.join(WEIGHTS)})"
        )
    if min_docfreq < 0:
        raise ValidationError("min_docfreq must be zero or higher")
    if max_docprob <= 0 or max_docprob > 1:
        raise ValidationError("max_docprob must be a value between 0 and 1")
    if union_sim_thres is not None and not 0 < union_sim_thres <= 1:
        raise ValidationError("union_sim_thres must be a value between 0 and 1")

    if ref is not None:
        if ref_terms is None:
            raise ValidationError("ref_terms must be given together with ref")
        ref = as_sparse_matrix(ref)
        ref_terms = _check_terms(ref, ref_terms)
        ref_pos = {t: k for k, t in enumerate(ref_terms)}
        frequent = set(np.asarray(ref_terms, dtype=object)[ref.colsum() >= min_docfreq].tolist())
        voc = [t for t in terms if t in frequent]
        work = ref.select_cols([ref_pos[t] for t in voc])
    else:
        keep = np.flatnonzero(docfreq(m) > min_docfreq)
        voc = [terms[k] for k in keep]
        work = m.select_cols(keep)
    work_terms = list(voc)

    simmat1 = None
    if union_sim_thres is not None:
        logger.info("Computing clusters of similar terms")
        simmat1 = term_occur_sim(work, union_sim_thres, verbose=verbose)
        work, work_terms = term_union(work, work_terms, simmat1)

    logger.info("Computing term combinations")
    simmat2 = term_cooccurence_docprob(
        work,
        max_docfreq=max_docprob * work.rows,
        min_docfreq=min_docfreq,
        min_obs_exp=min_obs_exp,
        verbose=verbose,
    )

    if ref is None:
        simmat2 = rm_comb_if_diag(simmat2)
        query, query_terms = term_intersect(work, work_terms, simmat2)
        lookup = None
    else:
        m_pos = {t: k for k, t in enumerate(terms)}
        query = m.select_cols([m_pos[t] for t in voc])
        query_terms = list(voc)
        lookup_base = work
        if simmat1 is not None:
            query, union_terms = term_union(query, query_terms, simmat1)
            work_pos = {t: k for k, t in enumerate(work_terms)}
            q_pos = {t: k for k, t in enumerate(union_terms)}
            query_terms = [t for t in union_terms if t in work_pos]
            shared = [work_pos[t] for t in query_terms]
            simmat2 = SparseMatrix(simmat2.to_scipy()[shared][:, shared])
            lookup_base = work.select_cols(shared)
            query = query.select_cols([q_pos[t] for t in query_terms])

        if only_dtm_combs:
            in_query = term_cooccurence_docprob(query, max_docfreq=query.rows, min_docfreq=1)
            s = simmat2.to_scipy()
            s = s.multiply(in_query.to_scipy() > 0)
            simmat2 = SparseMatrix(s)
        if not combine_all:
            simmat2 = rm_comb_if_diag(simmat2)

        logger.info("Building query and reference matrices")
        query, names = term_intersect(query, query_terms, simmat2, drop_empty=False)
        lookup, _ = term_intersect(lookup_base, query_terms, simmat2, drop_empty=False)
        keep = np.flatnonzero(query.col_nnz() > 0)
        query = query.select_cols(keep)
        lookup = lookup.select_cols(keep)
        query_terms = [names[k] for k in keep]

    if query.cols > 0:
        query = weight_queries(query, weight, ref=lookup)
    lookup = query.binary() if lookup is None else lookup.binary()
    return QuerySet(query=query, lookup=lookup, terms=query_terms)


def overlap_terms(m, i: int, j: int, terms: Sequence[str], m2=None) -> list[str]:
    """Terms that are nonzero in both row ``i`` of ``m`` and row ``j`` of ``m2``."""
    m = as_sparse_matrix(m)
    m2 = m if m2 is None else as_sparse_matrix(m2)
    terms = _check_terms(m, terms)
    a, _ = m.row(i)
    b, _ = m2.row(j)
    return [terms[k] for k in np.intersect1d(a, b).tolist()]


__all__ = [
    "QuerySet",
    "create_queries",
    "docfreq",
    "overlap_terms",
    "rm_comb_if_diag",
    "term_cooccurence_docprob",
    "term_intersect",
    "term_occur_sim",
    "term_union",
    "weight_queries",
]
