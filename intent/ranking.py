"""Similarity ranking of catalog entries against a query vector.

Exact cosine similarity over the whole catalog, O(N·D) per query. The
``Ranker`` protocol lets an approximate index replace ``ExactRanker`` later
without touching the resolver.
"""
from __future__ import annotations

import logging
import math
from typing import Protocol, Sequence

import numpy as np

from .catalog import CatalogStore
from .models import Candidate

logger = logging.getLogger(__name__)

MIN_SCORE = -1.0
MAX_SCORE = 1.0


def _as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    return np.asarray(values, dtype=np.float64).ravel()


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors.

    A zero-norm or non-finite vector scores ``MIN_SCORE`` instead of NaN.

    Raises:
        ValueError: If the vectors differ in length
    """
    va, vb = _as_vector(a), _as_vector(b)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} != {vb.shape[0]}")

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not math.isfinite(norm_a) or not math.isfinite(norm_b):
        return MIN_SCORE

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    if not math.isfinite(score):
        return MIN_SCORE
    return min(MAX_SCORE, max(MIN_SCORE, score))


def score_catalog(query_vector: Sequence[float] | np.ndarray, catalog: CatalogStore) -> np.ndarray:
    """Cosine scores of ``query_vector`` against every catalog row.

    Raises:
        ValueError: If the query dimension differs from the catalog's
    """
    if len(catalog) == 0:
        return np.zeros(0, dtype=np.float64)

    query = _as_vector(query_vector)
    if query.shape[0] != catalog.dim:
        raise ValueError(f"Query dimension {query.shape[0]} does not match catalog dimension {catalog.dim}")

    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0 or not math.isfinite(query_norm):
        return np.full(len(catalog), MIN_SCORE, dtype=np.float64)

    norms = catalog.norms
    valid = norms > 0.0
    scores = np.full(len(catalog), MIN_SCORE, dtype=np.float64)
    scores[valid] = (catalog.matrix[valid] @ query) / (norms[valid] * query_norm)
    scores = np.where(np.isfinite(scores), scores, MIN_SCORE)
    return np.clip(scores, MIN_SCORE, MAX_SCORE)


def rank(
    query_vector: Sequence[float] | np.ndarray,
    catalog: CatalogStore,
    k: int,
    *,
    min_score: float | None = None,
) -> list[Candidate]:
    """Return the top ``k`` catalog entries for a query vector.

    Ordering is descending by score with ties broken by catalog insertion
    order, so identical inputs always give identical output.

    Args:
        query_vector: Query embedding
        catalog: Catalog store to search
        k: Maximum number of candidates
        min_score: Optional relevance floor applied after scoring

    Returns:
        Up to ``k`` candidates, best first
    """
    if k <= 0 or len(catalog) == 0:
        return []

    scores = score_catalog(query_vector, catalog)
    order = np.argsort(-scores, kind="stable")[:k]

    entries = catalog.entries
    candidates = []
    for idx in order:
        score = float(scores[idx])
        if min_score is not None and score < min_score:
            break
        entry = entries[idx]
        candidates.append(Candidate(id=entry.id, title=entry.title, score=score, position=int(idx)))

    logger.debug(
        f"Ranked {len(catalog)} entries, returning {len(candidates)} (k={k}, "
        f"top={candidates[0].score if candidates else None})"
    )
    return candidates


class Ranker(Protocol):
    """Anything that can produce ranked candidates for a query vector."""

    def rank(
        self,
        query_vector: Sequence[float] | np.ndarray,
        catalog: CatalogStore,
        k: int,
        *,
        min_score: float | None = None,
    ) -> list[Candidate]:
        ...


class ExactRanker:
    """Brute-force cosine ranking; fine for catalogs in the low thousands."""

    def rank(
        self,
        query_vector: Sequence[float] | np.ndarray,
        catalog: CatalogStore,
        k: int,
        *,
        min_score: float | None = None,
    ) -> list[Candidate]:
        return rank(query_vector, catalog, k, min_score=min_score)
