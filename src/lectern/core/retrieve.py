"""Similarity search over an index: exhaustive cosine scoring with deterministic ranking."""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from pydantic import BaseModel

from .cancel import CancelToken
from .embed import Embedder
from .errors import DimensionMismatch
from .logging_config import get_audit_logger, log_search_event
from .store import Chunk, IndexStore, chunk_sort_key

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 8


class SearchHit(BaseModel):
    """A chunk returned by a search, with its similarity to the query."""
    chunk_id: str
    text: str
    page: Optional[int] = None
    ord: int
    score: float
    meta: Dict[str, Any] = {}


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors, in [-1, 1].

    Returns 0.0 if either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatch(va.shape[0], vb.shape[0])

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def score_chunks(query_vec: Sequence[float], chunks: List[Chunk]) -> np.ndarray:
    """Score every chunk against the query vector in one matrix product."""
    if not chunks:
        return np.zeros(0)

    query = np.asarray(query_vec, dtype=np.float64)
    for chunk in chunks:
        if len(chunk.embedding) != query.shape[0]:
            raise DimensionMismatch(len(chunk.embedding), query.shape[0], index_id=chunk.index_id)

    matrix = np.asarray([chunk.embedding for chunk in chunks], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query

    scores = np.zeros(len(chunks))
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / norms[nonzero]
    return np.clip(scores, -1.0, 1.0)


def rank_chunks(query_vec: Sequence[float], chunks: List[Chunk], k: int) -> List[SearchHit]:
    """
    Return the ``k`` chunks most similar to ``query_vec``.

    Ordered by descending score; equal scores fall back to reading order
    ``(page, ord)`` so the result is stable across calls.
    """
    scores = score_chunks(query_vec, chunks)
    ranked = sorted(
        zip(chunks, scores.tolist()),
        key=lambda pair: (-pair[1], chunk_sort_key(pair[0])),
    )
    return [
        SearchHit(
            chunk_id=chunk.id,
            text=chunk.text,
            page=chunk.page,
            ord=chunk.ord,
            score=score,
            meta=dict(chunk.meta),
        )
        for chunk, score in ranked[:k]
    ]


class QueryEngine:
    """
    Answers top-k similarity queries against one index.

    Scoring is exhaustive: every chunk of the index is loaded and compared to
    the query. An approximate nearest-neighbour backend can replace
    :meth:`_candidates` and :func:`rank_chunks` without changing the result
    contract (ordering, tie-break, ``k`` bound).
    """

    def __init__(self, store: IndexStore, embedder: Embedder) -> None:
        self.store = store
        self.embedder = embedder

    def _candidates(self, index_id: str) -> List[Chunk]:
        return self.store.load_chunks(index_id)

    def search(
        self,
        index_id: str,
        query: str,
        k: int = DEFAULT_TOP_K,
        cancel: Optional[CancelToken] = None,
    ) -> List[SearchHit]:
        """
        Find the chunks of an index closest to a natural-language query.

        Args:
            index_id: Index to search
            query: Query text
            k: Maximum number of hits
            cancel: Optional cancellation token / deadline

        Returns:
            At most ``k`` hits, best first; empty if the index has no chunks

        Raises:
            ValueError: If ``k`` < 1 or the query is blank
            IndexNotFound: If the index does not exist
            EmbeddingFailure: If the query cannot be embedded
            DimensionMismatch: If the query vector and the stored vectors disagree
        """
        if k < 1:
            raise ValueError("k must be at least 1")
        if not query or not query.strip():
            raise ValueError("query must not be empty")

        start_time = time.time()
        chunks = self._candidates(index_id)

        if not chunks:
            logger.info(f"Index {index_id} has no chunks; nothing to search")
            hits: List[SearchHit] = []
        else:
            query_vec = self.embedder.embed_query(query, cancel=cancel)
            hits = rank_chunks(query_vec, chunks, k)

        execution_time_ms = (time.time() - start_time) * 1000
        log_search_event(
            get_audit_logger("retrieve"),
            index_id=index_id,
            query=query,
            k=k,
            candidates=len(chunks),
            results_count=len(hits),
            execution_time_ms=execution_time_ms,
            top_score=hits[0].score if hits else None,
        )
        return hits
