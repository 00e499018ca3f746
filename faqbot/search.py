"""Exhaustive cosine-similarity search over the stored FAQ vectors.

Every query scans every record; there is no index and no approximation. The
FAQ corpus holds tens of entries, where a linear scan is both simplest and
fast enough. A corpus in the tens of thousands would need a real vector index.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from .config import config
from .models import SearchResult
from .vector_store import parse_row

if TYPE_CHECKING:
    from .vector_store import SQLiteVectorStore

logger = config.get_logger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate cosine similarity between two vectors.

    Vectors of different length come from different embedding models and are
    not comparable, so they score 0. A zero vector also scores 0.

    Returns:
        float: Similarity in [-1, 1].
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape:
        return 0.0

    denominator = np.linalg.norm(a) * np.linalg.norm(b)
    if denominator == 0:
        return 0.0
    similarity = float(np.dot(a, b) / denominator)
    return max(-1.0, min(1.0, similarity))


class SimilaritySearch:
    """Scores a query vector against every record of a vector store."""

    def __init__(self, store: SQLiteVectorStore) -> None:
        self.store = store

    def search(
        self,
        query_embedding: np.ndarray,
        top_k: int = 3,
        *,
        provider: str | None = None,
    ) -> list[SearchResult]:
        """Search for the FAQ records most similar to a query embedding.

        Unreadable records are logged and skipped; they never abort the scan.

        Args:
            query_embedding: The query vector.
            top_k: Maximum number of results.
            provider: When set, only records embedded by this provider are
                considered.

        Returns:
            Results ordered by descending similarity; ties keep storage order.
        """
        if top_k <= 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        scored: list[SearchResult] = []

        for row in self.store.list_raw():
            try:
                record = parse_row(row)
            except ValueError:
                logger.warning("Skipping corrupted vector record %s", row.id)
                continue
            if provider is not None and record.provider != provider:
                continue

            scored.append(
                SearchResult(
                    similarity=cosine_similarity(query, record.vector),
                    metadata=record.metadata,
                    record_id=record.id,
                )
            )

        # sorted() is stable, so equal scores keep their storage order
        ranked = sorted(scored, key=lambda result: result.similarity, reverse=True)
        for result in ranked[:top_k]:
            logger.debug(
                "Retrieved %s with similarity %.4f", result.record_id, result.similarity
            )
        return ranked[:top_k]
