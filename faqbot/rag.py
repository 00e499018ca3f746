"""Retrieval of FAQ context for a visitor question."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import config

if TYPE_CHECKING:
    from .embeddings import EmbeddingService
    from .models import EmbeddingResult, SearchResult
    from .search import SimilaritySearch

logger = config.get_logger(__name__)


def format_context(results: list[SearchResult]) -> str:
    """Render search hits as ``Q: ...`` / ``A: ...`` blocks.

    Returns:
        Blocks in the given order, separated by a blank line.
    """
    return "\n\n".join(
        f"Q: {result.metadata.get('question', '')}\n"
        f"A: {result.metadata.get('answer', '')}"
        for result in results
    )


class RetrievalComposer:
    """Builds the FAQ context block that grounds the chat answer."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        search: SimilaritySearch,
        top_k: int | None = None,
    ) -> None:
        self.embedding_service = embedding_service
        self.search = search
        self.top_k = top_k if top_k is not None else config.RAG_TOP_K

    async def build_context(self, query: str, top_k: int | None = None) -> str:
        """Embed the query, search the corpus and format the best matches.

        Never raises: a failed embedding or search yields an empty context, and
        the chat answer simply goes ungrounded.

        Args:
            query: The visitor question.
            top_k: Maximum number of FAQ entries. Defaults to ``self.top_k``.

        Returns:
            Formatted context, or an empty string.
        """
        if not query or not query.strip():
            return ""
        if top_k is None:
            top_k = self.top_k

        try:
            embedding = await self.embedding_service.embed_with_source(query)
            results = self._search(embedding, top_k)
        except Exception:
            logger.exception("RAG search failed")
            return ""

        if not results:
            return ""
        logger.info("Retrieved %d FAQ entries for context", len(results))
        return format_context(results)

    def _search(self, embedding: EmbeddingResult, top_k: int) -> list[SearchResult]:
        corpus_providers = self.search.store.providers()
        if not corpus_providers:
            return self.search.search(embedding.vector, top_k)

        if embedding.provider not in corpus_providers:
            # Vectors from another provider live in a different space; scoring
            # them against this corpus would be meaningless.
            logger.warning(
                "Query embedded by %s but corpus was indexed with %s; "
                "skipping retrieval until the corpus is re-seeded",
                embedding.provider,
                ", ".join(sorted(corpus_providers)),
            )
            return []
        return self.search.search(embedding.vector, top_k, provider=embedding.provider)
