"""Main chatbot pipeline wiring retrieval and the LLM chain together."""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .config import config
from .embeddings import EmbeddingService
from .llm import LLMChain
from .rag import RetrievalComposer
from .search import SimilaritySearch
from .streaming import ProviderResult
from .vector_store import SQLiteVectorStore

logger = config.get_logger(__name__)


def load_faqs(file_path: Path) -> list[tuple[str, str]]:
    """Load FAQ entries from a JSON file.

    The file holds a list whose items are either ``[question, answer]`` pairs
    or ``{"question": ..., "answer": ...}`` objects.

    Returns:
        List of (question, answer) tuples.

    Raises:
        ValueError: If the file is not in one of the supported shapes.
    """
    try:
        with file_path.open(encoding="utf-8") as file:
            data = json.load(file)
    except json.JSONDecodeError as exc:
        msg = f"FAQ file {file_path} is not valid JSON"
        raise ValueError(msg) from exc

    if not isinstance(data, list):
        msg = f"FAQ file {file_path} must contain a list"
        raise ValueError(msg)

    faqs: list[tuple[str, str]] = []
    for index, item in enumerate(data):
        if isinstance(item, dict) and "question" in item and "answer" in item:
            faqs.append((str(item["question"]), str(item["answer"])))
        elif isinstance(item, list | tuple) and len(item) == 2:  # noqa: PLR2004
            faqs.append((str(item[0]), str(item[1])))
        else:
            msg = f"FAQ entry {index} in {file_path} is not a question/answer pair"
            raise ValueError(msg)

    logger.info("Loaded %d FAQ entries from %s", len(faqs), file_path)
    return faqs


class ChatbotPipeline:
    """FAQ chatbot pipeline: Seed -> Retrieve -> Respond."""

    def __init__(
        self,
        db_path: Path | None = None,
        embedding_service: EmbeddingService | None = None,
        llm_chain: LLMChain | None = None,
        top_k: int | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            db_path: SQLite database holding the FAQ vectors. If None, uses
                config.VECTOR_STORE_DB_PATH.
            embedding_service: Embedding provider chain. If None, built from
                configuration.
            llm_chain: Chat provider chain. If None, built from configuration.
            top_k: Number of FAQ entries injected as context. If None, uses
                config.RAG_TOP_K.
        """
        if db_path is None:
            db_path = config.VECTOR_STORE_DB_PATH

        self.vector_store = SQLiteVectorStore(db_path)
        self.embedding_service = embedding_service or EmbeddingService()
        self.search = SimilaritySearch(self.vector_store)
        self.retriever = RetrievalComposer(self.embedding_service, self.search, top_k)
        self.llm_chain = llm_chain or LLMChain()

        logger.info(
            "Using %s vector storage with %d records",
            self.vector_store.backend,
            self.vector_store.count(),
        )

    async def seed_faqs(self, faqs: list[tuple[str, str]]) -> int:
        """Embed FAQ entries and replace the stored corpus with them.

        All entries must be embedded by the same provider; a corpus mixing
        vector spaces would make similarity scores meaningless.

        Returns:
            Number of records stored.

        Raises:
            RuntimeError: If the entries were embedded by different providers.
        """
        logger.info("Seeding %d FAQ entries", len(faqs))

        texts = [f"{question} {answer}" for question, answer in faqs]
        embeddings = await self.embedding_service.embed_batch(texts)

        providers = {embedding.provider for embedding in embeddings}
        if len(providers) > 1:
            msg = (
                "FAQ corpus was embedded by several providers "
                f"({', '.join(sorted(providers))}); re-run seeding once the "
                "primary provider is reachable"
            )
            raise RuntimeError(msg)

        self.vector_store.replace_all(
            (
                f"faq-{index}",
                embedding.vector,
                {"question": question, "answer": answer},
                embedding.provider,
            )
            for index, ((question, answer), embedding) in enumerate(
                zip(faqs, embeddings, strict=True), start=1
            )
        )

        logger.info(
            "Seeded %d FAQ records with %s embeddings",
            len(faqs),
            next(iter(providers), "no"),
        )
        return len(faqs)

    async def build_context(self, query: str, top_k: int | None = None) -> str:
        """Retrieve formatted FAQ context for a query; never raises."""
        return await self.retriever.build_context(query, top_k)

    async def respond(
        self,
        messages: Iterable[Any],
        context: str | None = None,
        stream: bool = True,  # noqa: FBT001, FBT002
    ) -> ProviderResult:
        """Answer through the LLM provider chain."""
        return await self.llm_chain.respond(messages, context, stream)

    async def answer(
        self,
        history: list[Any],
        question: str,
        stream: bool = True,  # noqa: FBT001, FBT002
    ) -> ProviderResult:
        """Answer a new visitor question grounded in the FAQ corpus.

        Args:
            history: Earlier conversation turns, oldest first.
            question: The new visitor question.
            stream: Return a fragment stream instead of one final string.

        Returns:
            The provider result for the question.
        """
        logger.info("Processing question: %s", question)
        context = await self.build_context(question)
        messages = [*history, {"role": "user", "content": question}]
        return await self.respond(messages, context, stream)
