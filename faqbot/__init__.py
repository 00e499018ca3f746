"""FAQBot - retrieval-augmented FAQ chatbot for a portfolio site."""

from .embeddings import EmbeddingService
from .errors import EmbeddingChainError, LLMChainError, ProviderError
from .llm import LLMChain
from .models import EmbeddingResult, Message, Role, SearchResult, VectorRecord
from .normalization import normalize_messages
from .pipeline import ChatbotPipeline, load_faqs
from .rag import RetrievalComposer
from .search import SimilaritySearch, cosine_similarity
from .streaming import CompleteResult, ProviderResult, StreamingResult, TextStream
from .vector_store import SQLiteVectorStore

__all__ = [
    "ChatbotPipeline",
    "CompleteResult",
    "EmbeddingChainError",
    "EmbeddingResult",
    "EmbeddingService",
    "LLMChain",
    "LLMChainError",
    "Message",
    "ProviderError",
    "ProviderResult",
    "RetrievalComposer",
    "Role",
    "SQLiteVectorStore",
    "SearchResult",
    "SimilaritySearch",
    "StreamingResult",
    "TextStream",
    "VectorRecord",
    "cosine_similarity",
    "load_faqs",
    "normalize_messages",
]
