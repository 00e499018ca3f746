"""Test configuration and fixtures for the FAQ chatbot tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Fake embedding and chat providers
- HTTP transport mocks for the REST providers
- Vector store fixtures
- Sample data factories
"""

import hashlib
from collections.abc import Callable
from unittest.mock import AsyncMock, Mock

import httpx
import numpy as np
import pytest

from faqbot import EmbeddingService, LLMChain, SQLiteVectorStore
from faqbot.config import ProviderSettings
from faqbot.embeddings import EmbeddingProvider
from faqbot.errors import ProviderError
from faqbot.llm import ChatProvider
from faqbot.models import Message
from faqbot.streaming import synthesize_fragments


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # API Configuration
    TEST_API_KEY = "test-key"
    TEST_ENDPOINT = "https://provider.test/v1"
    DEFAULT_EMBEDDING_DIMENSION = 16

    # Conversation
    HISTORY_WINDOW = 6
    OWNER = "Arnob Mahmud"

    # Sample FAQ corpus
    SAMPLE_FAQS = [
        (
            "Where is Arnob located?",
            "Arnob is based in Frankfurt, Germany.",
        ),
        (
            "What services does Arnob offer?",
            "Web development, UI / UX design, DevOps & testing, and cyber security.",
        ),
        (
            "How can I contact Arnob?",
            "Use the contact form on the portfolio website.",
        ),
    ]


def hash_embedding(
    text: str, dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION
) -> list[float]:
    """Generate a deterministic unit vector based on the text hash."""
    seed = int.from_bytes(
        hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
        byteorder="big",
        signed=False,
    )
    rng = np.random.default_rng(seed)
    embedding = rng.normal(0, 1, dimension)
    return (embedding / np.linalg.norm(embedding)).tolist()


def make_settings(
    name: str,
    *,
    models: tuple[str, ...] = ("test-model",),
    enabled: bool = True,
    endpoint: str = TestConstants.TEST_ENDPOINT,
) -> ProviderSettings:
    """Build provider settings with a test key."""
    return ProviderSettings(
        name=name,
        endpoint=endpoint,
        api_key=TestConstants.TEST_API_KEY,
        enabled=enabled,
        models=models,
    )


class HashEmbeddingProvider(EmbeddingProvider):
    """Embedding provider answering with deterministic hash vectors."""

    def __init__(
        self,
        name: str = "gemini",
        dimension: int = TestConstants.DEFAULT_EMBEDDING_DIMENSION,
        *,
        enabled: bool = True,
    ) -> None:
        super().__init__(make_settings(name, enabled=enabled))
        self.name = name
        self.dimension = dimension
        self.requests: list[str] = []

    async def request(self, text: str) -> list[float]:
        self.requests.append(text)
        return hash_embedding(text, self.dimension)


class FakeChatProvider(ChatProvider):
    """Chat provider with scripted answers and failures.

    ``error`` is raised by every model, or by the models named when it is a
    mapping of model name to exception.
    """

    def __init__(  # noqa: PLR0913
        self,
        name: str,
        *,
        models: tuple[str, ...] = ("test-model",),
        reply: str = "Hello from the fake provider.",
        error: Exception | dict[str, Exception] | None = None,
        streaming: bool = True,
        fail_after_fragments: int | None = None,
        enabled: bool = True,
    ) -> None:
        super().__init__(make_settings(name, models=models, enabled=enabled))
        self.name = name
        self.supports_streaming = streaming
        self.reply = reply
        self.error = error
        self.fail_after_fragments = fail_after_fragments
        self.calls: list[tuple[str, str, list[Message]]] = []

    def _error_for(self, model: str) -> Exception | None:
        if isinstance(self.error, dict):
            return self.error.get(model)
        return self.error

    async def complete(self, model: str, messages: list[Message]) -> str:
        self.calls.append(("complete", model, messages))
        error = self._error_for(model)
        if error is not None:
            raise error
        return self.reply

    async def stream(self, model: str, messages: list[Message]):
        self.calls.append(("stream", model, messages))
        error = self._error_for(model)
        if error is not None:
            raise error
        for index, fragment in enumerate(synthesize_fragments(self.reply)):
            if index == self.fail_after_fragments:
                msg = "connection dropped"
                raise ProviderError(self.name, msg)
            yield fragment


@pytest.fixture
def embedding_provider_factory():
    """Factory for embedding providers whose ``request`` is an AsyncMock."""

    def _create_provider(  # noqa: ANN202
        name="gemini",
        *,
        return_value=None,
        side_effect=None,
        enabled=True,
        normalize=False,
    ):
        provider = EmbeddingProvider(make_settings(name, enabled=enabled))
        provider.name = name
        provider.normalize = normalize
        provider.request = AsyncMock(
            return_value=return_value if return_value is not None else [0.1, 0.2],
            side_effect=side_effect,
        )
        return provider

    return _create_provider


@pytest.fixture
def no_sleep():
    """Awaitable sleep replacement that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def embedding_service_factory(no_sleep):
    """Factory for EmbeddingService instances that never really sleep."""

    def _create_service(providers, **kwargs) -> EmbeddingService:
        kwargs.setdefault("sleep", no_sleep)
        kwargs.setdefault("retry_base_delay", 2.0)
        return EmbeddingService(providers, **kwargs)

    return _create_service


@pytest.fixture
def hash_embedding_service(embedding_service_factory):
    """EmbeddingService backed by a single deterministic provider."""
    return embedding_service_factory([HashEmbeddingProvider("gemini")])


@pytest.fixture
def chat_chain_factory():
    """Factory for LLMChain instances over fake chat providers."""

    def _create_chain(providers: list[ChatProvider], **kwargs) -> LLMChain:
        kwargs.setdefault("history_window", TestConstants.HISTORY_WINDOW)
        kwargs.setdefault("owner", TestConstants.OWNER)
        return LLMChain(providers, **kwargs)

    return _create_chain


@pytest.fixture
def mock_http_client_factory():
    """Factory for httpx.AsyncClient instances served by a MockTransport.

    The returned client records every request it saw on ``client.requests``.
    """

    def _create_client(
        handler: Callable[[httpx.Request], httpx.Response],
    ) -> httpx.AsyncClient:
        seen: list[httpx.Request] = []

        def _recording_handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_recording_handler))
        client.requests = seen
        return client

    return _create_client


@pytest.fixture
def temp_vector_store(tmp_path) -> SQLiteVectorStore:
    """Create temporary SQLite vector store for testing."""
    return SQLiteVectorStore(tmp_path / "test_store.db")


@pytest.fixture
def seeded_vector_store(temp_vector_store) -> SQLiteVectorStore:
    """Vector store holding the sample FAQs embedded with hash vectors."""
    for index, (question, answer) in enumerate(TestConstants.SAMPLE_FAQS, start=1):
        temp_vector_store.put(
            f"faq-{index}",
            hash_embedding(f"{question} {answer}"),
            {"question": question, "answer": answer},
            provider="gemini",
        )
    return temp_vector_store


@pytest.fixture
def vector_records_factory(temp_vector_store):
    """Factory that stores one record per similarity-shaped 2-D vector."""

    def _store(vectors: list[list[float]], provider: str | None = "gemini"):
        for index, vector in enumerate(vectors, start=1):
            temp_vector_store.put(
                f"faq-{index}",
                vector,
                {"question": f"Question {index}?", "answer": f"Answer {index}."},
                provider=provider,
            )
        return temp_vector_store

    return _store


def create_mock_openai_embedding_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response."""
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response."""
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


def create_mock_chat_chunks(fragments: list[str | None]):
    """Create an async iterator of mock OpenAI streaming chunks."""

    async def _chunks():
        for fragment in fragments:
            chunk = Mock()
            chunk.choices = [Mock(delta=Mock(content=fragment))]
            yield chunk

    return _chunks()


@pytest.fixture
def embed_text():
    """Deterministic text-to-vector function used by the fake providers."""
    return hash_embedding


@pytest.fixture
def settings_factory():
    """Factory for ProviderSettings carrying the test key."""
    return make_settings


@pytest.fixture
def hash_provider_factory():
    """Factory for deterministic embedding providers."""
    return HashEmbeddingProvider


@pytest.fixture
def chat_provider_factory():
    """Factory for scripted chat providers."""
    return FakeChatProvider


@pytest.fixture
def openai_chat_response_factory():
    """Factories for OpenAI chat completion responses and stream chunks."""
    return create_mock_chat_response, create_mock_chat_chunks


@pytest.fixture
def openai_embedding_response_factory():
    """Factory for OpenAI embeddings API responses."""
    return create_mock_openai_embedding_response
