"""Embedding providers and the fallback chain that drives them."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, ClassVar

import httpx
import numpy as np
from openai import AsyncOpenAI

from .config import ProviderSettings, config
from .errors import (
    EmbeddingChainError,
    FailureKind,
    ProviderError,
    classify_failure,
)
from .models import EmbeddingResult
from .transport import open_client

logger = config.get_logger(__name__)

EMBEDDING_ENVELOPE_KEYS = ("embedding", "embeddings", "values", "data")

SleepFunc = Callable[[float], Awaitable[None]]


def _unwrap_envelope(payload: Any) -> Any:
    if isinstance(payload, Mapping):
        for key in EMBEDDING_ENVELOPE_KEYS:
            if key in payload:
                return _unwrap_envelope(payload[key])
        msg = f"No embedding field in response keys: {sorted(payload)}"
        raise ValueError(msg)
    if (
        isinstance(payload, Sequence)
        and not isinstance(payload, str)
        and payload
        and isinstance(payload[0], (Mapping, Sequence))
        and not isinstance(payload[0], str)
    ):
        return _unwrap_envelope(payload[0])
    return payload


def extract_vector(payload: Any) -> np.ndarray:
    """Flatten any provider envelope into a 1-D float vector.

    Accepts a flat array, a nested array (first row wins), or a keyed object
    such as ``{"embedding": {"values": [...]}}`` or
    ``{"data": [{"embedding": [...]}]}``.

    Returns:
        np.ndarray: The embedding as a flat float64 array.

    Raises:
        ValueError: If the payload holds no non-empty numeric vector.
    """
    candidate = _unwrap_envelope(payload)
    try:
        vector = np.asarray(candidate, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        msg = "Embedding payload is not numeric"
        raise ValueError(msg) from exc

    if vector.ndim != 1 or vector.size == 0:
        msg = f"Expected a flat embedding vector, got shape {vector.shape}"
        raise ValueError(msg)
    if not np.all(np.isfinite(vector)):
        msg = "Embedding vector contains non-finite values"
        raise ValueError(msg)
    return vector


def unit_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale a vector to unit length; zero vectors are returned unchanged.

    Returns:
        Normalized embedding vector.
    """
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


class EmbeddingProvider:
    """One external service able to turn text into a vector."""

    name: ClassVar[str] = "provider"
    normalize: ClassVar[bool] = False

    def __init__(self, settings: ProviderSettings) -> None:
        self.settings = settings

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    @property
    def model(self) -> str:
        return self.settings.models[0] if self.settings.models else ""

    async def request(self, text: str) -> Any:
        """Send one embedding request and return the raw response payload."""
        raise NotImplementedError


class HttpEmbeddingProvider(EmbeddingProvider):
    """Embedding provider reached over plain REST with httpx.

    Providers may expose several endpoint shapes for the same model; when one
    fails with a kind listed in ``alternate_on`` the next one is tried before
    the error reaches the chain.
    """

    alternate_on: ClassVar[frozenset[FailureKind]] = frozenset(
        {FailureKind.ENDPOINT_GONE}
    )

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(settings)
        self.http_client = http_client
        self.timeout = timeout

    def endpoint_urls(self) -> list[str]:
        raise NotImplementedError

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_payload(self, text: str) -> dict[str, Any]:
        raise NotImplementedError

    async def request(self, text: str) -> Any:
        """POST the payload, falling back across endpoint shapes.

        Returns:
            Decoded JSON body of the first endpoint that answered successfully.

        Raises:
            ProviderError: If the provider answered with an error status. A
                retryable failure from any endpoint wins over the others.
        """
        payload = self.build_payload(text)
        errors: list[ProviderError] = []

        for url in self.endpoint_urls():
            try:
                return await self._post(url, payload)
            except ProviderError as exc:
                kind = classify_failure(exc)
                if kind not in self.alternate_on:
                    raise
                logger.warning(
                    "%s endpoint %s answered %s (%s); trying alternate endpoint",
                    self.name,
                    url,
                    exc.status_code,
                    kind.value,
                )
                errors.append(exc)

        if not errors:
            msg = "no endpoint configured"
            raise ProviderError(self.name, msg)
        retryable = [
            error
            for error in errors
            if classify_failure(error) is FailureKind.RETRYABLE
        ]
        raise (retryable or errors)[-1]

    async def _post(self, url: str, payload: dict[str, Any]) -> Any:
        async with open_client(self.http_client, self.timeout) as client:
            response = await client.post(url, json=payload, headers=self.headers())

        if response.is_error:
            raise ProviderError.from_response(self.name, response)
        try:
            return response.json()
        except ValueError as exc:
            msg = "response body is not valid JSON"
            raise ProviderError(self.name, msg) from exc


class GeminiEmbeddingProvider(HttpEmbeddingProvider):
    """Google Gemini ``embedContent`` at a reduced output dimensionality.

    Gemini only unit-normalizes its full 3072-dimension output, so smaller
    vectors are normalized here.
    """

    name = "gemini"
    normalize = True

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        output_dimensionality: int | None = None,
    ) -> None:
        super().__init__(settings, http_client=http_client, timeout=timeout)
        self.output_dimensionality = (
            output_dimensionality
            if output_dimensionality is not None
            else config.EMBEDDING_DIMENSION
        )

    def endpoint_urls(self) -> list[str]:
        base_url = self.settings.endpoint.rstrip("/")
        return [f"{base_url}/models/{self.model}:embedContent"]

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["x-goog-api-key"] = self.settings.api_key
        return headers

    def build_payload(self, text: str) -> dict[str, Any]:
        return {
            "model": f"models/{self.model}",
            "content": {"parts": [{"text": text}]},
            "taskType": "RETRIEVAL_DOCUMENT",
            "outputDimensionality": self.output_dimensionality,
        }


class HuggingFaceEmbeddingProvider(HttpEmbeddingProvider):
    """Hugging Face inference API feature extraction."""

    name = "huggingface"
    alternate_on = frozenset({FailureKind.ENDPOINT_GONE, FailureKind.RETRYABLE})

    def endpoint_urls(self) -> list[str]:
        base_url = self.settings.endpoint.rstrip("/")
        return [
            f"{base_url}/pipeline/feature-extraction/{self.model}",
            f"{base_url}/models/{self.model}",
        ]

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def build_payload(self, text: str) -> dict[str, Any]:
        return {"inputs": text}


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible ``/embeddings`` endpoint through the OpenAI SDK."""

    name = "openai"

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client: AsyncOpenAI | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(settings)
        self._client = client
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT

    def default_headers(self) -> dict[str, str]:
        return config.get_api_headers()

    @property
    def client(self) -> AsyncOpenAI:
        # Built lazily: the SDK refuses an empty key, and disabled providers
        # never get this far.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.endpoint,
                default_headers=self.default_headers() or None,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def request(self, text: str) -> Any:
        response = await self.client.embeddings.create(model=self.model, input=text)
        return [item.embedding for item in response.data]


class OpenRouterEmbeddingProvider(OpenAIEmbeddingProvider):
    """OpenRouter's OpenAI-compatible embeddings with attribution headers."""

    name = "openrouter"

    def default_headers(self) -> dict[str, str]:
        return config.get_openrouter_headers()


EMBEDDING_PROVIDER_TYPES: dict[str, type[EmbeddingProvider]] = {
    "gemini": GeminiEmbeddingProvider,
    "huggingface": HuggingFaceEmbeddingProvider,
    "openrouter": OpenRouterEmbeddingProvider,
    "openai": OpenAIEmbeddingProvider,
}


def build_embedding_providers(
    settings: list[ProviderSettings] | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> list[EmbeddingProvider]:
    """Instantiate embedding providers in the given priority order.

    Returns:
        Provider instances; unknown provider names are skipped with a warning.
    """
    if settings is None:
        settings = config.embedding_provider_settings()

    providers: list[EmbeddingProvider] = []
    for provider_settings in settings:
        provider_type = EMBEDDING_PROVIDER_TYPES.get(provider_settings.name)
        if provider_type is None:
            logger.warning(
                "Unknown embedding provider '%s' ignored", provider_settings.name
            )
            continue
        if issubclass(provider_type, HttpEmbeddingProvider):
            providers.append(
                provider_type(provider_settings, http_client=http_client)
            )
        else:
            providers.append(provider_type(provider_settings))
    return providers


async def _cancel_pending(tasks: list[asyncio.Future[Any]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


class EmbeddingService:
    """Turns text into vectors, trying embedding providers in priority order."""

    def __init__(  # noqa: PLR0913
        self,
        providers: list[EmbeddingProvider] | None = None,
        *,
        max_attempts: int | None = None,
        retry_base_delay: float | None = None,
        batch_size: int | None = None,
        stagger_seconds: float | None = None,
        batch_pause_seconds: float | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the chain.

        Args:
            providers: Providers in fallback order. If None, built from
                ``config.embedding_provider_settings()``.
            max_attempts: Attempts per provider while its model is loading.
            retry_base_delay: First backoff delay in seconds; doubles per retry.
            batch_size: Texts embedded concurrently per batch.
            stagger_seconds: Delay added per position inside a batch.
            batch_pause_seconds: Pause between consecutive batches.
            sleep: Awaitable sleep, injectable for tests.
        """
        self.providers = (
            providers if providers is not None else build_embedding_providers()
        )
        if max_attempts is None:
            max_attempts = config.EMBEDDING_MAX_ATTEMPTS
        self.max_attempts = max(1, max_attempts)
        self.retry_base_delay = (
            retry_base_delay
            if retry_base_delay is not None
            else config.EMBEDDING_RETRY_BASE_DELAY
        )
        self.batch_size = max(
            1, batch_size if batch_size is not None else config.EMBEDDING_BATCH_SIZE
        )
        self.stagger_seconds = (
            stagger_seconds
            if stagger_seconds is not None
            else config.EMBEDDING_STAGGER_SECONDS
        )
        self.batch_pause_seconds = (
            batch_pause_seconds
            if batch_pause_seconds is not None
            else config.EMBEDDING_BATCH_PAUSE_SECONDS
        )
        self._sleep = sleep

    async def embed(self, text: str) -> np.ndarray:
        """Embed a single text.

        Returns:
            np.ndarray: The embedding vector for the input text.
        """
        result = await self.embed_with_source(text)
        return result.vector

    async def embed_with_source(self, text: str) -> EmbeddingResult:
        """Embed a single text and report which provider produced the vector.

        Returns:
            EmbeddingResult from the first provider that succeeded.

        Raises:
            EmbeddingChainError: If every enabled provider failed.
        """
        last_error: Exception | None = None

        for provider in self.providers:
            if not provider.enabled:
                logger.debug("Skipping disabled embedding provider %s", provider.name)
                continue
            try:
                vector = await self._embed_with_retries(provider, text)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "%s embedding failed (%s), trying next provider: %s",
                    provider.name,
                    classify_failure(exc).value,
                    exc,
                )
                last_error = exc
            else:
                return EmbeddingResult(vector=vector, provider=provider.name)

        logger.error("All embedding providers failed")
        raise EmbeddingChainError(last_error) from last_error

    async def _embed_with_retries(
        self,
        provider: EmbeddingProvider,
        text: str,
    ) -> np.ndarray:
        attempt = 1
        while True:
            try:
                payload = await provider.request(text)
                vector = extract_vector(payload)
            except Exception as exc:
                if (
                    classify_failure(exc) is not FailureKind.RETRYABLE
                    or attempt >= self.max_attempts
                ):
                    raise
                delay = self._backoff_delay(exc, attempt)
                logger.info(
                    "%s model is loading; retrying in %.1fs (attempt %d/%d)",
                    provider.name,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                )
                await self._sleep(delay)
                attempt += 1
            else:
                return unit_normalize(vector) if provider.normalize else vector

    def _backoff_delay(self, exc: Exception, attempt: int) -> float:
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            return float(retry_after)
        return self.retry_base_delay * (2 ** (attempt - 1))

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed many texts in rate-limit friendly batches.

        Requests inside a batch run concurrently, each started
        ``index * stagger_seconds`` after the first; batches are separated by
        ``batch_pause_seconds``.

        When one text exhausts the chain the rest of its batch is cancelled
        before the error propagates.

        Returns:
            list[EmbeddingResult]: One result per input text, in input order.
        """
        results: list[EmbeddingResult] = []

        for start in range(0, len(texts), self.batch_size):
            batch_texts = texts[start : start + self.batch_size]
            tasks = [
                asyncio.ensure_future(self._embed_staggered(text, index))
                for index, text in enumerate(batch_texts)
            ]
            try:
                batch_results = await asyncio.gather(*tasks)
            finally:
                await _cancel_pending(tasks)
            results.extend(batch_results)
            logger.info(
                "Generated embeddings for batch %d", start // self.batch_size + 1
            )

            if start + self.batch_size < len(texts):
                await self._sleep(self.batch_pause_seconds)

        return results

    async def _embed_staggered(self, text: str, index: int) -> EmbeddingResult:
        if index:
            await self._sleep(index * self.stagger_seconds)
        return await self.embed_with_source(text)
