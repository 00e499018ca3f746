"""Provider failure types and the shared failure classification step."""

from __future__ import annotations

from enum import Enum

import httpx
import openai

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "quota",
    "resource_exhausted",
)
LOADING_MARKERS = ("is currently loading", "model is loading", "loading")

HTTP_NOT_FOUND = 404
HTTP_GONE = 410
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503


class FailureKind(str, Enum):
    """How a provider chain reacts to a failed attempt."""

    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"
    ENDPOINT_GONE = "endpoint_gone"
    FAILED = "failed"


class ProviderError(Exception):
    """A provider answered with an error status or an unusable payload."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.retry_after = retry_after
        prefix = f"{provider} failed"
        if status_code is not None:
            prefix = f"{prefix} with status {status_code}"
        super().__init__(f"{prefix}: {message}")

    @classmethod
    def from_response(cls, provider: str, response: httpx.Response) -> ProviderError:
        """Build an error from a non-success HTTP response.

        The response body must already be read.

        Returns:
            ProviderError carrying the status code and any ``Retry-After`` hint.
        """
        retry_after = _parse_retry_after(response.headers.get("retry-after"))
        body = response.text.strip() or response.reason_phrase
        return cls(
            provider,
            body[:500],
            status_code=response.status_code,
            retry_after=retry_after,
        )


class EmbeddingChainError(RuntimeError):
    """Every embedding provider was tried and none produced a vector."""

    def __init__(self, last_error: BaseException | None) -> None:
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"All embedding providers failed{detail}")


class LLMChainError(RuntimeError):
    """Every chat provider in the chain failed for one request."""

    def __init__(self, attempts: list[tuple[str, str, BaseException]]) -> None:
        self.attempts = attempts
        if attempts:
            summary = "; ".join(
                f"{provider}/{model}: {error}" for provider, model, error in attempts
            )
        else:
            summary = "no chat provider is enabled"
        super().__init__(f"All AI models failed ({summary})")


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


def status_code_of(exc: BaseException) -> int | None:
    """Extract an HTTP status code from any provider-side exception.

    Returns:
        The status code, or None when the failure never reached HTTP.
    """
    if isinstance(exc, ProviderError):
        return exc.status_code
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def classify_failure(exc: BaseException) -> FailureKind:
    """Map a provider failure to the reaction the chains should take.

    Returns:
        RATE_LIMITED for 429 or quota signatures, RETRYABLE for a model that is
        still loading (503), ENDPOINT_GONE for 404/410, FAILED otherwise.
    """
    status = status_code_of(exc)
    text = str(exc).lower()

    if status == HTTP_TOO_MANY_REQUESTS or isinstance(exc, openai.RateLimitError):
        return FailureKind.RATE_LIMITED
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return FailureKind.RATE_LIMITED
    if status == HTTP_SERVICE_UNAVAILABLE:
        return FailureKind.RETRYABLE
    if status is None and any(marker in text for marker in LOADING_MARKERS):
        return FailureKind.RETRYABLE
    if status in {HTTP_NOT_FOUND, HTTP_GONE}:
        return FailureKind.ENDPOINT_GONE
    return FailureKind.FAILED
