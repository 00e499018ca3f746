"""Chat providers and the fallback chain that produces the assistant reply."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any, ClassVar

import httpx
from openai import AsyncOpenAI

from .config import ProviderSettings, config
from .errors import FailureKind, LLMChainError, ProviderError, classify_failure
from .models import Message, Role
from .normalization import ensure_flat, normalize_messages
from .streaming import CompleteResult, ProviderResult, StreamingResult, TextStream
from .transport import open_client

logger = config.get_logger(__name__)

SYSTEM_PROMPT_TEMPLATE = (
    "You are a helpful assistant for {owner}'s portfolio website. "
    "Be friendly, professional, and concise. "
    "Use the FAQ context to give accurate answers. "
    "If you don't know something, say so."
)
CONTEXT_HEADER = "FAQ Context:"
SSE_DATA_PREFIX = "data:"


def build_system_prompt(context: str | None = None, owner: str | None = None) -> str:
    """Combine the persona directive with the retrieved FAQ context.

    Returns:
        The system instruction; the context section is omitted when empty.
    """
    prompt = SYSTEM_PROMPT_TEMPLATE.format(owner=owner or config.PORTFOLIO_OWNER)
    if context and context.strip():
        prompt += f"\n\n{CONTEXT_HEADER}\n{context.strip()}"
    return prompt


class ChatProvider:
    """One external LLM service offering one or more model variants."""

    name: ClassVar[str] = "provider"
    supports_streaming: ClassVar[bool] = True

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        self.settings = settings
        self.temperature = (
            temperature if temperature is not None else config.CHAT_TEMPERATURE
        )
        self.max_tokens = (
            max_tokens if max_tokens is not None else config.CHAT_MAX_TOKENS
        )

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    @property
    def models(self) -> tuple[str, ...]:
        return self.settings.models

    async def complete(self, model: str, messages: list[Message]) -> str:
        """Return the whole answer as one string."""
        raise NotImplementedError

    def stream(self, model: str, messages: list[Message]) -> AsyncIterator[str]:
        """Yield the answer as it is generated."""
        raise NotImplementedError


class HttpChatProvider(ChatProvider):
    """Chat provider reached over plain REST with httpx."""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        super().__init__(settings, temperature=temperature, max_tokens=max_tokens)
        self.http_client = http_client
        self.timeout = timeout

    async def _post_json(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> Any:
        async with open_client(self.http_client, self.timeout) as client:
            response = await client.post(url, json=payload, headers=headers)

        if response.is_error:
            raise ProviderError.from_response(self.name, response)
        try:
            return response.json()
        except ValueError as exc:
            msg = "response body is not valid JSON"
            raise ProviderError(self.name, msg) from exc


class GeminiChatProvider(HttpChatProvider):
    """Google Gemini ``generateContent`` / ``streamGenerateContent`` over REST."""

    name = "gemini"

    def _url(self, model: str, method: str) -> str:
        return f"{self.settings.endpoint.rstrip('/')}/models/{model}:{method}"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.settings.api_key,
        }

    def build_payload(self, messages: list[Message]) -> dict[str, Any]:
        """Translate canonical messages into a Gemini request body.

        System messages become the ``systemInstruction``; assistant turns use
        Gemini's ``model`` role.

        Returns:
            JSON-serializable request body.
        """
        system_parts = [m.content for m in messages if m.role is Role.SYSTEM]
        contents = [
            {
                "role": "model" if message.role is Role.ASSISTANT else "user",
                "parts": [{"text": message.content}],
            }
            for message in messages
            if message.role is not Role.SYSTEM
        ]
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_tokens,
            },
        }
        if system_parts:
            payload["systemInstruction"] = {
                "parts": [{"text": "\n\n".join(system_parts)}]
            }
        return payload

    def extract_text(self, data: Any) -> str:
        """Pull the generated text out of a Gemini response chunk.

        Returns:
            Concatenated text of the first candidate; empty when it has none.

        Raises:
            ProviderError: If the prompt was blocked.
        """
        if not isinstance(data, dict):
            return ""
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            msg = f"prompt blocked ({block_reason})"
            raise ProviderError(self.name, msg)

        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))

    async def complete(self, model: str, messages: list[Message]) -> str:
        data = await self._post_json(
            self._url(model, "generateContent"),
            self.build_payload(messages),
            self._headers(),
        )
        return self.extract_text(data)

    async def stream(self, model: str, messages: list[Message]) -> AsyncIterator[str]:
        url = f"{self._url(model, 'streamGenerateContent')}?alt=sse"
        async with (
            open_client(self.http_client, self.timeout) as client,
            client.stream(
                "POST", url, json=self.build_payload(messages), headers=self._headers()
            ) as response,
        ):
            if response.is_error:
                await response.aread()
                raise ProviderError.from_response(self.name, response)

            async for line in response.aiter_lines():
                if not line.startswith(SSE_DATA_PREFIX):
                    continue
                raw = line[len(SSE_DATA_PREFIX) :].strip()
                if not raw:
                    continue
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring malformed Gemini stream event")
                    continue
                text = self.extract_text(data)
                if text:
                    yield text


class HuggingFaceChatProvider(HttpChatProvider):
    """Hugging Face text generation; answers arrive in one piece."""

    name = "huggingface"
    supports_streaming = False

    @staticmethod
    def render_prompt(messages: list[Message]) -> str:
        """Flatten the conversation into a plain transcript prompt.

        Returns:
            Transcript ending with an open ``Assistant:`` turn.
        """
        labels = {Role.SYSTEM: "System", Role.USER: "User", Role.ASSISTANT: "Assistant"}
        lines = [f"{labels[message.role]}: {message.content}" for message in messages]
        lines.append("Assistant:")
        return "\n\n".join(lines)

    async def complete(self, model: str, messages: list[Message]) -> str:
        url = f"{self.settings.endpoint.rstrip('/')}/models/{model}"
        payload = {
            "inputs": self.render_prompt(messages),
            "parameters": {
                "max_new_tokens": self.max_tokens,
                "temperature": self.temperature,
                "return_full_text": False,
            },
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.api_key}",
        }
        data = await self._post_json(url, payload, headers)

        if isinstance(data, list) and data:
            data = data[0]
        if isinstance(data, dict) and "generated_text" in data:
            return str(data["generated_text"]).strip()
        msg = "response has no generated_text"
        raise ProviderError(self.name, msg)


class OpenAIChatProvider(ChatProvider):
    """OpenAI-compatible chat completions through the OpenAI SDK."""

    name = "openai"

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        client: AsyncOpenAI | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        super().__init__(settings, temperature=temperature, max_tokens=max_tokens)
        self._client = client
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT

    def default_headers(self) -> dict[str, str]:
        return config.get_api_headers()

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.endpoint,
                default_headers=self.default_headers() or None,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def complete(self, model: str, messages: list[Message]) -> str:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[message.to_dict() for message in messages],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, model: str, messages: list[Message]) -> AsyncIterator[str]:
        response = await self.client.chat.completions.create(
            model=model,
            messages=[message.to_dict() for message in messages],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
        )
        async for chunk in response:
            if not chunk.choices:
                continue
            content = chunk.choices[0].delta.content
            if content:
                yield content


class OpenRouterChatProvider(OpenAIChatProvider):
    """OpenRouter's OpenAI-compatible API with attribution headers."""

    name = "openrouter"

    def default_headers(self) -> dict[str, str]:
        return config.get_openrouter_headers()


CHAT_PROVIDER_TYPES: dict[str, type[ChatProvider]] = {
    "gemini": GeminiChatProvider,
    "openrouter": OpenRouterChatProvider,
    "openai": OpenAIChatProvider,
    "huggingface": HuggingFaceChatProvider,
}


def build_chat_providers(
    settings: list[ProviderSettings] | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> list[ChatProvider]:
    """Instantiate chat providers in the given priority order.

    Returns:
        Provider instances; unknown provider names are skipped with a warning.
    """
    if settings is None:
        settings = config.chat_provider_settings()

    providers: list[ChatProvider] = []
    for provider_settings in settings:
        provider_type = CHAT_PROVIDER_TYPES.get(provider_settings.name)
        if provider_type is None:
            logger.warning("Unknown chat provider '%s' ignored", provider_settings.name)
            continue
        if issubclass(provider_type, HttpChatProvider):
            providers.append(
                provider_type(provider_settings, http_client=http_client)
            )
        else:
            providers.append(provider_type(provider_settings))
    return providers


async def _first_fragment(provider: ChatProvider, source: AsyncIterator[str]) -> str:
    # Failures up to and including the first fragment still reach the chain.
    while True:
        try:
            fragment = await source.__anext__()
        except StopAsyncIteration:
            msg = "stream ended without any text"
            raise ProviderError(provider.name, msg) from None
        if fragment:
            return fragment


class LLMChain:
    """Produces the assistant reply, falling back across chat providers.

    Providers are tried strictly one after another in configuration order, and
    each provider's model variants in their configured order. A rate-limited
    provider is abandoned at once; any other failure moves on to the next
    variant. Only when every attempt has failed does ``respond`` raise.
    """

    def __init__(
        self,
        providers: list[ChatProvider] | None = None,
        *,
        history_window: int | None = None,
        owner: str | None = None,
    ) -> None:
        self.providers = providers if providers is not None else build_chat_providers()
        self.history_window = (
            history_window if history_window is not None else config.HISTORY_WINDOW
        )
        self.owner = owner

    def build_messages(
        self,
        messages: Iterable[Any],
        context: str | None = None,
    ) -> list[Message]:
        """Normalize history and prepend the system instruction.

        Returns:
            System message followed by the recent normalized history.
        """
        history = normalize_messages(messages, window=self.history_window)
        system = Message(Role.SYSTEM, build_system_prompt(context, owner=self.owner))
        return [system, *history]

    async def respond(
        self,
        messages: Iterable[Any],
        context: str | None = None,
        stream: bool = True,  # noqa: FBT001, FBT002
    ) -> ProviderResult:
        """Answer the conversation with the first provider that succeeds.

        Args:
            messages: Conversation history in any supported raw shape.
            context: Retrieved FAQ context, appended to the system instruction.
            stream: Return a fragment stream instead of one final string.

        Returns:
            StreamingResult when ``stream`` is true, else CompleteResult.

        Raises:
            LLMChainError: If every provider and model variant failed.
        """
        prepared = self.build_messages(messages, context)
        attempts: list[tuple[str, str, BaseException]] = []

        for provider in self.providers:
            if not provider.enabled:
                logger.debug("Skipping disabled chat provider %s", provider.name)
                continue

            for model in provider.models:
                dispatch = ensure_flat(prepared)
                try:
                    result = await self._attempt(
                        provider, model, dispatch, stream=stream
                    )
                except Exception as exc:  # noqa: BLE001
                    kind = classify_failure(exc)
                    attempts.append((provider.name, model, exc))
                    logger.warning(
                        "%s/%s failed (%s): %s", provider.name, model, kind.value, exc
                    )
                    if kind is FailureKind.RATE_LIMITED:
                        logger.info(
                            "%s is rate limited; skipping its remaining models",
                            provider.name,
                        )
                        break
                    continue

                logger.info("Answer served by %s/%s", provider.name, model)
                return result

        logger.error("All AI models failed after %d attempts", len(attempts))
        raise LLMChainError(attempts)

    @staticmethod
    async def _attempt(
        provider: ChatProvider,
        model: str,
        messages: list[Message],
        *,
        stream: bool,
    ) -> ProviderResult:
        if stream and provider.supports_streaming:
            source = provider.stream(model, messages)
            first = await _first_fragment(provider, source)
            return StreamingResult(
                stream=TextStream(source, first=first),
                provider=provider.name,
                model=model,
            )

        text = await provider.complete(model, messages)
        if not text or not text.strip():
            msg = "empty response"
            raise ProviderError(provider.name, msg)
        if stream:
            return StreamingResult(
                stream=TextStream.from_text(text),
                provider=provider.name,
                model=model,
            )
        return CompleteResult(text=text, provider=provider.name, model=model)
