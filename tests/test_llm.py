"""Tests for the chat providers and the LLM provider chain."""

import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from faqbot import CompleteResult, LLMChainError, Message, Role, StreamingResult
from faqbot.errors import ProviderError
from faqbot.llm import (
    GeminiChatProvider,
    HuggingFaceChatProvider,
    OpenAIChatProvider,
    build_chat_providers,
    build_system_prompt,
)

FRANKFURT_CONTEXT = (
    "Q: Where is Arnob located?\nA: Arnob is based in Frankfurt, Germany."
)


def _rate_limited(provider: str) -> ProviderError:
    return ProviderError(provider, "Too Many Requests", status_code=429)


def _server_error(provider: str) -> ProviderError:
    return ProviderError(provider, "Internal Server Error", status_code=500)


def _sse(*events: dict) -> str:
    return "".join(f"data: {json.dumps(event)}\n\n" for event in events)


def _gemini_chunk(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def test_system_prompt_includes_persona_and_context():
    prompt = build_system_prompt(FRANKFURT_CONTEXT, owner="Arnob Mahmud")

    assert prompt.startswith(
        "You are a helpful assistant for Arnob Mahmud's portfolio website."
    )
    assert "If you don't know something, say so." in prompt
    assert prompt.endswith(f"\n\nFAQ Context:\n{FRANKFURT_CONTEXT}")


@pytest.mark.parametrize("context", [None, "", "   "])
def test_system_prompt_without_context(context):
    assert "FAQ Context" not in build_system_prompt(context, owner="Arnob Mahmud")


def test_build_messages_prepends_system_and_bounds_history(chat_chain_factory):
    chain = chat_chain_factory([])
    history = [{"role": "user", "content": f"message {i}"} for i in range(9)]

    messages = chain.build_messages(history, FRANKFURT_CONTEXT)

    assert messages[0].role is Role.SYSTEM
    assert FRANKFURT_CONTEXT in messages[0].content
    assert [m.content for m in messages[1:]] == [f"message {i}" for i in range(3, 9)]


@pytest.mark.asyncio
async def test_frankfurt_question_is_answered_from_context(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory(
        "gemini", reply="Arnob is based in Frankfurt, Germany."
    )
    chain = chat_chain_factory([provider])
    history = [
        {"role": "user", "content": "Hi!"},
        {"role": "assistant", "content": "Hello! How can I help?"},
        {"role": "user", "content": "Where is Arnob located?"},
    ]

    result = await chain.respond(history, FRANKFURT_CONTEXT, stream=False)

    assert isinstance(result, CompleteResult)
    assert "Frankfurt" in result.text
    assert (result.provider, result.model) == ("gemini", "test-model")
    (kind, _, sent) = provider.calls[0]
    assert kind == "complete"
    assert sent[0].role is Role.SYSTEM
    assert FRANKFURT_CONTEXT in sent[0].content
    assert sent[-1] == Message(Role.USER, "Where is Arnob located?")


@pytest.mark.asyncio
async def test_rate_limited_provider_is_abandoned_for_the_next(
    chat_provider_factory, chat_chain_factory
):
    first = chat_provider_factory(
        "gemini",
        models=("gemini-2.0-flash-lite", "gemini-2.0-flash"),
        error=_rate_limited("gemini"),
    )
    second = chat_provider_factory("openrouter", reply="From OpenRouter.")
    third = chat_provider_factory("openai", reply="From OpenAI.")
    chain = chat_chain_factory([first, second, third])

    result = await chain.respond(["Where is Arnob?"], stream=False)

    assert result.provider == "openrouter"
    assert result.text == "From OpenRouter."
    assert [model for _, model, _ in first.calls] == ["gemini-2.0-flash-lite"]
    assert third.calls == []


@pytest.mark.asyncio
async def test_other_failures_move_to_the_next_model_variant(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory(
        "gemini",
        models=("gemini-2.0-flash-lite", "gemini-2.0-flash"),
        error={"gemini-2.0-flash-lite": _server_error("gemini")},
        reply="Second variant answered.",
    )
    chain = chat_chain_factory([provider])

    result = await chain.respond(["hello"], stream=False)

    assert result.model == "gemini-2.0-flash"
    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_disabled_providers_are_skipped(
    chat_provider_factory, chat_chain_factory
):
    disabled = chat_provider_factory("gemini", enabled=False)
    enabled = chat_provider_factory("openai", reply="ok")
    chain = chat_chain_factory([disabled, enabled])

    result = await chain.respond(["hello"], stream=False)

    assert result.provider == "openai"
    assert disabled.calls == []


@pytest.mark.asyncio
async def test_empty_answer_counts_as_failure(
    chat_provider_factory, chat_chain_factory
):
    silent = chat_provider_factory("gemini", reply="   ")
    backup = chat_provider_factory("openai", reply="Here I am.")
    chain = chat_chain_factory([silent, backup])

    result = await chain.respond(["hello"], stream=False)

    assert result.provider == "openai"


@pytest.mark.asyncio
async def test_exhausted_chain_raises(chat_provider_factory, chat_chain_factory):
    providers = [
        chat_provider_factory("gemini", error=_server_error("gemini")),
        chat_provider_factory("openai", error=_rate_limited("openai")),
    ]
    chain = chat_chain_factory(providers)

    with pytest.raises(LLMChainError, match="All AI models failed") as exc_info:
        await chain.respond(["hello"])

    assert [(p, m) for p, m, _ in exc_info.value.attempts] == [
        ("gemini", "test-model"),
        ("openai", "test-model"),
    ]


@pytest.mark.asyncio
async def test_no_enabled_provider_raises(chat_provider_factory, chat_chain_factory):
    chain = chat_chain_factory([chat_provider_factory("gemini", enabled=False)])

    with pytest.raises(LLMChainError, match="no chat provider is enabled"):
        await chain.respond(["hello"])


@pytest.mark.asyncio
async def test_native_stream_is_returned_lazily(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory("gemini", reply="Hello there, visitor")
    chain = chat_chain_factory([provider])

    result = await chain.respond(["hello"], stream=True)

    assert isinstance(result, StreamingResult)
    assert [f async for f in result.stream] == ["Hello ", "there, ", "visitor"]
    assert provider.calls[0][0] == "stream"


@pytest.mark.asyncio
async def test_complete_only_provider_is_streamed_synthetically(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory(
        "huggingface", reply="Arnob lives in Frankfurt.", streaming=False
    )
    chain = chat_chain_factory([provider])

    result = await chain.respond(["hello"], stream=True)

    assert isinstance(result, StreamingResult)
    assert await result.stream.collect() == "Arnob lives in Frankfurt."
    assert provider.calls[0][0] == "complete"


@pytest.mark.asyncio
async def test_failure_before_first_fragment_falls_back(
    chat_provider_factory, chat_chain_factory
):
    broken = chat_provider_factory("gemini", error=_server_error("gemini"))
    empty = chat_provider_factory("openrouter", reply="")
    working = chat_provider_factory("openai", reply="Streaming works.")
    chain = chat_chain_factory([broken, empty, working])

    result = await chain.respond(["hello"], stream=True)

    assert result.provider == "openai"
    assert await result.stream.collect() == "Streaming works."


@pytest.mark.asyncio
async def test_failure_after_first_fragment_reaches_the_consumer(
    chat_provider_factory, chat_chain_factory
):
    flaky = chat_provider_factory(
        "gemini", reply="one two three four", fail_after_fragments=2
    )
    backup = chat_provider_factory("openai")
    chain = chat_chain_factory([flaky, backup])

    result = await chain.respond(["hello"], stream=True)

    assert result.provider == "gemini"
    with pytest.raises(ProviderError, match="connection dropped"):
        await result.stream.collect()
    assert backup.calls == []


@pytest.mark.asyncio
async def test_non_string_content_is_coerced_before_dispatch(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory("gemini", reply="ok")
    chain = chat_chain_factory([provider])
    chain.build_messages = Mock(
        return_value=[
            Message(Role.SYSTEM, "system prompt"),
            Message(Role.USER, [{"type": "input_text", "text": "hi"}]),
        ]
    )

    await chain.respond(["ignored"], stream=False)

    sent = provider.calls[0][2]
    assert sent[1] == Message(Role.USER, "hi")
    assert all(isinstance(m.content, str) for m in sent)


@pytest.mark.asyncio
async def test_history_of_messages_with_fragment_content_is_flattened(
    chat_provider_factory, chat_chain_factory
):
    provider = chat_provider_factory("gemini", reply="ok")
    chain = chat_chain_factory([provider])
    history = [Message(Role.USER, [{"text": "hi"}, {"text": "there"}])]

    await chain.respond(history, stream=False)

    assert provider.calls[0][2][-1] == Message(Role.USER, "hi there")


def test_gemini_payload_shape(settings_factory):
    provider = GeminiChatProvider(
        settings_factory("gemini"), temperature=0.7, max_tokens=500
    )
    messages = [
        Message(Role.SYSTEM, "persona"),
        Message(Role.USER, "hi"),
        Message(Role.ASSISTANT, "hello"),
    ]

    payload = provider.build_payload(messages)

    assert payload["systemInstruction"] == {"parts": [{"text": "persona"}]}
    assert payload["contents"] == [
        {"role": "user", "parts": [{"text": "hi"}]},
        {"role": "model", "parts": [{"text": "hello"}]},
    ]
    assert payload["generationConfig"] == {
        "temperature": 0.7,
        "maxOutputTokens": 500,
    }


@pytest.mark.asyncio
async def test_gemini_streams_server_sent_events(
    settings_factory, mock_http_client_factory, chat_chain_factory
):
    body = _sse(_gemini_chunk("Arnob is "), _gemini_chunk("in Frankfurt."))
    body += "data: {not json}\n\n"
    client = mock_http_client_factory(lambda request: httpx.Response(200, text=body))
    provider = GeminiChatProvider(
        settings_factory("gemini", models=("gemini-2.0-flash",)), http_client=client
    )
    chain = chat_chain_factory([provider])

    result = await chain.respond(["Where is Arnob?"], stream=True)

    assert await result.stream.collect() == "Arnob is in Frankfurt."
    (request,) = client.requests
    assert request.url.path.endswith("/models/gemini-2.0-flash:streamGenerateContent")
    assert request.url.params["alt"] == "sse"
    assert request.headers["x-goog-api-key"] == "test-key"


@pytest.mark.asyncio
async def test_gemini_rate_limit_skips_remaining_variants(
    settings_factory,
    mock_http_client_factory,
    chat_provider_factory,
    chat_chain_factory,
):
    client = mock_http_client_factory(
        lambda request: httpx.Response(
            429, json={"error": {"status": "RESOURCE_EXHAUSTED"}}
        )
    )
    gemini = GeminiChatProvider(
        settings_factory("gemini", models=("lite", "flash")), http_client=client
    )
    backup = chat_provider_factory("openrouter", reply="Backup answer.")
    chain = chat_chain_factory([gemini, backup])

    result = await chain.respond(["hello"], stream=True)

    assert result.provider == "openrouter"
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_gemini_complete_and_blocked_prompt(
    settings_factory, mock_http_client_factory
):
    responses = iter(
        [
            httpx.Response(200, json=_gemini_chunk("Complete answer.")),
            httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}),
        ]
    )
    client = mock_http_client_factory(lambda request: next(responses))
    provider = GeminiChatProvider(settings_factory("gemini"), http_client=client)
    messages = [Message(Role.USER, "hi")]

    assert await provider.complete("flash", messages) == "Complete answer."
    with pytest.raises(ProviderError, match="prompt blocked"):
        await provider.complete("flash", messages)
    assert client.requests[0].url.path.endswith("/models/flash:generateContent")


@pytest.mark.asyncio
async def test_huggingface_complete(settings_factory, mock_http_client_factory):
    client = mock_http_client_factory(
        lambda request: httpx.Response(200, json=[{"generated_text": " Hi there. "}])
    )
    provider = HuggingFaceChatProvider(
        settings_factory("huggingface", models=("mistral",)), http_client=client
    )

    text = await provider.complete(
        "mistral", [Message(Role.SYSTEM, "persona"), Message(Role.USER, "hi")]
    )

    assert text == "Hi there."
    body = json.loads(client.requests[0].content)
    assert body["inputs"] == "System: persona\n\nUser: hi\n\nAssistant:"
    assert body["parameters"]["return_full_text"] is False
    assert client.requests[0].url.path == "/v1/models/mistral"


@pytest.mark.asyncio
async def test_huggingface_unexpected_payload(
    settings_factory, mock_http_client_factory
):
    client = mock_http_client_factory(
        lambda request: httpx.Response(200, json={"error": "odd"})
    )
    provider = HuggingFaceChatProvider(
        settings_factory("huggingface"), http_client=client
    )

    with pytest.raises(ProviderError, match="no generated_text"):
        await provider.complete("model", [Message(Role.USER, "hi")])


@pytest.mark.asyncio
async def test_openai_complete_and_stream(
    settings_factory, openai_chat_response_factory
):
    create_response, create_chunks = openai_chat_response_factory
    mock_client = Mock()
    mock_client.chat.completions.create = AsyncMock(
        side_effect=[
            create_response("Complete."),
            create_chunks(["Str", None, "eamed."]),
        ]
    )
    provider = OpenAIChatProvider(
        settings_factory("openai"), client=mock_client, temperature=0.2, max_tokens=50
    )
    messages = [Message(Role.USER, "hi")]

    assert await provider.complete("gpt-4o-mini", messages) == "Complete."
    fragments = [f async for f in provider.stream("gpt-4o-mini", messages)]

    assert fragments == ["Str", "eamed."]
    first_call, second_call = mock_client.chat.completions.create.await_args_list
    assert first_call.kwargs == {
        "model": "gpt-4o-mini",
        "messages": [{"role": "user", "content": "hi"}],
        "temperature": 0.2,
        "max_tokens": 50,
    }
    assert second_call.kwargs["stream"] is True


def test_build_chat_providers_keeps_order(settings_factory):
    providers = build_chat_providers(
        [
            settings_factory("openrouter"),
            settings_factory("gemini"),
            settings_factory("bogus"),
            settings_factory("huggingface"),
        ]
    )

    assert [p.name for p in providers] == ["openrouter", "gemini", "huggingface"]
    assert not providers[-1].supports_streaming
