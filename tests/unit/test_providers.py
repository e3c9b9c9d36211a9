"""Tests for provider implementations."""

import random
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import anthropic
import httpx
import openai
import pytest
from google.api_core import exceptions as google_exceptions

from polyphony.core.models import MODEL_REGISTRY, ModelIdentifier, ModelProvider, ModelResult, TokenUsage
from polyphony.providers.anthropic_provider import AnthropicProvider
from polyphony.providers.base import (
    AUTH_FALLBACK_ERROR,
    AdapterUnavailableError,
    ProviderError,
    RateLimitError,
    UpstreamAuthenticationError,
    UpstreamTransportError,
)
from polyphony.providers.google_provider import GoogleProvider
from polyphony.providers.openai_provider import OpenAIProvider
from polyphony.providers.xai_provider import XAI_BASE_URL, XAIProvider
from polyphony.utils.retry import RetryConfig

from support import ScriptedProvider

GPT4O_MINI = MODEL_REGISTRY[ModelIdentifier.OPENAI_GPT4O_MINI]
CLAUDE = MODEL_REGISTRY[ModelIdentifier.ANTHROPIC_CLAUDE35_SONNET]
GROK = MODEL_REGISTRY[ModelIdentifier.XAI_GROK3_BETA]
GEMINI = MODEL_REGISTRY[ModelIdentifier.GOOGLE_GEMINI15_FLASH]

NO_RETRY = RetryConfig(max_retries=0, jitter=False)


class CountingCallback:
    """Records every callback invocation."""

    def __init__(self):
        self.chunks: list[str] = []
        self.completed: list[ModelResult] = []
        self.errors: list[str] = []

    async def on_chunk(self, text):
        self.chunks.append(text)

    async def on_complete(self, result):
        self.completed.append(result)

    async def on_error(self, message):
        self.errors.append(message)

    @property
    def terminal_count(self) -> int:
        return len(self.completed) + len(self.errors)


class AsyncList:
    """Async iterator over a fixed list, standing in for an SDK stream."""

    def __init__(self, items, error: Exception | None = None):
        self.items = list(items)
        self.error = error

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error


def _request(url: str) -> httpx.Request:
    return httpx.Request("POST", url)


def _response(status: int, url: str) -> httpx.Response:
    return httpx.Response(status, request=_request(url))


class TestProviderErrors:
    """Tests for provider error classes."""

    def test_provider_error(self):
        error = ProviderError("Test error", provider=ModelProvider.OPENAI, status_code=500, retryable=True)
        assert str(error) == "Test error"
        assert error.provider == ModelProvider.OPENAI
        assert error.status_code == 500
        assert error.retryable is True

    def test_rate_limit_is_retryable_transport_error(self):
        error = RateLimitError("Rate limited", provider=ModelProvider.ANTHROPIC, retry_after=30.0)
        assert isinstance(error, UpstreamTransportError)
        assert error.status_code == 429
        assert error.retryable is True
        assert error.retry_after == 30.0

    def test_authentication_error(self):
        error = UpstreamAuthenticationError("Invalid API key", provider=ModelProvider.GOOGLE)
        assert error.status_code == 401
        assert error.retryable is False

    def test_unavailable_message(self):
        error = AdapterUnavailableError(ModelProvider.XAI)
        assert str(error) == "xAI service not available - API key not configured"


class TestBaseProviderContract:
    """Tests for the streaming callback contract in BaseProvider."""

    @pytest.mark.asyncio
    async def test_chunks_forwarded_in_order_then_complete(self):
        provider = ScriptedProvider(ModelProvider.OPENAI, {"gpt-4o-mini": ["Hel", "", "lo"]})
        callback = CountingCallback()

        result = await provider.stream(GPT4O_MINI, "Say hello", callback)

        assert callback.chunks == ["Hel", "lo"]
        assert callback.completed == [result]
        assert callback.errors == []
        assert result.response == "Hello"
        assert result.model == "OpenAI-GPT-4o Mini"
        assert result.model_id == ModelIdentifier.OPENAI_GPT4O_MINI
        assert result.elapsed_ms >= 0

    @pytest.mark.asyncio
    async def test_provider_usage_preferred(self):
        usage = TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7)
        provider = ScriptedProvider(ModelProvider.OPENAI, {"gpt-4o-mini": ["Hi", usage]})

        result = await provider.stream(GPT4O_MINI, "prompt", CountingCallback())

        assert result.tokens == usage
        assert result.estimated_cost_usd == 7 * (GPT4O_MINI.cost_per_1k_tokens / 1000)

    @pytest.mark.asyncio
    async def test_zero_usage_falls_back_to_estimate(self):
        provider = ScriptedProvider(
            ModelProvider.OPENAI, {"gpt-4o-mini": ["12345", TokenUsage()]}
        )

        result = await provider.stream(GPT4O_MINI, "12345678", CountingCallback())

        assert result.tokens == TokenUsage(prompt_tokens=2, completion_tokens=2, total_tokens=4)

    @pytest.mark.asyncio
    async def test_missing_key_reports_error_without_raising(self):
        provider = ScriptedProvider(ModelProvider.ANTHROPIC, api_key=None)
        callback = CountingCallback()

        result = await provider.stream(CLAUDE, "hi", callback)

        assert callback.errors == ["Anthropic service not available - API key not configured"]
        assert callback.completed == []
        assert result.error == callback.errors[0]
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_midstream_failure_reports_error(self):
        provider = ScriptedProvider(
            ModelProvider.OPENAI, {"gpt-4o-mini": ["partial", RuntimeError("socket closed")]}
        )
        callback = CountingCallback()

        result = await provider.stream(GPT4O_MINI, "hi", callback)

        assert callback.chunks == ["partial"]
        assert len(callback.errors) == 1
        assert "socket closed" in callback.errors[0]
        assert result.response == ""
        assert not result.success

    @pytest.mark.asyncio
    async def test_timeout_translated(self):
        provider = ScriptedProvider(ModelProvider.GOOGLE, {"gemini-1.5-flash": [TimeoutError()]})
        callback = CountingCallback()

        await provider.stream(GEMINI, "hi", callback)

        assert callback.errors == ["Google request timed out"]

    @pytest.mark.asyncio
    async def test_auth_failure_without_substitution(self):
        provider = ScriptedProvider(
            ModelProvider.ANTHROPIC,
            {"claude-3-5-sonnet-20241022": [UpstreamAuthenticationError("auth failed", ModelProvider.ANTHROPIC)]},
        )
        callback = CountingCallback()

        result = await provider.stream(CLAUDE, "hi", callback)

        assert callback.errors == ["auth failed"]
        assert not result.synthetic

    @pytest.mark.asyncio
    async def test_auth_failure_with_substitution_streams_synthetic(self):
        provider = ScriptedProvider(
            ModelProvider.ANTHROPIC,
            {"claude-3-5-sonnet-20241022": [UpstreamAuthenticationError("auth failed", ModelProvider.ANTHROPIC)]},
            substitute_on_auth_failure=True,
        )
        callback = CountingCallback()

        result = await provider.stream(CLAUDE, "Explain recursion", callback)

        assert callback.errors == []
        assert callback.completed == [result]
        assert len(callback.chunks) > 1
        assert result.synthetic is True
        assert result.error == AUTH_FALLBACK_ERROR
        assert result.response == "".join(callback.chunks)
        assert "[Synthetic response]" in result.response

    @pytest.mark.asyncio
    async def test_exactly_one_terminal_callback_for_random_streams(self):
        rng = random.Random(1234)
        failures = [
            lambda: RuntimeError("boom"),
            lambda: TimeoutError(),
            lambda: ConnectionError("reset"),
            lambda: RateLimitError("slow down", ModelProvider.OPENAI),
            lambda: UpstreamAuthenticationError("bad key", ModelProvider.OPENAI),
            lambda: UpstreamTransportError("502", ModelProvider.OPENAI, status_code=502),
        ]

        for _ in range(1000):
            script: list = [rng.choice(["a", "bc", "", "def "]) for _ in range(rng.randint(0, 6))]
            if rng.random() < 0.3:
                script.append(TokenUsage(total_tokens=rng.randint(0, 50)))
            if rng.random() < 0.5:
                script.insert(rng.randint(0, len(script)), rng.choice(failures)())

            provider = ScriptedProvider(
                ModelProvider.OPENAI,
                {"gpt-4o-mini": script},
                api_key=rng.choice(["key", "key", "key", None]),
                substitute_on_auth_failure=rng.random() < 0.5,
            )
            callback = CountingCallback()

            result = await provider.stream(GPT4O_MINI, "prompt", callback)

            assert callback.terminal_count == 1, script
            if callback.completed:
                assert callback.completed[0] is result
            else:
                assert result.error == callback.errors[0]
                assert result.response == ""


class TestOpenAIProvider:
    """Tests for OpenAI provider."""

    def test_no_client_without_key(self):
        provider = OpenAIProvider(api_key=None)
        assert provider.client is None
        assert not provider.available

    @pytest.mark.asyncio
    async def test_stream_with_usage(self):
        provider = OpenAIProvider(api_key="test-key", retry_config=NO_RETRY)
        chunks = [
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="Hel"))], usage=None),
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="lo"))], usage=None),
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=None))], usage=None),
            SimpleNamespace(
                choices=[],
                usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
            ),
        ]
        create = AsyncMock(return_value=AsyncList(chunks))
        callback = CountingCallback()

        with patch.object(provider.client.chat.completions, "create", create):
            result = await provider.stream(GPT4O_MINI, "Say hello", callback)

        assert callback.chunks == ["Hel", "lo"]
        assert result.response == "Hello"
        assert result.tokens == TokenUsage(prompt_tokens=3, completion_tokens=2, total_tokens=5)

        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["stream"] is True
        assert kwargs["stream_options"] == {"include_usage": True}
        assert kwargs["temperature"] == 0.7
        assert kwargs["messages"] == [{"role": "user", "content": "Say hello"}]

    @pytest.mark.asyncio
    async def test_authentication_error(self):
        provider = OpenAIProvider(api_key="bad-key", retry_config=NO_RETRY)
        url = "https://api.openai.com/v1/chat/completions"
        error = openai.AuthenticationError(
            "Incorrect API key provided", response=_response(401, url), body=None
        )
        callback = CountingCallback()

        with patch.object(provider.client.chat.completions, "create", AsyncMock(side_effect=error)):
            result = await provider.stream(GPT4O_MINI, "hi", callback)

        assert len(callback.errors) == 1
        assert "authentication failed" in callback.errors[0]
        assert not result.synthetic

    @pytest.mark.asyncio
    async def test_rate_limit_retried_before_first_chunk(self):
        provider = OpenAIProvider(
            api_key="test-key",
            retry_config=RetryConfig(max_retries=2, base_delay=0.0, jitter=False),
        )
        url = "https://api.openai.com/v1/chat/completions"
        rate_limited = openai.RateLimitError("slow down", response=_response(429, url), body=None)
        chunk = SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="ok"))], usage=None)
        create = AsyncMock(side_effect=[rate_limited, AsyncList([chunk])])
        callback = CountingCallback()

        with patch.object(provider.client.chat.completions, "create", create):
            result = await provider.stream(GPT4O_MINI, "hi", callback)

        assert create.await_count == 2
        assert result.response == "ok"
        assert callback.errors == []

    def test_translate_timeout(self):
        provider = OpenAIProvider(api_key="test-key")
        error = provider._translate_error(
            openai.APITimeoutError(request=_request("https://api.openai.com/v1/chat/completions"))
        )
        assert isinstance(error, UpstreamTransportError)
        assert error.retryable is True
        assert str(error) == "OpenAI request timed out"


class TestXAIProvider:
    def test_uses_xai_endpoint(self):
        provider = XAIProvider(api_key="test-key")
        assert provider.provider == ModelProvider.XAI
        assert str(provider.client.base_url).rstrip("/") == XAI_BASE_URL

    @pytest.mark.asyncio
    async def test_missing_key_label(self):
        callback = CountingCallback()
        await XAIProvider(api_key=None).stream(GROK, "hi", callback)
        assert callback.errors == ["xAI service not available - API key not configured"]


class TestAnthropicProvider:
    """Tests for Anthropic provider."""

    @pytest.mark.asyncio
    async def test_stream_events(self):
        provider = AnthropicProvider(api_key="test-key", retry_config=NO_RETRY)
        events = [
            SimpleNamespace(
                type="message_start",
                message=SimpleNamespace(usage=SimpleNamespace(input_tokens=10, output_tokens=1)),
            ),
            SimpleNamespace(type="content_block_start"),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text="Hi")),
            SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type="text_delta", text=" there")),
            SimpleNamespace(type="message_delta", usage=SimpleNamespace(output_tokens=7)),
            SimpleNamespace(type="message_stop"),
        ]
        create = AsyncMock(return_value=AsyncList(events))
        callback = CountingCallback()

        with patch.object(provider.client.messages, "create", create):
            result = await provider.stream(CLAUDE, "Hello", callback)

        assert callback.chunks == ["Hi", " there"]
        assert result.response == "Hi there"
        assert result.tokens == TokenUsage(prompt_tokens=10, completion_tokens=7, total_tokens=17)
        kwargs = create.call_args.kwargs
        assert kwargs["max_tokens"] == 4000
        assert kwargs["stream"] is True
        assert kwargs["model"] == "claude-3-5-sonnet-20241022"

    @pytest.mark.asyncio
    async def test_auth_failure_substitutes_when_enabled(self):
        provider = AnthropicProvider(
            api_key="bad-key",
            retry_config=NO_RETRY,
            substitute_on_auth_failure=True,
            synthetic_chunk_delay=0,
        )
        url = "https://api.anthropic.com/v1/messages"
        error = anthropic.AuthenticationError("invalid x-api-key", response=_response(401, url), body=None)
        callback = CountingCallback()

        with patch.object(provider.client.messages, "create", AsyncMock(side_effect=error)):
            result = await provider.stream(CLAUDE, "Hello", callback)

        assert result.synthetic is True
        assert result.error == AUTH_FALLBACK_ERROR
        assert callback.completed == [result]
        assert callback.errors == []


class TestGoogleProvider:
    """Tests for Google error translation."""

    def test_translate_errors(self):
        provider = GoogleProvider(api_key=None)

        assert isinstance(
            provider._translate_error(google_exceptions.Unauthenticated("no")),
            UpstreamAuthenticationError,
        )
        assert isinstance(
            provider._translate_error(google_exceptions.InvalidArgument("API key not valid")),
            UpstreamAuthenticationError,
        )
        assert isinstance(
            provider._translate_error(google_exceptions.ResourceExhausted("quota")),
            RateLimitError,
        )
        transport = provider._translate_error(google_exceptions.InternalServerError("oops"))
        assert isinstance(transport, UpstreamTransportError)
        assert not isinstance(transport, RateLimitError)
