"""Tests for provider clients and error translation."""

import asyncio
import json
from types import SimpleNamespace

import httpx
import pytest

from switchboard.providers import (
    AnthropicProvider,
    GoogleProvider,
    MockProvider,
    OpenAICompatibleProvider,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRegistry,
    ProviderTimeoutError,
    ProviderTransientError,
    error_from_status,
    parse_retry_after,
    translate_error,
)
from switchboard.schemas import ModelDescriptor, Provider


MODEL = ModelDescriptor(
    model_id="test-model",
    provider=Provider.OPENAI,
    input_cost_per_1k=0.001,
    output_cost_per_1k=0.002,
    context_window=8000,
    upstream_name="test-model-2024",
)


class ReadTimeout(Exception):
    """Stands in for an SDK timeout class."""


class APIConnectionError(Exception):
    pass


class TestErrorTaxonomy:
    """Test status and exception mapping."""

    @pytest.mark.parametrize("status,expected", [
        (401, ProviderAuthError),
        (403, ProviderAuthError),
        (429, ProviderRateLimitError),
        (408, ProviderTransientError),
        (500, ProviderTransientError),
        (503, ProviderTransientError),
        (400, ProviderError),
        (404, ProviderError),
    ])
    def test_error_from_status(self, status, expected):
        error = error_from_status(Provider.OPENAI, status, "nope")
        assert type(error) is expected
        assert error.status_code == status

    def test_auth_is_not_transient(self):
        assert not isinstance(error_from_status(Provider.OPENAI, 403, "x"), ProviderTransientError)

    def test_translate_sdk_status_error(self):
        """SDK errors carry status_code and a response with headers."""
        exc = Exception("rate limited")
        exc.status_code = 429
        exc.response = SimpleNamespace(headers={"retry-after": "7"})

        error = translate_error(Provider.AIMLAPI, exc)
        assert isinstance(error, ProviderRateLimitError)
        assert error.retry_after == 7.0

    def test_translate_by_type_name(self):
        assert isinstance(translate_error(Provider.OPENAI, ReadTimeout()), ProviderTimeoutError)
        assert type(translate_error(Provider.OPENAI, APIConnectionError("reset"))) is ProviderTransientError
        assert type(translate_error(Provider.OPENAI, ValueError("bad"))) is ProviderError

    def test_translate_asyncio_timeout(self):
        error = translate_error(Provider.GOOGLE, asyncio.TimeoutError())
        assert isinstance(error, ProviderTimeoutError)

    def test_translate_passes_provider_errors_through(self):
        original = ProviderAuthError(Provider.OPENAI, "denied", 401)
        assert translate_error(Provider.OPENAI, original) is original

    def test_parse_retry_after(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("2.5") == 2.5
        assert parse_retry_after("-3") == 0.0
        assert parse_retry_after("garbage") is None
        assert parse_retry_after("Wed, 21 Oct 2015 07:28:10 GMT", now=1445412480.0) == 10.0


class TestMockProvider:
    """Test the scripted mock."""

    @pytest.mark.asyncio
    async def test_script_then_default(self):
        error = ProviderTransientError(Provider.OPENAI, "flaky", 502)
        provider = MockProvider(Provider.OPENAI, script=["first", error])

        response = await provider.send(MODEL, "system", "hello world", max_tokens=50)
        assert response.text == "first"
        assert response.model == "test-model"
        assert response.usage.completion_tokens == 100

        with pytest.raises(ProviderTransientError):
            await provider.send(MODEL, None, "again")

        response = await provider.send(MODEL, None, "third")
        assert "Mock response" in response.text
        assert len(provider.calls) == 3
        assert provider.calls[0]["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_persistent_error(self):
        provider = MockProvider(Provider.OPENAI, error=ProviderAuthError(Provider.OPENAI, "no", 401))
        with pytest.raises(ProviderAuthError):
            await provider.send(MODEL, None, "hi")

    @pytest.mark.asyncio
    async def test_failure_rate_is_seeded(self):
        provider = MockProvider(Provider.OPENAI, failure_rate=1.0, seed=1)
        with pytest.raises(ProviderTransientError):
            await provider.send(MODEL, None, "hi")


class TestOpenAICompatibleProvider:
    """Test the chat-completions client against a fake SDK."""

    def _sdk(self, create):
        return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    @pytest.mark.asyncio
    async def test_send(self):
        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="answer"))],
                usage=SimpleNamespace(prompt_tokens=12, completion_tokens=34),
            )

        provider = OpenAICompatibleProvider(Provider.AIMLAPI, "key", client=self._sdk(create))
        response = await provider.send(MODEL, "be brief", "question", temperature=0.2)

        assert response.text == "answer"
        assert response.usage.total_tokens == 46
        assert seen["model"] == "test-model-2024"
        assert seen["messages"][0] == {"role": "system", "content": "be brief"}
        assert seen["temperature"] == 0.2
        assert provider.base_url == "https://api.aimlapi.com/v1"

    @pytest.mark.asyncio
    async def test_sdk_errors_translated(self):
        async def create(**kwargs):
            exc = Exception("forbidden")
            exc.status_code = 403
            raise exc

        provider = OpenAICompatibleProvider(Provider.OPENAI, "key", client=self._sdk(create))
        with pytest.raises(ProviderAuthError):
            await provider.send(MODEL, None, "question")


class TestAnthropicProvider:

    @pytest.mark.asyncio
    async def test_send(self):
        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                content=[SimpleNamespace(type="text", text="Hello "), SimpleNamespace(type="text", text="there")],
                usage=SimpleNamespace(input_tokens=5, output_tokens=2),
            )

        sdk = SimpleNamespace(messages=SimpleNamespace(create=create))
        provider = AnthropicProvider("key", client=sdk)
        response = await provider.send(MODEL, "system text", "hi")

        assert response.text == "Hello there"
        assert response.usage.total_tokens == 7
        assert seen["system"] == "system text"
        assert seen["messages"] == [{"role": "user", "content": "hi"}]


class TestGoogleProvider:
    """Test the plain-HTTP client with a mock transport."""

    @pytest.mark.asyncio
    async def test_send(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "bonjour"}]}}],
                "usageMetadata": {"promptTokenCount": 9, "candidatesTokenCount": 3},
            })

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = GoogleProvider("gkey", client=client)
        response = await provider.send(MODEL, "sys", "hello")
        await provider.aclose()

        assert response.text == "bonjour"
        assert response.usage.prompt_tokens == 9
        assert response.usage.completion_tokens == 3
        assert requests[0].url.path.endswith("/models/test-model-2024:generateContent")
        assert requests[0].url.params["key"] == "gkey"
        body = json.loads(requests[0].content)
        assert body["systemInstruction"]["parts"][0]["text"] == "sys"

    @pytest.mark.asyncio
    async def test_rate_limit_with_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"retry-after": "3"}, text="slow down")

        provider = GoogleProvider("gkey", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ProviderRateLimitError) as exc_info:
            await provider.send(MODEL, None, "hello")
        assert exc_info.value.retry_after == 3.0
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider = GoogleProvider("gkey", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ProviderTransientError):
            await provider.send(MODEL, None, "hello")
        await provider.aclose()


class TestProviderRegistry:
    """Test client registration."""

    def test_register_and_lookup(self):
        mock = MockProvider(Provider.GOOGLE)
        registry = ProviderRegistry([mock])
        assert Provider.GOOGLE in registry
        assert Provider.OPENAI not in registry
        assert registry.get(Provider.GOOGLE) is mock
        assert registry.providers() == [Provider.GOOGLE]

    def test_from_env(self):
        registry = ProviderRegistry.from_env({
            "AIMLAPI_API_KEY": "a",
            "ANTHROPIC_API_KEY": "b",
            "OPENAI_API_KEY": "",
        })
        assert registry.providers() == [Provider.AIMLAPI, Provider.ANTHROPIC]
        assert isinstance(registry.get(Provider.AIMLAPI), OpenAICompatibleProvider)
        assert isinstance(registry.get(Provider.ANTHROPIC), AnthropicProvider)

    def test_from_env_custom_base_url(self):
        registry = ProviderRegistry.from_env({
            "OPENAI_API_KEY": "k",
            "OPENAI_BASE_URL": "http://localhost:8080/v1",
        })
        assert registry.get(Provider.OPENAI).base_url == "http://localhost:8080/v1"
