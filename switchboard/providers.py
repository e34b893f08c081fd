"""
Provider clients for Switchboard.

Sends a single prompt to one upstream provider and normalizes the reply.
Real clients wrap the vendor SDKs; ``MockProvider`` simulates a provider
for tests and the CLI simulator.

Every failure leaves a client as one of:
- ``ProviderTransientError``: worth retrying (5xx, timeouts, connection drops)
- ``ProviderRateLimitError``: upstream 429, may carry a retry-after delay
- ``ProviderAuthError``: 401/403, never retried
- ``ProviderError``: anything else; not retried, but the next provider is tried
"""

import asyncio
import logging
import os
import random
import time
from abc import ABC, abstractmethod
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Mapping, Optional, Union

import httpx

from switchboard.schemas import ModelDescriptor, Provider, ProviderResponse, UsageRecord


logger = logging.getLogger(__name__)


DEFAULT_BASE_URLS: dict[Provider, str] = {
    Provider.AIMLAPI: "https://api.aimlapi.com/v1",
    Provider.OPENAI: "https://api.openai.com/v1",
    Provider.GOOGLE: "https://generativelanguage.googleapis.com/v1beta",
    Provider.ANTHROPIC: "https://api.anthropic.com",
}


# =============================================================================
# ERRORS
# =============================================================================

class ProviderError(Exception):
    """A provider call failed."""

    def __init__(self, provider: Provider, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"{provider.value}: {message}")


class ProviderTransientError(ProviderError):
    """Failure that may go away on retry."""


class ProviderTimeoutError(ProviderTransientError):
    """The provider did not answer in time."""


class ProviderRateLimitError(ProviderTransientError):
    """Upstream rejected the call with 429."""

    def __init__(
        self,
        provider: Provider,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(provider, message, status_code)


class ProviderAuthError(ProviderError):
    """Credentials rejected. Retrying cannot help."""


def parse_retry_after(value: Optional[str], now: Optional[float] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max(0.0, when.timestamp() - (time.time() if now is None else now))


def error_from_status(
    provider: Provider,
    status_code: int,
    message: str,
    retry_after: Optional[float] = None,
) -> ProviderError:
    """Map an HTTP status to the provider error taxonomy."""
    if status_code in (401, 403):
        return ProviderAuthError(provider, message, status_code)
    if status_code == 429:
        return ProviderRateLimitError(provider, message, status_code, retry_after)
    if status_code == 408 or status_code >= 500:
        return ProviderTransientError(provider, message, status_code)
    return ProviderError(provider, message, status_code)


def translate_error(provider: Provider, exc: BaseException) -> ProviderError:
    """
    Convert an SDK or transport exception into a ``ProviderError``.

    SDK errors are recognised by their ``status_code`` attribute, transport
    errors by type name, so the same code serves every vendor SDK.
    """
    if isinstance(exc, ProviderError):
        return exc

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None) or {}
        retry_after = parse_retry_after(headers.get("retry-after") or headers.get("Retry-After"))
        return error_from_status(provider, status, str(exc), retry_after)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ProviderTimeoutError(provider, str(exc) or "timed out")
    if isinstance(exc, httpx.TransportError):
        return ProviderTransientError(provider, str(exc) or type(exc).__name__)

    name = type(exc).__name__.lower()
    if "timeout" in name:
        return ProviderTimeoutError(provider, str(exc) or "timed out")
    if any(marker in name for marker in ("connection", "remoteprotocol", "network", "transport")):
        return ProviderTransientError(provider, str(exc) or name)
    return ProviderError(provider, str(exc) or name)


# =============================================================================
# CLIENTS
# =============================================================================

class ProviderClient(ABC):
    """Abstract base class for provider clients."""

    provider: Provider

    @abstractmethod
    async def send(
        self,
        model: ModelDescriptor,
        system_prompt: Optional[str],
        content: str,
        *,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        """Send one prompt and return the normalized reply."""

    async def aclose(self) -> None:
        """Release network resources."""


def _estimate_tokens(text: str) -> int:
    return max(1, len(text) // 4) if text else 0


class MockProvider(ProviderClient):
    """
    Mock provider for testing.

    Replies are taken from ``script`` in order; an item that is an
    exception is raised instead. Once the script is used up, the client
    fails with ``error`` if set, fails randomly at ``failure_rate``, or
    echoes a canned reply.
    """

    def __init__(
        self,
        provider: Provider,
        script: Iterable[Union[str, BaseException]] = (),
        error: Optional[BaseException] = None,
        failure_rate: float = 0.0,
        latency_s: float = 0.0,
        output_tokens: int = 100,
        seed: Optional[int] = None,
    ):
        self.provider = provider
        self.script = list(script)
        self.error = error
        self.failure_rate = failure_rate
        self.latency_s = latency_s
        self.output_tokens = output_tokens
        self.calls: list[dict[str, Any]] = []
        self._random = random.Random(seed)

    async def send(
        self,
        model: ModelDescriptor,
        system_prompt: Optional[str],
        content: str,
        *,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        self.calls.append({
            "model": model.model_id,
            "system_prompt": system_prompt,
            "content": content,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.latency_s:
            await asyncio.sleep(self.latency_s)

        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            text = item
        elif self.error is not None:
            raise self.error
        elif self._random.random() < self.failure_rate:
            raise ProviderTransientError(self.provider, "Simulated failure", 500)
        else:
            text = f"[Mock response from {self.provider.value}/{model.model_id}]"

        prompt_tokens = _estimate_tokens((system_prompt or "") + content)
        completion_tokens = self.output_tokens or _estimate_tokens(text)
        return ProviderResponse(
            text=text,
            usage=UsageRecord.from_counts(prompt_tokens, completion_tokens),
            model=model.model_id,
        )


class OpenAICompatibleProvider(ProviderClient):
    """
    Chat-completions provider over the OpenAI SDK.

    Serves both OpenAI itself and OpenAI-compatible aggregators such as
    AIMLAPI, which differ only in base URL and key.
    """

    def __init__(
        self,
        provider: Provider,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Any = None,
    ):
        self.provider = provider
        self.api_key = api_key
        self.base_url = base_url or DEFAULT_BASE_URLS[provider]
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package required. Install with: pip install switchboard-llm[openai]"
                )
            # Retries are owned by the fallback orchestrator
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def send(
        self,
        model: ModelDescriptor,
        system_prompt: Optional[str],
        content: str,
        *,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": content})

        try:
            response = await self.client.chat.completions.create(
                model=model.wire_name,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except Exception as exc:
            raise translate_error(self.provider, exc) from exc

        usage = response.usage
        return ProviderResponse(
            text=response.choices[0].message.content or "",
            usage=UsageRecord.from_counts(
                getattr(usage, "prompt_tokens", 0) or 0,
                getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=model.model_id,
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()


class AnthropicProvider(ProviderClient):
    """
    Anthropic Messages API provider.

    Requires ANTHROPIC_API_KEY environment variable.
    """

    provider = Provider.ANTHROPIC

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, client: Any = None):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.base_url = base_url or DEFAULT_BASE_URLS[Provider.ANTHROPIC]
        self._client = client

    @property
    def client(self):
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError:
                raise ImportError(
                    "anthropic package required. Install with: pip install switchboard-llm[anthropic]"
                )
            self._client = AsyncAnthropic(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def send(
        self,
        model: ModelDescriptor,
        system_prompt: Optional[str],
        content: str,
        *,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        kwargs: dict[str, Any] = {
            "model": model.wire_name,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        try:
            response = await self.client.messages.create(**kwargs)
        except Exception as exc:
            raise translate_error(self.provider, exc) from exc

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        return ProviderResponse(
            text=text,
            usage=UsageRecord.from_counts(
                response.usage.input_tokens or 0,
                response.usage.output_tokens or 0,
            ),
            model=model.model_id,
        )

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()


class GoogleProvider(ProviderClient):
    """
    Google Generative Language API provider over plain HTTP.

    Requires GOOGLE_API_KEY environment variable.
    """

    provider = Provider.GOOGLE

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Any = None,
        timeout_s: float = 30.0,
    ):
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.base_url = (base_url or DEFAULT_BASE_URLS[Provider.GOOGLE]).rstrip("/")
        self.timeout_s = timeout_s
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)
        return self._client

    async def send(
        self,
        model: ModelDescriptor,
        system_prompt: Optional[str],
        content: str,
        *,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> ProviderResponse:
        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": content}]}],
            "generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
        }
        if system_prompt:
            body["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        try:
            response = await self.client.post(
                f"{self.base_url}/models/{model.wire_name}:generateContent",
                params={"key": self.api_key},
                json=body,
            )
        except Exception as exc:
            raise translate_error(self.provider, exc) from exc

        if response.status_code >= 400:
            raise error_from_status(
                self.provider,
                response.status_code,
                response.text[:500],
                parse_retry_after(response.headers.get("retry-after")),
            )

        data = response.json()
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or [{}]
        text = parts[0].get("text", "")

        meta = data.get("usageMetadata") or {}
        if meta:
            usage = UsageRecord.from_counts(
                meta.get("promptTokenCount", 0), meta.get("candidatesTokenCount", 0)
            )
        else:
            usage = UsageRecord.from_counts(_estimate_tokens(content), _estimate_tokens(text))
        return ProviderResponse(text=text, usage=usage, model=model.model_id, raw_response=data)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


# =============================================================================
# REGISTRY
# =============================================================================

class ProviderRegistry:
    """Maps each ``Provider`` to the client that talks to it."""

    def __init__(self, clients: Iterable[ProviderClient] = ()):
        self._clients: dict[Provider, ProviderClient] = {}
        for client in clients:
            self.register(client)

    def register(self, client: ProviderClient) -> None:
        self._clients[client.provider] = client

    def get(self, provider: Provider) -> Optional[ProviderClient]:
        return self._clients.get(provider)

    def __contains__(self, provider: Provider) -> bool:
        return provider in self._clients

    def providers(self) -> list[Provider]:
        return list(self._clients)

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ProviderRegistry":
        """Register a client for every provider whose API key is set."""
        env = os.environ if environ is None else environ
        registry = cls()

        if env.get("AIMLAPI_API_KEY"):
            registry.register(OpenAICompatibleProvider(
                Provider.AIMLAPI, env["AIMLAPI_API_KEY"], env.get("AIMLAPI_BASE_URL"),
            ))
        if env.get("OPENAI_API_KEY"):
            registry.register(OpenAICompatibleProvider(
                Provider.OPENAI, env["OPENAI_API_KEY"], env.get("OPENAI_BASE_URL"),
            ))
        if env.get("GOOGLE_API_KEY"):
            registry.register(GoogleProvider(env["GOOGLE_API_KEY"], env.get("GOOGLE_BASE_URL")))
        if env.get("ANTHROPIC_API_KEY"):
            registry.register(AnthropicProvider(env["ANTHROPIC_API_KEY"], env.get("ANTHROPIC_BASE_URL")))

        if not registry.providers():
            logger.warning("No provider API keys found in environment")
        return registry
