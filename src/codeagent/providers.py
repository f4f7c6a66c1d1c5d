"""LLM providers over httpx with shared credential rotation."""

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import httpx

from .errors import ProviderError

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"
RETRYABLE_STATUS = {401, 403, 429}


@dataclass
class CompletionOptions:
    max_tokens: int = 4000
    temperature: float = 0.7
    stream: bool = False
    on_delta: Optional[Callable[[str], None]] = None


class LLMProvider(Protocol):
    name: str

    async def complete(
        self, system_prompt: str, user_prompt: str, options: Optional[CompletionOptions] = None
    ) -> str:
        ...


class CredentialRing:
    """Ordered API keys with a current position that wraps around."""

    def __init__(self, keys: Sequence[str]):
        self.keys: List[str] = [key for key in keys if key]
        self.index = 0

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def current(self) -> str:
        if not self.keys:
            raise ProviderError("No API keys configured")
        return self.keys[self.index]

    def advance(self) -> str:
        if self.keys:
            self.index = (self.index + 1) % len(self.keys)
        return self.current


def is_retryable(error: ProviderError) -> bool:
    """Auth, rate-limit, server and transport failures move on to the next key."""
    status = error.status_code
    return status is None or status in RETRYABLE_STATUS or status >= 500


class RetryPolicy:
    """Try a call once per credential, rotating on retryable failures."""

    def __init__(self, ring: CredentialRing, retryable: Callable[[ProviderError], bool] = is_retryable):
        self.ring = ring
        self.retryable = retryable

    async def run(self, call: Callable[[str], Awaitable[str]]) -> str:
        attempts = max(1, len(self.ring))
        last_error: Optional[ProviderError] = None
        for attempt in range(attempts):
            key = self.ring.current
            try:
                return await call(key)
            except ProviderError as e:
                if not self.retryable(e):
                    raise
                last_error = e
                logger.warning(f"Provider call failed with key {self.ring.index + 1}/{attempts}: {e}")
                self.ring.advance()
        if last_error is not None and last_error.status_code == 429:
            raise ProviderError("All API keys are currently rate-limited. Please try again later.", 429)
        raise ProviderError(f"All {attempts} API keys failed: {last_error}", last_error.status_code)


class _HTTPProvider:
    name = "http"

    def __init__(
        self,
        api_keys: Sequence[str],
        model: str,
        base_url: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.transport = transport
        self.retry = RetryPolicy(CredentialRing(api_keys))

    @asynccontextmanager
    async def _client(self):
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            yield client

    def _error(self, error: httpx.HTTPError) -> ProviderError:
        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            return ProviderError(f"{self.name} API error: HTTP {status}", status)
        return ProviderError(f"{self.name} request failed: {error}")


class OpenRouterProvider(_HTTPProvider):
    """OpenAI-compatible chat completions on OpenRouter, with optional SSE streaming."""

    name = "openrouter"

    def __init__(
        self,
        api_keys: Sequence[str],
        model: str,
        base_url: str = OPENROUTER_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        app_title: str = "codeagent",
    ):
        super().__init__(api_keys, model, base_url, timeout, transport)
        self.app_title = app_title

    async def complete(
        self, system_prompt: str, user_prompt: str, options: Optional[CompletionOptions] = None
    ) -> str:
        options = options or CompletionOptions()
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "stream": options.stream,
        }
        return await self.retry.run(lambda key: self._request(key, payload, options))

    async def _request(self, key: str, payload: Dict, options: CompletionOptions) -> str:
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "X-Title": self.app_title,
        }
        url = f"{self.base_url}/chat/completions"
        try:
            async with self._client() as client:
                if options.stream:
                    return await self._stream(client, url, headers, payload, options)
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise self._error(e) from e
        except json.JSONDecodeError as e:
            raise ProviderError("Invalid JSON from OpenRouter", 200) from e

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Invalid response format from OpenRouter", 200) from e

    async def _stream(
        self, client: httpx.AsyncClient, url: str, headers: Dict, payload: Dict, options: CompletionOptions
    ) -> str:
        parts: List[str] = []
        async with client.stream("POST", url, json=payload, headers=headers) as response:
            if response.status_code >= 400:
                await response.aread()
            response.raise_for_status()
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if data == "[DONE]":
                    break
                try:
                    event = json.loads(data)
                    delta = event["choices"][0].get("delta", {}).get("content")
                except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
                    continue
                if delta:
                    parts.append(delta)
                    if options.on_delta is not None:
                        options.on_delta(delta)
        if not parts:
            raise ProviderError("No response received from AI", 200)
        return "".join(parts)


class GeminiProvider(_HTTPProvider):
    """Google Gemini generateContent."""

    name = "gemini"

    def __init__(
        self,
        api_keys: Sequence[str],
        model: str,
        base_url: str = GEMINI_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_keys, model, base_url, timeout, transport)

    async def complete(
        self, system_prompt: str, user_prompt: str, options: Optional[CompletionOptions] = None
    ) -> str:
        options = options or CompletionOptions()
        payload = {
            "contents": [
                {"role": "user", "parts": [{"text": system_prompt}]},
                {"role": "user", "parts": [{"text": user_prompt}]},
            ],
            "generationConfig": {
                "temperature": options.temperature,
                "maxOutputTokens": options.max_tokens,
            },
        }
        text = await self.retry.run(lambda key: self._request(key, payload))
        if options.on_delta is not None:
            options.on_delta(text)
        return text

    async def _request(self, key: str, payload: Dict) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with self._client() as client:
                response = await client.post(url, params={"key": key}, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise self._error(e) from e
        except json.JSONDecodeError as e:
            raise ProviderError("Invalid JSON from Gemini", 200) from e

        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError("Invalid response format from Gemini API", 200) from e


class FallbackProvider:
    """Use ``primary`` and fall back to ``fallback`` when it fails."""

    def __init__(self, primary: LLMProvider, fallback: LLMProvider):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def complete(
        self, system_prompt: str, user_prompt: str, options: Optional[CompletionOptions] = None
    ) -> str:
        try:
            return await self.primary.complete(system_prompt, user_prompt, options)
        except ProviderError as e:
            logger.warning(f"{self.primary.name} failed, falling back to {self.fallback.name}: {e}")
            return await self.fallback.complete(system_prompt, user_prompt, options)


def build_provider(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> LLMProvider:
    """Create the configured provider from AgentSettings."""
    openrouter = None
    if settings.openrouter_api_keys:
        openrouter = OpenRouterProvider(
            settings.openrouter_api_keys,
            settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            timeout=settings.http_timeout,
            transport=transport,
        )

    if settings.provider == "gemini":
        if not settings.gemini_api_keys:
            raise ProviderError("Gemini API key not found")
        gemini = GeminiProvider(
            settings.gemini_api_keys,
            settings.gemini_model,
            base_url=settings.gemini_base_url,
            timeout=settings.http_timeout,
            transport=transport,
        )
        if settings.fallback_to_openrouter and openrouter is not None:
            return FallbackProvider(gemini, openrouter)
        return gemini

    if settings.provider == "openrouter":
        if openrouter is None:
            raise ProviderError("OpenRouter API key not found")
        return openrouter
    raise ProviderError(f"Unknown provider: {settings.provider}")
