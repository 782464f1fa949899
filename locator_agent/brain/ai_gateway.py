"""
AI Gateway for Locator Resolution
==================================

Single entry point for disambiguation and embedding providers.
Acts as a gatekeeper that:
- Dispatches prompts to Anthropic, OpenAI or Ollama
- Retries rate limits and server errors with backoff
- Caches responses for identical prompts
- Tracks token usage

Transport failures surface as ProviderFailure once the retries are spent.
Any object exposing the same execute()/embed() coroutines can replace it.
"""

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ..errors import ProviderFailure

logger = logging.getLogger(__name__)

ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
OPENAI_MODEL = "gpt-4o-mini"
OLLAMA_MODEL = "llama3.2:3b"
OPENAI_EMBEDDING_MODEL = "text-embedding-3-small"
OLLAMA_EMBEDDING_MODEL = "nomic-embed-text"

MAX_TRANSPORT_ATTEMPTS = 3


class AIProvider(Enum):
    """Supported AI providers"""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    OLLAMA = "ollama"


@dataclass
class AIResponse:
    """Response from a provider"""
    content: str
    model: str
    provider: str
    tokens_used: int = 0
    cached: bool = False
    latency_ms: int = 0


class AIGateway:
    """
    Gatekeeper for provider API calls.

    Responsibilities:
    - Provider dispatch
    - Transport-level retry (429 / 5xx)
    - Response caching
    - Usage metrics
    """

    def __init__(
        self,
        provider: AIProvider = AIProvider.ANTHROPIC,
        embedding_model: Optional[str] = None,
        max_tokens: int = 1000,
        backoff_s: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.embedding_model = embedding_model
        self.max_tokens = max_tokens
        self.backoff_s = backoff_s
        self._transport = transport

        # Response cache (in-memory, insertion ordered)
        self.cache: Dict[str, AIResponse] = {}
        self.cache_max_size = 1000

        # Statistics
        self.total_requests = 0
        self.cache_hits = 0
        self.api_calls = 0
        self.failed_calls = 0
        self.total_tokens = 0
        self.embedding_calls = 0

    @classmethod
    def from_config(cls, config) -> "AIGateway":
        try:
            provider = AIProvider(config.provider)
        except ValueError:
            logger.warning(f"[AI-GATE] Unknown provider '{config.provider}', using anthropic")
            provider = AIProvider.ANTHROPIC
        return cls(
            provider=provider,
            embedding_model=config.embedding_model,
            backoff_s=config.provider_backoff_s,
        )

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    # ==================== Cache ====================

    @staticmethod
    def get_cache_key(task_kind: str, prompt: str, system_prompt: Optional[str]) -> str:
        data = f"{task_kind}|{system_prompt or ''}|{prompt}"
        return hashlib.md5(data.encode()).hexdigest()

    def _cache_response(self, key: str, response: AIResponse):
        self.cache[key] = response
        if len(self.cache) > self.cache_max_size:
            # Drop the oldest quarter
            keys = list(self.cache.keys())
            for old_key in keys[:len(keys) // 4]:
                del self.cache[old_key]

    def clear_cache(self):
        self.cache.clear()
        logger.info("[AI-GATE] Cache cleared")

    # ==================== Completion ====================

    async def execute(
        self,
        task_kind: str,
        prompt: str,
        system_prompt: Optional[str] = None,
        use_cache: bool = True,
    ) -> AIResponse:
        """
        Run a prompt against the configured provider.

        Raises ProviderFailure when the provider cannot be reached or
        keeps failing after transport retries.
        """
        self.total_requests += 1
        start_time = time.time()

        key = self.get_cache_key(task_kind, prompt, system_prompt)
        if use_cache and key in self.cache:
            self.cache_hits += 1
            cached = self.cache[key]
            logger.debug(f"[AI-GATE] Cache hit for {task_kind}")
            return AIResponse(
                content=cached.content,
                model=cached.model,
                provider=cached.provider,
                tokens_used=0,
                cached=True,
            )

        response = await self._with_retry(lambda: self._call_ai(prompt, system_prompt), task_kind)

        self.api_calls += 1
        self.total_tokens += response.tokens_used
        response.latency_ms = int((time.time() - start_time) * 1000)
        if use_cache:
            self._cache_response(key, response)
        logger.info(
            f"[AI-GATE] {task_kind} via {response.provider}/{response.model}: "
            f"{response.tokens_used} tokens in {response.latency_ms}ms"
        )
        return response

    async def _with_retry(self, call, label: str):
        last_error: Optional[ProviderFailure] = None
        for attempt in range(1, MAX_TRANSPORT_ATTEMPTS + 1):
            try:
                return await call()
            except ProviderFailure as e:
                last_error = e
                self.failed_calls += 1
                if not e.retryable or attempt == MAX_TRANSPORT_ATTEMPTS:
                    break
                delay = e.retry_after if e.retry_after is not None else self.backoff_s * (2 ** (attempt - 1))
                logger.warning(f"[AI-GATE] {label} attempt {attempt} failed ({e}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
        logger.error(f"[AI-GATE] {label} failed: {last_error}")
        raise last_error

    async def _call_ai(self, prompt: str, system_prompt: Optional[str]) -> AIResponse:
        if self.provider == AIProvider.ANTHROPIC:
            return await self._call_anthropic(prompt, system_prompt)
        elif self.provider == AIProvider.OPENAI:
            return await self._call_openai(prompt, system_prompt)
        elif self.provider == AIProvider.OLLAMA:
            return await self._call_ollama(prompt, system_prompt)
        raise ProviderFailure(f"Unknown provider: {self.provider}", status_code=400)

    async def _post(self, url: str, timeout: float, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client(timeout) as client:
                response = await client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderFailure(f"Request to {url} failed: {e}") from e

        if response.status_code != 200:
            retry_after = response.headers.get("retry-after")
            try:
                retry_after_s = float(retry_after) if retry_after else None
            except ValueError:
                retry_after_s = None
            raise ProviderFailure(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                retry_after=retry_after_s,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderFailure(f"Invalid JSON from {url}: {e}", status_code=response.status_code) from e

    async def _call_anthropic(self, prompt: str, system_prompt: Optional[str]) -> AIResponse:
        """Call Anthropic Claude API"""
        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ProviderFailure("ANTHROPIC_API_KEY not set", status_code=401)

        payload: Dict[str, Any] = {
            "model": ANTHROPIC_MODEL,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        }
        if system_prompt:
            payload["system"] = system_prompt

        data = await self._post(
            "https://api.anthropic.com/v1/messages",
            timeout=30.0,
            headers={
                "x-api-key": api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            },
            json=payload,
        )
        try:
            content = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderFailure(f"Unexpected Anthropic response shape: {e}") from e
        usage = data.get("usage", {})
        return AIResponse(
            content=content,
            model=data.get("model", ANTHROPIC_MODEL),
            provider=AIProvider.ANTHROPIC.value,
            tokens_used=usage.get("input_tokens", 0) + usage.get("output_tokens", 0),
        )

    async def _call_openai(self, prompt: str, system_prompt: Optional[str]) -> AIResponse:
        """Call OpenAI API"""
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ProviderFailure("OPENAI_API_KEY not set", status_code=401)

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        data = await self._post(
            "https://api.openai.com/v1/chat/completions",
            timeout=30.0,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": OPENAI_MODEL,
                "messages": messages,
                "max_tokens": self.max_tokens,
                "temperature": 0.1,
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderFailure(f"Unexpected OpenAI response shape: {e}") from e
        return AIResponse(
            content=content,
            model=data.get("model", OPENAI_MODEL),
            provider=AIProvider.OPENAI.value,
            tokens_used=data.get("usage", {}).get("total_tokens", 0),
        )

    async def _call_ollama(self, prompt: str, system_prompt: Optional[str]) -> AIResponse:
        """Call Ollama local API"""
        ollama_url = os.getenv("OLLAMA_URL", "http://localhost:11434")
        payload: Dict[str, Any] = {"model": OLLAMA_MODEL, "prompt": prompt, "stream": False}
        if system_prompt:
            payload["system"] = system_prompt

        data = await self._post(f"{ollama_url}/api/generate", timeout=60.0, json=payload)
        content = data.get("response", "")
        # Ollama doesn't report exact tokens, estimate
        tokens = len(prompt.split()) + len(content.split())
        return AIResponse(
            content=content,
            model=OLLAMA_MODEL,
            provider=AIProvider.OLLAMA.value,
            tokens_used=tokens,
        )

    # ==================== Embeddings ====================

    async def embed(self, texts: List[str]) -> List[List[float]]:
        """One embedding vector per input text, in order"""
        if not texts:
            return []
        self.embedding_calls += 1
        if self.provider == AIProvider.OLLAMA:
            return await self._with_retry(lambda: self._embed_ollama(texts), "embed")
        return await self._with_retry(lambda: self._embed_openai(texts), "embed")

    async def _embed_openai(self, texts: List[str]) -> List[List[float]]:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ProviderFailure("OPENAI_API_KEY not set", status_code=401)

        data = await self._post(
            "https://api.openai.com/v1/embeddings",
            timeout=30.0,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={"model": self.embedding_model or OPENAI_EMBEDDING_MODEL, "input": texts},
        )
        try:
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            return [item["embedding"] for item in items]
        except (KeyError, TypeError) as e:
            raise ProviderFailure(f"Unexpected embedding response shape: {e}") from e

    async def _embed_ollama(self, texts: List[str]) -> List[List[float]]:
        ollama_url = os.getenv("OLLAMA_URL", "http://localhost:11434")
        vectors = []
        for text in texts:
            data = await self._post(
                f"{ollama_url}/api/embeddings",
                timeout=60.0,
                json={"model": self.embedding_model or OLLAMA_EMBEDDING_MODEL, "prompt": text},
            )
            if "embedding" not in data:
                raise ProviderFailure("Ollama embedding response missing 'embedding'")
            vectors.append(data["embedding"])
        return vectors

    # ==================== Management ====================

    def get_stats(self) -> Dict[str, Any]:
        """Get gateway statistics"""
        return {
            "provider": self.provider.value,
            "total_requests": self.total_requests,
            "cache_hits": self.cache_hits,
            "cache_hit_rate": (self.cache_hits / max(1, self.total_requests)) * 100,
            "api_calls": self.api_calls,
            "failed_calls": self.failed_calls,
            "embedding_calls": self.embedding_calls,
            "total_tokens": self.total_tokens,
        }
