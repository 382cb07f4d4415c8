"""
LLM clients for Anthropic Claude and OpenAI.

Uses httpx for async HTTP requests. Each client retries transient failures
itself; quota rejections are raised immediately so FallbackLLMClient can
switch providers.
"""

import asyncio
import logging
import math
import os
from typing import Optional

import httpx

from issue_summary.config import (
    DEFAULT_ANTHROPIC_MODEL,
    DEFAULT_OPENAI_MODEL,
    PipelineConfig,
)
from issue_summary.errors import ConfigError, LLMError, QuotaExceededError

logger = logging.getLogger(__name__)


class LLMResponse:
    """Response from LLM."""
    def __init__(self, content: str, input_tokens: int, output_tokens: int, model: str):
        self.content = content
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.model = model

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def estimate_tokens(text: str) -> int:
    """Rough token count when the provider does not report usage."""
    return math.ceil(len(text) / 4)


class _HTTPModelClient:
    """Shared request/retry loop for the provider clients."""

    url = ""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        max_retries: int = 3,
        base_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.model_used = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.transport = transport

    def _headers(self) -> dict:
        raise NotImplementedError

    def _payload(self, prompt: str, response_format: Optional[dict]) -> dict:
        raise NotImplementedError

    def _parse(self, prompt: str, data: dict) -> LLMResponse:
        raise NotImplementedError

    async def generate(self, prompt: str, response_format: dict = None, label: str = None) -> LLMResponse:
        """Call the model and return response."""
        if label:
            logger.info(f"LLM ({self.model}): {label}")
        else:
            prompt_preview = prompt[:60].replace('\n', ' ') + "..." if len(prompt) > 60 else prompt
            logger.info(f"LLM call ({self.model}): {prompt_preview}")

        payload = self._payload(prompt, response_format)
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            if attempt > 0:
                wait = self.base_delay * (2 ** (attempt - 1))
                logger.info(f"Retrying {self.model} in {wait:.1f}s (attempt {attempt + 1}/{self.max_retries})")
                await asyncio.sleep(wait)
            try:
                async with httpx.AsyncClient(transport=self.transport) as client:
                    r = await client.post(
                        self.url,
                        headers=self._headers(),
                        json=payload,
                        timeout=self.timeout,
                    )
            except httpx.TransportError as e:
                last_error = e
                logger.warning(f"{self.model} transport error (attempt {attempt + 1}): {e}")
                continue

            if r.status_code == 429 or (r.status_code >= 400 and "quota" in r.text.lower()):
                raise QuotaExceededError(f"{self.model} quota exceeded", details=r.text[:500])
            if r.status_code >= 500:
                last_error = LLMError(f"{self.model} returned HTTP {r.status_code}", details=r.text[:500])
                logger.warning(f"{self.model} server error (attempt {attempt + 1}): HTTP {r.status_code}")
                continue
            if r.status_code >= 400:
                raise LLMError(f"{self.model} returned HTTP {r.status_code}", details=r.text[:500])

            try:
                response = self._parse(prompt, r.json())
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise LLMError(f"Malformed response from {self.model}: {e}") from e

            self.model_used = response.model
            logger.info(f"LLM response: {len(response.content)} chars, {response.total_tokens} tokens")
            return response

        raise LLMError(f"{self.model} failed after {self.max_retries} attempts: {last_error}")


class LLMClient(_HTTPModelClient):
    """Minimal Claude API wrapper."""

    url = "https://api.anthropic.com/v1/messages"

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_ANTHROPIC_MODEL, **kwargs):
        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigError("ANTHROPIC_API_KEY not set")
        super().__init__(api_key=api_key, model=model, **kwargs)

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": "2023-06-01",
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, response_format: Optional[dict]) -> dict:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if response_format and response_format.get("type") == "json_object":
            payload["system"] = "Respond with valid JSON only."
        return payload

    def _parse(self, prompt: str, data: dict) -> LLMResponse:
        content = "".join(
            block.get("text", "") for block in data["content"] if block.get("type", "text") == "text"
        )
        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            input_tokens=usage.get("input_tokens") or estimate_tokens(prompt),
            output_tokens=usage.get("output_tokens") or estimate_tokens(content),
            model=data.get("model") or self.model,
        )


class OpenAIClient(_HTTPModelClient):
    """Minimal OpenAI chat completions wrapper."""

    url = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_OPENAI_MODEL, **kwargs):
        api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigError("OPENAI_API_KEY not set")
        kwargs.setdefault("max_tokens", 2000)
        super().__init__(api_key=api_key, model=model, **kwargs)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, prompt: str, response_format: Optional[dict]) -> dict:
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0.7,
            "messages": [{"role": "user", "content": prompt}],
        }
        if response_format:
            payload["response_format"] = response_format
        return payload

    def _parse(self, prompt: str, data: dict) -> LLMResponse:
        content = data["choices"][0]["message"].get("content") or ""
        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            input_tokens=usage.get("prompt_tokens") or estimate_tokens(prompt),
            output_tokens=usage.get("completion_tokens") or estimate_tokens(content),
            model=data.get("model") or self.model,
        )


class FallbackLLMClient:
    """Tries the primary provider; on quota exhaustion switches to the fallback for good."""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback
        self.use_fallback = False
        self.model_used = primary.model

    async def generate(self, prompt: str, response_format: dict = None, label: str = None) -> LLMResponse:
        if not self.use_fallback:
            try:
                response = await self.primary.generate(prompt, response_format=response_format, label=label)
                self.model_used = response.model
                return response
            except QuotaExceededError as e:
                logger.warning(f"{self.primary.model} quota exceeded, falling back to {self.fallback.model}: {e}")
                self.use_fallback = True

        response = await self.fallback.generate(prompt, response_format=response_format, label=label)
        self.model_used = response.model
        return response


def build_llm_client(config: PipelineConfig):
    """Pick a client per config.provider and the API keys present."""
    has_anthropic = bool(os.environ.get("ANTHROPIC_API_KEY"))
    has_openai = bool(os.environ.get("OPENAI_API_KEY"))
    # call_timeout bounds each attempt; the coordinator allows for every attempt
    options = dict(timeout=config.call_timeout, max_retries=config.max_retries, base_delay=config.retry_base_delay)

    if config.provider == "anthropic":
        return LLMClient(model=config.anthropic_model, **options)
    if config.provider == "openai":
        return OpenAIClient(model=config.openai_model, **options)

    if has_anthropic and has_openai:
        return FallbackLLMClient(
            LLMClient(model=config.anthropic_model, **options),
            OpenAIClient(model=config.openai_model, **options),
        )
    if has_anthropic:
        return LLMClient(model=config.anthropic_model, **options)
    if has_openai:
        return OpenAIClient(model=config.openai_model, **options)
    raise ConfigError("Either ANTHROPIC_API_KEY or OPENAI_API_KEY is required")
