from __future__ import annotations

"""Streaming completion providers for answer generation."""

from dataclasses import dataclass
from functools import lru_cache
import json
import logging
from typing import AsyncIterator, Protocol

import httpx

from src.rag.errors import ProviderError, ProviderExhausted

logger = logging.getLogger(__name__)


class StreamingProvider(Protocol):
    """Capability: stream completion text for a prompt."""
    name: str
    model: str

    @property
    def identifier(self) -> str:
        ...

    def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        ...


@dataclass(frozen=True)
class GeminiProvider:
    """Streaming provider backed by Gemini generative models."""
    api_key: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    name: str = "gemini"

    @property
    def identifier(self) -> str:
        return self.model

    async def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        """Stream text fragments from Gemini."""
        try:
            genai = _gemini_sdk(self.api_key)
        except ImportError as exc:
            raise ProviderError(
                self.name, "google-generativeai is required for GeminiProvider"
            ) from exc

        try:
            model = genai.GenerativeModel(self.model)
            response = await model.generate_content_async(
                prompt,
                generation_config={
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_tokens,
                },
                request_options={"timeout": self.timeout},
                stream=True,
            )
            async for chunk in response:
                text = _gemini_chunk_text(chunk)
                if text:
                    yield text
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc


@lru_cache(maxsize=1)
def _gemini_sdk(api_key: str):
    """Import and configure the Gemini SDK once.

    The SDK keeps one process-wide client, so a single Gemini key is supported.
    """
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    logger.info("gemini_sdk_configured")
    return genai


def _gemini_chunk_text(chunk: object) -> str:
    try:
        return getattr(chunk, "text", "") or ""
    except ValueError:
        # Blocked or empty candidates raise instead of returning text.
        return ""


@dataclass(frozen=True)
class OpenAIProvider:
    """Streaming provider backed by OpenAI-compatible chat completions."""
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    name: str = "openai"

    @property
    def identifier(self) -> str:
        return self.model

    async def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        """Stream text deltas from the chat completions endpoint."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers=headers,
                ) as response:
                    if response.status_code >= 400:
                        raise ProviderError(
                            self.name, f"OpenAI request failed with HTTP {response.status_code}"
                        )
                    async for line in response.aiter_lines():
                        text = _openai_delta(line)
                        if text is None:
                            break
                        if text:
                            yield text
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc


def _openai_delta(line: str) -> str | None:
    """Return the text delta in an SSE line, ``""`` to skip, ``None`` at the end."""
    line = line.strip()
    if not line.startswith("data:"):
        return ""
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return None
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("openai_stream_invalid_line", extra={"length": len(data)})
        return ""
    choices = payload.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content if isinstance(content, str) else ""


@dataclass(frozen=True)
class OllamaProvider:
    """Streaming provider backed by the Ollama chat API."""
    base_url: str
    model: str
    temperature: float
    max_tokens: int
    timeout: float
    name: str = "ollama"

    @property
    def identifier(self) -> str:
        return self.model

    async def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        """Stream NDJSON message fragments from Ollama."""
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_tokens,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/api/chat", json=payload
                ) as response:
                    if response.status_code >= 400:
                        raise ProviderError(
                            self.name, f"Ollama request failed with HTTP {response.status_code}"
                        )
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as exc:
                            raise ProviderError(self.name, "Invalid Ollama stream line") from exc
                        if data.get("error"):
                            raise ProviderError(self.name, str(data["error"]))
                        content = (data.get("message") or {}).get("content")
                        if isinstance(content, str) and content:
                            yield content
                        if data.get("done"):
                            break
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__}: {exc}") from exc


@dataclass(frozen=True)
class ProviderSet:
    """Primary and secondary providers, resolved once at start-up."""
    primary: StreamingProvider | None = None
    secondary: StreamingProvider | None = None

    def ordered(self) -> list[StreamingProvider]:
        """Return configured providers in fallback order."""
        providers = [provider for provider in (self.primary, self.secondary) if provider]
        if not providers:
            raise ProviderExhausted("No model provider is configured")
        return providers


def build_provider(
    provider: str,
    *,
    api_key_openai: str | None,
    api_key_gemini: str | None,
    openai_base_url: str,
    openai_model: str | None,
    gemini_model: str | None,
    ollama_base_url: str | None,
    ollama_model: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
) -> GeminiProvider | OpenAIProvider | OllamaProvider | None:
    """Factory for streaming providers; ``None`` when not configured."""
    normalized = provider.strip().lower()
    if normalized in {"", "none", "off"}:
        return None
    if normalized == "openai":
        if not (api_key_openai and openai_model):
            return None
        return OpenAIProvider(
            api_key=api_key_openai,
            base_url=openai_base_url.rstrip("/"),
            model=openai_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized in {"gemini", "google"}:
        if not (api_key_gemini and gemini_model):
            return None
        return GeminiProvider(
            api_key=api_key_gemini,
            model=gemini_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    if normalized == "ollama":
        if not ollama_base_url:
            return None
        return OllamaProvider(
            base_url=ollama_base_url.rstrip("/"),
            model=ollama_model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
    logger.warning("llm_provider_unknown", extra={"provider": normalized})
    return None
