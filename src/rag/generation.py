from __future__ import annotations

"""Generation stage: stream a model answer grounded in search results."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from src.rag.errors import ProviderError, ProviderExhausted
from src.rag.events import EventFrame
from src.rag.llm import ProviderSet, StreamingProvider
from src.rag.offline import OFFLINE_MODEL, OfflineSummarizer, slice_text
from src.rag.prompt import build_prompt
from src.rag.search import error_frame, query_hash
from src.rag.types import SearchResult, utc_timestamp

logger = logging.getLogger(__name__)

CHUNK_PROGRESS_START = 30
CHUNK_PROGRESS_STEP = 2
CHUNK_PROGRESS_CAP = 89


@dataclass(frozen=True)
class GenerationConfig:
    """Tunables for prompt size, timeouts and degraded mode."""
    prompt_max_results: int = 10
    prompt_result_chars: int = 1000
    offline_chunk_size: int = 40
    offline_result_chars: int = 200
    provider_timeout: float = 60.0
    degrade_on_failure: bool = False


def chunk_progress(chunk_number: int) -> int:
    """Progress for the n-th chunk: linear in the count, capped below 90."""
    return min(CHUNK_PROGRESS_CAP, CHUNK_PROGRESS_START + CHUNK_PROGRESS_STEP * chunk_number)


@dataclass
class ChunkBuffer:
    """Append-only record of every chunk emitted in one generation stream.

    Text from a provider that fails mid-stream stays in the buffer; a fallback
    response is appended after it.
    """
    parts: list[str] = field(default_factory=list)
    progress: int = 0

    def step(self, label: str, progress: int) -> EventFrame:
        self.progress = max(self.progress, progress)
        return EventFrame(
            "step",
            {"step": label, "progress": self.progress, "timestamp": utc_timestamp()},
        )

    def chunk(self, text: str) -> EventFrame:
        self.parts.append(text)
        self.progress = max(self.progress, chunk_progress(len(self.parts)))
        return EventFrame(
            "chunk",
            {"text": text, "chunkNumber": len(self.parts), "progress": self.progress},
        )

    def text(self) -> str:
        return "".join(self.parts)


@dataclass
class GenerationStage:
    """Runs one generation request as a sequence of event frames."""
    providers: ProviderSet
    config: GenerationConfig = field(default_factory=GenerationConfig)
    on_fallback: Callable[[str, str], None] | None = None

    async def run(
        self,
        query: str,
        results: list[SearchResult],
        request_id: str | None = None,
    ) -> AsyncIterator[EventFrame]:
        buffer = ChunkBuffer()
        yield EventFrame(
            "ai-started",
            {"query": query, "resultCount": len(results), "timestamp": utc_timestamp()},
        )
        yield buffer.step(f"Preparing context from {len(results)} meeting records...", 10)
        prompt = build_prompt(
            query,
            results,
            max_results=self.config.prompt_max_results,
            max_chars=self.config.prompt_result_chars,
        )
        yield buffer.step("Building prompt...", 20)
        logger.info(
            "generation_started",
            extra={
                "request_id": request_id,
                "query_hash": query_hash(query),
                "results": len(results),
                "prompt_length": len(prompt),
            },
        )

        try:
            providers = self.providers.ordered()
        except ProviderExhausted:
            providers = []

        model: str | None = None
        if not providers:
            logger.info("generation_degraded", extra={"request_id": request_id})
            yield buffer.step("No AI model configured, summarizing search results...", 30)
            for frame in self._offline_frames(buffer, query, results):
                yield frame
            model = OFFLINE_MODEL
        else:
            failures: list[str] = []
            previous: StreamingProvider | None = None
            for provider in providers:
                if previous is None:
                    yield buffer.step(f"Generating response with {provider.name}...", 30)
                else:
                    yield buffer.step(
                        f"{previous.name} failed, switching to {provider.name}...",
                        buffer.progress,
                    )
                    if self.on_fallback:
                        self.on_fallback(previous.name, provider.name)
                previous = provider
                emitted = 0
                try:
                    async for text in self._stream(provider, prompt):
                        emitted += 1
                        yield buffer.chunk(text)
                    if emitted == 0:
                        raise ProviderError(provider.name, "Provider returned an empty response")
                except Exception as exc:
                    detail = str(exc) or type(exc).__name__
                    failures.append(f"{provider.name}: {detail}")
                    logger.warning(
                        "provider_failed",
                        extra={
                            "request_id": request_id,
                            "provider": provider.name,
                            "chunks_emitted": emitted,
                            "detail": detail,
                        },
                    )
                    continue
                model = provider.identifier
                break
            if model is None:
                if not self.config.degrade_on_failure:
                    logger.error(
                        "generation_failed",
                        extra={"request_id": request_id, "failures": failures},
                    )
                    yield error_frame("Failed to generate response", "; ".join(failures))
                    return
                yield buffer.step("AI models unavailable, summarizing search results...", buffer.progress)
                separator = "\n\n" if buffer.parts else ""
                for frame in self._offline_frames(buffer, query, results, prefix=separator):
                    yield frame
                model = OFFLINE_MODEL

        yield buffer.step("Finalizing response...", 95)
        full_response = buffer.text()
        yield buffer.step("Response complete!", 100)
        yield EventFrame(
            "complete",
            {
                "fullResponse": full_response,
                "timestamp": utc_timestamp(),
                "model": model,
                "tokenCount": len(full_response),
            },
        )
        logger.info(
            "generation_complete",
            extra={
                "request_id": request_id,
                "model": model,
                "chunks": len(buffer.parts),
                "response_length": len(full_response),
            },
        )

    def _offline_frames(
        self,
        buffer: ChunkBuffer,
        query: str,
        results: list[SearchResult],
        prefix: str = "",
    ) -> list[EventFrame]:
        summarizer = OfflineSummarizer(
            max_chars=self.config.offline_result_chars,
            max_results=self.config.prompt_max_results,
        )
        text = prefix + summarizer.summarize(query, results)
        return [buffer.chunk(piece) for piece in slice_text(text, self.config.offline_chunk_size)]

    async def _stream(self, provider: StreamingProvider, prompt: str) -> AsyncIterator[str]:
        """Yield provider fragments, bounding the wait for each one."""
        stream = provider.stream_completion(prompt)
        try:
            while True:
                try:
                    text = await asyncio.wait_for(
                        stream.__anext__(), timeout=self.config.provider_timeout
                    )
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError as exc:
                    raise ProviderError(
                        provider.name,
                        f"No response within {self.config.provider_timeout:g} seconds",
                    ) from exc
                if text:
                    yield text
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
