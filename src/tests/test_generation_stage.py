from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator

import pytest

from src.rag.errors import ProviderError
from src.rag.events import EventFrame
from src.rag.generation import GenerationConfig, GenerationStage, chunk_progress
from src.rag.llm import ProviderSet
from src.rag.offline import OFFLINE_MODEL, OfflineSummarizer
from src.rag.prompt import build_prompt
from src.rag.types import ResultMetadata, SearchResult

pytestmark = pytest.mark.anyio


def make_result(result_id: str, name: str, score: float) -> SearchResult:
    return SearchResult(
        id=result_id,
        text=f"Notes from {name} about housing policy and zoning.",
        score=score,
        metadata=ResultMetadata(
            program="Housing",
            agency="Chicago City Council",
            assignment_name=name,
            meeting_date="2024-03-12T18:00:00Z",
            document_type="Meeting Notes",
        ),
    )


RESULTS = [
    make_result("1", "Affordable Housing Hearing", 0.9),
    make_result("2", "Zoning Review Session", 0.85),
]


@dataclass
class FakeProvider:
    name: str
    fragments: list[str]
    fail_after: int | None = None
    delay: float = 0.0
    model: str = "fake-model"
    prompts: list[str] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return f"{self.name}-model"

    async def stream_completion(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index >= self.fail_after:
                raise ProviderError(self.name, "quota exceeded")
            if self.delay:
                await asyncio.sleep(self.delay)
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise ProviderError(self.name, "connection reset")


async def collect(stage: GenerationStage, query: str, results: list[SearchResult]) -> list[EventFrame]:
    return [frame async for frame in stage.run(query, results)]


def progress_values(frames: list[EventFrame]) -> list[int]:
    return [
        frame.data["progress"]
        for frame in frames
        if frame.event in {"step", "chunk"}
    ]


async def test_primary_provider_streams_chunks() -> None:
    primary = FakeProvider("gemini", ["Council ", "approved ", "the plan."])
    stage = GenerationStage(providers=ProviderSet(primary=primary))

    frames = await collect(stage, "housing policy", RESULTS)

    assert frames[0].event == "ai-started"
    chunks = [frame.data for frame in frames if frame.event == "chunk"]
    assert [chunk["text"] for chunk in chunks] == ["Council ", "approved ", "the plan."]
    assert [chunk["chunkNumber"] for chunk in chunks] == [1, 2, 3]
    complete = frames[-1]
    assert complete.event == "complete"
    assert complete.data["fullResponse"] == "Council approved the plan."
    assert complete.data["model"] == "gemini-model"
    assert complete.data["tokenCount"] == len("Council approved the plan.")
    assert frames[-2].data["progress"] == 100
    assert primary.prompts == [build_prompt("housing policy", RESULTS)]


async def test_fallback_appends_secondary_after_partial_primary() -> None:
    primary = FakeProvider("gemini", ["Partial ", "answer ", "never"], fail_after=2)
    secondary = FakeProvider("openai", ["Full ", "secondary answer."])
    calls: list[tuple[str, str]] = []
    stage = GenerationStage(
        providers=ProviderSet(primary=primary, secondary=secondary),
        on_fallback=lambda first, second: calls.append((first, second)),
    )

    frames = await collect(stage, "housing policy", RESULTS)

    chunks = [frame.data["text"] for frame in frames if frame.event == "chunk"]
    assert chunks == ["Partial ", "answer ", "Full ", "secondary answer."]
    assert frames[-1].data["fullResponse"] == "Partial answer Full secondary answer."
    assert frames[-1].data["model"] == "openai-model"
    assert any(
        frame.event == "step" and "switching to openai" in frame.data["step"] for frame in frames
    )
    assert calls == [("gemini", "openai")]
    assert secondary.prompts == primary.prompts


async def test_failure_before_first_chunk_falls_back() -> None:
    primary = FakeProvider("gemini", ["never"], fail_after=0)
    secondary = FakeProvider("openai", ["Secondary only."])
    stage = GenerationStage(providers=ProviderSet(primary=primary, secondary=secondary))

    frames = await collect(stage, "housing policy", RESULTS)

    assert frames[-1].data["fullResponse"] == "Secondary only."


async def test_all_providers_failing_emits_error_without_complete() -> None:
    primary = FakeProvider("gemini", ["a"], fail_after=0)
    secondary = FakeProvider("openai", ["b"], fail_after=1)
    stage = GenerationStage(providers=ProviderSet(primary=primary, secondary=secondary))

    frames = await collect(stage, "housing policy", RESULTS)

    events = [frame.event for frame in frames]
    assert events[-1] == "error"
    assert "complete" not in events
    assert "gemini: quota exceeded" in frames[-1].data["details"]
    assert "openai: connection reset" in frames[-1].data["details"]


async def test_stalled_provider_times_out_as_error() -> None:
    primary = FakeProvider("ollama", ["slow"], delay=1.0)
    stage = GenerationStage(
        providers=ProviderSet(primary=primary),
        config=GenerationConfig(provider_timeout=0.05),
    )

    frames = await asyncio.wait_for(collect(stage, "housing policy", RESULTS), timeout=5)

    assert frames[-1].event == "error"
    assert "No response within" in frames[-1].data["details"]


async def test_degrade_on_failure_appends_offline_summary() -> None:
    primary = FakeProvider("gemini", ["Partial "], fail_after=1)
    stage = GenerationStage(
        providers=ProviderSet(primary=primary),
        config=GenerationConfig(degrade_on_failure=True),
    )

    frames = await collect(stage, "housing policy", RESULTS)

    complete = frames[-1].data
    assert complete["model"] == OFFLINE_MODEL
    assert complete["fullResponse"].startswith("Partial \n\nI found 2 meeting records")


async def test_progress_never_decreases_and_stays_within_bounds() -> None:
    primary = FakeProvider("gemini", [f"w{index} " for index in range(40)], fail_after=35)
    secondary = FakeProvider("openai", [f"s{index} " for index in range(40)])
    stage = GenerationStage(providers=ProviderSet(primary=primary, secondary=secondary))

    frames = await collect(stage, "housing policy", RESULTS)

    values = progress_values(frames)
    assert values == sorted(values)
    assert max(values) == 100
    assert all(0 <= value <= 100 for value in values)
    assert all(frame.data["progress"] < 90 for frame in frames if frame.event == "chunk")


def test_chunk_progress_saturates_below_ninety() -> None:
    assert chunk_progress(1) == 32
    assert chunk_progress(1000) == 89


async def test_degraded_mode_streams_summary_of_results() -> None:
    stage = GenerationStage(providers=ProviderSet())

    frames = await collect(stage, "housing policy", RESULTS)

    text = "".join(frame.data["text"] for frame in frames if frame.event == "chunk")
    expected = OfflineSummarizer().summarize("housing policy", RESULTS)
    assert text == expected
    assert "Affordable Housing Hearing" in text
    assert "Zoning Review Session" in text
    assert frames[-1].data["model"] == OFFLINE_MODEL
    assert frames[-1].data["fullResponse"] == expected
    assert all(len(frame.data["text"]) <= 40 for frame in frames if frame.event == "chunk")


async def test_degraded_mode_with_no_results_is_deterministic() -> None:
    stage = GenerationStage(providers=ProviderSet())

    first = await collect(stage, "housing policy", [])
    second = await collect(stage, "housing policy", [])

    first_text = first[-1].data["fullResponse"]
    assert first_text
    assert first_text == second[-1].data["fullResponse"]
    assert "No matching meeting records were found" in first_text
