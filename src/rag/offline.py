from __future__ import annotations

"""Deterministic search-only summaries used when no model is available."""

from dataclasses import dataclass

from src.rag.prompt import truncate_text
from src.rag.types import SearchResult

OFFLINE_MODEL = "search-only-mode"


@dataclass
class OfflineSummarizer:
    """Build a digest of the search results without calling a model."""
    max_chars: int = 200
    max_results: int = 10

    def summarize(self, query: str, results: list[SearchResult]) -> str:
        """Return the same text for the same query and results."""
        if not results:
            return (
                f'No matching meeting records were found for "{query.strip()}". '
                "AI summaries are unavailable right now, so I can only report search "
                "matches. Try different keywords, a broader date range, or fewer filters."
            )
        shown = results[: self.max_results]
        noun = "record" if len(results) == 1 else "records"
        lines = [
            f'I found {len(results)} meeting {noun} related to "{query.strip()}". '
            "AI summaries are unavailable right now, so here is a digest of the "
            "matching records:",
            "",
        ]
        for index, result in enumerate(shown, start=1):
            metadata = result.metadata
            date = metadata.meeting_date[:10] if metadata.meeting_date else "unknown date"
            lines.append(
                f"{index}. {metadata.assignment_name} - {metadata.agency} "
                f"({metadata.program}), {date}"
            )
            snippet = truncate_text(result.text, self.max_chars)
            if snippet:
                lines.append(f"   {snippet}")
        if len(results) > len(shown):
            lines.append("")
            lines.append(f"And {len(results) - len(shown)} more results...")
        return "\n".join(lines)


def slice_text(text: str, size: int) -> list[str]:
    """Split text into fixed-size pieces for simulated streaming."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    return [text[start : start + size] for start in range(0, len(text), size)]
