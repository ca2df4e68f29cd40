from __future__ import annotations

"""Prompt construction for meeting-record answers."""

from src.rag.types import SearchResult

_PERSONA = (
    "You are Docsy, an AI assistant that helps people understand local government "
    "meetings and civic information. You have access to a database of meeting notes "
    "from city councils, planning commissions, and other government agencies across "
    "multiple US cities."
)

_INSTRUCTIONS = (
    "Please provide a response that:\n"
    "1. Directly answers the user's question\n"
    "2. Cites specific meetings, dates, and agencies when relevant\n"
    "3. Is conversational and accessible to the general public\n"
    "4. Highlights key decisions, votes, or outcomes when applicable\n"
    "5. If the search results don't contain enough information, acknowledge that limitation"
)


def truncate_text(text: str, limit: int) -> str:
    """Trim text to ``limit`` characters without cutting words."""
    text = text.strip()
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    head = text[:limit]
    if " " in head:
        head = head.rsplit(" ", 1)[0]
    return head.rstrip() + "..."


def render_result(result: SearchResult, max_chars: int) -> str:
    metadata = result.metadata
    return (
        f"Source: {metadata.agency} - {metadata.assignment_name} ({metadata.meeting_date})\n"
        f"Content: {truncate_text(result.text, max_chars)}"
    )


def build_context_block(results: list[SearchResult], max_results: int, max_chars: int) -> str:
    """Render the top results, each capped at ``max_chars`` characters."""
    return "\n\n".join(render_result(result, max_chars) for result in results[:max_results])


def build_prompt(
    query: str,
    results: list[SearchResult],
    max_results: int = 10,
    max_chars: int = 1000,
) -> str:
    """Build the single prompt sent to every provider."""
    context = build_context_block(results, max_results, max_chars)
    if not context:
        context = "(no matching meeting records were found)"
    return (
        f"{_PERSONA}\n\n"
        "Based on the following search results from meeting documents, please provide "
        "a helpful, accurate, and well-structured response to the user's question.\n\n"
        f"User Question: {query}\n\n"
        f"Search Results Context:\n{context}\n\n"
        f"{_INSTRUCTIONS}\n\n"
        "Response:"
    )
