from __future__ import annotations

"""Streamlit demo UI for the Docsy meeting search backend."""

import asyncio

import httpx
import streamlit as st

from src.client.driver import PipelineDriver
from src.client.state import ConversationState, Message, TurnOutcome
from src.rag.errors import QueryValidationError
from src.rag.types import SearchFilters


DEFAULT_API_URL = "http://localhost:8000"
DEFAULT_REQUEST_TIMEOUT = None


def _headers(api_key: str | None) -> dict[str, str]:
    """Build optional API key headers for backend requests."""
    if not api_key:
        return {}
    return {"X-API-Key": api_key.strip()}


def _health_check(api_url: str, api_key: str | None) -> tuple[bool, str]:
    """Return backend health status and a human-readable message."""
    url = api_url.rstrip("/") + "/health"
    try:
        with httpx.Client(timeout=5.0) as client:
            response = client.get(url, headers=_headers(api_key))
        if response.status_code == 200:
            return True, "API is reachable."
        return False, f"API responded with status {response.status_code}."
    except httpx.HTTPError as exc:
        return False, f"API connection failed: {exc}"


def _load_filters(api_url: str, api_key: str | None) -> dict[str, list[str]]:
    url = api_url.rstrip("/") + "/filters"
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(url, headers=_headers(api_key))
        if response.status_code == 200:
            return response.json()
        st.caption(f"Filters unavailable (HTTP {response.status_code}).")
    except (httpx.HTTPError, ValueError) as exc:
        st.caption(f"Filters unavailable: {exc}")
    return {"programs": [], "agencies": []}


async def _submit(
    api_url: str,
    api_key: str | None,
    timeout: float | None,
    state: ConversationState,
    query: str,
    filters: SearchFilters,
) -> Message | None:
    async with httpx.AsyncClient(base_url=api_url.rstrip("/"), timeout=timeout) as client:
        driver = PipelineDriver(client, state=state, headers=_headers(api_key))
        return await driver.submit(query, filters=filters)


def _render_results(message: Message) -> None:
    if not message.results:
        return
    with st.expander(f"Sources ({len(message.results)})"):
        for result in message.results:
            meta = result.metadata
            line = f"**{meta.assignment_name}** - {meta.agency} ({meta.program}), {meta.meeting_date[:10]}"
            if meta.google_doc_url:
                line += f" [document]({meta.google_doc_url})"
            st.markdown(line)
            st.caption(f"score={result.score:.2f}")


def _render_progress(state: ConversationState) -> None:
    if not state.last_progress_log:
        return
    with st.expander("Progress log"):
        for step in state.last_progress_log:
            st.markdown(f"- `{step.progress:>3}%` {step.label}")


st.set_page_config(page_title="Docsy Meeting Search", layout="wide")
st.title("Docsy Meeting Search")
st.caption("Search local government meeting records and get a streamed summary.")

if "conversation" not in st.session_state:
    st.session_state.conversation = ConversationState()
conversation: ConversationState = st.session_state.conversation

with st.sidebar:
    st.header("Connection")
    api_url = st.text_input("API base URL", value=DEFAULT_API_URL)
    api_key = st.text_input("API key (optional)", type="password")
    request_timeout = st.number_input(
        "Request timeout (seconds, 0 = no timeout)",
        min_value=0,
        max_value=3600,
        value=0,
        step=5,
    )
    if st.button("Health Check"):
        ok, message = _health_check(api_url, api_key)
        if ok:
            st.success(message)
        else:
            st.error(message)

    st.header("Filters")
    facets = _load_filters(api_url, api_key)
    programs = st.multiselect("Programs", facets.get("programs", []))
    agencies = st.multiselect("Agencies", facets.get("agencies", []))
    date_from = st.text_input("From date (YYYY-MM-DD)", value="")
    date_to = st.text_input("To date (YYYY-MM-DD)", value="")

    if st.button("Clear Chat"):
        st.session_state.conversation = ConversationState()
        conversation = st.session_state.conversation

for message in conversation.messages:
    with st.chat_message(message.role):
        st.write(message.content)
        if message.role == "assistant":
            _render_results(message)

_render_progress(conversation)

prompt = st.chat_input("Ask about meetings, e.g. housing policy in Detroit...")
if prompt:
    with st.chat_message("user"):
        st.write(prompt)
    filters = SearchFilters(
        programs=tuple(programs),
        agencies=tuple(agencies),
        date_from=date_from.strip() or None,
        date_to=date_to.strip() or None,
    )
    timeout = None if request_timeout == 0 else float(request_timeout)
    try:
        with st.spinner("Searching and generating..."):
            reply = asyncio.run(
                _submit(api_url, api_key, timeout, conversation, prompt, filters)
            )
    except QueryValidationError as exc:
        st.warning(str(exc))
    else:
        if reply is not None:
            with st.chat_message("assistant"):
                st.write(reply.content)
                _render_results(reply)
            if conversation.outcome is TurnOutcome.ERROR:
                st.error("The last request did not complete.")
            _render_progress(conversation)

st.divider()
st.caption("Tip: Start the API with `uvicorn src.app.main:app --port 8000`.")
