from __future__ import annotations

from functools import lru_cache

from src.app.metrics import record_fallback
from src.app.settings import settings
from src.rag.errors import StoreError
from src.rag.generation import GenerationConfig, GenerationStage
from src.rag.llm import ProviderSet, build_provider
from src.rag.search import SearchStage
from src.store.base import CachedMeetingStore, MeetingStore
from src.store.memory import InMemoryMeetingStore, load_seed_rows
from src.store.sql import SQLMeetingStore
from src.store.supabase import SupabaseMeetingStore


@lru_cache
def get_meeting_store() -> MeetingStore:
    store = build_meeting_store()
    if settings.meeting_cache_ttl > 0:
        return CachedMeetingStore(store, ttl=settings.meeting_cache_ttl)
    return store


@lru_cache
def get_provider_set() -> ProviderSet:
    return ProviderSet(
        primary=_build_provider(settings.llm_primary_provider),
        secondary=_build_provider(settings.llm_secondary_provider),
    )


@lru_cache
def get_generation_config() -> GenerationConfig:
    return GenerationConfig(
        prompt_max_results=settings.prompt_max_results,
        prompt_result_chars=settings.prompt_result_chars,
        offline_chunk_size=settings.offline_chunk_size,
        offline_result_chars=settings.offline_result_chars,
        provider_timeout=settings.llm_timeout,
        degrade_on_failure=settings.llm_degrade_on_failure,
    )


def get_search_stage() -> SearchStage:
    return SearchStage(store=get_meeting_store(), max_limit=settings.search_max_limit)


def get_generation_stage() -> GenerationStage:
    return GenerationStage(
        providers=get_provider_set(),
        config=get_generation_config(),
        on_fallback=record_fallback,
    )


def reset_dependency_caches() -> None:
    get_meeting_store.cache_clear()
    get_provider_set.cache_clear()
    get_generation_config.cache_clear()


def build_meeting_store() -> MeetingStore:
    backend = settings.meeting_store.lower().strip()
    if backend == "sql":
        if not settings.meeting_db_uri:
            raise StoreError("MEETING_DB_URI is required for the sql meeting store")
        return SQLMeetingStore(settings.meeting_db_uri, table=settings.meeting_table)
    if backend == "supabase":
        if not (settings.supabase_url and settings.supabase_anon_key):
            raise StoreError("SUPABASE_URL and SUPABASE_ANON_KEY are required for supabase")
        return SupabaseMeetingStore(
            url=settings.supabase_url,
            api_key=settings.supabase_anon_key,
            table=settings.meeting_table,
            timeout=settings.meeting_store_timeout,
        )
    store = InMemoryMeetingStore()
    if settings.meeting_seed_path:
        store.add_rows(load_seed_rows(settings.meeting_seed_path))
    return store


def _build_provider(name: str):
    return build_provider(
        name,
        api_key_openai=settings.openai_api_key,
        api_key_gemini=settings.gemini_api_key,
        openai_base_url=settings.openai_base_url,
        openai_model=settings.openai_chat_model,
        gemini_model=settings.gemini_chat_model,
        ollama_base_url=settings.ollama_base_url,
        ollama_model=settings.ollama_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )
