from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    metrics_enabled: bool = _env_bool("METRICS_ENABLED", "true")
    api_keys_raw: str = os.getenv("DOCSY_API_KEYS", "")
    allow_anonymous: bool = _env_bool("DOCSY_ALLOW_ANONYMOUS", "true")

    meeting_store: str = os.getenv("MEETING_STORE", "memory")
    meeting_seed_path: str | None = os.getenv("MEETING_SEED_PATH")
    meeting_db_uri: str | None = os.getenv("MEETING_DB_URI")
    meeting_table: str = os.getenv("MEETING_TABLE", "meetings")
    supabase_url: str | None = os.getenv("SUPABASE_URL")
    supabase_anon_key: str | None = os.getenv("SUPABASE_ANON_KEY")
    meeting_store_timeout: float = float(os.getenv("MEETING_STORE_TIMEOUT", "15"))
    meeting_cache_ttl: float = float(os.getenv("MEETING_CACHE_TTL", "300"))

    search_default_limit: int = int(os.getenv("SEARCH_DEFAULT_LIMIT", "10"))
    search_max_limit: int = int(os.getenv("SEARCH_MAX_LIMIT", "50"))

    llm_primary_provider: str = os.getenv("LLM_PRIMARY_PROVIDER", "gemini")
    llm_secondary_provider: str = os.getenv("LLM_SECONDARY_PROVIDER", "openai")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_chat_model: str = os.getenv("GEMINI_CHAT_MODEL", "gemini-2.0-flash-exp")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_chat_model: str = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini")
    ollama_base_url: str | None = os.getenv("OLLAMA_BASE_URL")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.1")
    llm_temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))
    llm_max_tokens: int = int(os.getenv("LLM_MAX_TOKENS", "1024"))
    llm_timeout: float = float(os.getenv("LLM_TIMEOUT", "60"))
    llm_degrade_on_failure: bool = _env_bool("LLM_DEGRADE_ON_FAILURE", "false")

    prompt_max_results: int = int(os.getenv("PROMPT_MAX_RESULTS", "10"))
    prompt_result_chars: int = int(os.getenv("PROMPT_RESULT_CHARS", "1000"))
    offline_chunk_size: int = int(os.getenv("OFFLINE_CHUNK_SIZE", "40"))
    offline_result_chars: int = int(os.getenv("OFFLINE_RESULT_CHARS", "200"))

    @property
    def api_keys(self) -> set[str]:
        raw = os.getenv("DOCSY_API_KEYS", self.api_keys_raw)
        return {value.strip() for value in raw.split(",") if value.strip()}


settings = Settings()
