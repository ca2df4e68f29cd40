from __future__ import annotations

"""Shared pytest fixtures and test environment defaults."""

import os
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ["MEETING_STORE"] = "memory"
os.environ["MEETING_CACHE_TTL"] = "0"
os.environ.pop("MEETING_SEED_PATH", None)
os.environ["DOCSY_API_KEYS"] = ""
os.environ["DOCSY_ALLOW_ANONYMOUS"] = "true"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["OLLAMA_BASE_URL"] = ""
os.environ["LLM_DEGRADE_ON_FAILURE"] = "false"


import pytest


@pytest.fixture
def anyio_backend():
    """The pipeline is built on asyncio primitives; run async tests on asyncio only."""
    return "asyncio"
