import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Fresh in-memory store per test and no real provider, search or Redis access."""
    from src.codeforge.infrastructure import events, record_store

    for key in (
        "GEMINI_API_KEY",
        "ANTHROPIC_API_KEY",
        "OPENAI_API_KEY",
        "SERPAPI_API_KEY",
        "REDIS_URL",
        "CODEFORGE_PERSIST_STRATEGY",
        "CODEFORGE_MAX_CONTINUATIONS",
        "CODEFORGE_STREAM_TIMEOUT_SECONDS",
        "CODEFORGE_RECORD_STORE_IMPL",
        "CODEFORGE_PUBLIC_MODE",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CODEFORGE_ENABLE_SEARCH", "false")
    monkeypatch.setenv("JWT_SECRET", "unit-test-secret")
    record_store.set_record_store(record_store.InMemoryRecordStore())
    monkeypatch.setattr(events, "_publisher", None)
    yield
    record_store.set_record_store(None)
