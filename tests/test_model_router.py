"""Unit tests for `ModelRouter` provider selection and the model catalog."""

from __future__ import annotations

import pytest

from src.codeforge.config import PERSIST_FANOUT, PERSIST_SEQUENTIAL, PipelineSettings
from src.codeforge.errors import ProviderConfigError
from src.codeforge.services.model_router import ModelRouter, ProviderSelection


def test_resolve_gemini_defaults():
    selection = ModelRouter(env={"GEMINI_API_KEY": "g"}).resolve_provider("gemini")
    assert isinstance(selection, ProviderSelection)
    assert selection.name == "gemini"
    assert selection.model == "gemini-2.0-flash"
    assert selection.api_key == "g"
    assert selection.base_url == "https://generativelanguage.googleapis.com/v1beta"


def test_resolve_honours_model_and_base_url_overrides():
    router = ModelRouter(
        env={
            "ANTHROPIC_API_KEY": "a",
            "ANTHROPIC_MODEL": "claude-sonnet-4",
            "ANTHROPIC_BASE_URL": "http://proxy.local/v1/",
        }
    )
    selection = router.resolve_provider(" Claude ")
    assert selection.name == "claude"
    assert selection.model == "claude-sonnet-4"
    assert selection.base_url == "http://proxy.local/v1"


def test_unknown_selector():
    with pytest.raises(ProviderConfigError, match="Unknown model: v0"):
        ModelRouter(env={}).resolve_provider("v0")


def test_missing_credential_message_names_env_var():
    with pytest.raises(ProviderConfigError) as exc:
        ModelRouter(env={}).resolve_provider("gpt")
    assert "OPENAI_API_KEY" in str(exc.value)


def test_catalog_reports_availability():
    catalog = ModelRouter(env={"OPENAI_API_KEY": "o"}).catalog()
    by_provider = {opt.provider: opt for opt in catalog}
    assert set(by_provider) == {"gemini", "claude", "gpt"}
    assert by_provider["gpt"].available is True
    assert by_provider["gemini"].available is False


def test_pipeline_settings_from_env():
    settings = PipelineSettings.from_env(
        {
            "CODEFORGE_MAX_CONTINUATIONS": "2",
            "CODEFORGE_PERSIST_STRATEGY": "FANOUT",
            "CODEFORGE_STREAM_TIMEOUT_SECONDS": "30",
            "CODEFORGE_ENABLE_SEARCH": "no",
        }
    )
    assert settings.max_continuations == 2
    assert settings.persist_strategy == PERSIST_FANOUT
    assert settings.stream_timeout_seconds == 30.0
    assert settings.enable_search is False


def test_pipeline_settings_defaults_on_bad_values():
    settings = PipelineSettings.from_env(
        {
            "CODEFORGE_MAX_CONTINUATIONS": "many",
            "CODEFORGE_PERSIST_STRATEGY": "parallel",
            "CODEFORGE_STREAM_TIMEOUT_SECONDS": "0",
        }
    )
    assert settings.max_continuations == 5
    assert settings.persist_strategy == PERSIST_SEQUENTIAL
    assert settings.stream_timeout_seconds is None
    assert settings.enable_search is True


def test_pipeline_settings_cannot_raise_continuation_ceiling():
    assert PipelineSettings.from_env({"CODEFORGE_MAX_CONTINUATIONS": "20"}).max_continuations == 5
    assert PipelineSettings.from_env({"CODEFORGE_MAX_CONTINUATIONS": "-3"}).max_continuations == 0
