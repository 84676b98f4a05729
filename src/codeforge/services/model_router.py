"""Resolve the request's model selector to a concrete provider configuration.

The router does not import any SDK; it only reads the environment and hands a
:class:`ProviderSelection` to the adapter factory. This keeps selection policy
unit-testable without network access.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from ..domain.chat_models import ChatModelOption
from ..errors import ProviderConfigError


@dataclass(frozen=True)
class ProviderSelection:
    """Details about the provider that should handle a turn."""

    name: str
    model: str
    api_key_env: str
    api_key: Optional[str]
    base_url: str


class ModelRouter:
    """Maps client selectors (``gemini``, ``claude``, ``gpt``) onto provider settings."""

    PROVIDER_CONFIG: Dict[str, Dict[str, str]] = {
        "gemini": {
            "label": "Google Gemini",
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.0-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta",
        },
        "claude": {
            "label": "Anthropic Claude",
            "api_key_env": "ANTHROPIC_API_KEY",
            "base_url_env": "ANTHROPIC_BASE_URL",
            "model_env": "ANTHROPIC_MODEL",
            "default_model": "claude-3-5-sonnet-20241022",
            "default_base_url": "https://api.anthropic.com/v1",
        },
        "gpt": {
            "label": "OpenAI GPT",
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o",
            "default_base_url": "https://api.openai.com/v1",
        },
    }

    def __init__(self, env: Optional[Mapping[str, str]] = None) -> None:
        self._env = os.environ if env is None else env

    def provider_available(self, name: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(name)
        if not cfg:
            return False
        return bool(self._env.get(cfg["api_key_env"]))

    def resolve_provider(self, selector: str) -> ProviderSelection:
        """Return the selection for ``selector``.

        Raises
        ------
        ProviderConfigError
            If the selector is unknown or its credential is not configured.
        """

        name = (selector or "").strip().lower()
        cfg = self.PROVIDER_CONFIG.get(name)
        if cfg is None:
            raise ProviderConfigError(f"Unknown model: {selector}")
        api_key = self._env.get(cfg["api_key_env"]) or None
        if not api_key:
            raise ProviderConfigError(
                f"{cfg['label']} API key not configured. "
                f"Please add {cfg['api_key_env']} to your environment variables."
            )
        return ProviderSelection(
            name=name,
            model=self._env.get(cfg["model_env"]) or cfg["default_model"],
            api_key_env=cfg["api_key_env"],
            api_key=api_key,
            base_url=(self._env.get(cfg["base_url_env"]) or cfg["default_base_url"]).rstrip("/"),
        )

    def catalog(self) -> List[ChatModelOption]:
        options: List[ChatModelOption] = []
        for name, cfg in self.PROVIDER_CONFIG.items():
            options.append(
                ChatModelOption(
                    provider=name,
                    model=self._env.get(cfg["model_env"]) or cfg["default_model"],
                    label=cfg["label"],
                    available=self.provider_available(name),
                )
            )
        return options
