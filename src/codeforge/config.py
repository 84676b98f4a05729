from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


PERSIST_SEQUENTIAL = "sequential"
PERSIST_FANOUT = "fanout"

# hard ceiling on continuation calls; the environment may only lower it
MAX_CONTINUATIONS = 5


def _flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes")


def _positive_float(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables for one chat turn, resolved from the environment."""

    max_continuations: int = MAX_CONTINUATIONS
    max_output_tokens: int = 8192
    temperature: float = 0.7
    persist_strategy: str = PERSIST_SEQUENTIAL
    stream_timeout_seconds: Optional[float] = None
    enable_search: bool = True

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "PipelineSettings":
        env = os.environ if env is None else env
        try:
            max_continuations = min(MAX_CONTINUATIONS, max(0, int(env.get("CODEFORGE_MAX_CONTINUATIONS", "5"))))
        except ValueError:
            max_continuations = MAX_CONTINUATIONS
        try:
            max_output_tokens = max(1, int(env.get("CODEFORGE_MAX_OUTPUT_TOKENS", "8192")))
        except ValueError:
            max_output_tokens = 8192
        try:
            temperature = float(env.get("CODEFORGE_TEMPERATURE", "0.7"))
        except ValueError:
            temperature = 0.7
        strategy = (env.get("CODEFORGE_PERSIST_STRATEGY") or PERSIST_SEQUENTIAL).strip().lower()
        if strategy not in (PERSIST_SEQUENTIAL, PERSIST_FANOUT):
            strategy = PERSIST_SEQUENTIAL
        return PipelineSettings(
            max_continuations=max_continuations,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            persist_strategy=strategy,
            stream_timeout_seconds=_positive_float(env.get("CODEFORGE_STREAM_TIMEOUT_SECONDS")),
            enable_search=_flag(env.get("CODEFORGE_ENABLE_SEARCH"), True),
        )
