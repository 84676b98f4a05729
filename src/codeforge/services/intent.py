from __future__ import annotations

import re
from typing import Iterable

from ..domain.chat_models import MessageType


GREETING_TERMS = (
    "hello",
    "hi",
    "hey",
    "hiya",
    "howdy",
    "greetings",
    "good morning",
    "good afternoon",
    "good evening",
    "how are you",
    "what's up",
    "sup",
    "yo",
    "thanks",
    "thank you",
)

QUESTION_TERMS = (
    "what",
    "why",
    "how",
    "when",
    "where",
    "who",
    "which",
    "explain",
    "describe",
    "difference between",
    "can you tell",
    "is it",
    "does",
)

BUILD_TERMS = (
    "build",
    "create",
    "make",
    "add",
    "implement",
    "generate",
    "write",
    "code",
    "fix",
    "update",
    "change",
    "refactor",
    "improve",
    "component",
    "page",
    "app",
    "website",
    "site",
    "ui",
    "api",
    "function",
    "feature",
    "dashboard",
    "form",
    "crud",
    "todo",
    "frontend",
    "backend",
)

GREETING_MAX_CHARS = 50


def _pattern(terms: Iterable[str]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<![\w'])(?:{alternation})(?![\w'])", re.IGNORECASE)


_GREETING_RE = _pattern(GREETING_TERMS)
_QUESTION_RE = _pattern(QUESTION_TERMS)
_BUILD_RE = _pattern(BUILD_TERMS)


def detect_message_type(message: str) -> MessageType:
    """Classify a user message as a greeting, an informational question or a build request.

    Short messages carrying a greeting term are greetings. Otherwise a question
    term (or a question mark) without any build/code term makes a question.
    Everything else is treated as a build request so code generation stays the
    default path.
    """

    text = (message or "").strip()
    if len(text) < GREETING_MAX_CHARS and _GREETING_RE.search(text):
        return MessageType.GREETING
    asks = bool(_QUESTION_RE.search(text)) or text.endswith("?")
    if asks and not _BUILD_RE.search(text):
        return MessageType.QUESTION
    return MessageType.BUILD
