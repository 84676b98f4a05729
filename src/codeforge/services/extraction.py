from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .fences import FenceTracker, LineKind

THINKING_RE = re.compile(r"<Thinking>([\s\S]*?)</Thinking>", re.IGNORECASE)
SEARCH_TAG_RE = re.compile(r"<search>[\s\S]*?</search>", re.IGNORECASE)


@dataclass(frozen=True)
class CodeBlock:
    language: str
    path: str
    content: str


@dataclass(frozen=True)
class ParsedResponse:
    blocks: List[CodeBlock]
    prose: str
    thinking: Optional[str] = None


def strip_tagged_sections(text: str) -> str:
    """Drop ``<Thinking>`` and ``<search>`` sections."""
    return SEARCH_TAG_RE.sub("", THINKING_RE.sub("", text))


def extract_thinking(text: str) -> Optional[str]:
    sections = [m.group(1).strip() for m in THINKING_RE.finditer(text or "")]
    sections = [s for s in sections if s]
    return "\n\n".join(sections) if sections else None


def _trim_blank_lines(lines: List[str]) -> List[str]:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return lines[start:end]


def _scan(text: str) -> Tuple[List[CodeBlock], List[str]]:
    tracker = FenceTracker()
    blocks: List[CodeBlock] = []
    prose: List[str] = []
    body: Optional[List[str]] = None
    current: Optional[Tuple[str, str]] = None

    def finish() -> None:
        if current is not None and body is not None:
            blocks.append(CodeBlock(language=current[0], path=current[1], content="\n".join(_trim_blank_lines(body))))

    for line in text.split("\n"):
        kind = tracker.feed(line)
        if kind is LineKind.OPEN:
            finish()
            current, body = (tracker.language, tracker.path), []
        elif kind is LineKind.BODY:
            body.append(line)
        elif kind is LineKind.CLOSE:
            finish()
            current, body = None, None
        else:
            prose.append(line)
    # an unterminated final fence is closed by the end of the text
    finish()
    return blocks, prose


def extract_code_blocks(text: str) -> List[CodeBlock]:
    """File-tagged fenced blocks of ``text`` in source order."""
    blocks, _ = _scan(strip_tagged_sections(text or ""))
    return blocks


def remove_code_blocks(text: str) -> str:
    """The prose-only rendition persisted as the assistant turn."""
    _, prose = _scan(strip_tagged_sections(text or ""))
    return "\n".join(prose).strip()


def parse_response(text: str) -> ParsedResponse:
    blocks, prose = _scan(strip_tagged_sections(text or ""))
    return ParsedResponse(blocks=blocks, prose="\n".join(prose).strip(), thinking=extract_thinking(text))
