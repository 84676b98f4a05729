"""Line grammar for file-tagged fenced blocks.

A file fence opens on a line such as ``` ```tsx file="src/App.tsx" ``` and
closes on a line holding only three backticks. Both the live filter and the
whole-text extractor feed lines through :class:`FenceTracker`, so they agree
on where a file begins and ends.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Tuple

FILE_FENCE_RE = re.compile(r'^\s*```(\w[\w+#.-]*)\s+file="([^"]+)"')
NESTED_FENCE_RE = re.compile(r"^\s*```\w")
HIDDEN_TAG_RE = re.compile(r"<(/?)(thinking|search)>", re.IGNORECASE)
FENCE_MARKER = "```"


class LineKind(str, Enum):
    PROSE = "prose"
    OPEN = "open"
    BODY = "body"
    CLOSE = "close"


def match_file_fence(line: str) -> Optional[Tuple[str, str]]:
    """Return ``(language, path)`` when ``line`` opens a file fence."""
    m = FILE_FENCE_RE.match(line)
    if not m:
        return None
    return m.group(1), m.group(2)


def is_fence_close(line: str) -> bool:
    return line.strip() == FENCE_MARKER


class FenceTracker:
    """Classifies consecutive lines as prose, file-fence markers or file body.

    Inside a file fence, a fence that opens with a language token (a code
    sample inside a README, say) raises the nesting depth so its bare closer
    does not end the file. A new file-fence line inside an open file ends the
    current file and starts the next one.
    """

    def __init__(self) -> None:
        self.inside = False
        self.depth = 0
        self.language: Optional[str] = None
        self.path: Optional[str] = None

    def feed(self, line: str) -> LineKind:
        opened = match_file_fence(line)
        if opened is not None:
            self.inside = True
            self.depth = 0
            self.language, self.path = opened
            return LineKind.OPEN
        if not self.inside:
            return LineKind.PROSE
        if is_fence_close(line):
            if self.depth > 0:
                self.depth -= 1
                return LineKind.BODY
            self.inside = False
            return LineKind.CLOSE
        if NESTED_FENCE_RE.match(line):
            self.depth += 1
        return LineKind.BODY


class FenceFilter:
    """Withholds file-fence payload from a live stream of text deltas.

    Text is released a line at a time: the trailing fragment of each delta is
    held back until its newline arrives, because a fence marker may be split
    across network chunks. ``<Thinking>`` and ``<search>`` sections are
    withheld as well; the extractor drops the same sections.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._tracker = FenceTracker()
        self._hidden_tag: Optional[str] = None

    @property
    def inside_fenced_file(self) -> bool:
        return self._tracker.inside

    def _visible(self, line: str) -> Optional[str]:
        """Part of ``line`` outside tagged sections; None when none of it shows."""
        if self._hidden_tag is None and not HIDDEN_TAG_RE.search(line):
            return line
        out: List[str] = []
        pos = 0
        for m in HIDDEN_TAG_RE.finditer(line):
            closing, tag = bool(m.group(1)), m.group(2).lower()
            if self._hidden_tag is None and not closing:
                out.append(line[pos : m.start()])
                self._hidden_tag = tag
            elif self._hidden_tag == tag and closing:
                self._hidden_tag = None
                pos = m.end()
        if self._hidden_tag is None:
            out.append(line[pos:])
        visible = "".join(out)
        return visible if visible.strip() else None

    def feed(self, delta: str) -> str:
        self._buffer += delta
        *lines, self._buffer = self._buffer.split("\n")
        shown: List[str] = []
        for line in lines:
            visible = self._visible(line)
            if visible is None:
                continue
            if self._tracker.feed(visible) is LineKind.PROSE:
                shown.append(visible + "\n")
        return "".join(shown)

    def flush(self) -> str:
        """Release the held-back fragment once the stream has ended.

        A fragment that starts a fence with a language token is dropped even
        when the stream was cut before its ``file="..."`` attribute completed.
        """
        tail, self._buffer = self._buffer, ""
        if not tail or self._tracker.inside:
            return ""
        visible = self._visible(tail)
        if visible is None or NESTED_FENCE_RE.match(visible):
            return ""
        return visible


class PassthroughFilter:
    """Non-build turns: every delta is shown as-is."""

    inside_fenced_file = False

    def feed(self, delta: str) -> str:
        return delta

    def flush(self) -> str:
        return ""
