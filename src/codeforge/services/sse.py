from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_event(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


class ChannelClosedError(RuntimeError):
    """An event was produced after the terminal ``done`` event."""


class SSEChannel:
    """Serializes the events of one chat response and enforces their order.

    ``text`` events are never empty, at most one ``error`` is sent, and
    ``done`` is sent exactly once and closes the channel.
    """

    def __init__(self, project_id: Optional[str] = None) -> None:
        self.project_id = project_id
        self.closed = False
        self.errored = False

    def _check_open(self) -> None:
        if self.closed:
            raise ChannelClosedError("SSE channel already closed")

    def text(self, fragment: str) -> Optional[str]:
        self._check_open()
        if not fragment:
            return None
        return format_event({"text": fragment})

    def error(self, message: str) -> Optional[str]:
        self._check_open()
        if self.errored:
            logger.debug("sse_extra_error_dropped", extra={"error": message})
            return None
        self.errored = True
        return format_event({"error": message})

    def done(self, message_id: Optional[str] = None, has_artifact: Optional[bool] = None) -> str:
        self._check_open()
        self.closed = True
        payload: Dict[str, Any] = {"done": True}
        if message_id is not None:
            payload["messageId"] = message_id
            payload["hasArtifact"] = bool(has_artifact)
        if self.project_id is not None:
            payload["projectId"] = self.project_id
        return format_event(payload)
