"""Provider adapters: one streaming contract over several LLM backends.

Each adapter turns a backend's native streaming shape into a sequence of
:class:`RawStreamEvent`. The first event is read eagerly, so a missing model,
bad credential or rejected request raises :class:`ProviderRequestError`
before the caller has sent anything to the client.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Iterator, List, Optional

import requests
from langchain_openai import ChatOpenAI
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import PipelineSettings
from ..domain.chat_models import FinishReason, ImageAttachment
from ..errors import PipelineError, ProviderRequestError, ProviderStreamError
from .model_router import ModelRouter, ProviderSelection
from .prompts import CONTINUE_DIRECTIVE
from .streaming import iter_as_async

logger = logging.getLogger(__name__)
LOG = logging.getLogger("codeforge.llm")

_CONNECT_TIMEOUT = 5
_READ_TIMEOUT = 120
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class RawStreamEvent:
    text: str
    finish_reason: Optional[FinishReason] = None


@dataclass(frozen=True)
class ProviderRequest:
    system_prompt: str
    prompt: str
    history: List[Dict[str, str]] = field(default_factory=list)
    image: Optional[ImageAttachment] = None


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class _HTTPEventStream:
    """Iterates ``data:`` lines of an SSE HTTP response through ``parse``."""

    def __init__(self, response: requests.Response, parse: Callable[[Dict[str, Any]], Optional[RawStreamEvent]]) -> None:
        self._response = response
        self._events = self._iterate(parse)

    def _iterate(self, parse: Callable[[Dict[str, Any]], Optional[RawStreamEvent]]) -> Iterator[RawStreamEvent]:
        self._response.encoding = "utf-8"
        for raw_line in self._response.iter_lines(decode_unicode=True):
            if not raw_line or not raw_line.startswith("data:"):
                continue
            data = raw_line[5:].strip()
            if data == "[DONE]":
                break
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError:
                continue
            event = parse(parsed)
            if event is not None:
                yield event

    def __iter__(self) -> "_HTTPEventStream":
        return self

    def __next__(self) -> RawStreamEvent:
        return next(self._events)

    def close(self) -> None:
        self._response.close()


class _PrimedStream:
    """Replays an eagerly read first event ahead of the rest of the stream."""

    def __init__(self, first: Optional[RawStreamEvent], rest: Iterator[RawStreamEvent]) -> None:
        self._first = first
        self._rest = rest

    def __iter__(self) -> "_PrimedStream":
        return self

    def __next__(self) -> RawStreamEvent:
        if self._first is not None:
            first, self._first = self._first, None
            return first
        return next(self._rest)

    def close(self) -> None:
        close = getattr(self._rest, "close", None)
        if close is not None:
            close()


class ProviderAdapter(ABC):
    """Uniform streaming interface over one LLM backend."""

    name: str

    def __init__(self, selection: ProviderSelection, settings: PipelineSettings) -> None:
        self.selection = selection
        self.settings = settings

    @abstractmethod
    def _open(self, request: ProviderRequest) -> Iterator[RawStreamEvent]:
        """Issue the blocking backend call and return its event iterator."""

    def _prime(self, request: ProviderRequest) -> _PrimedStream:
        events = self._open(request)
        try:
            first = next(events, None)
        except Exception:
            close = getattr(events, "close", None)
            if close is not None:
                close()
            raise
        return _PrimedStream(first, events)

    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[RawStreamEvent]:
        LOG.debug(
            "provider_stream_open",
            extra={"provider": self.name, "model": self.selection.model, "history": len(request.history)},
        )
        try:
            primed = await asyncio.to_thread(self._prime, request)
        except PipelineError:
            raise
        except Exception as exc:
            raise ProviderRequestError(f"{self.name} request failed: {exc}") from exc
        return self._events(primed)

    async def _events(self, primed: _PrimedStream) -> AsyncIterator[RawStreamEvent]:
        stream = iter_as_async(primed)
        try:
            async for event in stream:
                yield event
        except PipelineError:
            raise
        except Exception as exc:
            raise ProviderStreamError(f"{self.name} stream failed: {exc}") from exc
        finally:
            await stream.aclose()

    def continuation(self, request: ProviderRequest, partial: str) -> ProviderRequest:
        """Same conversation, with the output so far replayed and a resume directive."""
        history = list(request.history)
        history.append({"role": "user", "content": request.prompt})
        history.append({"role": "assistant", "content": partial})
        return ProviderRequest(
            system_prompt=request.system_prompt,
            prompt=CONTINUE_DIRECTIVE,
            history=history,
            image=request.image,
        )


class GeminiAdapter(ProviderAdapter):
    name = "gemini"

    def __init__(self, selection: ProviderSelection, settings: PipelineSettings) -> None:
        super().__init__(selection, settings)
        self._session = _build_session()

    def _payload(self, request: ProviderRequest) -> Dict[str, Any]:
        contents = []
        for msg in request.history:
            role = "user" if msg.get("role") == "user" else "model"
            contents.append({"role": role, "parts": [{"text": msg.get("content") or ""}]})
        parts: List[Dict[str, Any]] = [{"text": request.prompt}]
        if request.image is not None:
            parts.append({"inlineData": {"mimeType": request.image.mime_type, "data": request.image.data}})
        contents.append({"role": "user", "parts": parts})
        return {
            "systemInstruction": {"parts": [{"text": request.system_prompt}]},
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": self.settings.max_output_tokens,
                "temperature": self.settings.temperature,
            },
        }

    @staticmethod
    def _parse(data: Dict[str, Any]) -> Optional[RawStreamEvent]:
        if "error" in data:
            raise ProviderStreamError(f"gemini error: {data['error'].get('message', data['error'])}")
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text") or "" for part in parts)
        reason = candidate.get("finishReason")
        finish = None
        if reason:
            finish = FinishReason.LENGTH_LIMIT if reason == "MAX_TOKENS" else FinishReason.NORMAL
        if not text and finish is None:
            return None
        return RawStreamEvent(text=text, finish_reason=finish)

    def _open(self, request: ProviderRequest) -> Iterator[RawStreamEvent]:
        url = f"{self.selection.base_url}/models/{self.selection.model}:streamGenerateContent"
        resp = self._session.post(
            url,
            params={"alt": "sse"},
            headers={"x-goog-api-key": self.selection.api_key or ""},
            json=self._payload(request),
            timeout=(_CONNECT_TIMEOUT, _READ_TIMEOUT),
            stream=True,
        )
        if resp.status_code >= 400:
            detail = resp.text[:300]
            resp.close()
            raise ProviderRequestError(f"Gemini request failed ({resp.status_code}): {detail}")
        return _HTTPEventStream(resp, self._parse)


class ClaudeAdapter(ProviderAdapter):
    name = "claude"

    def __init__(self, selection: ProviderSelection, settings: PipelineSettings) -> None:
        super().__init__(selection, settings)
        self._session = _build_session()

    def _payload(self, request: ProviderRequest) -> Dict[str, Any]:
        messages = []
        for msg in request.history:
            role = "assistant" if msg.get("role") == "assistant" else "user"
            messages.append({"role": role, "content": msg.get("content") or ""})
        content: Any = request.prompt
        if request.image is not None:
            content = [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": request.image.mime_type, "data": request.image.data},
                },
                {"type": "text", "text": request.prompt},
            ]
        messages.append({"role": "user", "content": content})
        return {
            "model": self.selection.model,
            "max_tokens": self.settings.max_output_tokens,
            "temperature": self.settings.temperature,
            "system": request.system_prompt,
            "messages": messages,
            "stream": True,
        }

    @staticmethod
    def _parse(data: Dict[str, Any]) -> Optional[RawStreamEvent]:
        kind = data.get("type")
        if kind == "content_block_delta":
            delta = data.get("delta") or {}
            if delta.get("type") == "text_delta" and delta.get("text"):
                return RawStreamEvent(text=delta["text"])
            return None
        if kind == "message_delta":
            reason = (data.get("delta") or {}).get("stop_reason")
            if not reason:
                return None
            finish = FinishReason.LENGTH_LIMIT if reason == "max_tokens" else FinishReason.NORMAL
            return RawStreamEvent(text="", finish_reason=finish)
        if kind == "error":
            error = data.get("error") or {}
            raise ProviderStreamError(f"claude error: {error.get('message', error)}")
        return None

    def _open(self, request: ProviderRequest) -> Iterator[RawStreamEvent]:
        resp = self._session.post(
            f"{self.selection.base_url}/messages",
            headers={
                "x-api-key": self.selection.api_key or "",
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json=self._payload(request),
            timeout=(_CONNECT_TIMEOUT, _READ_TIMEOUT),
            stream=True,
        )
        if resp.status_code >= 400:
            detail = resp.text[:300]
            resp.close()
            raise ProviderRequestError(f"Claude request failed ({resp.status_code}): {detail}")
        return _HTTPEventStream(resp, self._parse)


class OpenAIAdapter(ProviderAdapter):
    name = "gpt"

    def __init__(self, selection: ProviderSelection, settings: PipelineSettings) -> None:
        super().__init__(selection, settings)
        self._llm = ChatOpenAI(
            api_key=selection.api_key,
            base_url=selection.base_url,
            model=selection.model,
            temperature=settings.temperature,
            max_tokens=settings.max_output_tokens,
        )

    def _open(self, request: ProviderRequest) -> Iterator[RawStreamEvent]:
        msgs: List[Dict[str, Any]] = [{"role": "system", "content": request.system_prompt}]
        for m in request.history:
            r = m.get("role") or "user"
            if r not in ("user", "assistant"):
                r = "user"
            msgs.append({"role": r, "content": m.get("content") or ""})
        content: Any = request.prompt
        if request.image is not None:
            url = f"data:{request.image.mime_type};base64,{request.image.data}"
            content = [{"type": "text", "text": request.prompt}, {"type": "image_url", "image_url": {"url": url}}]
        msgs.append({"role": "user", "content": content})
        return self._iterate(msgs)

    def _iterate(self, msgs: List[Dict[str, Any]]) -> Iterator[RawStreamEvent]:
        chunks = self._llm.stream(msgs)
        try:
            for chunk in chunks:
                text = chunk.content if isinstance(chunk.content, str) else ""
                reason = (getattr(chunk, "response_metadata", None) or {}).get("finish_reason")
                finish = None
                if reason:
                    finish = FinishReason.LENGTH_LIMIT if reason == "length" else FinishReason.NORMAL
                if text or finish is not None:
                    yield RawStreamEvent(text=text, finish_reason=finish)
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()


ADAPTERS = {
    "gemini": GeminiAdapter,
    "claude": ClaudeAdapter,
    "gpt": OpenAIAdapter,
}


def build_adapter(
    selector: str,
    settings: Optional[PipelineSettings] = None,
    router: Optional[ModelRouter] = None,
) -> ProviderAdapter:
    """Construct the adapter for ``selector``; raises ``ProviderConfigError`` when unusable."""

    selection = (router or ModelRouter()).resolve_provider(selector)
    adapter = ADAPTERS[selection.name](selection, settings or PipelineSettings.from_env())
    logger.info("Using LLM provider name=%s model=%s", selection.name, selection.model)
    return adapter
