"""The chat turn pipeline.

classify -> provider stream (with continuations) -> live fence filter -> SSE
frames -> extraction -> persistence -> terminal ``done`` frame.

Every failure is converted into at most one ``error`` frame followed by the
single ``done`` frame, so the client is never left waiting on an open stream.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from ..config import PipelineSettings
from ..domain.chat_models import ImageAttachment, MessageType, SearchResult
from ..errors import PersistenceError, ProviderConfigError, ProviderRequestError, ProviderStreamError
from ..infrastructure.record_store import RecordStore
from ..observability.metrics import CHAT_TURNS
from .continuation import ContinuationController
from .extraction import extract_thinking, parse_response, strip_tagged_sections
from .fences import FenceFilter, PassthroughFilter
from .intent import detect_message_type
from .persistence import SAVE_FAILED_MESSAGE, PersistenceEngine
from .prompts import build_system_prompt, wrap_user_prompt
from .providers import ProviderAdapter, ProviderRequest, build_adapter
from .search import SearchClient
from .sse import SSEChannel
from .telemetry_sink import TelemetryEvent, record_event

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str, PipelineSettings], ProviderAdapter]
DisconnectCheck = Callable[[], Awaitable[bool]]

# Detached automated turns; held so the loop does not drop them mid-flight.
_BACKGROUND_TURNS: Set[asyncio.Task] = set()


@dataclass
class TurnContext:
    project_id: str
    message: str
    history: List[Dict[str, str]] = field(default_factory=list)
    model: str = "gemini"
    discuss_mode: bool = False
    is_automated: bool = False
    image: Optional[ImageAttachment] = None


def _default_adapter_factory(selector: str, settings: PipelineSettings) -> ProviderAdapter:
    return build_adapter(selector, settings)


class ChatPipeline:
    def __init__(
        self,
        store: RecordStore,
        settings: Optional[PipelineSettings] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        search_client: Optional[SearchClient] = None,
    ) -> None:
        self.store = store
        self.settings = settings or PipelineSettings.from_env()
        self.adapter_factory = adapter_factory or _default_adapter_factory
        self.search_client = search_client
        self.engine = PersistenceEngine(store, self.settings.persist_strategy)

    def stream_turn(self, turn: TurnContext, is_disconnected: Optional[DisconnectCheck] = None) -> AsyncIterator[str]:
        """SSE frames for one turn.

        Automated turns run detached from the response: if the client goes
        away they still finish and persist.
        """
        if turn.is_automated:
            return self._detached(turn)
        return self._frames(turn, is_disconnected)

    async def _detached(self, turn: TurnContext) -> AsyncIterator[str]:
        queue: asyncio.Queue = asyncio.Queue()

        async def pump() -> None:
            try:
                async for frame in self._frames(turn, None):
                    queue.put_nowait(frame)
            finally:
                queue.put_nowait(None)

        task = asyncio.create_task(pump())
        _BACKGROUND_TURNS.add(task)
        task.add_done_callback(_BACKGROUND_TURNS.discard)
        while True:
            frame = await queue.get()
            if frame is None:
                return
            yield frame

    async def _search(self, message: str, message_type: MessageType) -> Optional[SearchResult]:
        if not self.settings.enable_search or message_type is MessageType.GREETING:
            return None
        client = self.search_client or SearchClient.from_env()
        return await asyncio.to_thread(client.search, message)

    async def _frames(self, turn: TurnContext, is_disconnected: Optional[DisconnectCheck]) -> AsyncIterator[str]:
        channel = SSEChannel(turn.project_id)
        outcome = "aborted"
        controller: Optional[ContinuationController] = None
        try:
            message_type = detect_message_type(turn.message)
            build_mode = message_type is MessageType.BUILD and not turn.discuss_mode
            logger.info(
                "chat_turn_start",
                extra={"project_id": turn.project_id, "type": message_type.value, "model": turn.model},
            )

            try:
                adapter = self.adapter_factory(turn.model, self.settings)
            except ProviderConfigError as exc:
                logger.warning("provider_config_error", extra={"model": turn.model, "err": str(exc)})
                outcome = "config_error"
                yield channel.error(str(exc))
                yield channel.done()
                return

            search_result = await self._search(turn.message, message_type)
            request = ProviderRequest(
                system_prompt=build_system_prompt(
                    turn.discuss_mode,
                    turn.message,
                    search_result.results if search_result else None,
                ),
                prompt=turn.message if turn.discuss_mode else wrap_user_prompt(turn.message, message_type),
                history=list(turn.history),
                image=turn.image,
            )
            controller = ContinuationController(
                adapter,
                request,
                max_continuations=self.settings.max_continuations,
                timeout_seconds=self.settings.stream_timeout_seconds,
            )
            live = FenceFilter() if build_mode else PassthroughFilter()

            aborted = False
            stream = controller.stream()
            try:
                async for delta in stream:
                    frame = channel.text(live.feed(delta))
                    if frame:
                        yield frame
                    if is_disconnected is not None and await is_disconnected():
                        aborted = True
                        break
            except (ProviderConfigError, ProviderRequestError) as exc:
                logger.warning("provider_request_error", extra={"model": turn.model, "err": str(exc)})
                outcome = "request_error"
                yield channel.error(str(exc))
                yield channel.done()
                return
            except ProviderStreamError as exc:
                logger.exception("provider_stream_error", extra={"model": turn.model})
                outcome = "stream_error"
                yield channel.error(str(exc))
                yield channel.done()
                return
            finally:
                await stream.aclose()

            if aborted:
                logger.info("chat_turn_aborted", extra={"project_id": turn.project_id})
                outcome = "aborted"
                yield channel.done()
                return

            tail = channel.text(live.flush())
            if tail:
                yield tail

            raw = controller.text
            if build_mode:
                parsed = parse_response(raw)
                content, blocks, thinking = parsed.prose, parsed.blocks, parsed.thinking
            else:
                content, blocks, thinking = strip_tagged_sections(raw).strip(), [], extract_thinking(raw)

            try:
                result = await self.engine.persist_turn(
                    turn.project_id,
                    content,
                    blocks,
                    thinking=thinking,
                    search_queries=[search_result] if search_result else None,
                    is_automated=turn.is_automated,
                )
            except PersistenceError:
                logger.exception("persist_turn_failed", extra={"project_id": turn.project_id})
                outcome = "persist_error"
                yield channel.error(SAVE_FAILED_MESSAGE)
                yield channel.done()
                return

            outcome = "success"
            yield channel.done(result.message.message_id, result.has_artifact)
        except Exception as exc:
            logger.exception("chat_turn_failed", extra={"project_id": turn.project_id})
            outcome = "error"
            if not channel.closed:
                frame = channel.error(str(exc) or "Unexpected error")
                if frame:
                    yield frame
                yield channel.done()
        finally:
            self._finish(turn, outcome, controller)

    def _finish(self, turn: TurnContext, outcome: str, controller: Optional[ContinuationController]) -> None:
        try:
            CHAT_TURNS.labels(outcome=outcome).inc()
        except Exception:
            logger.debug("chat_turn_metric_failed", exc_info=True)
        record_event(
            TelemetryEvent(
                name="chat_turn",
                properties={
                    "project_id": turn.project_id,
                    "model": turn.model,
                    "outcome": outcome,
                    "calls": controller.calls if controller else 0,
                    "continuations": controller.continuations if controller else 0,
                    "automated": turn.is_automated,
                },
            )
        )
