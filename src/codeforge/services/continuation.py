from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, List, Optional

from ..config import MAX_CONTINUATIONS
from ..domain.chat_models import FinishReason
from ..errors import ProviderStreamError
from ..observability.metrics import PROVIDER_CALLS
from .providers import ProviderAdapter, ProviderRequest, RawStreamEvent

logger = logging.getLogger(__name__)


class ControllerState(str, Enum):
    STREAMING = "streaming"
    DONE = "done"


class ContinuationController:
    """Re-issues the provider call while it stops on the output length limit.

    Every text delta is appended to :attr:`text` and yielded unchanged. A
    length-limited stop triggers a continuation call carrying the whole output
    so far, at most ``max_continuations`` times. The ceiling can be lowered but
    never raised above :data:`~codeforge.config.MAX_CONTINUATIONS`.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        request: ProviderRequest,
        *,
        max_continuations: int = MAX_CONTINUATIONS,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._adapter = adapter
        self._request = request
        self._max_continuations = min(MAX_CONTINUATIONS, max(0, max_continuations))
        self._timeout = timeout_seconds
        self._parts: List[str] = []
        self._stream: Optional[AsyncIterator[RawStreamEvent]] = None
        self.state = ControllerState.STREAMING
        self.continuations = 0
        self.calls = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    async def stream(self) -> AsyncIterator[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout if self._timeout else None
        request = self._request
        try:
            while self.state is ControllerState.STREAMING:
                self._stream = await self._bounded(self._adapter.open_stream(request), deadline)
                self.calls += 1
                self._count_call()
                length_limited = False
                while True:
                    try:
                        event = await self._bounded(self._stream.__anext__(), deadline)
                    except StopAsyncIteration:
                        break
                    if event.text:
                        self._parts.append(event.text)
                        yield event.text
                    if event.finish_reason is FinishReason.LENGTH_LIMIT:
                        length_limited = True
                await self._close_stream()
                if length_limited and self.continuations < self._max_continuations:
                    self.continuations += 1
                    logger.info(
                        "provider_continuation",
                        extra={"provider": self._adapter.name, "continuation": self.continuations},
                    )
                    request = self._adapter.continuation(self._request, self.text)
                else:
                    self.state = ControllerState.DONE
        finally:
            await self._close_stream()

    async def _bounded(self, awaitable, deadline: Optional[float]):
        if deadline is None:
            return await awaitable
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ProviderStreamError(f"Provider stream exceeded {self._timeout:g}s")
        try:
            return await asyncio.wait_for(awaitable, remaining)
        except asyncio.TimeoutError as exc:
            raise ProviderStreamError(f"Provider stream exceeded {self._timeout:g}s") from exc

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.aclose()

    def _count_call(self) -> None:
        try:
            PROVIDER_CALLS.labels(
                provider=self._adapter.name,
                continuation=str(self.calls > 1).lower(),
            ).inc()
        except Exception:
            logger.debug("provider_call_metric_failed", exc_info=True)
