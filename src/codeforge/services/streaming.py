import asyncio
import logging
from typing import AsyncIterator, Iterator, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXHAUSTED = object()


async def iter_as_async(it: Iterator[T]) -> AsyncIterator[T]:
    """Drive a blocking iterator from the event loop, one ``next()`` per worker thread.

    The source iterator is closed when the consumer stops early, which releases
    the underlying HTTP response.
    """

    try:
        while True:
            item = await asyncio.to_thread(next, it, _EXHAUSTED)
            if item is _EXHAUSTED:
                return
            yield item
    finally:
        close = getattr(it, "close", None)
        if close is not None:
            try:
                close()
            except ValueError:
                # generator still running in its worker thread; it is dropped with the response
                logger.debug("stream_close_while_running")
