"""Prometheus metrics for the codeforge FastAPI backend.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the chat pipeline.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "codeforge_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

CHAT_TURNS = Counter(
    "codeforge_chat_turns_total",
    "Chat turns by terminal outcome",
    labelnames=("outcome",),
)

PROVIDER_CALLS = Counter(
    "codeforge_provider_calls_total",
    "Provider streaming calls, including continuations",
    labelnames=("provider", "continuation"),
)

FILES_PERSISTED = Counter(
    "codeforge_files_persisted_total",
    "File revisions written by the persistence engine",
    labelnames=("strategy",),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /projects/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Metrics never block the request
            logger.debug("request_latency_observe_failed", exc_info=True)
        return response

    return middleware
