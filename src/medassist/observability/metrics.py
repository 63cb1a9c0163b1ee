from __future__ import annotations

"""Prometheus metrics for the MedAssist chat service and client.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for chat turns and recovered failures.
"""

import logging
import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

LOG = logging.getLogger("medassist.metrics")

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "medassist_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
)

CHAT_TURNS = Counter(
    "medassist_chat_turns_total",
    "Chat turns processed by the session controller",
    labelnames=("status",),
)

CHAT_ERRORS = Counter(
    "medassist_chat_errors_total",
    "Recovered chat session failures",
    labelnames=("kind",),
)

COMPLETION_CALLS = Counter(
    "medassist_completion_calls_total",
    "Completion provider calls",
    labelnames=("provider", "outcome"),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths to a coarse label.

    Keeps the first two static segments (``/functions/mongodb-chat``).
    """
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if not segs:
        return "/"
    return "/" + "/".join(segs[:2])


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
        except Exception as exc:
            # Metrics never block the request
            LOG.debug("request_latency_not_recorded", extra={"err": str(exc)})
        return response

    return middleware
