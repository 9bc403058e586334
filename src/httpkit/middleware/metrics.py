"""
=============================================================================
PROMETHEUS METRICS
=============================================================================

Router.enable_metrics() mounts GET /metrics and wraps every request with
MetricsMiddleware:

    ┌──────────────────────────────────┬───────────┬────────────────────┐
    │ Metric                           │ Type      │ Labels             │
    ├──────────────────────────────────┼───────────┼────────────────────┤
    │ http_request_duration_seconds    │ histogram │ -                  │
    │ http_request_total               │ counter   │ status, method     │
    └──────────────────────────────────┴───────────┴────────────────────┘

    buckets: 0.01, 0.1, 0.3, 0.5, 1, 2, 5 (seconds)

Each router gets its own CollectorRegistry (plus the process, platform
and GC collectors), so two servers in one process, or two tests, never
collide on metric names in the global registry.

The status label is w.final_status, read after the handler returned:
404/405 answers, recovered exceptions (500) and handlers that wrote
nothing (200) are all counted.

=============================================================================
"""

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger(__name__)


DURATION_BUCKETS = (0.01, 0.1, 0.3, 0.5, 1.0, 2.0, 5.0)


def new_registry() -> CollectorRegistry:
    """A registry carrying the default process, platform and GC collectors."""
    registry = CollectorRegistry(auto_describe=True)
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)
    GCCollector(registry=registry)
    return registry


def metrics_handler(registry: CollectorRegistry) -> Handler:
    """Handler exposing registry in the Prometheus text format."""

    def handler(w: ResponseWriter, r: Request) -> None:
        body = generate_latest(registry)
        w.set_header("Content-Type", CONTENT_TYPE_LATEST)
        w.write_header(200)
        w.write(body)

    return handler


class MetricsMiddleware(Middleware):
    """Observes latency and counts requests by status and method."""

    def __init__(self, registry: CollectorRegistry):
        self.registry = registry

        self.duration = Histogram(
            "http_request_duration_seconds",
            "The HTTP request latencies in seconds.",
            buckets=DURATION_BUCKETS,
            registry=None,
        )
        self.requests = Counter(
            "http_request",
            "The count of request.",
            ["status", "method"],
            registry=None,
        )

        for collector in (self.duration, self.requests):
            try:
                registry.register(collector)
            except ValueError as e:
                # A second middleware on the same registry keeps counting
                # into collectors nobody scrapes
                logger.debug(f"prometheus register: {e}")

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        start = time.perf_counter()
        status = None

        try:
            next_handler(w, r)
        except Exception:
            # Recovery further out turns this into a 500
            status = w.status or 500
            raise
        finally:
            self.duration.observe(time.perf_counter() - start)
            status = status or w.final_status
            self.requests.labels(status=str(status), method=r.method).inc()
