"""
=============================================================================
DISTRIBUTED TRACING (OpenTelemetry)
=============================================================================

Starts one server span per request, continuing the caller's trace when
the request carries propagation headers (traceparent, baggage, ...):

    upstream service                    this server
    ────────────────                    ───────────
    span "GET /orders"  ── traceparent ──▶  span "GET /users/:id"
                                              │ http.method      GET
                                              │ http.url         http://host/users/345
                                              │ id               345
                                              │ http.status_code 200
                                              │ result           HTTP 2xx

The span is named after the route template, not the concrete path, so
/users/1 and /users/2 aggregate under one name. Unmatched requests use
the raw path.

Only opentelemetry-api is required. Without an SDK configured the global
tracer is a no-op and this middleware costs almost nothing; install
opentelemetry-sdk and set a TracerProvider to export spans.

=============================================================================
"""

import logging
from typing import Callable, MutableMapping, Optional

from opentelemetry import context as otel_context
from opentelemetry import propagate, trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from ..http.context import PARAMS_KEY, SPAN_KEY
from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger(__name__)


TRACER_NAME = "httpkit"

RequestIgnorer = Callable[[Request], bool]


def ignore_none(r: Request) -> bool:
    return False


def status_code_result(status: int) -> str:
    """200 → "HTTP 2xx"; codes outside 1xx-5xx are reported verbatim."""
    family = status // 100
    if 1 <= family <= 5:
        return f"HTTP {family}xx"
    return f"HTTP {status}"


def span_name(r: Request) -> str:
    route = r.context.route
    return f"{r.method} {route if route else r.path}"


def span_from_request(r: Request) -> Optional[trace.Span]:
    return r.context.get(SPAN_KEY)


def inject_headers(
    headers: MutableMapping[str, str],
    r: Optional[Request] = None,
) -> MutableMapping[str, str]:
    """
    Write the trace context into outgoing request headers.

        headers = inject_headers({}, r)
        urllib.request.Request(url, headers=headers)

    With r, the request's server span is the parent; otherwise the
    currently active span is. A no-op when there is no span.
    """
    ctx = None
    span = span_from_request(r) if r is not None else None
    if span is not None:
        ctx = trace.set_span_in_context(span)

    propagate.inject(headers, context=ctx)
    return headers


class TracingMiddleware(Middleware):
    """
    One SERVER span per request.

        router.use(TracingMiddleware(ignore=lambda r: r.path == "/health"))
    """

    def __init__(
        self,
        tracer: Optional[trace.Tracer] = None,
        ignore: Optional[RequestIgnorer] = None,
    ):
        self._tracer = tracer
        self.ignore = ignore or ignore_none

    @property
    def tracer(self) -> trace.Tracer:
        # Resolved late so a provider set after construction is honored
        return self._tracer or trace.get_tracer(TRACER_NAME)

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        if self.ignore(r):
            next_handler(w, r)
            return

        parent = propagate.extract(r.headers)

        span = self.tracer.start_span(span_name(r), context=parent, kind=SpanKind.SERVER)
        token = otel_context.attach(trace.set_span_in_context(span, parent))

        try:
            span.set_attribute("http.method", r.method)
            span.set_attribute("http.url", f"{r.scheme}://{r.host}{r.path}")
            params = r.context.get(PARAMS_KEY)
            if params:
                for name, value in params:
                    span.set_attribute(name, value)

            r.context.set(SPAN_KEY, span)

            try:
                next_handler(w, r)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR))
                status = w.status or 500
                span.set_attribute("http.status_code", status)
                span.set_attribute("result", status_code_result(status))
                raise

            status = w.final_status
            span.set_attribute("http.status_code", status)
            span.set_attribute("result", status_code_result(status))
            if status >= 500:
                span.set_status(Status(StatusCode.ERROR))
        finally:
            otel_context.detach(token)
            span.end()
