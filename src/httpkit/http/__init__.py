"""
=============================================================================
HTTP LAYER
=============================================================================

Everything a handler touches:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ REQUEST (request.py)                                                │
    │   method, path, query, lower-cased headers, body, RequestContext    │
    ├─────────────────────────────────────────────────────────────────────┤
    │ CONTEXT (context.py)                                                │
    │   write-once per-request store: path params, route template,        │
    │   locale, tracing span                                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │ RESPONSE WRITER (writer.py)                                         │
    │   status set once, headers, buffered or streamed body               │
    ├─────────────────────────────────────────────────────────────────────┤
    │ RESPONSE HELPERS (response.py)                                      │
    │   encode(), failure(), not_found_failure(), ...                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │ ROUTER (router.py)                                                  │
    │   /users/:id patterns, middleware chain, built-in endpoints         │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

# Order matters: the router pulls in middleware and handlers, which need
# the other http modules already loaded.
from .request import Request
from .context import (
    LOCALE_KEY,
    PARAMS_KEY,
    ROUTE_KEY,
    REQUEST_ID_KEY,
    SPAN_KEY,
    Params,
    RequestContext,
    RequestState,
    params_from_context,
    params_from_request,
)
from .writer import Headers, ResponseWriter, Transport
from .response import (
    encode,
    failure,
    failure_from_error,
    failure_from_validator,
    internal_server_failure,
    method_not_allowed_failure,
    not_found_failure,
    service_unavailable_failure,
)
from .router import Controller, Route, RouteMatch, Router

__all__ = [
    # Request
    "Request",

    # Context
    "RequestContext",
    "RequestState",
    "Params",
    "params_from_context",
    "params_from_request",
    "PARAMS_KEY",
    "ROUTE_KEY",
    "LOCALE_KEY",
    "REQUEST_ID_KEY",
    "SPAN_KEY",

    # Writer
    "ResponseWriter",
    "Headers",
    "Transport",

    # Response helpers
    "encode",
    "failure",
    "failure_from_error",
    "failure_from_validator",
    "not_found_failure",
    "method_not_allowed_failure",
    "internal_server_failure",
    "service_unavailable_failure",

    # Routing
    "Router",
    "Route",
    "RouteMatch",
    "Controller",
]
