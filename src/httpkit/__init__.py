"""
=============================================================================
HTTPKIT - Embeddable HTTP Server Core
=============================================================================

A small core for building HTTP/JSON services: a router with path
parameters, a middleware chain, content negotiation, uniform error
envelopes, health checks and a server that runs plaintext and TLS
listeners side by side with graceful shutdown.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        REQUEST LIFECYCLE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   Listener (http / https)                                           │
    │        │  one thread per connection                                 │
    │        ▼                                                            │
    │   Router.serve_http(w, r)                                           │
    │        │  match route → params + template into the request context  │
    │        ▼                                                            │
    │   Middleware chain   logging → cors → auth → recovery → metrics     │
    │        │                                                            │
    │        ▼                                                            │
    │   Handler(w, r)      encode(w, r, 200, data)                        │
    │        │                                                            │
    │        ▼                                                            │
    │   EncoderRegistry    Accept negotiation → JSON (default)            │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    httpkit/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m httpkit)
    ├── server.py            # Server: listeners, lifecycle, shutdown
    ├── config.py            # Configuration dataclasses
    ├── errors.py            # Exception hierarchy
    ├── envelope.py          # Error envelope types
    ├── validation.py        # Named pydantic schemas
    ├── core/
    │   └── listener.py      # http.server transport, timeouts, draining
    ├── encoding/
    │   ├── encoder.py       # Encoder interface, JSON encoder
    │   ├── negotiation.py   # RFC 7231 Accept negotiation
    │   └── registry.py      # Per-router encoder registry
    ├── http/
    │   ├── request.py       # Request
    │   ├── context.py       # Write-once request context, path params
    │   ├── writer.py        # ResponseWriter
    │   ├── response.py      # encode() / failure helpers
    │   └── router.py        # Router
    ├── middleware/          # Chain + built-in middleware
    └── handlers/            # /health, /debug/pprof

=============================================================================
QUICK START
=============================================================================

    from httpkit import Configuration, HTTPConfig, Server, encode
    from httpkit.http import params_from_request

    server = Server(Configuration(http=HTTPConfig(port=8080), health_check=True))

    @server.get("/hello/:name")
    def hello(w, r):
        name = params_from_request(r).get_param("name")
        encode(w, r, 200, {"message": f"Hello, {name}!"})

    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .errors import (
    ConfigurationError,
    ContextError,
    ContextKeyConflictError,
    ContextMissingError,
    DuplicateHealthCheckError,
    EncodingError,
    HTTPKitError,
    ListenerError,
    ParamNotFoundError,
    ParamsNotFoundError,
    RouteError,
    SchemaFileFormatNotSupportedError,
    SchemaNotFoundError,
    ShutdownError,
)
from .config import Configuration, HTTPConfig, HTTPSConfig
from .envelope import ErrorMessage, ErrorResponse, ErrorsResponse, ValidatorError
from .http import (
    Params,
    Request,
    RequestContext,
    ResponseWriter,
    Router,
    encode,
    failure,
    failure_from_error,
    failure_from_validator,
    internal_server_failure,
    method_not_allowed_failure,
    not_found_failure,
    params_from_context,
    params_from_request,
    service_unavailable_failure,
)
from .encoding import Encoder, EncoderRegistry, JSONEncoder
from .middleware import Chain, Middleware
from .validation import ValidationResult, Validator
from .server import Server, create_app

__all__ = [
    "__version__",

    # Server
    "Server",
    "create_app",
    "Configuration",
    "HTTPConfig",
    "HTTPSConfig",

    # Routing and middleware
    "Router",
    "Chain",
    "Middleware",

    # Request / response
    "Request",
    "RequestContext",
    "ResponseWriter",
    "Params",
    "params_from_context",
    "params_from_request",
    "encode",
    "failure",
    "failure_from_error",
    "failure_from_validator",
    "not_found_failure",
    "method_not_allowed_failure",
    "internal_server_failure",
    "service_unavailable_failure",

    # Encoding
    "Encoder",
    "EncoderRegistry",
    "JSONEncoder",

    # Envelopes
    "ErrorMessage",
    "ErrorResponse",
    "ErrorsResponse",
    "ValidatorError",

    # Validation
    "Validator",
    "ValidationResult",

    # Errors
    "HTTPKitError",
    "ConfigurationError",
    "RouteError",
    "DuplicateHealthCheckError",
    "ContextError",
    "ContextMissingError",
    "ContextKeyConflictError",
    "ParamsNotFoundError",
    "ParamNotFoundError",
    "EncodingError",
    "ListenerError",
    "ShutdownError",
    "SchemaFileFormatNotSupportedError",
    "SchemaNotFoundError",
]
