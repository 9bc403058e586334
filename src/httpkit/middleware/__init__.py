"""
=============================================================================
MIDDLEWARE
=============================================================================

Wrappers composed around every request by the router's chain:

    ┌─────────────────────────────────────────────────────────────────────┐
    │   Incoming Request                                                  │
    │        │                                                            │
    │        ▼                                                            │
    │   ┌─────────────────────┐                                           │
    │   │ LoggingMiddleware   │ ──► access log, X-Request-ID              │
    │   └─────────┬───────────┘                                           │
    │             ▼                                                       │
    │   ┌─────────────────────┐                                           │
    │   │ CORSMiddleware      │ ──► answers preflights                    │
    │   └─────────┬───────────┘                                           │
    │             ▼                                                       │
    │   ┌─────────────────────┐                                           │
    │   │ Authentication      │ ──► 401 when the provider refuses         │
    │   └─────────┬───────────┘                                           │
    │             ▼                                                       │
    │   ┌─────────────────────┐                                           │
    │   │ RecoveryMiddleware  │ ──► exceptions become 500                 │
    │   └─────────┬───────────┘                                           │
    │             ▼                                                       │
    │   ┌─────────────────────┐                                           │
    │   │ MetricsMiddleware   │ ──► latency histogram, request counter    │
    │   └─────────┬───────────┘                                           │
    │             ▼                                                       │
    │       route handler                                                 │
    └─────────────────────────────────────────────────────────────────────┘

The first wrapper registered is the outermost one.

=============================================================================
"""

from .base import Chain, FunctionMiddleware, Handler, Middleware, Wrapper, function_middleware
from .authentication import AuthConfig, AuthenticationMiddleware, Provider, StaticTokenProvider
from .cors import CORSConfig, CORSMiddleware
from .locale import Locale, LocaleMiddleware, locale_from_context, locale_from_request
from .logging import LoggingMiddleware, request_id_from_request
from .metrics import MetricsMiddleware, metrics_handler, new_registry
from .proxy import ProxyHeadersMiddleware
from .recovery import RecoveryMiddleware
from .tracing import TracingMiddleware, inject_headers

__all__ = [
    # Chain
    "Chain",
    "Handler",
    "Wrapper",
    "Middleware",
    "FunctionMiddleware",
    "function_middleware",

    # Built-in middleware
    "AuthConfig",
    "AuthenticationMiddleware",
    "Provider",
    "StaticTokenProvider",
    "CORSConfig",
    "CORSMiddleware",
    "Locale",
    "LocaleMiddleware",
    "locale_from_context",
    "locale_from_request",
    "LoggingMiddleware",
    "request_id_from_request",
    "MetricsMiddleware",
    "metrics_handler",
    "new_registry",
    "ProxyHeadersMiddleware",
    "RecoveryMiddleware",
    "TracingMiddleware",
    "inject_headers",
]
