"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every exception raised by httpkit derives from HTTPKitError.

    ┌──────────────────────────┬────────────────────────────────────────────┐
    │ Category                 │ Propagation                                │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ Setup / configuration    │ Raised synchronously to the caller of the │
    │ (ConfigurationError)     │ registration function. Fatal at startup.   │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ Request context          │ Raised to the handler that asked for the  │
    │ (ContextError)           │ value. Never reaches the transport.        │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ Encoding (EncodingError) │ Converted into a 500 envelope by the       │
    │                          │ encoder registry, then logged.             │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ Listener (ListenerError) │ Reported asynchronously through the        │
    │                          │ server's outcome queue, raised by run().   │
    ├──────────────────────────┼────────────────────────────────────────────┤
    │ Shutdown (ShutdownError) │ Raised by shutdown() after every listener  │
    │                          │ had its grace period.                      │
    └──────────────────────────┴────────────────────────────────────────────┘

Per-request routing errors (404, 405) and handler exceptions are not
exceptions at this level at all: they are written as error envelopes.

=============================================================================
"""

from typing import List, Optional


class HTTPKitError(Exception):
    """Base class for all httpkit errors."""


# =============================================================================
# SETUP ERRORS
# =============================================================================

class ConfigurationError(HTTPKitError, ValueError):
    """Invalid configuration detected at setup time."""


class RouteError(ConfigurationError):
    """Invalid route pattern or duplicate route registration."""


class DuplicateHealthCheckError(ConfigurationError):
    """A health check with the same name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"the {name} healthcheck handler already exists")
        self.name = name


# =============================================================================
# REQUEST CONTEXT ERRORS
# =============================================================================

class ContextError(HTTPKitError):
    """Base class for request-context lookups."""


class ContextMissingError(ContextError):
    """No request context was given."""

    def __init__(self, message: str = "The context is null"):
        super().__init__(message)


class ParamsNotFoundError(ContextError):
    """The context carries no path parameters (request not routed)."""

    def __init__(self, message: str = "The Params is not found in context"):
        super().__init__(message)


class ParamNotFoundError(ContextError, KeyError):
    """The path parameters exist but the requested key does not."""

    def __init__(self, name: str):
        super().__init__(f'param "{name}" not found')
        self.name = name

    def __str__(self) -> str:
        # KeyError would quote the message
        return self.args[0]


class ContextKeyConflictError(ContextError):
    """A request-context key was written twice."""

    def __init__(self, key: str):
        super().__init__(f'context key "{key}" is already set')
        self.key = key


# =============================================================================
# RUNTIME ERRORS
# =============================================================================

class EncodingError(HTTPKitError):
    """An encoder failed to serialize a value."""

    def __init__(self, mime_type: str, cause: Exception):
        super().__init__(f"{mime_type} encoding failed: {cause}")
        self.mime_type = mime_type
        self.cause = cause


class ListenerError(HTTPKitError):
    """A listener failed to bind or stopped serving unexpectedly."""

    def __init__(self, protocol: str, cause: BaseException):
        super().__init__(f"{protocol} listener failed: {cause}")
        self.protocol = protocol
        self.cause = cause


class ShutdownError(HTTPKitError):
    """One or more listeners did not stop cleanly."""

    def __init__(self, errors: List[Exception], message: Optional[str] = None):
        if message is None:
            message = "; ".join(str(e) for e in errors)
        super().__init__(message)
        self.errors = errors


class SchemaNotFoundError(HTTPKitError):
    """The validator has no schema registered under this name."""

    def __init__(self, name: str):
        super().__init__(f'schema "{name}" not found')
        self.name = name


class SchemaFileFormatNotSupportedError(ConfigurationError):
    """A schema document in a format other than JSON or YAML."""

    def __init__(self, ext: str):
        super().__init__(f"{ext} file schema is not supported")
        self.ext = ext
