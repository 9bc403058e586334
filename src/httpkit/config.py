"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the HTTP and HTTPS listeners.

=============================================================================
LISTENERS
=============================================================================

A server owns up to two listeners. Each one is switched on purely by its
own configuration values; there is no separate "enabled" flag:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    PROTOCOL ENABLED PREDICATE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   HTTP    enabled  ⇔  0 < port < 65535                              │
    │                                                                      │
    │   HTTPS   enabled  ⇔  0 < port < 65535                              │
    │                       AND cert_file != ""                            │
    │                       AND key_file  != ""                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Port 0 therefore means "off", never "pick any free port".

=============================================================================
TIMEOUTS
=============================================================================

All durations are in seconds. A value of 0 disables the timeout.

    read_header_timeout   waiting for the request line and headers
    read_timeout          reading the request body
    write_timeout         sending the response
    idle_timeout          waiting for the next request on a keep-alive
                          connection (falls back to read_timeout)
    shutdown_timeout      grace period given to in-flight requests, per
                          listener, when the server shuts down

=============================================================================
"""

import logging
import os
import ssl
import socket
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUTHY = ("1", "true", "yes", "on")


def join_host_port(host: str, port: int) -> str:
    """Join host and port into an address, bracketing IPv6 hosts."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _port_in_range(port: int) -> bool:
    return 0 < port < 65535


@dataclass(frozen=True)
class HTTPConfig:
    """Plaintext listener."""

    host: str = ""
    """Address to bind to. Empty string binds every interface."""

    port: int = 0
    """Port to listen on. 0 disables the listener."""

    def addr(self) -> str:
        return join_host_port(self.host, self.port)

    def is_enabled(self) -> bool:
        return _port_in_range(self.port)


@dataclass(frozen=True)
class HTTPSConfig:
    """TLS listener."""

    host: str = ""
    """Address to bind to. Empty string binds every interface."""

    port: int = 0
    """Port to listen on. 0 disables the listener."""

    cert_file: str = ""
    """PEM certificate chain."""

    key_file: str = ""
    """PEM private key."""

    tls_context: Optional[ssl.SSLContext] = None
    """
    TLS options (protocol versions, ciphers, client auth).
    The certificate pair is loaded into it when the listener starts.
    When None a server-side default context is created.
    """

    def addr(self) -> str:
        return join_host_port(self.host, self.port)

    def is_enabled(self) -> bool:
        return _port_in_range(self.port) and self.cert_file != "" and self.key_file != ""


@dataclass(frozen=True)
class Configuration:
    """
    Configuration for the server.

    =========================================================================
    USAGE
    =========================================================================

        Configuration(
            http=HTTPConfig(port=8080),
            https=HTTPSConfig(port=8443, cert_file="server.crt",
                              key_file="server.key"),
            shutdown_timeout=10.0,
            health_check=True,
            metrics=True,
        )

    The configuration is frozen: a Server never sees it change after it
    was constructed.

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENERS
    # ─────────────────────────────────────────────────────────────────────

    http: Optional[HTTPConfig] = None
    """Plaintext listener, or None."""

    https: Optional[HTTPSConfig] = None
    """TLS listener, or None."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUTS (seconds, 0 = none)
    # ─────────────────────────────────────────────────────────────────────

    shutdown_timeout: float = 5.0
    write_timeout: float = 0.0
    read_timeout: float = 0.0
    read_header_timeout: float = 0.0
    idle_timeout: float = 0.0

    # ─────────────────────────────────────────────────────────────────────
    # LIMITS
    # ─────────────────────────────────────────────────────────────────────

    max_body_size: int = 10 * 1024 * 1024  # 10 MB
    """Requests with a larger body are answered with 413."""

    # ─────────────────────────────────────────────────────────────────────
    # BUILT-IN ENDPOINTS
    # ─────────────────────────────────────────────────────────────────────

    profiling: bool = False
    """Mount the /debug/pprof family."""

    metrics: bool = False
    """Mount /metrics and the request timing middleware."""

    health_check: bool = False
    """Mount /health."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    def is_enabled(self, protocol: str) -> bool:
        """Check whether the "http" or "https" listener is enabled."""
        if protocol == "http":
            return self.http is not None and self.http.is_enabled()
        if protocol == "https":
            return self.https is not None and self.https.is_enabled()
        return False

    @property
    def effective_idle_timeout(self) -> float:
        return self.idle_timeout or self.read_timeout

    @classmethod
    def from_env(cls) -> "Configuration":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HTTP_HOST                    Plaintext host (default: all interfaces)
        HTTP_PORT                    Plaintext port (default: 8080)
        HTTPS_HOST                   TLS host
        HTTPS_PORT                   TLS port (default: 0, disabled)
        HTTPS_CERT_FILE              TLS certificate
        HTTPS_KEY_FILE               TLS private key
        SERVER_SHUTDOWN_TIMEOUT      Grace period in seconds (default: 5)
        SERVER_READ_TIMEOUT          Body read timeout
        SERVER_READ_HEADER_TIMEOUT   Header read timeout
        SERVER_WRITE_TIMEOUT         Response write timeout
        SERVER_IDLE_TIMEOUT          Keep-alive idle timeout
        SERVER_METRICS               Enable /metrics
        SERVER_PROFILING             Enable /debug/pprof
        SERVER_HEALTH_CHECK          Enable /health (default: true)
        SERVER_LOG_LEVEL             Logging level (default: INFO)

        =====================================================================
        """
        return cls(
            http=HTTPConfig(
                host=os.getenv("HTTP_HOST", ""),
                port=int(os.getenv("HTTP_PORT", "8080")),
            ),
            https=HTTPSConfig(
                host=os.getenv("HTTPS_HOST", ""),
                port=int(os.getenv("HTTPS_PORT", "0")),
                cert_file=os.getenv("HTTPS_CERT_FILE", ""),
                key_file=os.getenv("HTTPS_KEY_FILE", ""),
            ),
            shutdown_timeout=float(os.getenv("SERVER_SHUTDOWN_TIMEOUT", "5")),
            read_timeout=float(os.getenv("SERVER_READ_TIMEOUT", "0")),
            read_header_timeout=float(os.getenv("SERVER_READ_HEADER_TIMEOUT", "0")),
            write_timeout=float(os.getenv("SERVER_WRITE_TIMEOUT", "0")),
            idle_timeout=float(os.getenv("SERVER_IDLE_TIMEOUT", "0")),
            metrics=os.getenv("SERVER_METRICS", "false").lower() in _TRUTHY,
            profiling=os.getenv("SERVER_PROFILING", "false").lower() in _TRUTHY,
            health_check=os.getenv("SERVER_HEALTH_CHECK", "true").lower() in _TRUTHY,
            log_level=os.getenv("SERVER_LOG_LEVEL", "INFO"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Whether any listener is enabled is NOT checked here: that is a
        run-time decision of Server.run().
        """
        for listener in (self.http, self.https):
            if listener is not None and not 0 <= listener.port <= 65535:
                raise ConfigurationError(f"Invalid port: {listener.port}. Must be 0-65535.")

        for name in ("shutdown_timeout", "write_timeout", "read_timeout",
                     "read_header_timeout", "idle_timeout"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0")

        if self.max_body_size <= 0:
            raise ConfigurationError("max_body_size must be > 0")

        if self.log_level.upper() not in _LOG_LEVELS:
            raise ConfigurationError(f"Invalid log level: {self.log_level}")

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level.upper(), logging.INFO)


def address_family(host: str) -> socket.AddressFamily:
    """Pick the socket family matching a bind host."""
    return socket.AF_INET6 if ":" in host else socket.AF_INET
