"""
=============================================================================
CORE NETWORKING
=============================================================================

The transport underneath the router: bound sockets, one thread per
connection, TLS, per-phase timeouts and graceful draining.

    Listener            socketserver.TCPServer + ThreadingMixIn
    ConnectionHandler   http.server.BaseHTTPRequestHandler, one per
                        connection, also the ResponseWriter transport

=============================================================================
"""

from .listener import ConnectionHandler, Listener, build_tls_context

__all__ = [
    "ConnectionHandler",
    "Listener",
    "build_tls_context",
]
