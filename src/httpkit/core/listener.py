"""
=============================================================================
LISTENER (TCP / TLS TRANSPORT)
=============================================================================

One Listener per protocol. It owns a bound socket and hands every
request it reads to the application callable (the router):

    ┌──────────────┐ accept ┌─────────────────────────────┐  app(w, r)  ┌────────┐
    │ listening    │ ─────▶ │ connection thread           │ ──────────▶ │ Router │
    │ socket       │        │  ConnectionHandler          │             └────────┘
    │ (ssl-wrapped │        │   TLS handshake (https)     │
    │  for https)  │        │   read request line+headers │
    └──────────────┘        │   read body (≤ max size)    │
                            │   write response            │
                            │   keep-alive loop           │
                            └─────────────────────────────┘

Parsing the wire format is left to the standard library's http.server;
this module adds what a production listener needs on top of it.

=============================================================================
TIMEOUTS
=============================================================================

Each phase of a connection runs under its own socket timeout (seconds,
0 = no timeout):

    ┌────────────────────────┬──────────────────────────────────────────┐
    │ Phase                  │ Timeout                                  │
    ├────────────────────────┼──────────────────────────────────────────┤
    │ TLS handshake          │ read_header_timeout (or read_timeout)    │
    │ request line + headers │ read_header_timeout (or read_timeout)    │
    │ body                   │ read_timeout                             │
    │ response               │ write_timeout                            │
    │ keep-alive wait        │ idle_timeout (or read_timeout)           │
    └────────────────────────┴──────────────────────────────────────────┘

=============================================================================
CONNECTION STATES AND GRACEFUL SHUTDOWN
=============================================================================

    accepted ──▶ IDLE ── request line read ──▶ BUSY ── response sent ──┐
                  ▲                                                    │
                  └──────────────── keep-alive ────────────────────────┘

    shutdown_gracefully(timeout):
        1. stop accepting, close the listening socket
        2. close every IDLE connection
        3. let BUSY connections finish their current request (they
           answer with "Connection: close"), up to timeout
        4. still BUSY after timeout → force-close, raise ShutdownError

=============================================================================
"""

import logging
import socket
import socketserver
import ssl
import sys
import threading
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Callable, List, Optional, Set, Tuple
from urllib.parse import urlsplit

from .. import __version__
from ..config import Configuration, HTTPSConfig, address_family, join_host_port
from ..encoding.registry import EncoderRegistry
from ..envelope import ErrorMessage
from ..errors import ShutdownError
from ..http.request import Request
from ..http.response import failure, internal_server_failure
from ..http.writer import ResponseWriter


logger = logging.getLogger(__name__)


App = Callable[[ResponseWriter, Request], None]

_MAX_LINE = 65536


class _BodyError(Exception):

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def build_tls_context(config: HTTPSConfig) -> ssl.SSLContext:
    """
    Server-side TLS context with the configured certificate.

    HTTPSConfig.tls_context, when given, carries the TLS options (protocol
    versions, ciphers, client certificates); the certificate chain is
    loaded into it.
    """
    context = config.tls_context
    if context is None:
        context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        context.minimum_version = ssl.TLSVersion.TLSv1_2

    context.load_cert_chain(certfile=config.cert_file, keyfile=config.key_file)
    return context


class ConnectionHandler(BaseHTTPRequestHandler):
    """
    Serves one connection: every request on it, until it closes.

    Also the Transport of the ResponseWriter it creates for each request.
    """

    protocol_version = "HTTP/1.1"
    server_version = f"httpkit/{__version__}"
    sys_version = ""

    server: "Listener"

    # Any method, including extension methods, goes to the router
    def __getattr__(self, name: str):
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    # =========================================================================
    # CONNECTION LIFECYCLE
    # =========================================================================

    def setup(self) -> None:
        self._head_only = False
        self._chunked = False
        self._bodyless = False

        self._settimeout(self.server.header_timeout)
        if isinstance(self.request, ssl.SSLSocket):
            self.request.do_handshake()

        super().setup()
        self.server.track(self)

    def handle(self) -> None:
        self.close_connection = True
        self.handle_one_request()
        while not self.close_connection:
            self._settimeout(self.server.config.effective_idle_timeout)
            self.handle_one_request()

    def finish(self) -> None:
        try:
            super().finish()
        finally:
            self.server.untrack(self)

    def parse_request(self) -> bool:
        if not self.server.begin_request(self):
            self.close_connection = True
            return False

        self._settimeout(self.server.header_timeout)
        ok = super().parse_request()
        if not ok:
            self.server.end_request(self)
        return ok

    def abort(self) -> None:
        """Close the socket under a blocked reader or writer."""
        try:
            self.request.shutdown(socket.SHUT_RDWR)
        except (OSError, ValueError):
            pass

    # =========================================================================
    # REQUEST
    # =========================================================================

    def _dispatch(self) -> None:
        try:
            self._head_only = self.command == "HEAD"
            self._chunked = False

            try:
                body = self._read_body()
            except _BodyError as e:
                self.close_connection = True
                self._write_error(e.status, e.message)
                return

            request = Request.from_target(
                self.command,
                self.path,
                headers=self._request_headers(),
                body=body,
                remote_addr=join_host_port(*self.client_address[:2]),
                scheme=self.server.scheme,
                version=self.request_version,
            )
            w = ResponseWriter(transport=self, encoders=self.server.encoders)

            try:
                self.server.app(w, request)
            except Exception:
                logger.exception(f"unhandled error serving {request.method} {request.path}")
                if w.headers_sent:
                    self.close_connection = True
                    return
                w.reset()
                internal_server_failure(w, request)

            self._finish_response(w)
        finally:
            self.server.end_request(self)

    def _request_headers(self) -> dict:
        headers = {}
        for name in self.headers.keys():
            key = name.lower()
            if key not in headers:
                headers[key] = ", ".join(self.headers.get_all(name))
        return headers

    def _read_body(self) -> bytes:
        limit = self.server.config.max_body_size
        transfer_encoding = self.headers.get("Transfer-Encoding", "")
        raw_length = self.headers.get("Content-Length")

        self._settimeout(self.server.config.read_timeout)

        if "chunked" in transfer_encoding.lower():
            return self._read_chunked(limit)

        if raw_length is None:
            return b""

        try:
            length = int(raw_length)
            if length < 0:
                raise ValueError(raw_length)
        except ValueError:
            raise _BodyError(400, f"invalid Content-Length {raw_length!r}")

        if length > limit:
            raise _BodyError(413, "Request Entity Too Large")

        return self._read_exact(length)

    def _read_chunked(self, limit: int) -> bytes:
        body = bytearray()
        while True:
            line = self.rfile.readline(_MAX_LINE + 1)
            try:
                size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise _BodyError(400, "invalid chunk size")

            if size == 0:
                # trailers, up to the blank line
                while self.rfile.readline(_MAX_LINE + 1) not in (b"\r\n", b"\n", b""):
                    pass
                return bytes(body)

            if len(body) + size > limit:
                raise _BodyError(413, "Request Entity Too Large")

            body += self._read_exact(size)
            self.rfile.readline(_MAX_LINE + 1)

    def _read_exact(self, length: int) -> bytes:
        data = self.rfile.read(length)
        if len(data) < length:
            raise ConnectionError(f"connection closed after {len(data)} of {length} body bytes")
        return data

    def handle_expect_100(self) -> bool:
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            length = 0

        if length > self.server.config.max_body_size:
            self.close_connection = True
            self._write_error(413, "Request Entity Too Large")
            return False

        return super().handle_expect_100()

    # =========================================================================
    # RESPONSE (Transport)
    # =========================================================================

    def send_head(self, status: int, headers: List[Tuple[str, str]]) -> None:
        self._settimeout(self.server.config.write_timeout)

        self._bodyless = self._head_only or status < 200 or status in (204, 304)
        has_length = any(name.lower() == "content-length" for name, _ in headers)

        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)

        if not has_length and not self._bodyless:
            if self.request_version == "HTTP/1.1":
                self.send_header("Transfer-Encoding", "chunked")
                self._chunked = True
            else:
                self.send_header("Connection", "close")

        self.end_headers()

    def send_body(self, data: bytes) -> None:
        if self._bodyless or not data:
            return
        if self._chunked:
            self.wfile.write(b"%x\r\n%s\r\n" % (len(data), data))
        else:
            self.wfile.write(data)

    def _finish_response(self, w: ResponseWriter) -> None:
        if not w.headers_sent:
            if self.server.draining:
                w.set_header("Connection", "close")

            status = w.final_status
            if status < 200 or status in (204, 304):
                w.del_header("Content-Length")
            else:
                w.set_header("Content-Length", str(len(w.body)))
            w.flush()

        elif self._chunked:
            self.wfile.write(b"0\r\n\r\n")

        self.wfile.flush()

        if self.server.draining:
            self.close_connection = True

    def _write_error(self, status: int, message: str) -> None:
        request = Request(
            method=getattr(self, "command", None) or "GET",
            path=urlsplit(getattr(self, "path", "") or "/").path or "/",
            headers=self._request_headers() if getattr(self, "headers", None) else {},
            remote_addr=join_host_port(*self.client_address[:2]),
            scheme=self.server.scheme,
        )
        self._head_only = request.method == "HEAD"
        self._chunked = False

        w = ResponseWriter(transport=self, encoders=self.server.encoders)
        w.set_header("Connection", "close")
        failure(w, request, status, ErrorMessage(code=status, message=message))
        self._finish_response(w)

    def send_error(self, code: int, message: Optional[str] = None, explain: Optional[str] = None) -> None:
        """Errors detected by http.server itself (malformed request line...)."""
        try:
            phrase = HTTPStatus(code).phrase
        except ValueError:
            phrase = ""
        self.log_error("code %d, message %s", code, message or phrase)
        self.close_connection = True
        # a request line too broken to name a version still gets a status line
        if self.request_version == "HTTP/0.9":
            self.request_version = self.protocol_version
        self._write_error(code, message or phrase)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _settimeout(self, seconds: float) -> None:
        self.request.settimeout(seconds or None)

    def version_string(self) -> str:
        return self.server_version

    def log_message(self, format: str, *args) -> None:
        logger.debug(f"{self.address_string()} - {format % args}")

    def log_error(self, format: str, *args) -> None:
        logger.info(f"{self.address_string()} - {format % args}")


class Listener(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """
    A bound socket serving one protocol, one thread per connection.

    The socket is bound by the constructor, so bind errors (address in
    use, permission denied) surface there.
    """

    daemon_threads = True
    block_on_close = False
    allow_reuse_address = True
    request_queue_size = 128

    def __init__(
        self,
        protocol: str,
        address: Tuple[str, int],
        app: App,
        config: Configuration,
        encoders: Optional[EncoderRegistry] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        self.protocol = protocol
        self.app = app
        self.config = config
        self.encoders = encoders or EncoderRegistry()
        self.scheme = "https" if ssl_context is not None else "http"
        self.address_family = address_family(address[0])

        self.draining = False
        self._cond = threading.Condition()
        self._idle: Set[ConnectionHandler] = set()
        self._busy: Set[ConnectionHandler] = set()
        self._serving = False
        self._drained = threading.Event()

        super().__init__(address, ConnectionHandler)

        if ssl_context is not None:
            self.socket = ssl_context.wrap_socket(
                self.socket,
                server_side=True,
                do_handshake_on_connect=False,
            )

    @property
    def address(self) -> str:
        host, port = self.server_address[:2]
        return join_host_port(host, port)

    @property
    def header_timeout(self) -> float:
        return self.config.read_header_timeout or self.config.read_timeout

    # =========================================================================
    # SERVING
    # =========================================================================

    def serve(self) -> None:
        """
        Accept connections until shutdown; blocks.

        Returns once shutdown_gracefully() has finished draining.
        """
        with self._cond:
            if self.draining:
                return
            self._serving = True

        self.serve_forever(poll_interval=0.1)
        self._drained.wait()

    def handle_error(self, request, client_address) -> None:
        err = sys.exc_info()[1]
        peer = join_host_port(*client_address[:2])
        if isinstance(err, OSError):
            logger.debug(f"{self.protocol} connection from {peer} closed: {err}")
        else:
            logger.exception(f"{self.protocol} connection from {peer} failed")

    # =========================================================================
    # CONNECTION TRACKING
    # =========================================================================

    def track(self, conn: ConnectionHandler) -> None:
        with self._cond:
            self._idle.add(conn)
            if self.draining:
                # accepted just before the listening socket closed
                conn.abort()

    def untrack(self, conn: ConnectionHandler) -> None:
        with self._cond:
            self._idle.discard(conn)
            self._busy.discard(conn)
            self._cond.notify_all()

    def begin_request(self, conn: ConnectionHandler) -> bool:
        with self._cond:
            if self.draining:
                return False
            self._idle.discard(conn)
            self._busy.add(conn)
            return True

    def end_request(self, conn: ConnectionHandler) -> None:
        with self._cond:
            self._busy.discard(conn)
            if self.draining:
                conn.close_connection = True
            else:
                self._idle.add(conn)
            self._cond.notify_all()

    @property
    def active_connections(self) -> int:
        with self._cond:
            return len(self._busy)

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown_gracefully(self, timeout: float) -> None:
        """
        Stop accepting, drain in-flight requests, close everything.

        Raises:
            ShutdownError: requests were still running after timeout; their
                connections were force-closed.
        """
        deadline = time.monotonic() + timeout

        with self._cond:
            self.draining = True
            serving = self._serving

        try:
            if serving:
                self.shutdown()
            self.server_close()

            with self._cond:
                for conn in list(self._idle):
                    conn.abort()

                while self._busy:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)

                stuck = list(self._busy)

            if stuck:
                for conn in stuck:
                    conn.abort()
                raise ShutdownError(
                    [TimeoutError(f"{len(stuck)} {self.protocol} requests still running after {timeout:g}s")],
                    f"{self.protocol} server did not shut down gracefully",
                )
        finally:
            self._drained.set()
