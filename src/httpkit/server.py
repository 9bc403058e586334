"""
=============================================================================
SERVER
=============================================================================

The Server owns a Router and runs up to two listeners, plaintext and TLS,
each in its own thread.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          Server.run()                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   no listener enabled ──▶ ConfigurationError, nothing bound         │
    │                                                                     │
    │   router.enable_recovery() + health / metrics / profiling           │
    │                                                                     │
    │   ┌────────────────────┐        ┌────────────────────┐              │
    │   │ thread "http"      │        │ thread "https"     │              │
    │   │  bind              │        │  bind + TLS        │              │
    │   │  serve_forever()   │        │  serve_forever()   │              │
    │   └─────────┬──────────┘        └─────────┬──────────┘              │
    │             │ exactly one outcome         │                         │
    │             ▼                             ▼                         │
    │         ┌───────────────────────────────────────┐                   │
    │         │ outcome queue  (protocol, error|None) │                   │
    │         └───────────────────┬───────────────────┘                   │
    │                             ▼                                       │
    │   run() blocks here: first error → ListenerError                    │
    │                      all None  → return                             │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

When one listener fails, run() raises right away but the other listener
keeps serving until shutdown() is called. That asymmetry is deliberate:
a failing TLS certificate should not take plaintext health checks down.

=============================================================================
SHUTDOWN
=============================================================================

    server.shutdown()

    Every started listener is stopped concurrently, each with its own
    grace period of config.shutdown_timeout seconds:

        stop accepting → close idle connections → wait for in-flight
        requests → force-close what is left

    All listeners are attempted even if one fails; the failures are
    combined into a single ShutdownError.

=============================================================================
"""

import logging
import queue
import threading
import time
from typing import Dict, List, Optional, Sequence, Tuple

from .config import Configuration
from .core.listener import Listener, build_tls_context
from .errors import ConfigurationError, HTTPKitError, ListenerError, ShutdownError
from .handlers.health import HealthCheck
from .http.router import Controller, Router
from .middleware.base import Handler, Wrapper


logger = logging.getLogger(__name__)


PROTOCOLS = ("http", "https")


class Server:
    """
    HTTP and HTTPS server.

    =========================================================================
    USAGE
    =========================================================================

        server = Server(Configuration(
            http=HTTPConfig(port=8080),
            health_check=True,
            metrics=True,
        ))

        @server.get("/users/:id")
        def get_user(w, r):
            encode(w, r, 200, {"id": params_from_request(r).get_param("id")})

        server.add_health_check("db", lambda ctx: db.ping())
        server.use(LoggingMiddleware())

        server.run()          # blocks until shutdown() from another thread

    =========================================================================
    """

    def __init__(self, config: Optional[Configuration] = None, router: Optional[Router] = None):
        self.config = config or Configuration()
        self.config.validate()

        self.router = router or Router()

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        self._outcomes: "queue.Queue[Tuple[str, Optional[BaseException]]]" = queue.Queue()
        self._listeners: Dict[str, Listener] = {}
        self._lock = threading.Lock()
        self._stopping = False
        self._configured = False
        self._expected = 0

        self.ready = threading.Event()
        """Set once every enabled listener is bound."""

    # =========================================================================
    # ROUTER DELEGATION
    # =========================================================================

    def use(self, *wrappers: Wrapper) -> "Server":
        self.router.use(*wrappers)
        return self

    def route(self, path: str, methods: Sequence[str] = ("GET",), name: Optional[str] = None):
        return self.router.route(path, methods, name)

    def get(self, path: str, name: Optional[str] = None):
        return self.router.get(path, name)

    def post(self, path: str, name: Optional[str] = None):
        return self.router.post(path, name)

    def put(self, path: str, name: Optional[str] = None):
        return self.router.put(path, name)

    def patch(self, path: str, name: Optional[str] = None):
        return self.router.patch(path, name)

    def delete(self, path: str, name: Optional[str] = None):
        return self.router.delete(path, name)

    def handle(self, path: str, handler: Handler, methods: Sequence[str] = ("GET",)) -> None:
        self.router.handle(path, handler, methods)

    def add_controller(self, controller: Controller) -> None:
        self.router.add_controller(controller)

    def add_health_check(self, name: str, probe: HealthCheck) -> None:
        self.router.add_health_check(name, probe)

    def set_not_found(self, handler: Handler) -> None:
        self.router.set_not_found(handler)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self) -> None:
        """
        Serve until shutdown() (blocking).

        Raises:
            ConfigurationError: neither listener is enabled, or the
                encoder registry has no default encoder.
            ListenerError: a listener failed to bind or to serve.
        """
        protocols = [p for p in PROTOCOLS if self.config.is_enabled(p)]
        if not protocols:
            raise ConfigurationError("http or https server is not configured")

        self._setup_logging()
        self._configure_router()

        with self._lock:
            self._expected = len(protocols)

        for protocol in protocols:
            threading.Thread(
                target=self._serve,
                args=(protocol,),
                name=f"httpkit-{protocol}",
                daemon=True,
            ).start()

        pending = len(protocols)
        while pending:
            protocol, err = self._outcomes.get()
            pending -= 1
            if err is not None:
                raise ListenerError(protocol, err) from err

    def start(self, timeout: float = 5.0) -> threading.Thread:
        """
        run() in a background thread; returns once every listener is bound.

        Raises whatever run() raised if it fails before that.
        """
        failure: List[BaseException] = []

        def target() -> None:
            try:
                self.run()
            except HTTPKitError as e:
                logger.error(f"server stopped: {e}")
                failure.append(e)

        thread = threading.Thread(target=target, name="httpkit-server", daemon=True)
        thread.start()

        deadline = time.monotonic() + timeout
        while not self.ready.wait(0.05):
            if not thread.is_alive():
                raise failure[0] if failure else HTTPKitError("server exited before it was ready")
            if time.monotonic() > deadline:
                raise TimeoutError(f"server not ready after {timeout:g}s")

        return thread

    def shutdown(self) -> None:
        """
        Gracefully stop every started listener.

        Raises:
            ShutdownError: at least one listener did not drain within
                shutdown_timeout.
        """
        with self._lock:
            self._stopping = True
            listeners = list(self._listeners.items())
            self._listeners.clear()

        errors: List[Exception] = []
        errors_lock = threading.Lock()

        def stop(protocol: str, listener: Listener) -> None:
            logger.info(f"Shutting down {protocol.upper()} server...")
            try:
                listener.shutdown_gracefully(self.config.shutdown_timeout)
            except Exception as e:
                logger.error(f"{protocol.upper()} server shutdown failed: {e}")
                with errors_lock:
                    errors.append(e)

        threads = [
            threading.Thread(target=stop, args=item, name=f"httpkit-shutdown-{item[0]}")
            for item in listeners
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if errors:
            raise ShutdownError(errors)

    def address(self, protocol: str = "http") -> Optional[str]:
        """Bound "host:port" of a running listener, None otherwise."""
        with self._lock:
            listener = self._listeners.get(protocol)
        return listener.address if listener is not None else None

    @property
    def running(self) -> bool:
        with self._lock:
            return bool(self._listeners)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _configure_router(self) -> None:
        if self._configured:
            return

        self.router.enable_recovery()

        if self.config.health_check:
            self.router.enable_health_check()
        if self.config.metrics:
            self.router.enable_metrics()
        if self.config.profiling:
            self.router.enable_profiling()

        self.router.encoders.validate()
        self.router.log_routes()
        self._configured = True

    def _create_listener(self, protocol: str) -> Listener:
        ssl_context = None
        if protocol == "https":
            listener_config = self.config.https
            ssl_context = build_tls_context(listener_config)
        else:
            listener_config = self.config.http

        return Listener(
            protocol,
            (listener_config.host, listener_config.port),
            self.router.serve_http,
            self.config,
            encoders=self.router.encoders,
            ssl_context=ssl_context,
        )

    def _serve(self, protocol: str) -> None:
        """Listener thread body; posts exactly one outcome."""
        try:
            listener = self._create_listener(protocol)
        except Exception as e:
            logger.error(f"{protocol.upper()} server failed to start: {e}")
            self._outcomes.put((protocol, e))
            return

        with self._lock:
            if self._stopping:
                listener.server_close()
                self._outcomes.put((protocol, None))
                return
            self._listeners[protocol] = listener
            if len(self._listeners) == self._expected:
                self.ready.set()

        logger.info(f"{protocol.upper()} Server running on {listener.address}")

        try:
            listener.serve()
        except Exception as e:
            logger.exception(f"{protocol.upper()} server stopped unexpectedly")
            self._outcomes.put((protocol, e))
            return

        self._outcomes.put((protocol, None))

    def _setup_logging(self) -> None:
        level = self.config.log_level_value

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("httpkit").setLevel(level)


def create_app(config: Optional[Configuration] = None, router: Optional[Router] = None) -> Server:
    """Factory for a Server, handy for tests and embedding."""
    return Server(config, router)
