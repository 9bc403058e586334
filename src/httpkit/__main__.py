"""
=============================================================================
HTTPKIT CLI ENTRY POINT
=============================================================================

Runs a demo service: a small in-memory /users API plus the built-in
endpoints.

=============================================================================
USAGE
=============================================================================

    # Defaults from the environment (HTTP_PORT=8080, /health on)
    python -m httpkit

    # Custom port, metrics and profiling
    python -m httpkit --port 3000 --metrics --profiling

    # Plaintext and TLS side by side
    python -m httpkit --port 8080 --https-port 8443 \\
        --cert server.crt --key server.key

    # Try it
    curl -s localhost:8080/users
    curl -s -XPOST localhost:8080/users -d '{"name": "john", "email": "john@example.com"}'
    curl -s localhost:8080/users/1

Configuration starts from Configuration.from_env(); command-line flags
override it. SIGINT and SIGTERM trigger a graceful shutdown.

=============================================================================
"""

import argparse
import dataclasses
import logging
import signal
import sys
import threading
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from . import __version__
from .config import Configuration, HTTPConfig, HTTPSConfig
from .errors import ConfigurationError, ListenerError, ParamNotFoundError, ShutdownError
from .http import (
    Request,
    ResponseWriter,
    Router,
    encode,
    failure_from_error,
    failure_from_validator,
    params_from_request,
)
from .middleware import LoggingMiddleware
from .server import Server
from .validation import Validator


logger = logging.getLogger(__name__)


# =============================================================================
# DEMO CONTROLLER
# =============================================================================

class User(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: int = 0
    name: str = Field(min_length=2, max_length=64)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class UsersController:
    """In-memory users resource."""

    def __init__(self):
        self._users: Dict[int, User] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self.validator = Validator()
        self.validator.add_schema("user", User)

    def mount(self, router: Router) -> None:
        router.register_route("GET", "/users", self.list_users)
        router.register_route("POST", "/users", self.create_user)
        router.register_route("GET", "/users/:id", self.get_user)
        router.register_route("DELETE", "/users/:id", self.delete_user)

    def list_users(self, w: ResponseWriter, r: Request) -> None:
        with self._lock:
            users: List[User] = list(self._users.values())
        encode(w, r, 200, [u.model_dump() for u in users])

    def create_user(self, w: ResponseWriter, r: Request) -> None:
        try:
            payload = r.json
        except ValueError as e:
            failure_from_error(w, r, 400, e)
            return

        result = self.validator.validate("user", payload)
        if not result.is_valid:
            failure_from_validator(w, r, result)
            return

        with self._lock:
            user = result.value.model_copy(update={"id": self._next_id})
            self._users[user.id] = user
            self._next_id += 1

        w.set_header("Location", f"/users/{user.id}")
        encode(w, r, 201, user.model_dump())

    def get_user(self, w: ResponseWriter, r: Request) -> None:
        user_id = self._user_id(w, r)
        if user_id is None:
            return

        with self._lock:
            user = self._users.get(user_id)

        if user is None:
            failure_from_error(w, r, 404, LookupError(f"user {user_id} not found"))
            return

        encode(w, r, 200, user.model_dump())

    def delete_user(self, w: ResponseWriter, r: Request) -> None:
        user_id = self._user_id(w, r)
        if user_id is None:
            return

        with self._lock:
            removed = self._users.pop(user_id, None)

        if removed is None:
            failure_from_error(w, r, 404, LookupError(f"user {user_id} not found"))
            return

        w.write_header(204)

    @staticmethod
    def _user_id(w: ResponseWriter, r: Request):
        try:
            return int(params_from_request(r).get_param("id"))
        except (ParamNotFoundError, ValueError) as e:
            failure_from_error(w, r, 400, e)
            return None


# =============================================================================
# CLI
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpkit",
        description="Embeddable HTTP server core, demo service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpkit                                   # Defaults from env
  python -m httpkit --port 3000                       # Custom port
  python -m httpkit --metrics --profiling             # Built-in endpoints
  python -m httpkit --https-port 8443 --cert c.pem --key k.pem
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: all interfaces)")
    parser.add_argument("--port", "-p", type=int, default=None, help="HTTP port (default: 8080)")
    parser.add_argument("--https-port", type=int, default=None, help="HTTPS port (default: disabled)")
    parser.add_argument("--cert", default=None, help="TLS certificate file")
    parser.add_argument("--key", default=None, help="TLS private key file")
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=None,
        help="Grace period for in-flight requests, in seconds (default: 5)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # FEATURE ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--metrics", action="store_true", help="Expose /metrics")
    parser.add_argument("--profiling", action="store_true", help="Expose /debug/pprof")
    parser.add_argument("--no-health-check", action="store_true", help="Do not expose /health")
    parser.add_argument("--cors", action="store_true", help="Enable CORS for all origins")
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: INFO)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # META ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--version", "-v", action="version", version=f"httpkit {__version__}")

    return parser


def build_config(args: argparse.Namespace, base: Configuration) -> Configuration:
    """Overlay command-line flags on the environment configuration."""
    http = base.http or HTTPConfig()
    https = base.https or HTTPSConfig()

    if args.host is not None:
        http = dataclasses.replace(http, host=args.host)
        https = dataclasses.replace(https, host=args.host)
    if args.port is not None:
        http = dataclasses.replace(http, port=args.port)
    if args.https_port is not None:
        https = dataclasses.replace(https, port=args.https_port)
    if args.cert is not None:
        https = dataclasses.replace(https, cert_file=args.cert)
    if args.key is not None:
        https = dataclasses.replace(https, key_file=args.key)

    overrides = {"http": http, "https": https}
    if args.shutdown_timeout is not None:
        overrides["shutdown_timeout"] = args.shutdown_timeout
    if args.metrics:
        overrides["metrics"] = True
    if args.profiling:
        overrides["profiling"] = True
    if args.no_health_check:
        overrides["health_check"] = False
    if args.log_level is not None:
        overrides["log_level"] = args.log_level

    return dataclasses.replace(base, **overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args, Configuration.from_env())
        server = Server(config)
    except (ConfigurationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    server.use(LoggingMiddleware(skip_paths=["/health", "/metrics"]))
    if args.cors:
        server.router.enable_cors()

    server.add_controller(UsersController())

    def request_shutdown(signum, frame) -> None:
        logger.info(f"Received {signal.Signals(signum).name}")

        def stop() -> None:
            try:
                server.shutdown()
            except ShutdownError as e:
                logger.error(f"shutdown: {e}")

        threading.Thread(target=stop, name="httpkit-signal-shutdown").start()

    signal.signal(signal.SIGINT, request_shutdown)
    signal.signal(signal.SIGTERM, request_shutdown)

    try:
        server.run()
    except (ConfigurationError, ListenerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Server stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
