"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One line per request on the "httpkit.access" logger, with timing and a
correlation ID.

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default, Apache-like):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 10.0.0.1 - - [10/Jun/2024:10:55:36 +0000] "GET /users/1" 200 25 5ms │
    │ ─────────────────────────────────────────────────────────────────── │
    │ IP          Timestamp          Method/Path   Status Size Duration   │
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ {"request_id": "a1b2c3d4", "method": "GET", "path": "/users/1",     │
    │  "route": "/users/:id", "status_code": 200, "duration_ms": 5.23,...}│
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST CORRELATION
=============================================================================

An incoming X-Request-ID is kept; otherwise a short random one is
generated. Either way it is echoed on the response so a client can quote
it when reporting a problem.

The access logger is separate from the module loggers, so it can be
routed on its own:

    logging.getLogger("httpkit.access").addHandler(file_handler)

=============================================================================
"""

import json
import logging
import time
import uuid
from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from ..http.context import REQUEST_ID_KEY
from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger("httpkit.access")

REQUEST_ID_HEADER = "X-Request-ID"

LOG_FORMATS = ("text", "json")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def request_id_from_request(r: Request) -> str:
    """The correlation ID assigned by LoggingMiddleware, "" outside it."""
    return r.context.get(REQUEST_ID_KEY, "")


@dataclass
class RequestLog:
    """
    One access log entry.

    route is the matched pattern ("/users/:id"), empty for 404/405.
    """

    request_id: str
    method: str
    path: str
    route: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    @classmethod
    def capture(cls, w: ResponseWriter, r: Request, elapsed: float) -> "RequestLog":
        return cls(
            request_id=request_id_from_request(r),
            method=r.method,
            path=r.path,
            route=r.context.route or "",
            query=r.query_string,
            client_ip=r.client_ip or "-",
            user_agent=r.user_agent or "-",
            status_code=w.final_status,
            content_length=w.bytes_written,
            duration_ms=round(elapsed * 1000, 2),
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def render(self, log_format: str) -> str:
        if log_format == "json":
            return json.dumps(asdict(self))
        return (
            f"{self.client_ip} - - [{self.timestamp}] "
            f"\"{self.method} {self.path}\" {self.status_code} "
            f"{self.content_length} {self.duration_ms:.2f}ms"
        )


class LoggingMiddleware(Middleware):
    """
    Access log middleware.

    =========================================================================
    MIDDLEWARE POSITION
    =========================================================================

    Register it first so it sees every request, including the ones other
    middleware rejects, and so the timing covers the whole chain:

        router.use(LoggingMiddleware())      # outermost
        router.use(AuthenticationMiddleware(...))

    Handlers further down read the correlation ID with
    request_id_from_request(r).

    =========================================================================
    USAGE
    =========================================================================

        LoggingMiddleware(log_format="json")
        LoggingMiddleware(skip_paths=["/health", "/metrics"])

    =========================================================================
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        if log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be 'text' or 'json', got {log_format!r}")

        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = frozenset(skip_paths or ())

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        request_id = r.get_header(REQUEST_ID_HEADER) or new_request_id()
        r.context.set(REQUEST_ID_KEY, request_id)
        if self.include_request_id:
            w.set_header(REQUEST_ID_HEADER, request_id)

        started = time.perf_counter()
        try:
            next_handler(w, r)
        except Exception as e:
            logger.error(
                f"Request failed: {r.method} {r.path} - {type(e).__name__}: {e} "
                f"({(time.perf_counter() - started) * 1000:.2f}ms) [{request_id}]"
            )
            raise

        if r.path in self.skip_paths:
            return

        entry = RequestLog.capture(w, r, time.perf_counter() - started)
        logger.log(self.log_level, entry.render(self.log_format))
