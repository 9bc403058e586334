"""
=============================================================================
CORS (Cross-Origin Resource Sharing) MIDDLEWARE
=============================================================================

Lets browsers call the API from pages served by another origin.

    SIMPLE REQUEST:

        Browser ── GET /users, Origin: https://app.com ──▶ Server
        Browser ◀── 200 + Access-Control-Allow-Origin ──── Server

    PREFLIGHT (non-simple method or headers):

        Browser ── OPTIONS /users ──────────────────────▶ Server
                   Origin: https://app.com
                   Access-Control-Request-Method: PUT
        Browser ◀── 204 No Content ─────────────────────── Server
                   Access-Control-Allow-Origin: https://app.com
                   Access-Control-Allow-Methods: GET, POST, PUT, ...
                   Access-Control-Max-Age: 86400
        Browser ── PUT /users (the actual request) ──────▶ Server

The preflight is answered here and never reaches the router's target, so
it works for paths that have no OPTIONS route (which would otherwise be
405).

=============================================================================
"""

from dataclasses import dataclass
from typing import List, Optional

from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


@dataclass
class CORSConfig:
    """
    CORS configuration options.

    =========================================================================
    CONFIGURATION GUIDE
    =========================================================================

    DEVELOPMENT (permissive):
        CORSConfig()  # Defaults: allow everything

    PRODUCTION (restrictive):
        CORSConfig(
            allow_origins=["https://myapp.com"],
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["Authorization", "Content-Type"]
        )

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # Origins allowed to make requests, ["*"] for any
    # ─────────────────────────────────────────────────────────────────────
    allow_origins: Optional[List[str]] = None

    allow_methods: Optional[List[str]] = None

    allow_headers: Optional[List[str]] = None

    # ─────────────────────────────────────────────────────────────────────
    # Response headers the browser may read beyond the safe list
    # ─────────────────────────────────────────────────────────────────────
    expose_headers: Optional[List[str]] = None

    # ─────────────────────────────────────────────────────────────────────
    # Cookies / Authorization. With "*" origins the request origin is
    # echoed back instead of "*".
    # ─────────────────────────────────────────────────────────────────────
    allow_credentials: bool = False

    max_age: int = 86400  # 24 hours

    def __post_init__(self):
        if self.allow_origins is None:
            self.allow_origins = ["*"]
        if self.allow_methods is None:
            self.allow_methods = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
        if self.allow_headers is None:
            self.allow_headers = ["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"]
        if self.expose_headers is None:
            self.expose_headers = []


class CORSMiddleware(Middleware):
    """
    Answers preflights and decorates every other response.

        router.use(CORSMiddleware(CORSConfig(allow_origins=["https://myapp.com"])))

    Place it before authentication: preflights carry no credentials.
    """

    def __init__(self, config: Optional[CORSConfig] = None):
        self.config = config or CORSConfig()

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        origin = r.get_header("Origin")

        if r.method == "OPTIONS" and origin and r.get_header("Access-Control-Request-Method"):
            self._handle_preflight(w, r, origin)
            return

        # Headers are set before the handler runs so they survive a flush()
        self._add_cors_headers(w, origin)
        next_handler(w, r)

    def _handle_preflight(self, w: ResponseWriter, r: Request, origin: str) -> None:
        if self._add_cors_headers(w, origin):
            w.set_header("Access-Control-Allow-Methods", ", ".join(self.config.allow_methods))
            if r.get_header("Access-Control-Request-Headers"):
                w.set_header("Access-Control-Allow-Headers", ", ".join(self.config.allow_headers))
            w.set_header("Access-Control-Max-Age", str(self.config.max_age))

        # 204 No Content, even for a disallowed origin: the browser blocks
        # the actual request because the allow headers are missing
        w.write_header(204)

    def _add_cors_headers(self, w: ResponseWriter, origin: str) -> bool:
        """Set the allow headers; False when the origin is not allowed."""
        # Responses differ per Origin, caches must key on it
        vary = w.headers.get_all("Vary")
        if not any("origin" in v.lower() for v in vary):
            w.add_header("Vary", "Origin")

        if "*" in self.config.allow_origins:
            if self.config.allow_credentials:
                allowed_origin = origin or "*"
            else:
                allowed_origin = "*"
        elif origin in self.config.allow_origins:
            allowed_origin = origin
        else:
            return False

        w.set_header("Access-Control-Allow-Origin", allowed_origin)

        if self.config.allow_credentials:
            w.set_header("Access-Control-Allow-Credentials", "true")

        if self.config.expose_headers:
            w.set_header("Access-Control-Expose-Headers", ", ".join(self.config.expose_headers))

        return True

    def is_origin_allowed(self, origin: str) -> bool:
        if "*" in self.config.allow_origins:
            return True
        return origin in self.config.allow_origins
