"""
=============================================================================
HTTP REQUEST
=============================================================================

The request object handed to middleware and handlers.

Parsing the wire format is the transport's job (the standard library's
http.server); by the time a Request exists, the request line, headers and
body have already been read. This module only normalizes them:

    ┌──────────────────────┐        ┌──────────────────────────────────┐
    │ BaseHTTPRequestHandler│ ─────▶ │ Request                          │
    │  command, path,       │        │   method       "GET"             │
    │  headers, rfile       │        │   path         "/users/345"      │
    └──────────────────────┘        │   query_string "page=2"          │
                                     │   headers      lower-case keys   │
                                     │   body         bytes             │
                                     │   remote_addr  "10.0.0.1:53412"  │
                                     │   scheme       "http" | "https"  │
                                     │   context      RequestContext    │
                                     └──────────────────────────────────┘

Header names are case-insensitive (RFC 7230), so keys are stored
lower-cased once and every lookup lower-cases its argument.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, unquote, urlsplit

from .context import RequestContext


@dataclass
class Request:
    """A single HTTP request."""

    method: str
    path: str
    query_string: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    remote_addr: str = ""
    scheme: str = "http"
    host: str = ""
    version: str = "HTTP/1.1"
    context: RequestContext = field(default_factory=RequestContext)

    _query: Optional[Dict[str, List[str]]] = field(default=None, repr=False)
    _body_json: Optional[Any] = field(default=None, repr=False)

    def __post_init__(self):
        self.method = self.method.upper()
        self.headers = {k.lower(): v for k, v in self.headers.items()}
        if not self.host:
            self.host = self.headers.get("host", "")

    @classmethod
    def from_target(
        cls,
        method: str,
        target: str,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        **kwargs,
    ) -> "Request":
        """
        Build a request from a request-target ("/path?query").

        Used by the transport and handy in tests:

            Request.from_target("GET", "/users/345?expand=1")
        """
        parts = urlsplit(target)
        return cls(
            method=method,
            path=unquote(parts.path) or "/",
            query_string=parts.query,
            headers=dict(headers or {}),
            body=body,
            **kwargs,
        )

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def query_params(self) -> Dict[str, List[str]]:
        """Parsed query string, computed on first access."""
        if self._query is None:
            self._query = parse_qs(self.query_string, keep_blank_values=True)
        return self._query

    @property
    def content_type(self) -> str:
        """Content-Type without parameters ("application/json")."""
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def url(self) -> str:
        """Absolute URL as seen by the client."""
        url = f"{self.scheme}://{self.host}{self.path}"
        if self.query_string:
            url = f"{url}?{self.query_string}"
        return url

    @property
    def json(self) -> Any:
        """
        Decode the body as JSON, once.

        Returns None for an empty body. Raises ValueError on invalid JSON;
        handlers usually answer that with failure_from_error(..., 400, err).
        """
        if self._body_json is None and self.body:
            self._body_json = json.loads(self.body.decode("utf-8"))
        return self._body_json

    @property
    def client_ip(self) -> str:
        """remote_addr without the port ("[::1]:8080" → "::1")."""
        addr = self.remote_addr
        if addr.startswith("["):
            return addr[1:].split("]", 1)[0]
        if addr.count(":") == 1:
            return addr.split(":", 1)[0]
        return addr

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def get_query_list(self, name: str) -> List[str]:
        return self.query_params.get(name, [])
