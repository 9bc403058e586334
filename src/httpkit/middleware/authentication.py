"""
=============================================================================
AUTHENTICATION MIDDLEWARE
=============================================================================

Delegates the credential check to a Provider and rejects what it refuses:

    request ──▶ public path? ── yes ──────────────────────▶ next handler
                    │ no
                    ▼
               provider.validate(r) ── True ──────────────▶ next handler
                    │ False
                    ▼
               401 Unauthorized
               WWW-Authenticate: Bearer realm="api"
               {"error":{"code":401,"message":"Unauthorized"}}

/health and /metrics are public by default so probes and scrapers work
without credentials.

How a credential is checked (JWT, introspection, API keys) is entirely
the provider's business.

=============================================================================
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Iterable, Protocol, Tuple

from ..http.request import Request
from ..http.response import failure_from_error
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger(__name__)


class Provider(Protocol):
    """Decides whether a request carries valid credentials."""

    def validate(self, r: Request) -> bool:
        ...


@dataclass(frozen=True)
class AuthConfig:
    realm: str = ""
    public_paths: Tuple[str, ...] = ("/health", "/metrics")


def bearer_token(r: Request) -> str:
    """The token of an "Authorization: Bearer <token>" header, or ""."""
    scheme, _, token = r.get_header("Authorization").partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


class StaticTokenProvider:
    """Accepts a fixed set of bearer tokens."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = [t.encode("utf-8") for t in tokens if t]

    def validate(self, r: Request) -> bool:
        token = bearer_token(r).encode("utf-8")
        if not token:
            return False
        # compare against every token so timing does not leak which matched
        matched = False
        for candidate in self._tokens:
            matched |= hmac.compare_digest(token, candidate)
        return matched


class AuthenticationMiddleware(Middleware):

    def __init__(self, config: AuthConfig, provider: Provider):
        self.config = config
        self.provider = provider

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        if r.path in self.config.public_paths:
            next_handler(w, r)
            return

        if not self.provider.validate(r):
            w.set_header("WWW-Authenticate", f'Bearer realm="{self.config.realm}"')
            logger.error("Access token invalid or expired")
            failure_from_error(w, r, 401, PermissionError("Unauthorized"))
            return

        next_handler(w, r)
